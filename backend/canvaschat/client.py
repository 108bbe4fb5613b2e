"""Client-side command routing and a thin HTTP client for the chat API.

A message starting with ``/image`` (any case) is sent to image generation
with the rest of the line as the prompt; everything else is a chat message.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Iterator

import httpx

IMAGE_COMMAND = "/image"
SESSION_COOKIE = "session"

_IMAGE_INTENT = re.compile(r"(create|generate|make|draw).*image|picture|photo|drawing")


class CommandError(ValueError):
    pass


class ChatClientError(Exception):
    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


@dataclass
class Command:
    kind: str  # text/image
    payload: str


def parse_command(text: str) -> Command:
    stripped = text.strip()
    if stripped.lower().startswith(IMAGE_COMMAND):
        prompt = stripped[len(IMAGE_COMMAND):].strip()
        if not prompt:
            raise CommandError(
                "Please provide a prompt after /image command. Example: /image a cat on the moon"
            )
        return Command(kind="image", payload=prompt)
    if not stripped:
        raise CommandError("Message cannot be empty")
    return Command(kind="text", payload=stripped)


def looks_like_image_request(text: str) -> bool:
    """True for plain messages that seem to ask for a picture without /image."""
    lowered = text.strip().lower()
    if lowered.startswith(IMAGE_COMMAND):
        return False
    return bool(_IMAGE_INTENT.search(lowered))


class ChatClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        session_cookie: str | None = None,
        client: httpx.Client | None = None,
    ):
        cookies = {SESSION_COOKIE: session_cookie} if session_cookie else None
        self.client = client or httpx.Client(base_url=base_url, cookies=cookies, timeout=None)

    def __enter__(self) -> "ChatClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    def _call(self, method: str, path: str, **kwargs) -> dict:
        resp = self.client.request(method, path, **kwargs)
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail")
            except ValueError:
                detail = resp.text
            raise ChatClientError(resp.status_code, detail)
        return resp.json()

    def history(self) -> dict:
        return self._call("GET", "/api/chat/history")

    def send(self, message: str) -> dict:
        return self._call("POST", "/api/chat/send", json={"message": message})

    def generate_image(self, prompt: str) -> dict:
        return self._call("POST", "/api/chat/image", json={"prompt": prompt})

    def clear(self) -> dict:
        return self._call("POST", "/api/chat/clear")

    def profile(self) -> dict:
        return self._call("GET", "/api/user/profile")

    def stream(self, message: str) -> Iterator[dict]:
        with self.client.stream("POST", "/api/chat/send/stream", json={"message": message}) as resp:
            if resp.status_code >= 400:
                resp.read()
                raise ChatClientError(resp.status_code, resp.text)
            for line in resp.iter_lines():
                if line:
                    yield json.loads(line)

    def submit(self, text: str) -> tuple[Command, dict]:
        """Route one line of user input; raises CommandError before any request."""
        command = parse_command(text)
        if command.kind == "image":
            return command, self.generate_image(command.payload)
        return command, self.send(command.payload)
