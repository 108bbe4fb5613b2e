#!/usr/bin/env python3
"""Interactive terminal client for the chat API.

Plain lines are chat messages; `/image <description>` generates a picture.
Other commands: /history, /clear (asks for confirmation), /quit.

The session cookie comes from a browser login (`/api/auth/login`); copy the
`session` cookie value and pass it with --session or CANVASCHAT_SESSION.

Usage:
    python3 scripts/chat_cli.py --session <cookie>
    python3 scripts/chat_cli.py --base-url http://localhost:8000 --stream
"""

import argparse
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from canvaschat.client import ChatClient, ChatClientError, CommandError, looks_like_image_request

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
logger = logging.getLogger("chat_cli")


def print_message(msg: dict) -> None:
    who = "you" if msg["role"] == "user" else "ai"
    if msg["content_type"] == "image":
        print(f"[{who}] <image> {msg['content'][:120]}")
    else:
        print(f"[{who}] {msg['content']}")


def confirm(question: str) -> bool:
    return input(f"{question} [y/N] ").strip().lower() in ("y", "yes")


def handle_line(client: ChatClient, line: str, stream: bool) -> None:
    cmd = line.strip().lower()
    if cmd == "/history":
        data = client.history()
        for msg in data["messages"]:
            print_message(msg)
        print(f"({data['count']} messages)")
        return
    if cmd == "/clear":
        if confirm("Clear your entire chat history?"):
            print(client.clear()["message"])
        return

    if looks_like_image_request(line):
        if confirm("It looks like you want an image. Send as /image instead?"):
            line = f"/image {line.strip()}"

    if stream and not cmd.startswith("/image"):
        for event in client.stream(line.strip()):
            if event["type"] == "chunk":
                print(event["data"]["chunk"], end="", flush=True)
            elif event["type"] == "complete":
                print()
            elif event["type"] == "error":
                print(f"\n[error] {event['data'].get('error')}")
                if "aiMessage" in event["data"]:
                    print_message(event["data"]["aiMessage"])
        return

    command, data = client.submit(line)
    if command.kind == "image":
        print(f"[ai] <image> {data['imageUrl'][:120]}")
        if data.get("warning"):
            print(f"[note] {data['warning']}")
    else:
        print(f"[ai] {data['aiResponse']}")


def main():
    parser = argparse.ArgumentParser(description="Chat with the canvaschat API from a terminal")
    parser.add_argument("--base-url", default=os.environ.get("CANVASCHAT_URL", "http://localhost:8000"))
    parser.add_argument("--session", default=os.environ.get("CANVASCHAT_SESSION"),
                        help="value of the session cookie set by /api/auth/callback")
    parser.add_argument("--stream", action="store_true", help="stream text replies")
    args = parser.parse_args()

    with ChatClient(args.base_url, session_cookie=args.session) as client:
        profile = client.profile()
        if not profile["authenticated"]:
            logger.error("Not logged in. Visit %s/api/auth/login and pass the session cookie.", args.base_url)
            sys.exit(1)
        print(f"Logged in as {profile['user'].get('name') or profile['user']['sub']}. /quit to exit.")

        while True:
            try:
                line = input("> ")
            except EOFError:
                break
            if line.strip().lower() in ("/quit", "/exit"):
                break
            if not line.strip():
                continue
            try:
                handle_line(client, line, args.stream)
            except CommandError as e:
                print(f"[!] {e}")
            except ChatClientError as e:
                logger.error("Request failed: %s", e)


if __name__ == "__main__":
    main()
