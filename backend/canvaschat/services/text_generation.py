"""Text generation adapter using LiteLLM against a Gemini model.

One attempt per call, no retry or backoff. Failures never raise: they come
back as an assistant-voiced apology with success=False, so the caller can
store and show them like a normal reply. Quota/overload failures get a
message pointing the user at the /image command, which uses independent
providers.
"""

import json
import logging
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Optional

import litellm
from pydantic import BaseModel

from canvaschat.config import settings

litellm.set_verbose = False

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """\
You are a helpful AI assistant. Please respond to the following message in a friendly and informative way:

User: {message}

Please provide a helpful and engaging response."""

NOT_CONFIGURED_MESSAGE = (
    "I apologize, but the AI service is not configured. Please check the API key configuration."
)
INVALID_KEY_MESSAGE = (
    "I apologize, but there's an issue with the AI service configuration."
)
IMAGE_SUGGESTION = (
    "🤖 I apologize, but the AI text service is temporarily overloaded due to high demand. "
    "Please try again in a few minutes.\n\n"
    "💡 **Good news:** Image generation is still working! Try typing `/image` followed by "
    "your image description to generate pictures instead.\n\n"
    "Example: `/image a beautiful sunset over mountains`"
)
GENERIC_ERROR_MESSAGE = (
    "I apologize, but I'm experiencing technical difficulties right now. Please try again later."
)

OVERLOAD_MARKERS = ("quota", "limit", "overloaded", "503")


class ErrorKind(str, Enum):
    MISSING_CONFIG = "missing_config"
    INVALID_CREDENTIAL = "invalid_credential"
    OVERLOADED = "overloaded"
    UNKNOWN = "unknown"


class TextResult(BaseModel):
    response: str
    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class TextChunk(BaseModel):
    text: str
    done: bool
    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


def build_prompt(user_message: str) -> str:
    return PROMPT_TEMPLATE.format(message=user_message)


def classify_error(exc: Exception) -> ErrorKind:
    if isinstance(exc, litellm.AuthenticationError):
        return ErrorKind.INVALID_CREDENTIAL
    if isinstance(exc, (litellm.RateLimitError, litellm.ServiceUnavailableError)):
        return ErrorKind.OVERLOADED

    message = str(exc)
    if "API_KEY" in message:
        return ErrorKind.INVALID_CREDENTIAL
    if any(marker in message for marker in OVERLOAD_MARKERS):
        return ErrorKind.OVERLOADED
    return ErrorKind.UNKNOWN


def failure_response(kind: ErrorKind, exc: Exception | None = None) -> TextResult:
    """Map a failure kind to the apology text and short error label."""
    if kind == ErrorKind.MISSING_CONFIG:
        return TextResult(response=NOT_CONFIGURED_MESSAGE, success=False,
                          error="Gemini API key not configured", error_kind=kind)
    if kind == ErrorKind.INVALID_CREDENTIAL:
        return TextResult(response=INVALID_KEY_MESSAGE, success=False,
                          error="Invalid API key", error_kind=kind)
    if kind == ErrorKind.OVERLOADED:
        return TextResult(response=IMAGE_SUGGESTION, success=False,
                          error="Service temporarily overloaded", error_kind=kind)
    return TextResult(response=GENERIC_ERROR_MESSAGE, success=False,
                      error=str(exc) if exc else "Unknown error", error_kind=kind)


def _log_call(
    log_dir: Path,
    model: str,
    success: bool,
    response_time: float,
    error: str | None = None,
    prompt_length: int = 0,
    streaming: bool = False,
) -> None:
    """Append a log entry for the LLM call."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"llm_calls_{datetime.now():%Y-%m-%d}.jsonl"
    entry = {
        "ts": datetime.now().isoformat(),
        "event": "llm_call",
        "model": model,
        "success": success,
        "response_time_s": round(response_time, 2),
        "error": error,
        "prompt_length": prompt_length,
    }
    if streaming:
        entry["streaming"] = True
    with open(log_file, "a") as f:
        f.write(json.dumps(entry) + "\n")


class TextGenerator:
    """Wraps a single LLM completion call behind a stable result contract."""

    def __init__(self, api_key: str = "", model: str = "gemini/gemini-1.5-flash"):
        self.api_key = api_key
        self.model = model

    @classmethod
    def from_settings(cls, s=settings) -> "TextGenerator":
        return cls(api_key=s.gemini_api_key, model=s.text_model)

    def _messages(self, user_message: str) -> list[dict]:
        return [{"role": "user", "content": build_prompt(user_message)}]

    def generate(self, user_message: str) -> TextResult:
        if not self.api_key:
            return failure_response(ErrorKind.MISSING_CONFIG)

        messages = self._messages(user_message)
        start = time.time()
        try:
            response = litellm.completion(
                model=self.model,
                messages=messages,
                api_key=self.api_key,
            )
            text = response.choices[0].message.content or ""
        except Exception as e:
            elapsed = time.time() - start
            _log_call(settings.log_dir, self.model, False, elapsed,
                      error=str(e)[:200], prompt_length=len(user_message))
            kind = classify_error(e)
            logger.warning("Text generation failed (%s): %s", kind.value, e)
            return failure_response(kind, e)

        _log_call(settings.log_dir, self.model, True, time.time() - start,
                  prompt_length=len(user_message))
        return TextResult(response=text, success=True)

    async def stream(self, user_message: str) -> AsyncIterator[TextChunk]:
        """Yield text fragments as they arrive, then one terminal done=True chunk.

        On failure the terminal chunk carries the apology text for the
        failure kind and success=False. Fragments already yielded stay
        yielded; the consumer decides what to persist.
        """
        if not self.api_key:
            failure = failure_response(ErrorKind.MISSING_CONFIG)
            yield TextChunk(text=failure.response, done=True, success=False,
                            error=failure.error, error_kind=failure.error_kind)
            return

        start = time.time()
        try:
            response = await litellm.acompletion(
                model=self.model,
                messages=self._messages(user_message),
                api_key=self.api_key,
                stream=True,
            )
            async for part in response:
                if not part.choices:
                    continue
                text = part.choices[0].delta.content
                if text:
                    yield TextChunk(text=text, done=False, success=True)
        except Exception as e:
            _log_call(settings.log_dir, self.model, False, time.time() - start,
                      error=str(e)[:200], prompt_length=len(user_message), streaming=True)
            kind = classify_error(e)
            logger.warning("Streaming text generation failed (%s): %s", kind.value, e)
            failure = failure_response(kind, e)
            yield TextChunk(text=failure.response, done=True, success=False,
                            error=failure.error, error_kind=kind)
            return

        _log_call(settings.log_dir, self.model, True, time.time() - start,
                  prompt_length=len(user_message), streaming=True)
        yield TextChunk(text="", done=True, success=True)
