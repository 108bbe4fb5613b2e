"""Chat turn orchestration.

A turn is persisted as two rows: the user's message first, then the
model's reply. Text generation failures are stored as the reply (the
adapter returns an apology instead of raising). Image generation persists
the prompt before calling the provider chain and writes no reply row if the
chain reports failure, so a failed image turn is left one-sided.

The async paths run store calls in a worker thread so a slow insert does not
stall the event loop.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from canvaschat.models import ChatMessage
from canvaschat.services.image_generation import ImageGenerator
from canvaschat.services.interaction_logger import log_interaction
from canvaschat.services.message_store import MessageStore, StoreError
from canvaschat.services.sanitize import sanitize_user_input
from canvaschat.services.streaming import ChannelStream
from canvaschat.services.text_generation import TextGenerator

logger = logging.getLogger(__name__)

FALLBACK_APOLOGY = (
    "I apologize, but I encountered an error processing your message. Please try again."
)


class ChatError(Exception):
    pass


class ChatProcessingError(ChatError):
    pass


class EmptyMessageError(ChatError):
    """Raised when a message has nothing left after sanitation."""


class ImageGenerationFailed(ChatError):
    pass


@dataclass
class SendOutcome:
    user_message: ChatMessage
    ai_message: ChatMessage
    ai_response: str
    success: bool
    error: Optional[str] = None


@dataclass
class ImageOutcome:
    image_url: str
    user_message: ChatMessage
    ai_message: ChatMessage
    prompt: str
    provider: Optional[str] = None
    placeholder: bool = False
    warning: Optional[str] = None


@dataclass
class StreamEvent:
    type: str  # userMessageSaved / chunk / complete / error
    data: dict[str, Any] = field(default_factory=dict)


def _elapsed_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


class ChatService:
    def __init__(
        self,
        store: MessageStore,
        text_generator: TextGenerator,
        image_generator: ImageGenerator | None = None,
    ):
        self.store = store
        self.text_generator = text_generator
        self.image_generator = image_generator

    def history(self, user_id: str) -> list[ChatMessage]:
        return self.store.messages_for_user(user_id)

    def clear_history(self, user_id: str) -> int:
        deleted = self.store.clear_user_history(user_id)
        log_interaction(event="history_clear", user_id=user_id, deleted=deleted)
        return deleted

    def _save_apology(self, user_id: str, content: str = FALLBACK_APOLOGY) -> ChatMessage | None:
        try:
            return self.store.add_message(user_id, "model", content)
        except Exception:
            logger.exception("Failed to save error message for user %s", user_id)
            return None

    async def _add_message(self, *args) -> ChatMessage:
        return await asyncio.to_thread(self.store.add_message, *args)

    def send(self, message: str, user_id: str) -> SendOutcome:
        sanitized = sanitize_user_input(message)
        if not sanitized:
            raise EmptyMessageError("Message cannot be empty")
        start = time.time()
        try:
            user_message = self.store.add_message(user_id, "user", sanitized)
            result = self.text_generator.generate(sanitized)
            ai_message = self.store.add_message(user_id, "model", result.response)
        except Exception as e:
            logger.exception("Failed to process message for user %s", user_id)
            self._save_apology(user_id)
            raise ChatProcessingError("Failed to process your message") from e

        log_interaction(
            event="chat_send",
            user_id=user_id,
            success=result.success,
            response_ms=_elapsed_ms(start),
            error_kind=result.error_kind.value if result.error_kind else None,
            message_length=len(sanitized),
        )
        return SendOutcome(
            user_message=user_message,
            ai_message=ai_message,
            ai_response=result.response,
            success=result.success,
            error=result.error,
        )

    async def generate_image(self, prompt: str, user_id: str) -> ImageOutcome:
        if self.image_generator is None:
            raise ChatProcessingError("Image generation is not available")

        sanitized = sanitize_user_input(prompt)
        start = time.time()
        try:
            user_message = await self._add_message(user_id, "user", sanitized)
        except StoreError as e:
            raise ChatProcessingError("Failed to generate image") from e

        result = await self.image_generator.generate(sanitized)
        if not result.success:
            log_interaction(
                event="image_generate",
                user_id=user_id,
                success=False,
                response_ms=_elapsed_ms(start),
                error=result.error,
            )
            raise ImageGenerationFailed(result.error or "Failed to generate image")

        try:
            ai_message = await self._add_message(user_id, "model", result.image_url, "image")
        except StoreError as e:
            raise ChatProcessingError("Failed to generate image") from e

        log_interaction(
            event="image_generate",
            user_id=user_id,
            success=True,
            response_ms=_elapsed_ms(start),
            provider=result.provider,
            placeholder=result.placeholder or None,
        )
        return ImageOutcome(
            image_url=result.image_url,
            user_message=user_message,
            ai_message=ai_message,
            prompt=sanitized,
            provider=result.provider,
            placeholder=result.placeholder,
            warning=result.warning,
        )

    async def _error_event(self, user_id: str, error: str, content: str = FALLBACK_APOLOGY) -> StreamEvent:
        ai_message = await asyncio.to_thread(self._save_apology, user_id, content)
        if ai_message is None:
            return StreamEvent("error", {"error": "Failed to save error message", "success": False})
        return StreamEvent("error", {"aiMessage": ai_message, "error": error, "success": False})

    async def stream(self, message: str, user_id: str) -> AsyncIterator[StreamEvent]:
        """Yield userMessageSaved, then chunk events, then one complete or error event.

        The reply row is written once, after the upstream stream finishes.
        If the consumer stops iterating early, the upstream call is
        cancelled and no reply row is written.
        """
        sanitized = sanitize_user_input(message)
        if not sanitized:
            yield StreamEvent("error", {"error": "Message cannot be empty", "success": False})
            return

        start = time.time()
        try:
            user_message = await self._add_message(user_id, "user", sanitized)
        except StoreError as e:
            logger.exception("Failed to process streaming message for user %s", user_id)
            yield await self._error_event(user_id, str(e))
            return

        yield StreamEvent("userMessageSaved", {"userMessage": user_message, "success": True})

        full_response = ""
        success = False
        async with ChannelStream(self.text_generator.stream(sanitized)) as chunks:
            try:
                async for chunk in chunks:
                    if not chunk.done:
                        full_response += chunk.text
                        yield StreamEvent("chunk", {
                            "chunk": chunk.text,
                            "fullResponse": full_response,
                            "success": chunk.success,
                        })
                        continue

                    if chunk.success:
                        ai_message = await self._add_message(user_id, "model", full_response)
                        success = True
                        yield StreamEvent("complete", {
                            "aiMessage": ai_message,
                            "fullResponse": full_response,
                            "success": True,
                        })
                    else:
                        yield await self._error_event(
                            user_id,
                            chunk.error or "Unknown error",
                            content=chunk.text or FALLBACK_APOLOGY,
                        )
                    break
            except Exception as e:
                logger.exception("Failed to process streaming message for user %s", user_id)
                yield await self._error_event(user_id, str(e))

        log_interaction(
            event="chat_stream",
            user_id=user_id,
            success=success,
            response_ms=_elapsed_ms(start),
            response_length=len(full_response),
        )
