"""Chat RPC endpoints: history, send (plain and streamed), image generation, clear."""

import json
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from canvaschat.database import get_db
from canvaschat.models import ChatMessage
from canvaschat.routers.auth import CurrentUser, get_current_user
from canvaschat.schemas import (
    ChatHistoryOut,
    ChatMessageOut,
    ClearHistoryOut,
    GenerateImageIn,
    GenerateImageOut,
    SendMessageIn,
    SendMessageOut,
)
from canvaschat.services.chat_service import (
    ChatProcessingError,
    ChatService,
    EmptyMessageError,
    ImageGenerationFailed,
    StreamEvent,
)
from canvaschat.services.image_generation import ImageGenerator
from canvaschat.services.message_store import MessageStore, StoreError
from canvaschat.services.text_generation import TextGenerator

router = APIRouter(prefix="/api/chat", tags=["chat"])


def get_text_generator(request: Request) -> TextGenerator:
    return request.app.state.text_generator


def get_image_generator(request: Request) -> ImageGenerator:
    return request.app.state.image_generator


def get_chat_service(
    db: Session = Depends(get_db),
    text_generator: TextGenerator = Depends(get_text_generator),
    image_generator: ImageGenerator = Depends(get_image_generator),
) -> ChatService:
    return ChatService(MessageStore(db), text_generator, image_generator)


def _message_out(msg: ChatMessage) -> ChatMessageOut:
    return ChatMessageOut.model_validate(msg)


def _encode_event(event: StreamEvent) -> dict[str, Any]:
    data = {
        k: _message_out(v).model_dump(mode="json") if isinstance(v, ChatMessage) else v
        for k, v in event.data.items()
    }
    return {"type": event.type, "data": data}


@router.get("/history", response_model=ChatHistoryOut)
def get_chat_history(
    user: CurrentUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    try:
        messages = service.history(user.sub)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to fetch chat history")
    return ChatHistoryOut(messages=[_message_out(m) for m in messages], count=len(messages))


@router.post("/send", response_model=SendMessageOut)
def send_message(
    body: SendMessageIn,
    user: CurrentUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    try:
        outcome = service.send(body.message, user.sub)
    except EmptyMessageError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ChatProcessingError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return SendMessageOut(
        user_message=_message_out(outcome.user_message),
        ai_message=_message_out(outcome.ai_message),
        ai_response=outcome.ai_response,
        gemini_success=outcome.success,
        gemini_error=outcome.error,
    )


@router.post("/send/stream")
async def send_message_stream(
    body: SendMessageIn,
    user: CurrentUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    events = service.stream(body.message, user.sub)

    async def ndjson() -> AsyncIterator[str]:
        try:
            async for event in events:
                yield json.dumps(_encode_event(event), ensure_ascii=False) + "\n"
        finally:
            await events.aclose()

    return StreamingResponse(ndjson(), media_type="application/x-ndjson")


@router.post("/image", response_model=GenerateImageOut)
async def generate_image(
    body: GenerateImageIn,
    user: CurrentUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    try:
        outcome = await service.generate_image(body.prompt, user.sub)
    except ImageGenerationFailed as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ChatProcessingError:
        raise HTTPException(status_code=500, detail="Failed to generate image")

    return GenerateImageOut(
        image_url=outcome.image_url,
        user_message=_message_out(outcome.user_message),
        ai_message=_message_out(outcome.ai_message),
        prompt=outcome.prompt,
        warning=outcome.warning,
    )


@router.post("/clear", response_model=ClearHistoryOut)
def clear_history(
    user: CurrentUser = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    try:
        service.clear_history(user.sub)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to clear chat history")
    return ClearHistoryOut(message="Chat history cleared successfully")
