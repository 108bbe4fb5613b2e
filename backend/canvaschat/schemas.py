from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from canvaschat.services.sanitize import MAX_MESSAGE_LENGTH, MAX_PROMPT_LENGTH, sanitize_user_input


class CamelModel(BaseModel):
    """Response model serialized with the camelCase keys the chat UI reads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Chat schemas ---

class ChatMessageOut(BaseModel):
    id: int
    user_id: str
    role: Literal["user", "model"]
    content: str
    content_type: Literal["text", "image"]
    created_at: datetime
    model_config = {"from_attributes": True}


class SendMessageIn(BaseModel):
    message: str

    @field_validator("message")
    @classmethod
    def _check_message(cls, v: str) -> str:
        v = v.strip()
        if not sanitize_user_input(v):
            raise ValueError("Message cannot be empty")
        if len(v) > MAX_MESSAGE_LENGTH:
            raise ValueError("Message too long")
        return v


class GenerateImageIn(BaseModel):
    prompt: str

    @field_validator("prompt")
    @classmethod
    def _check_prompt(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Prompt cannot be empty")
        if len(v) > MAX_PROMPT_LENGTH:
            raise ValueError("Prompt too long")
        return v


class ChatHistoryOut(BaseModel):
    success: bool = True
    messages: list[ChatMessageOut]
    count: int


class SendMessageOut(CamelModel):
    success: bool = True
    user_message: ChatMessageOut
    ai_message: ChatMessageOut
    ai_response: str
    gemini_success: bool
    gemini_error: Optional[str] = None


class GenerateImageOut(CamelModel):
    success: bool = True
    image_url: str
    user_message: ChatMessageOut
    ai_message: ChatMessageOut
    prompt: str
    warning: Optional[str] = None


class ClearHistoryOut(BaseModel):
    success: bool = True
    message: str


# --- Identity schemas ---

class UserProfileOut(BaseModel):
    user: Optional[dict] = None
    authenticated: bool


class HealthOut(BaseModel):
    status: str
    timestamp: datetime
