"""Append-only per-user chat log backed by the relational store."""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from canvaschat.models import CONTENT_TYPES, ROLES, ChatMessage

logger = logging.getLogger(__name__)


class StoreError(Exception):
    pass


class MessageStore:
    def __init__(self, db: Session):
        self.db = db

    def add_message(
        self,
        user_id: str,
        role: str,
        content: str,
        content_type: str = "text",
    ) -> ChatMessage:
        if role not in ROLES:
            raise ValueError(f"Invalid role: {role!r}")
        if content_type not in CONTENT_TYPES:
            raise ValueError(f"Invalid content_type: {content_type!r}")

        msg = ChatMessage(
            user_id=user_id,
            role=role,
            content=content,
            content_type=content_type,
        )
        try:
            self.db.add(msg)
            self.db.commit()
            self.db.refresh(msg)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Error adding message for user %s", user_id)
            raise StoreError(f"Failed to add message: {e}") from e
        return msg

    def messages_for_user(self, user_id: str) -> list[ChatMessage]:
        try:
            return (
                self.db.query(ChatMessage)
                .filter(ChatMessage.user_id == user_id)
                .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            logger.exception("Error fetching messages for user %s", user_id)
            raise StoreError(f"Failed to fetch messages: {e}") from e

    def clear_user_history(self, user_id: str) -> int:
        try:
            deleted = (
                self.db.query(ChatMessage)
                .filter(ChatMessage.user_id == user_id)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Error clearing chat history for user %s", user_id)
            raise StoreError(f"Failed to clear chat history: {e}") from e
        return deleted
