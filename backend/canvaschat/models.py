from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Text, DateTime

from canvaschat.database import Base

ROLES = ("user", "model")
CONTENT_TYPES = ("text", "image")


class ChatMessage(Base):
    __tablename__ = "chat_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # user/model
    content = Column(Text, nullable=False)  # message text, or image URL / data URL
    content_type = Column(String(20), nullable=False, default="text")  # text/image
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
