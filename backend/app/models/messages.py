"""Conversation message persistence model."""
from __future__ import annotations

import enum
import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from . import Base
from .conversations import utcnow


class MessageRole(str, enum.Enum):
    """Author of a stored message."""

    USER = "user"
    AI = "ai"


class Message(Base):
    """Individual message belonging to a conversation."""

    __tablename__ = "messages"
    __table_args__ = (CheckConstraint("role IN ('user', 'ai')", name="ck_messages_role"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    sequence = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Message(id={self.id!s}, conversation_id={self.conversation_id!s}, role={self.role!r})"
