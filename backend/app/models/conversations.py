"""Conversation persistence models."""
from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String, Uuid
from sqlalchemy.orm import relationship

from . import Base

SESSION_TOKEN_BYTES = 12


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_token() -> str:
    """Return a 16 character URL-safe token used as the public conversation handle."""

    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


class Conversation(Base):
    """Chat thread owned by a single identity."""

    __tablename__ = "conversations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    session_token = Column(String(32), nullable=False, unique=True, default=new_session_token)
    message_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.sequence",
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Conversation(id={self.id!s}, owner_id={self.owner_id!r}, title={self.title!r})"
