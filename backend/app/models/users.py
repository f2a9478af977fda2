"""User model definition."""
from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, String, Uuid

from . import Base
from .conversations import utcnow


class User(Base):
    """Application user created by the login flow."""

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True, index=True)
    display_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"User(id={self.id!s}, email={self.email!r})"
