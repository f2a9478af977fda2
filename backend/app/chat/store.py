"""Conversation and message persistence backed by SQLAlchemy sessions.

Every write commits before returning so the orchestrator can rely on each
step being durable before the next one starts. Database errors are logged
with the failing operation and re-raised as :class:`StoreFailure`.
"""
from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from typing import Iterator, List

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Conversation, Message, MessageRole
from ..models.conversations import utcnow
from .errors import ConversationNotFound, StoreFailure

logger = logging.getLogger(__name__)


@contextmanager
def _operation(session: Session, operation: str, table: str) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception(
            "Database %s on %s failed after %.3fs", operation, table, time.perf_counter() - start
        )
        raise StoreFailure(operation, table) from exc
    logger.debug("Database %s on %s took %.3fs", operation, table, time.perf_counter() - start)


class ConversationStore:
    """Reads and writes conversations, always scoped by owner."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, owner_id: str, title: str) -> Conversation:
        conversation = Conversation(owner_id=owner_id, title=title, message_ids=[])
        with _operation(self.session, "create", "conversations"):
            self.session.add(conversation)
            self.session.commit()
        return conversation

    def get_owned(self, owner_id: str, conversation_id: uuid.UUID) -> Conversation:
        """Return the conversation or raise :class:`ConversationNotFound`.

        A conversation owned by someone else is reported exactly like a
        missing one.
        """

        stmt = select(Conversation).where(
            Conversation.id == conversation_id,
            Conversation.owner_id == owner_id,
        )
        with _operation(self.session, "findOne", "conversations"):
            conversation = self.session.execute(stmt).scalar_one_or_none()
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    def list_owned(self, owner_id: str) -> List[Conversation]:
        stmt = (
            select(Conversation)
            .where(Conversation.owner_id == owner_id)
            .order_by(Conversation.updated_at.desc(), Conversation.created_at.desc())
        )
        with _operation(self.session, "find", "conversations"):
            return list(self.session.execute(stmt).scalars().all())

    def append_turns(self, conversation: Conversation, *messages: Message) -> Conversation:
        """Extend the turn index with ``messages`` and bump ``updated_at``."""

        with _operation(self.session, "update", "conversations"):
            conversation.message_ids = [
                *(conversation.message_ids or []),
                *(str(message.id) for message in messages),
            ]
            conversation.updated_at = utcnow()
            self.session.commit()
        return conversation

    def rename(self, conversation: Conversation, title: str) -> Conversation:
        with _operation(self.session, "update", "conversations"):
            conversation.title = title
            conversation.updated_at = utcnow()
            self.session.commit()
        return conversation

    def delete(self, conversation: Conversation) -> int:
        """Delete the conversation and its messages in one transaction.

        Returns the number of deleted messages.
        """

        with _operation(self.session, "delete", "conversations"):
            result = self.session.execute(
                delete(Message).where(Message.conversation_id == conversation.id)
            )
            self.session.delete(conversation)
            self.session.commit()
        return result.rowcount or 0


class MessageStore:
    """Append-only access to the messages of a conversation."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def append(self, conversation_id: uuid.UUID, role: MessageRole, content: str) -> Message:
        next_sequence = select(func.coalesce(func.max(Message.sequence), -1) + 1).where(
            Message.conversation_id == conversation_id
        )
        with _operation(self.session, "create", "messages"):
            sequence = self.session.execute(next_sequence).scalar_one()
            message = Message(
                conversation_id=conversation_id,
                role=role.value,
                content=content,
                sequence=sequence,
            )
            self.session.add(message)
            self.session.commit()
        return message

    def list_for(self, conversation_id: uuid.UUID) -> List[Message]:
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.sequence.asc())
        )
        with _operation(self.session, "find", "messages"):
            return list(self.session.execute(stmt).scalars().all())
