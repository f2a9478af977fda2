"""Conversation orchestration for a single chat turn and thread management.

``send_message`` runs strictly in order: resolve or create the conversation,
commit the user message, assemble context, call the completion service,
commit the ai message, then extend the conversation's turn index. A store
failure aborts the remaining steps. A completion failure never does: the
fallback text is stored instead and the turn still succeeds.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.metrics import record_completion
from ..llm.completion_client import (
    Completion,
    CompletionError,
    CompletionGateway,
    build_payload_preview,
)
from ..models import Conversation, Message, MessageRole
from .context import assemble_turns
from .errors import ChatValidationError
from .store import ConversationStore, MessageStore

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass
class TurnResult:
    """Outcome of one orchestrated user/ai exchange."""

    conversation: Conversation
    user_message: Message
    ai_message: Message
    completion: Completion | None = None

    @property
    def used_fallback(self) -> bool:
        return self.completion is None


class ConversationOrchestrator:
    """Coordinates the conversation and message stores with the completion gateway."""

    def __init__(
        self,
        session_factory: SessionFactory,
        gateway: CompletionGateway,
        *,
        fallback_text: str | None = None,
        completion_timeout: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.fallback_text = fallback_text or settings.COMPLETION_FALLBACK_TEXT
        self.completion_timeout = completion_timeout or settings.COMPLETION_TIMEOUT
        self.max_text_length = settings.CHAT_MESSAGE_MAX_LENGTH
        self.max_title_length = settings.CONVERSATION_TITLE_MAX_LENGTH
        self.title_prefix_length = settings.CONVERSATION_TITLE_PREFIX_LENGTH
        self.default_title = settings.DEFAULT_CONVERSATION_TITLE

    async def send_message(
        self,
        owner_id: str,
        text: str,
        conversation_id: uuid.UUID | None = None,
    ) -> TurnResult:
        text = self._clean_text(text)
        started = time.perf_counter()
        logger.info(
            "Processing chat message user=%s conversation=%s length=%d",
            owner_id,
            conversation_id,
            len(text),
        )

        with self.session_factory() as session:
            conversation = self.resolve_conversation(
                ConversationStore(session), owner_id, conversation_id, text
            )
            messages = MessageStore(session)
            user_message = messages.append(conversation.id, MessageRole.USER, text)
            turns = assemble_turns(messages.list_for(conversation.id))

        completion = await self._complete(turns, owner_id=owner_id, conversation_id=conversation.id)
        reply = completion.text if completion is not None else self.fallback_text

        with self.session_factory() as session:
            conversations = ConversationStore(session)
            conversation = conversations.get_owned(owner_id, conversation.id)
            ai_message = MessageStore(session).append(conversation.id, MessageRole.AI, reply)
            conversations.append_turns(conversation, user_message, ai_message)

        logger.info(
            "Chat message processed conversation=%s user=%s fallback=%s duration=%.3f",
            conversation.id,
            owner_id,
            completion is None,
            time.perf_counter() - started,
        )
        return TurnResult(
            conversation=conversation,
            user_message=user_message,
            ai_message=ai_message,
            completion=completion,
        )

    def resolve_conversation(
        self,
        store: ConversationStore,
        owner_id: str,
        conversation_id: uuid.UUID | None,
        text: str,
    ) -> Conversation:
        """Return the owned conversation, or create one titled after ``text``."""

        if conversation_id is not None:
            return store.get_owned(owner_id, conversation_id)
        title = text[: self.title_prefix_length].strip() or self.default_title
        conversation = store.create(owner_id, title)
        logger.info("Conversation created conversation=%s user=%s", conversation.id, owner_id)
        return conversation

    def create_conversation(self, owner_id: str, title: str | None = None) -> Conversation:
        title = (title or "").strip() or self.default_title
        if len(title) > self.max_title_length:
            raise ChatValidationError(
                f"Title must be between 1 and {self.max_title_length} characters"
            )
        with self.session_factory() as session:
            conversation = ConversationStore(session).create(owner_id, title)
        logger.info("Conversation created conversation=%s user=%s", conversation.id, owner_id)
        return conversation

    def list_conversations(self, owner_id: str) -> List[Conversation]:
        with self.session_factory() as session:
            conversations = ConversationStore(session).list_owned(owner_id)
        logger.info("Conversations fetched count=%d user=%s", len(conversations), owner_id)
        return conversations

    def get_conversation_messages(self, owner_id: str, conversation_id: uuid.UUID) -> List[Message]:
        with self.session_factory() as session:
            conversation = ConversationStore(session).get_owned(owner_id, conversation_id)
            messages = MessageStore(session).list_for(conversation.id)
        logger.info(
            "Messages fetched conversation=%s count=%d", conversation_id, len(messages)
        )
        return messages

    def rename_conversation(
        self, owner_id: str, conversation_id: uuid.UUID, new_title: str
    ) -> Conversation:
        title = (new_title or "").strip()
        if not title or len(title) > self.max_title_length:
            raise ChatValidationError("Invalid title")
        with self.session_factory() as session:
            store = ConversationStore(session)
            conversation = store.rename(store.get_owned(owner_id, conversation_id), title)
        return conversation

    def delete_conversation(self, owner_id: str, conversation_id: uuid.UUID) -> None:
        with self.session_factory() as session:
            store = ConversationStore(session)
            deleted = store.delete(store.get_owned(owner_id, conversation_id))
        logger.info(
            "Conversation deleted conversation=%s user=%s messages=%d",
            conversation_id,
            owner_id,
            deleted,
        )

    def _clean_text(self, text: str) -> str:
        cleaned = (text or "").strip()
        if not cleaned or len(cleaned) > self.max_text_length:
            raise ChatValidationError(
                f"Message must be between 1 and {self.max_text_length} characters"
            )
        return cleaned

    async def _complete(
        self,
        turns: Sequence[Dict[str, str]],
        *,
        owner_id: str,
        conversation_id: uuid.UUID,
    ) -> Completion | None:
        """Call the gateway; any failure is logged and reported as ``None``."""

        logger.debug("Completion request turns=%s", build_payload_preview(turns))
        start = time.perf_counter()
        try:
            completion = await asyncio.wait_for(
                self.gateway.complete(turns), timeout=self.completion_timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                "Completion timed out after %.1fs conversation=%s user=%s",
                self.completion_timeout,
                conversation_id,
                owner_id,
            )
        except CompletionError as exc:
            logger.error(
                "Completion service error conversation=%s user=%s: %s",
                conversation_id,
                owner_id,
                exc,
            )
        except Exception:
            logger.exception(
                "Unexpected completion failure conversation=%s user=%s", conversation_id, owner_id
            )
        else:
            duration = time.perf_counter() - start
            record_completion("success", duration)
            logger.info(
                "Completion generated model=%s tokens=%d duration=%.3f",
                completion.model,
                completion.usage.total_tokens,
                duration,
            )
            return completion

        record_completion("failure", time.perf_counter() - start)
        return None
