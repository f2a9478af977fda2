"""Conversation endpoints for the chat assistant."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..chat.orchestrator import ConversationOrchestrator
from ..core.config import settings
from ..core.db import SessionLocal
from ..core.sanitize import contains_dangerous_content, sanitize_text
from ..llm.completion_client import get_completion_gateway
from ..models import Conversation, Message

logger = logging.getLogger(__name__)

router = APIRouter()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationCreateRequest(_CamelModel):
    title: str | None = Field(default=None, max_length=settings.CONVERSATION_TITLE_MAX_LENGTH)

    @field_validator("title")
    @classmethod
    def _clean_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = sanitize_text(value)
        if not cleaned:
            raise ValueError(
                f"Title must be between 1 and {settings.CONVERSATION_TITLE_MAX_LENGTH} characters"
            )
        return cleaned


class ConversationUpdateRequest(_CamelModel):
    title: str = Field(..., max_length=settings.CONVERSATION_TITLE_MAX_LENGTH)

    @field_validator("title")
    @classmethod
    def _clean_title(cls, value: str) -> str:
        cleaned = sanitize_text(value)
        if contains_dangerous_content(cleaned):
            raise ValueError("Title contains potentially dangerous content")
        return cleaned


class SendMessageRequest(_CamelModel):
    text: str = Field(..., min_length=1, max_length=settings.CHAT_MESSAGE_MAX_LENGTH)
    conversation_id: uuid.UUID | None = Field(
        default=None, description="Optional existing conversation identifier"
    )

    @field_validator("text")
    @classmethod
    def _clean_text(cls, value: str) -> str:
        cleaned = sanitize_text(value)
        if not cleaned:
            raise ValueError(
                f"Message must be between 1 and {settings.CHAT_MESSAGE_MAX_LENGTH} characters"
            )
        if contains_dangerous_content(cleaned):
            raise ValueError("Message contains potentially dangerous content")
        return cleaned


class ConversationHandle(_CamelModel):
    id: uuid.UUID
    session_token: str


class ConversationResponse(_CamelModel):
    id: uuid.UUID
    title: str
    session_token: str
    message_ids: List[str]
    created_at: datetime
    updated_at: datetime


class MessageResponse(_CamelModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    role: str
    text: str
    created_at: datetime
    session_token: str | None = None


class ConversationMessagesResponse(_CamelModel):
    messages: List[MessageResponse]


class SendMessageResponse(_CamelModel):
    user_message: MessageResponse
    ai_message: MessageResponse
    conversation: ConversationHandle


class DeleteConversationResponse(_CamelModel):
    detail: str


def get_orchestrator() -> ConversationOrchestrator:
    return ConversationOrchestrator(SessionLocal, get_completion_gateway())


def _require_user_id(request: Request) -> str:
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return str(user_id)


def _conversation_payload(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        title=conversation.title,
        session_token=conversation.session_token,
        message_ids=list(conversation.message_ids or []),
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


def _message_payload(message: Message, session_token: str | None = None) -> MessageResponse:
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        role=message.role,
        text=message.content,
        created_at=message.created_at,
        session_token=session_token,
    )


@router.post(
    "",
    response_model=ConversationHandle,
    status_code=status.HTTP_201_CREATED,
    summary="Create an empty conversation",
)
async def create_conversation(
    request: Request,
    payload: ConversationCreateRequest | None = Body(default=None),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ConversationHandle:
    owner_id = _require_user_id(request)
    conversation = orchestrator.create_conversation(owner_id, payload.title if payload else None)
    return ConversationHandle(id=conversation.id, session_token=conversation.session_token)


@router.get("", response_model=List[ConversationResponse], summary="List conversations by recency")
async def list_conversations(
    request: Request,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> List[ConversationResponse]:
    owner_id = _require_user_id(request)
    return [_conversation_payload(item) for item in orchestrator.list_conversations(owner_id)]


@router.post(
    "/send",
    response_model=SendMessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message and store the assistant reply",
)
async def send_message(
    payload: SendMessageRequest,
    request: Request,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> SendMessageResponse:
    """Run one chat turn; completion failures still return 201 with the fallback reply."""

    owner_id = _require_user_id(request)
    result = await orchestrator.send_message(owner_id, payload.text, payload.conversation_id)
    token = result.conversation.session_token
    return SendMessageResponse(
        user_message=_message_payload(result.user_message, token),
        ai_message=_message_payload(result.ai_message, token),
        conversation=ConversationHandle(id=result.conversation.id, session_token=token),
    )


@router.get(
    "/{conversation_id}",
    response_model=ConversationMessagesResponse,
    summary="Fetch the messages of a conversation",
)
async def get_conversation_messages(
    conversation_id: uuid.UUID,
    request: Request,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ConversationMessagesResponse:
    owner_id = _require_user_id(request)
    messages = orchestrator.get_conversation_messages(owner_id, conversation_id)
    return ConversationMessagesResponse(messages=[_message_payload(message) for message in messages])


@router.patch(
    "/{conversation_id}",
    response_model=ConversationResponse,
    summary="Rename a conversation",
)
async def rename_conversation(
    conversation_id: uuid.UUID,
    payload: ConversationUpdateRequest,
    request: Request,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ConversationResponse:
    owner_id = _require_user_id(request)
    conversation = orchestrator.rename_conversation(owner_id, conversation_id, payload.title)
    return _conversation_payload(conversation)


@router.delete(
    "/{conversation_id}",
    response_model=DeleteConversationResponse,
    summary="Delete a conversation and its messages",
)
async def delete_conversation(
    conversation_id: uuid.UUID,
    request: Request,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> DeleteConversationResponse:
    owner_id = _require_user_id(request)
    orchestrator.delete_conversation(owner_id, conversation_id)
    return DeleteConversationResponse(detail="Conversation deleted")
