"""Development session login for the conversation API.

A successful login stores the user's id as the session principal. Every
``/api/conversations`` request is scoped to that id as the conversation owner.
"""
from __future__ import annotations

import logging
import secrets
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.db import get_session
from ..models import Conversation, User

router = APIRouter()

logger = logging.getLogger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LocalLoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(_CamelModel):
    principal_id: str
    csrf_token: str


class PrincipalResponse(_CamelModel):
    """The session principal as the conversation API sees it."""

    principal_id: str
    email: str
    display_name: str | None = None
    conversation_count: int
    csrf_token: str


def _session_principal(request: Request, session: Session) -> User:
    raw_user_id = request.session.get("user_id")
    if not raw_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        user = session.get(User, uuid.UUID(str(raw_user_id)))
    except (TypeError, ValueError):
        user = None
    if user is None:
        request.session.clear()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")
    return user


@router.get(
    "/me",
    response_model=PrincipalResponse,
    response_model_by_alias=True,
    summary="Current session principal",
)
async def read_principal(
    request: Request, session: Session = Depends(get_session)
) -> PrincipalResponse:
    """Return the owner id used for conversations, with the session CSRF token."""

    user = _session_principal(request, session)
    principal_id = str(user.id)
    conversation_count = session.execute(
        select(func.count()).select_from(Conversation).where(Conversation.owner_id == principal_id)
    ).scalar_one()

    csrf_token = request.session.get("csrf_token")
    if not csrf_token:
        csrf_token = secrets.token_urlsafe(32)
        request.session["csrf_token"] = csrf_token

    return PrincipalResponse(
        principal_id=principal_id,
        email=user.email,
        display_name=user.display_name,
        conversation_count=conversation_count,
        csrf_token=csrf_token,
    )


@router.post("/logout", summary="Terminate the current session")
async def logout(request: Request) -> JSONResponse:
    request.session.clear()
    response = JSONResponse({"detail": "Logged out"})
    response.delete_cookie(
        settings.SESSION_COOKIE_NAME,
        path="/",
        secure=settings.SESSION_COOKIE_SECURE,
        httponly=True,
        samesite="lax",
    )
    return response


@router.post(
    "/local-login",
    response_model=LoginResponse,
    response_model_by_alias=True,
    summary="Start a session with the development account",
)
async def local_login(
    payload: LocalLoginRequest,
    request: Request,
    session: Session = Depends(get_session),
) -> LoginResponse:
    """Check the configured credentials and make the account the session principal."""

    if not settings.LOCAL_LOGIN_ENABLED:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    expected_email = settings.LOCAL_LOGIN_EMAIL.strip().lower()
    provided_email = payload.email.strip().lower()

    # compare bytes: compare_digest rejects non-ASCII str
    if provided_email != expected_email or not secrets.compare_digest(
        payload.password.strip().encode("utf-8"),
        settings.LOCAL_LOGIN_PASSWORD.strip().encode("utf-8"),
    ):
        logger.warning("Local login rejected for email=%s", provided_email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    user = session.execute(select(User).where(User.email == expected_email)).scalar_one_or_none()
    if user is None:
        user = User(email=expected_email, display_name=payload.email.strip())
        session.add(user)
        session.flush()
        logger.info("Principal created user=%s", user.id)

    request.session.clear()
    request.session["user_id"] = str(user.id)
    request.session["csrf_token"] = secrets.token_urlsafe(32)

    logger.info("Local login succeeded user=%s", user.id)
    return LoginResponse(principal_id=str(user.id), csrf_token=request.session["csrf_token"])
