"""Exception handlers translating pipeline errors into JSON responses."""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from ..chat.errors import ChatValidationError, ConversationNotFound, StoreFailure

logger = logging.getLogger(__name__)


def not_found_handler(request: Request, exc: ConversationNotFound) -> JSONResponse:
    logger.warning(
        "Conversation not found conversation=%s user=%s",
        exc.conversation_id,
        getattr(request.state, "user_id", None),
    )
    return JSONResponse({"detail": "Conversation not found"}, status_code=status.HTTP_404_NOT_FOUND)


def chat_validation_handler(request: Request, exc: ChatValidationError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)


def store_failure_handler(request: Request, exc: StoreFailure) -> JSONResponse:
    """Hide persistence details; the store has already logged the cause."""

    logger.error(
        "Request aborted by store failure path=%s operation=%s table=%s",
        request.url.path,
        exc.operation,
        exc.table,
    )
    return JSONResponse(
        {"detail": "Internal server error"},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed bodies as 400 with per-field messages."""

    errors: List[Dict[str, Any]] = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())[1:]) or None,
            "message": error.get("msg"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        jsonable_encoder({"detail": "Validation failed", "errors": errors}),
        status_code=status.HTTP_400_BAD_REQUEST,
    )
