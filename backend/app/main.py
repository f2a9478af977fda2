"""FastAPI application entry point for the chat backend."""
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from .api import routes_admin, routes_auth, routes_conversations
from .chat.errors import ChatValidationError, ConversationNotFound, StoreFailure
from .core.config import settings
from .core.errors import (
    chat_validation_handler,
    not_found_handler,
    request_validation_handler,
    store_failure_handler,
)
from .core.middleware import AuthenticatedSessionMiddleware, RequestLoggingMiddleware


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION)

    app.add_exception_handler(ConversationNotFound, not_found_handler)
    app.add_exception_handler(ChatValidationError, chat_validation_handler)
    app.add_exception_handler(StoreFailure, store_failure_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.add_middleware(AuthenticatedSessionMiddleware, api_prefix="/api")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL.rstrip("/")],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-CSRF-Token", "X-Requested-With"],
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET,
        session_cookie=settings.SESSION_COOKIE_NAME,
        same_site="lax",
        https_only=settings.SESSION_COOKIE_SECURE,
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(routes_admin.router, prefix="/admin", tags=["admin"])
    app.include_router(routes_auth.router, prefix="/auth", tags=["auth"])
    app.include_router(
        routes_conversations.router, prefix="/api/conversations", tags=["conversations"]
    )

    @app.get("/", tags=["admin"], summary="Service banner")
    async def root() -> dict[str, str]:
        """Return the service name and version."""
        return {"message": f"{settings.PROJECT_NAME} is running", "version": settings.VERSION}

    return app


app = create_app()
