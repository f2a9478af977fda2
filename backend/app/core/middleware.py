"""Custom ASGI middleware for session authentication, CSRF protection and request logging."""
from __future__ import annotations

import logging
import secrets
import time
from typing import Awaitable, Callable

from fastapi import status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .metrics import record_request

SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}
CSRF_HEADER = "X-CSRF-Token"


class AuthenticatedSessionMiddleware(BaseHTTPMiddleware):
    """Resolve the session principal for API routes before any handler runs.

    The principal id is attached as ``request.state.user_id``. Requests with
    an unsafe method must echo the session CSRF token in ``X-CSRF-Token``.
    """

    def __init__(self, app: Callable, api_prefix: str = "/api") -> None:
        super().__init__(app)
        self.api_prefix = api_prefix

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        path = request.url.path

        if path.startswith(self.api_prefix):
            session = request.session
            user_id = session.get("user_id")
            if not user_id:
                return JSONResponse({"detail": "Not authenticated"}, status_code=status.HTTP_401_UNAUTHORIZED)

            request.state.user_id = str(user_id)

            if request.method not in SAFE_METHODS:
                session_token = session.get("csrf_token")
                header_token = request.headers.get(CSRF_HEADER)
                if not session_token or not header_token or not secrets.compare_digest(
                    header_token.encode("utf-8"), str(session_token).encode("utf-8")
                ):
                    return JSONResponse(
                        {"detail": "Invalid CSRF token"},
                        status_code=status.HTTP_403_FORBIDDEN,
                    )

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log structured request summaries and emit metrics."""

    def __init__(self, app: Callable) -> None:
        super().__init__(app)
        self.logger = logging.getLogger("chat.request")

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        method = request.method
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            duration = time.perf_counter() - start
            route_path = _route_path(request)
            record_request(method, route_path, status_code, duration)
            self.logger.exception(
                "HTTP %s %s raised an unhandled exception", method, route_path
            )
            raise
        duration = time.perf_counter() - start
        route_path = _route_path(request)

        user_id = getattr(request.state, "user_id", None)
        if user_id is None and "session" in request.scope:
            user_id = request.session.get("user_id")

        self.logger.info(
            "HTTP %s %s status=%s user=%s duration=%.3f",
            method,
            route_path,
            status_code,
            user_id or "anonymous",
            duration,
        )
        record_request(method, route_path, status_code, duration)
        response.headers.setdefault("X-Process-Time", f"{duration:.6f}")
        return response


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)
