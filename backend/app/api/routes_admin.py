"""Administrative API endpoints."""
import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.db import get_session, ping

router = APIRouter()

logger = logging.getLogger(__name__)


@router.get("/health", summary="Readiness check")
async def admin_health(session: Session = Depends(get_session)) -> JSONResponse:
    """Report service health including database reachability."""

    try:
        database_ok = ping(session)
    except SQLAlchemyError:
        logger.exception("Health check database query failed")
        database_ok = False

    if not database_ok:
        return JSONResponse(
            {"status": "error", "database": "unreachable"},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return JSONResponse({"status": "ok", "database": "ok"})


@router.get("/metrics", summary="Prometheus metrics feed")
async def admin_metrics() -> Response:
    """Expose Prometheus-formatted metrics for scraping."""

    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
