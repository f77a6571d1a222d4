"""Health check endpoints."""

import logging

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from crux_api.db.session import engine
from crux_api.supabase_client import get_supabase_api_key, get_supabase_url

router = APIRouter()
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    services: dict[str, str]


def check_database() -> str:
    """Check database connectivity.

    Returns:
        str: "up" if healthy, error message otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "up"
    except SQLAlchemyError as e:
        logger.error("Database health check failed", extra={"event": "health.database_down", "error": str(e)[:200]})
        return f"down: {type(e).__name__}"


def check_auth_config() -> str:
    """Auth backend configuration (no network call)."""
    try:
        get_supabase_url()
        get_supabase_api_key()
        return "configured"
    except RuntimeError as e:
        logger.error("Auth backend config error", extra={"event": "health.auth_unconfigured", "error": str(e)})
        return "down: config error"


def _services() -> dict[str, str]:
    return {
        "api": "up",
        "database": check_database(),
        "auth": check_auth_config(),
    }


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Liveness. Always 200 (use /readyz for dependency checks)."""
    return HealthResponse(status="healthy", version=VERSION, services=_services())


@router.get("/readyz", response_model=HealthResponse)
async def readiness_check(response: Response) -> HealthResponse:
    """Readiness. 503 if any dependency is down."""
    services = _services()
    if any(value.startswith("down") for value in services.values()):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", version=VERSION, services=services)
    return HealthResponse(status="ready", version=VERSION, services=services)
