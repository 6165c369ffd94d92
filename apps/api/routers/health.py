"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import redis.asyncio as redis
from redis.exceptions import RedisError

from config import require_live_provider_credentials, settings
from database import engine

router = APIRouter()


def _provider_status() -> str:
    mode = str(settings.SCAN_PROVIDER_MODE or "fixture").strip().lower()
    if mode != "live":
        return mode
    try:
        require_live_provider_credentials()
    except ValueError as exc:
        return f"missing: {exc}"
    return "live"


@router.get("/health")
async def health_check():
    """
    Overall system health: database, Redis and scan provider configuration.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
        "providers": _provider_status(),
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except (SQLAlchemyError, OSError) as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    try:
        r = redis.from_url(settings.REDIS_URL)
        try:
            await r.ping()
        finally:
            await r.aclose()
        health_status["redis"] = "up"
    except (RedisError, OSError) as e:
        health_status["redis"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    if health_status["providers"].startswith("missing"):
        health_status["status"] = "degraded"
    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe."""
    provider_status = _provider_status()
    if provider_status.startswith("missing"):
        return JSONResponse(
            status_code=503,
            content={"ready": False, "providers": provider_status},
        )
    return {"ready": True, "providers": provider_status}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
