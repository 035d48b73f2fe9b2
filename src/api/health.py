"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis + retry worker heartbeat)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from src.database import get_db
from src.utils.redis_client import HEARTBEAT_KEY_PREFIX, get_redis

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

APP_VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check - verifies database and Redis connectivity.
    The retry worker heartbeat is reported but does not affect readiness
    (the worker may be driven externally through the retry endpoint).
    """
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
    }
    all_healthy = all(c["healthy"] for c in checks.values())
    checks["retry_worker"] = await _check_retry_worker()

    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def _check_database(db: AsyncSession) -> dict:
    """Check PostgreSQL connectivity."""
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        return {"healthy": True}
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_redis() -> dict:
    """Check Redis connectivity."""
    try:
        redis = await get_redis()
        await redis.ping()
        return {"healthy": True}
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_retry_worker() -> dict:
    """Report the in-process retry worker heartbeat, if any."""
    try:
        redis = await get_redis()
        heartbeat = await redis.get(f"{HEARTBEAT_KEY_PREFIX}retry_worker")
        return {"healthy": heartbeat is not None, "last_heartbeat": heartbeat}
    except Exception:
        return {"healthy": False, "note": "Unable to check worker heartbeat"}
