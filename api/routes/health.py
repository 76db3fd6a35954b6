"""
Health check endpoints.

Used for monitoring and load balancer health checks.
"""
from datetime import datetime, timezone
import logging
import platform

from fastapi import APIRouter
from sqlalchemy import text

from core.infrastructure.database.config import get_engine


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    """Liveness: the process is up."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "feeledger",
        "version": "1.0.0",
        "python_version": platform.python_version(),
    }


@router.get("/health/ready")
async def readiness_check():
    """
    Readiness check endpoint.

    Ready when the database answers a trivial query.
    """
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.warning(f"Readiness check: database unavailable: {e}")
        database = "unavailable"

    return {
        "status": "ready" if database == "ok" else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "api": "ok",
            "database": database,
        },
    }
