"""Health check endpoints."""

import logging

from fastapi import APIRouter
from sqlalchemy import text

from musicscan import __version__
from musicscan.api.deps import DbSession
from musicscan.services.dispatcher import load_queue_definitions

logger = logging.getLogger(__name__)

router = APIRouter()


async def _database_ok(db) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False


@router.get("/health")
async def health_check(db: DbSession) -> dict:
    """Basic health check endpoint."""
    db_healthy = await _database_ok(db)
    return {
        "status": "healthy" if db_healthy else "degraded",
        "database": "connected" if db_healthy else "disconnected",
        "version": __version__,
    }


@router.get("/health/ready")
async def readiness_check(db: DbSession) -> dict:
    """Readiness check for load balancers."""
    queues = load_queue_definitions()
    checks = {
        "database": await _database_ok(db),
        "queues": bool(queues),
    }
    return {
        "ready": all(checks.values()),
        "checks": checks,
        "queues": sorted(queues),
    }
