"""Health check endpoints for service monitoring."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter
from sqlalchemy import text

from app.api.deps import DBSession, Storage
from app.core.config import settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

VERSION = "0.1.0"


@router.get(
    "/health",
    response_model=Dict[str, Any],
    summary="Health Check",
    description="Check if the API service is running.",
)
async def health_check() -> Dict[str, Any]:
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.APP_ENV,
        "version": VERSION,
    }


@router.get(
    "/health/ready",
    response_model=Dict[str, Any],
    summary="Readiness Check",
    description="Check the database and the upload directory.",
)
async def readiness_check(db: DBSession, storage: Storage) -> Dict[str, Any]:
    """Report whether the database answers and uploads can be stored.

    Returns:
        Overall status plus one entry per dependency.
    """
    checks: Dict[str, Dict[str, str]] = {}

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        checks["database"] = {"status": "healthy", "message": "Connected"}
    except Exception as e:
        logger.error(f"Readiness: database check failed: {e}")
        checks["database"] = {"status": "unhealthy", "message": str(e)}

    checks["storage"] = {
        "status": "healthy" if storage.base_path.is_dir() else "unhealthy",
        "message": str(storage.base_path),
    }

    ready = all(check["status"] == "healthy" for check in checks.values())
    return {
        "status": "ready" if ready else "not_ready",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
