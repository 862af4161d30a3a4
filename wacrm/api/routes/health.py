"""Health check endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter

from wacrm.api.dependencies import CacheDep, StorageDep
from wacrm.core.config import settings
from wacrm.core.timeutils import utcnow

logger = structlog.get_logger()

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
@router.get("/")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "environment": settings.app_env,
    }


@router.get("/ready")
async def readiness_check(
    storage: StorageDep,
    cache: CacheDep,
) -> dict[str, Any]:
    """Readiness check - verifies storage and cache are reachable."""
    checks = {
        "storage": False,
        "cache": False,
    }

    try:
        checks["storage"] = await storage.health_check()
    except Exception as e:
        logger.warning("Storage health check failed", error=str(e))

    try:
        checks["cache"] = await cache.health_check()
    except Exception as e:
        logger.warning("Cache health check failed", error=str(e))

    all_healthy = all(checks.values())

    return {
        "status": "ready" if all_healthy else "degraded",
        "timestamp": utcnow().isoformat(),
        "checks": checks,
    }


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Liveness check - basic endpoint for kubernetes probes."""
    return {"status": "alive"}
