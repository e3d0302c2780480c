"""
Health check endpoints for the tablewright controller.

Provides /health (liveness) and /ready (readiness) endpoints.
"""

from fastapi import APIRouter, Response, status

from tablewright.controller.manager import get_manager_or_none
from tablewright.logging_config import get_logger
from tablewright.resources import get_store_or_none

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    """Liveness probe endpoint.

    Returns 200 if the controller process is running.
    """
    return {"status": "healthy"}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def ready(response: Response) -> dict[str, str | dict[str, str]]:
    """Readiness probe endpoint.

    Checks that the resource store is initialized and both watches are running.
    """
    checks: dict[str, str] = {}

    checks["store"] = "healthy" if get_store_or_none() is not None else "unhealthy"

    manager = get_manager_or_none()
    checks["watches"] = "healthy" if manager is not None and manager.ready else "unhealthy"

    all_healthy = all(v == "healthy" for v in checks.values())

    if not all_healthy:
        logger.warning("Readiness check failed", checks=checks)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not ready", "checks": checks}

    return {"status": "ready", "checks": checks}
