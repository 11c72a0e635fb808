"""
Health check endpoints
"""

from typing import Any
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from skypark.config import settings
from skypark.core.database import db_manager
from skypark.core.metrics import HealthChecker
from skypark.core.redis import redis_manager
from skypark.core.tasks import task_dispatcher

router = APIRouter()

health_checker = HealthChecker(redis_manager, db_manager)


@router.get("/live")
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return {"status": "alive", "service": "skypark-api"}


@router.get("/ready")
async def readiness() -> Any:
    """
    Kubernetes readiness probe - the database is required, Redis is optional
    """
    health = await health_checker.get_system_health()
    health["version"] = settings.APP_VERSION
    health["background_tasks"] = task_dispatcher.pending
    status_code = 503 if health["status"] == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content=health)
