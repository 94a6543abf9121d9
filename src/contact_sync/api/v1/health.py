"""Health check endpoints.

- GET /health: liveness, no dependencies touched.
- GET /health/ready: database and Redis connectivity, plus sync queue depth
  and the providers currently enabled. Only connectivity decides readiness.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.contact_sync.config import get_settings
from src.contact_sync.core.database import get_engine
from src.contact_sync.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Probe the database, Redis and the sync queue."""
    checks: dict = {"database": "ok", "redis": "ok"}

    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    try:
        if not await get_redis_pool().ping():
            checks["redis"] = "error"
            checks["redis_error"] = "PING did not return PONG"
    except Exception as e:
        checks["redis"] = "error"
        checks["redis_error"] = str(e)

    queue = getattr(request.app.state, "sync_task_queue", None)
    if queue is not None and checks["redis"] == "ok":
        checks["sync_queue"] = await queue.depth()

    config_store = getattr(request.app.state, "integration_config_store", None)
    if config_store is not None and checks["database"] == "ok":
        checks["enabled_providers"] = [
            config.provider.value for config in await config_store.list_configs() if config.enabled
        ]

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """200 when the database and Redis respond, 503 otherwise."""
    checks = await _check_dependencies(request)
    ready = checks.get("database") == "ok" and checks.get("redis") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
