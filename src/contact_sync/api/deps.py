"""FastAPI dependencies resolving sync services from app.state.

Services are wired onto app.state by the lifespan in main.py. A missing
service (its init failed) answers 503 instead of crashing the request.
"""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis
from fastapi import HTTPException, Request, status

from src.contact_sync.integrations.config_store import IntegrationConfigStore
from src.contact_sync.integrations.orchestrator import SyncOrchestrator
from src.contact_sync.integrations.registry import AdapterRegistry
from src.contact_sync.integrations.routing import RouteService
from src.contact_sync.integrations.sync_log import SyncLogService
from src.contact_sync.integrations.triggers.queue import SyncTaskQueue


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return _from_state(request, "sync_orchestrator", "Sync orchestrator")


def get_sync_log(request: Request) -> SyncLogService:
    return _from_state(request, "sync_log", "Sync log")


def get_route_service(request: Request) -> RouteService:
    return _from_state(request, "route_service", "Route service")


def get_config_store(request: Request) -> IntegrationConfigStore:
    return _from_state(request, "integration_config_store", "Integration config")


def get_adapter_registry(request: Request) -> AdapterRegistry:
    return _from_state(request, "adapter_registry", "Adapter registry")


def get_task_queue(request: Request) -> SyncTaskQueue:
    return _from_state(request, "sync_task_queue", "Sync task queue")


def get_redis(request: Request) -> aioredis.Redis:
    return _from_state(request, "redis", "Redis")
