"""REST API endpoints for running syncs and inspecting the sync log.

- POST /sync/{provider}/full: reconcile every link (409 if a pass is running)
- POST /sync/{provider}/contact/{contact_id}: push one contact
- GET /sync/logs: paginated audit log, newest first
- DELETE /sync/links/{link_id}: unmap a contact from an external record
"""

from __future__ import annotations

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query, Response, status

from src.contact_sync.api.deps import (
    get_orchestrator,
    get_redis,
    get_sync_log,
)
from src.contact_sync.config import get_settings
from src.contact_sync.integrations.orchestrator import SyncOrchestrator
from src.contact_sync.integrations.schemas import (
    FullSyncResult,
    SingleSyncResult,
    SyncLogPage,
    SyncProvider,
)
from src.contact_sync.integrations.sync_log import SyncLogService
from src.contact_sync.integrations.triggers.scheduler import run_locked_full_sync

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/{provider}/full", response_model=FullSyncResult)
async def trigger_full_sync(
    provider: SyncProvider,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    redis: aioredis.Redis = Depends(get_redis),
) -> FullSyncResult:
    """Reconcile every linked contact of a provider.

    Shares the scheduler's lock, so a manual run never overlaps a
    scheduled one.
    """
    return await run_locked_full_sync(
        redis, orchestrator, provider, get_settings().SYNC_LOCK_TTL_SECONDS
    )


@router.post("/{provider}/contact/{contact_id}", response_model=SingleSyncResult)
async def sync_contact(
    provider: SyncProvider,
    contact_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> SingleSyncResult:
    return await orchestrator.sync_single_contact(provider, contact_id)


@router.get("/logs", response_model=SyncLogPage)
async def list_sync_logs(
    provider: SyncProvider | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    sync_log: SyncLogService = Depends(get_sync_log),
) -> SyncLogPage:
    return await sync_log.list_logs(page=page, limit=limit, provider=provider)


@router.delete("/links/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(
    link_id: str,
    delete_external: bool = False,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Remove a link; optionally delete the external record as well."""
    await orchestrator.unlink(link_id, delete_external=delete_external)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
