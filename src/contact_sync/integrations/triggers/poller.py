"""Periodic inbound pull for providers without push notifications (Notion).

Each pass lists every record in every enabled routed container (or the
provider's default container when nothing is routed) and feeds it through
inbound ingestion. Passes for one provider never overlap: a pass that finds
sync:lock:poll:{provider} held is skipped.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog

from src.contact_sync.config import Settings
from src.contact_sync.core.monitoring import record_sync_operation, track_sync_batch
from src.contact_sync.integrations.adapter import ProviderAdapter
from src.contact_sync.integrations.config_store import IntegrationConfigStore
from src.contact_sync.integrations.orchestrator import SyncOrchestrator
from src.contact_sync.integrations.registry import AdapterRegistry
from src.contact_sync.integrations.routing import RouteService
from src.contact_sync.integrations.schemas import (
    FullSyncResult,
    RouteContext,
    SyncDirection,
    SyncLogCreate,
    SyncProvider,
    SyncStatus,
)
from src.contact_sync.integrations.sync_log import SyncLogService
from src.contact_sync.integrations.triggers.locks import POLL_LOCK, provider_lock

logger = structlog.get_logger(__name__)


class ProviderPoller:
    """Pulls all records of a provider and ingests them.

    Args:
        redis: Async Redis client for the poll lock.
        orchestrator: Sync orchestrator.
        routes: Tag-routing table.
        config_store: Provider enable flags.
        adapters: Adapter registry.
        sync_log: Audit log.
        settings: Application settings (lock TTL).
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        orchestrator: SyncOrchestrator,
        routes: RouteService,
        config_store: IntegrationConfigStore,
        adapters: AdapterRegistry,
        sync_log: SyncLogService,
        settings: Settings,
    ) -> None:
        self._redis = redis
        self._orchestrator = orchestrator
        self._routes = routes
        self._config_store = config_store
        self._adapters = adapters
        self._sync_log = sync_log
        self._settings = settings

    async def _targets(
        self, provider: SyncProvider, adapter: ProviderAdapter
    ) -> list[tuple[str | None, RouteContext | None]]:
        """Containers to list, each with the route context to ingest under."""
        if adapter.supports_routing:
            routes = await self._routes.list_routes(provider, enabled_only=True)
            if routes:
                return [(r.container_id, RouteContext.from_route(r)) for r in routes]
            if adapter.default_container is None:
                return []
        return [(adapter.default_container, None)]

    async def _log(self, provider: SyncProvider, status: SyncStatus, message: str, **fields) -> None:
        await self._sync_log.create_log(
            SyncLogCreate(
                provider=provider,
                direction=SyncDirection.INBOUND,
                status=status,
                message=message,
                **fields,
            )
        )
        record_sync_operation(provider.value, SyncDirection.INBOUND.value, status.value)

    async def poll(self, provider: SyncProvider) -> FullSyncResult | None:
        """Run one poll pass.

        Returns:
            Counts for the pass, or None if it was skipped (provider
            disabled or another pass holds the lock).
        """
        if not await self._config_store.is_enabled(provider):
            return None

        async with provider_lock(
            self._redis, POLL_LOCK, provider, self._settings.SYNC_LOCK_TTL_SECONDS
        ) as acquired:
            if not acquired:
                logger.info("poller.skipped_locked", provider=provider.value)
                return None
            return await self._poll_locked(provider)

    async def _poll_locked(self, provider: SyncProvider) -> FullSyncResult:
        adapter = await self._adapters.get(provider)
        result = FullSyncResult()
        label = provider.value.capitalize()

        async with track_sync_batch(provider.value, "poll"):
            for container, context in await self._targets(provider, adapter):
                try:
                    async for record in adapter.fetch_all_contacts(container):
                        try:
                            await self._orchestrator.handle_inbound_change(
                                provider,
                                record.external_id,
                                record,
                                record.last_modified,
                                context,
                            )
                            result.processed += 1
                        except Exception as exc:
                            result.errors += 1
                            await self._log(
                                provider,
                                SyncStatus.ERROR,
                                f"Failed to process {label} contact during poll",
                                external_id=record.external_id,
                                error_details=str(exc),
                            )
                except Exception as exc:
                    result.errors += 1
                    await self._log(
                        provider,
                        SyncStatus.ERROR,
                        f"{label} polling failed",
                        error_details=str(exc),
                    )
                    logger.error(
                        "poller.listing_failed",
                        provider=provider.value,
                        container=container,
                        error=str(exc),
                    )

        if result.processed > 0:
            await self._log(
                provider,
                SyncStatus.SYNCED,
                f"{label} poll completed: {result.processed} contacts processed",
                records_processed=result.processed,
            )
        logger.info(
            "poller.pass_complete",
            provider=provider.value,
            processed=result.processed,
            errors=result.errors,
        )
        return result
