"""Background scheduler for periodic sync jobs.

Interval jobs on an APScheduler AsyncIOScheduler:
- Notion poll every NOTION_POLL_INTERVAL_MINUTES
- Full reconciliation per provider every FULL_SYNC_INTERVAL_HOURS, under
  sync:lock:full:{provider} (shared with the manual full-sync endpoint)

Jobs run with max_instances=1 and coalesce=True, so a slow run is never
stacked behind itself. Job bodies swallow and log errors; a failed run
does not stop the schedule.

Exports:
    SyncScheduler: Owns the AsyncIOScheduler and its jobs.
    run_locked_full_sync: Full sync under the provider lock.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.contact_sync.config import Settings
from src.contact_sync.integrations.config_store import IntegrationConfigStore
from src.contact_sync.integrations.errors import SyncInProgressError
from src.contact_sync.integrations.orchestrator import SyncOrchestrator
from src.contact_sync.integrations.schemas import FullSyncResult, SyncProvider
from src.contact_sync.integrations.triggers.locks import FULL_SYNC_LOCK, provider_lock
from src.contact_sync.integrations.triggers.poller import ProviderPoller

logger = structlog.get_logger(__name__)


async def run_locked_full_sync(
    redis: aioredis.Redis,
    orchestrator: SyncOrchestrator,
    provider: SyncProvider,
    ttl_seconds: int,
) -> FullSyncResult:
    """Run full_sync while holding the provider's full-sync lock.

    Raises:
        SyncInProgressError: Another pass holds the lock.
    """
    async with provider_lock(redis, FULL_SYNC_LOCK, provider, ttl_seconds) as acquired:
        if not acquired:
            raise SyncInProgressError(provider.value)
        return await orchestrator.full_sync(provider)


class SyncScheduler:
    """Interval scheduler for polling and full reconciliation.

    Args:
        redis: Async Redis client for locks.
        orchestrator: Sync orchestrator.
        poller: Provider poller.
        config_store: Provider enable flags.
        settings: Intervals and lock TTL.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        orchestrator: SyncOrchestrator,
        poller: ProviderPoller,
        config_store: IntegrationConfigStore,
        settings: Settings,
    ) -> None:
        self._redis = redis
        self._orchestrator = orchestrator
        self._poller = poller
        self._config_store = config_store
        self._settings = settings
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    def start(self) -> None:
        self._scheduler = AsyncIOScheduler()

        self._scheduler.add_job(
            self.run_notion_poll,
            trigger=IntervalTrigger(minutes=self._settings.NOTION_POLL_INTERVAL_MINUTES),
            id="sync_notion_poll",
            name="Poll Notion databases for contact changes",
            max_instances=1,
            coalesce=True,
        )

        for provider in SyncProvider:
            self._scheduler.add_job(
                self.run_full_sync,
                trigger=IntervalTrigger(hours=self._settings.FULL_SYNC_INTERVAL_HOURS),
                args=[provider],
                id=f"sync_full_{provider.value.lower()}",
                name=f"Full reconciliation for {provider.value}",
                max_instances=1,
                coalesce=True,
            )

        self._scheduler.start()
        self._started = True
        logger.info(
            "sync_scheduler.started",
            notion_poll_minutes=self._settings.NOTION_POLL_INTERVAL_MINUTES,
            full_sync_hours=self._settings.FULL_SYNC_INTERVAL_HOURS,
        )

    def stop(self) -> None:
        if self._scheduler is not None and self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("sync_scheduler.stopped")

    async def run_notion_poll(self) -> None:
        try:
            await self._poller.poll(SyncProvider.NOTION)
        except Exception as exc:
            logger.warning("sync_scheduler.notion_poll_failed", error=str(exc))

    async def run_full_sync(self, provider: SyncProvider) -> None:
        if not await self._config_store.is_enabled(provider):
            return
        try:
            result = await run_locked_full_sync(
                self._redis,
                self._orchestrator,
                provider,
                self._settings.SYNC_LOCK_TTL_SECONDS,
            )
        except SyncInProgressError:
            logger.info("sync_scheduler.full_sync_skipped", provider=provider.value)
            return
        except Exception as exc:
            logger.warning(
                "sync_scheduler.full_sync_failed",
                provider=provider.value,
                error=str(exc),
            )
            return
        logger.info(
            "sync_scheduler.full_sync_complete",
            provider=provider.value,
            processed=result.processed,
            errors=result.errors,
        )
