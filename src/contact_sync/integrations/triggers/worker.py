"""Background worker that drains the sync task queue.

A failing task is logged (structlog and, for inbound work, the SyncLog) and
acknowledged; it is not retried here. The next scheduled reconciliation is
the retry.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import structlog

from src.contact_sync.config import Settings
from src.contact_sync.integrations.config_store import IntegrationConfigStore
from src.contact_sync.integrations.orchestrator import SyncOrchestrator
from src.contact_sync.integrations.registry import AdapterRegistry
from src.contact_sync.integrations.schemas import (
    SyncDirection,
    SyncLogCreate,
    SyncProvider,
    SyncStatus,
)
from src.contact_sync.integrations.sync_log import SyncLogService
from src.contact_sync.integrations.triggers.queue import SyncTask, SyncTaskQueue

logger = structlog.get_logger(__name__)


class SyncWorker:
    """Dispatches queued tasks to the orchestrator.

    Args:
        queue: Task queue to drain.
        orchestrator: Sync orchestrator.
        adapters: Adapter registry, for tasks that must fetch external data.
        config_store: Provider enable flags.
        sync_log: Audit log for inbound failures.
        settings: Application settings.
    """

    def __init__(
        self,
        queue: SyncTaskQueue,
        orchestrator: SyncOrchestrator,
        adapters: AdapterRegistry,
        config_store: IntegrationConfigStore,
        sync_log: SyncLogService,
        settings: Settings,
    ) -> None:
        self._queue = queue
        self._orchestrator = orchestrator
        self._adapters = adapters
        self._config_store = config_store
        self._sync_log = sync_log
        self._settings = settings
        self._running = False

    async def handle(self, task: SyncTask) -> None:
        """Run one task. Raises whatever the dispatched operation raises."""
        if task.kind == "contact_changed":
            await self._orchestrator.on_contact_changed(task.contact_id)
        elif task.kind == "outlook_notification":
            await self._handle_outlook_notification(task)
        elif task.kind == "google_changes":
            await self._handle_google_changes()

    async def _handle_outlook_notification(self, task: SyncTask) -> None:
        if not await self._config_store.is_enabled(SyncProvider.OUTLOOK):
            return
        if task.change_type == "deleted":
            # External deletes never tear links down automatically
            logger.info("worker.outlook_delete_ignored", external_id=task.external_id)
            return

        adapter = await self._adapters.get(SyncProvider.OUTLOOK)
        try:
            record = await adapter.pull_contact(task.external_id)
            await self._orchestrator.handle_inbound_change(
                SyncProvider.OUTLOOK, record.external_id, record, record.last_modified
            )
        except Exception as exc:
            await self._log_inbound_error(
                SyncProvider.OUTLOOK,
                "Failed to process Outlook notification",
                str(exc),
                external_id=task.external_id,
            )
            raise

    async def _handle_google_changes(self) -> None:
        if not await self._config_store.is_enabled(SyncProvider.GOOGLE):
            return

        adapter = await self._adapters.get(SyncProvider.GOOGLE)
        window = timedelta(minutes=self._settings.GOOGLE_WEBHOOK_WINDOW_MINUTES)
        try:
            records = await adapter.list_recently_modified(window)
        except Exception as exc:
            await self._log_inbound_error(
                SyncProvider.GOOGLE, "Webhook processing failed", str(exc)
            )
            raise

        for record in records:
            try:
                await self._orchestrator.handle_inbound_change(
                    SyncProvider.GOOGLE, record.external_id, record, record.last_modified
                )
            except Exception as exc:
                await self._log_inbound_error(
                    SyncProvider.GOOGLE,
                    "Failed to process Google change",
                    str(exc),
                    external_id=record.external_id,
                )

    async def _log_inbound_error(
        self,
        provider: SyncProvider,
        message: str,
        error: str,
        external_id: str | None = None,
    ) -> None:
        await self._sync_log.create_log(
            SyncLogCreate(
                provider=provider,
                direction=SyncDirection.INBOUND,
                status=SyncStatus.ERROR,
                external_id=external_id,
                message=message,
                error_details=error,
            )
        )

    async def run_once(self, timeout: int = 5) -> bool:
        """Claim and process at most one task.

        Returns:
            True if a task was claimed.
        """
        claimed = await self._queue.dequeue(timeout=timeout)
        if claimed is None:
            return False

        raw, task = claimed
        try:
            if task is not None:
                await self.handle(task)
                logger.debug("worker.task_done", kind=task.kind)
        except Exception as exc:
            logger.error(
                "worker.task_failed",
                kind=task.kind if task else None,
                contact_id=task.contact_id if task else None,
                external_id=task.external_id if task else None,
                error=str(exc),
            )
        finally:
            await self._queue.ack(raw)
        return True

    async def run(self) -> None:
        """Process tasks until stop() is called."""
        self._running = True
        await self._queue.recover()
        logger.info("worker.started")

        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Redis unavailable; back off before claiming again
                logger.warning("worker.dequeue_failed", error=str(exc))
                await asyncio.sleep(1)

        logger.info("worker.stopped")

    def stop(self) -> None:
        """Signal the loop to stop after the current task."""
        self._running = False
