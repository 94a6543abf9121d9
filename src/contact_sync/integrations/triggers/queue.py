"""Durable sync task queue on Redis lists.

Reliable-queue pattern: producers LPUSH onto the pending list, consumers
atomically move the oldest item to a processing list (BLMOVE) and remove it
(LREM) once handled. Items stranded in processing by a crashed worker are
moved back by recover(), giving at-least-once delivery.

Key pattern: sync:tasks:pending / sync:tasks:processing
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Literal

import redis.asyncio as aioredis
import structlog
from pydantic import BaseModel, Field, ValidationError

from src.contact_sync.integrations.schemas import SyncProvider

if TYPE_CHECKING:
    from src.contact_sync.integrations.orchestrator import SyncOrchestrator

logger = structlog.get_logger(__name__)

TaskKind = Literal["contact_changed", "outlook_notification", "google_changes"]


class SyncTask(BaseModel):
    """One unit of background sync work."""

    kind: TaskKind
    contact_id: str | None = None
    provider: SyncProvider | None = None
    external_id: str | None = None
    change_type: str | None = None
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def contact_changed(cls, contact_id: str) -> SyncTask:
        return cls(kind="contact_changed", contact_id=contact_id)

    @classmethod
    def outlook_notification(cls, external_id: str, change_type: str | None = None) -> SyncTask:
        return cls(
            kind="outlook_notification",
            provider=SyncProvider.OUTLOOK,
            external_id=external_id,
            change_type=change_type,
        )

    @classmethod
    def google_changes(cls) -> SyncTask:
        return cls(kind="google_changes", provider=SyncProvider.GOOGLE)


class SyncTaskQueue:
    """Redis-list task queue with a processing list for crash recovery.

    Args:
        redis: Async Redis client (decode_responses=True).
        prefix: Key prefix for the pending and processing lists.
    """

    def __init__(self, redis: aioredis.Redis, prefix: str = "sync:tasks") -> None:
        self._redis = redis
        self._pending_key = f"{prefix}:pending"
        self._processing_key = f"{prefix}:processing"

    async def enqueue(self, task: SyncTask) -> None:
        await self._redis.lpush(self._pending_key, task.model_dump_json())
        logger.debug("queue.task_enqueued", kind=task.kind, contact_id=task.contact_id)

    async def dequeue(self, timeout: int = 5) -> tuple[str, SyncTask | None] | None:
        """Claim the oldest pending task.

        Args:
            timeout: Seconds to block waiting for work.

        Returns:
            ``(raw, task)`` where raw is the claimed payload (needed for ack),
            or None when the queue stayed empty. task is None if the payload
            could not be parsed.
        """
        raw = await self._redis.blmove(
            self._pending_key,
            self._processing_key,
            timeout,
            src="RIGHT",
            dest="LEFT",
        )
        if raw is None:
            return None

        try:
            return raw, SyncTask.model_validate_json(raw)
        except ValidationError as exc:
            logger.error("queue.task_invalid", payload=raw, error=str(exc))
            return raw, None

    async def ack(self, raw: str) -> None:
        """Drop a claimed task from the processing list."""
        await self._redis.lrem(self._processing_key, 1, raw)

    async def recover(self) -> int:
        """Move every task stranded in processing back to pending.

        Returns:
            Number of tasks requeued.
        """
        count = 0
        while await self._redis.lmove(
            self._processing_key,
            self._pending_key,
            src="RIGHT",
            dest="RIGHT",
        ):
            count += 1
        if count:
            logger.info("queue.tasks_recovered", count=count)
        return count

    async def depth(self) -> dict[str, int]:
        return {
            "pending": await self._redis.llen(self._pending_key),
            "processing": await self._redis.llen(self._processing_key),
        }


class ContactSyncHook:
    """Entry point for the contact CRUD layer.

    - contact_changed: call after a create or update. Enqueues the outbound
      push; the CRUD write never waits on a provider.
    - contact_deleted: call before the row is removed, since links cascade
      with it. Deletes the external records inline.

    Neither method raises; failures are logged and dropped. A missed push
    is picked up by the next full reconciliation.
    """

    def __init__(
        self,
        queue: SyncTaskQueue,
        orchestrator: SyncOrchestrator | None = None,
    ) -> None:
        self._queue = queue
        self._orchestrator = orchestrator

    async def contact_changed(self, contact_id: str) -> None:
        try:
            await self._queue.enqueue(SyncTask.contact_changed(contact_id))
        except Exception as exc:
            logger.warning(
                "queue.contact_changed_enqueue_failed",
                contact_id=contact_id,
                error=str(exc),
            )

    async def contact_deleted(self, contact_id: str) -> None:
        if self._orchestrator is None:
            logger.warning("queue.contact_deleted_no_orchestrator", contact_id=contact_id)
            return
        try:
            await self._orchestrator.on_contact_deleted(contact_id)
        except Exception as exc:
            logger.warning(
                "queue.contact_deleted_teardown_failed",
                contact_id=contact_id,
                error=str(exc),
            )
