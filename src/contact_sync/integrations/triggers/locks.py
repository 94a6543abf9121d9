"""Non-blocking per-provider Redis locks.

Key pattern: sync:lock:{kind}:{provider}

A pass that finds its lock held is skipped, never queued. The TTL bounds how
long a crashed process can hold a lock.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog
from redis.exceptions import LockError

from src.contact_sync.integrations.schemas import SyncProvider

logger = structlog.get_logger(__name__)

POLL_LOCK = "poll"
FULL_SYNC_LOCK = "full"


def lock_key(kind: str, provider: SyncProvider) -> str:
    return f"sync:lock:{kind}:{provider.value}"


@asynccontextmanager
async def provider_lock(
    redis: aioredis.Redis,
    kind: str,
    provider: SyncProvider,
    ttl_seconds: int,
) -> AsyncGenerator[bool, None]:
    """Try to take the lock without waiting.

    Usage:
        async with provider_lock(redis, FULL_SYNC_LOCK, provider, 3600) as acquired:
            if not acquired:
                return

    Yields:
        True if this caller holds the lock.
    """
    lock = redis.lock(lock_key(kind, provider), timeout=ttl_seconds, blocking=False)
    acquired = await lock.acquire()
    try:
        yield bool(acquired)
    finally:
        if acquired:
            try:
                await lock.release()
            except LockError:
                # Expired mid-pass; another holder may own it now
                logger.warning("sync.lock_release_failed", key=lock_key(kind, provider))
