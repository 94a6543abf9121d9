"""Provider adapter abstract base class.

Every external directory (Google Contacts, Outlook, Notion) implements this
ABC. The public methods wrap the provider-specific hooks with:
- A per-call timeout (asyncio.wait_for)
- Bounded tenacity retry with exponential backoff on TransientAdapterError
- Translation of raw client-library errors into the AdapterError hierarchy

so no library exception ever reaches the orchestrator.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.contact_sync.contacts.schemas import ContactRead
from src.contact_sync.integrations.errors import (
    AdapterError,
    ExternalRecordNotFoundError,
    PermanentAdapterError,
    TransientAdapterError,
)
from src.contact_sync.integrations.schemas import ExternalPage, ExternalRecord, SyncProvider

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_TRANSIENT_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


def error_for_status(
    provider: SyncProvider,
    status: int | None,
    message: str,
    external_id: str | None = None,
) -> AdapterError:
    """Map an HTTP status from a provider response onto the error hierarchy."""
    if status in (404, 410) and external_id is not None:
        return ExternalRecordNotFoundError(provider.value, external_id)
    if status is None or status in _TRANSIENT_STATUSES:
        return TransientAdapterError(provider.value, message)
    return PermanentAdapterError(provider.value, message)


class ProviderAdapter(ABC):
    """Abstract interface for one external contact directory.

    Subclasses implement the underscore hooks and _classify; callers use
    the public methods only.

    Args:
        timeout_seconds: Upper bound on a single provider call.
        max_retries: Attempts per call before a transient error is surfaced.
        retry_backoff: Multiplier for the exponential backoff between attempts.
    """

    provider: SyncProvider
    supports_routing: bool = False

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
    ) -> None:
        self._timeout = timeout_seconds
        self._max_retries = max(1, max_retries)
        self._retry_backoff = retry_backoff

    @property
    def default_container(self) -> str | None:
        """Container used when the caller does not name one."""
        return None

    # ── Public contract ─────────────────────────────────────────────────────

    async def push_contact(
        self,
        contact: ContactRead,
        external_id: str | None = None,
        container: str | None = None,
    ) -> ExternalRecord:
        """Create or update the external record for a local contact.

        Args:
            contact: Local contact to write.
            external_id: Existing record to update in place; None creates.
            container: Target container for creates.

        Returns:
            The external record as stored by the provider.

        Raises:
            ExternalRecordNotFoundError: external_id no longer exists.
            AdapterError: Any other provider failure.
        """
        target = container or self.default_container
        return await self._call(
            "push_contact",
            lambda: self._push(contact, external_id, target),
            external_id=external_id,
        )

    async def pull_contact(self, external_id: str) -> ExternalRecord:
        return await self._call(
            "pull_contact",
            lambda: self._pull(external_id),
            external_id=external_id,
        )

    async def delete_contact(self, external_id: str) -> None:
        await self._call(
            "delete_contact",
            lambda: self._delete(external_id),
            external_id=external_id,
        )

    async def fetch_page(
        self, container: str | None = None, cursor: str | None = None
    ) -> ExternalPage:
        target = container or self.default_container
        return await self._call("fetch_page", lambda: self._fetch_page(target, cursor))

    async def fetch_all_contacts(
        self, container: str | None = None, cursor: str | None = None
    ) -> AsyncIterator[ExternalRecord]:
        """Lazily iterate every record in a container.

        Pages are fetched on demand. Passing a cursor seen on an earlier
        page restarts iteration from that page.
        """
        while True:
            page = await self.fetch_page(container, cursor)
            for record in page.records:
                yield record
            if not page.next_cursor:
                return
            cursor = page.next_cursor

    async def ensure_container_schema(self, container: str) -> list[str]:
        """Add any fields the container lacks; never removes or renames.

        Returns:
            Names of the fields that were created.
        """
        return []

    # ── Provider hooks ──────────────────────────────────────────────────────

    @abstractmethod
    async def _push(
        self, contact: ContactRead, external_id: str | None, container: str | None
    ) -> ExternalRecord:
        ...

    @abstractmethod
    async def _pull(self, external_id: str) -> ExternalRecord:
        ...

    @abstractmethod
    async def _delete(self, external_id: str) -> None:
        ...

    @abstractmethod
    async def _fetch_page(self, container: str | None, cursor: str | None) -> ExternalPage:
        ...

    @abstractmethod
    def _classify(self, exc: Exception, external_id: str | None) -> AdapterError:
        """Translate a client-library exception into an AdapterError."""
        ...

    # ── Call wrapper ────────────────────────────────────────────────────────

    async def _call(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        external_id: str | None = None,
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(
                multiplier=self._retry_backoff,
                min=self._retry_backoff,
                max=10 * self._retry_backoff,
            ),
            retry=retry_if_exception_type(TransientAdapterError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                try:
                    return await asyncio.wait_for(fn(), timeout=self._timeout)
                except AdapterError:
                    raise
                except asyncio.TimeoutError as exc:
                    raise TransientAdapterError(
                        self.provider.value,
                        f"{operation} timed out after {self._timeout}s",
                    ) from exc
                except Exception as exc:
                    error = self._classify(exc, external_id)
                    logger.warning(
                        "adapter.call_failed",
                        provider=self.provider.value,
                        operation=operation,
                        external_id=external_id,
                        transient=error.transient,
                        attempt=attempt.retry_state.attempt_number,
                        error=str(exc),
                    )
                    raise error from exc
        raise AssertionError("unreachable")  # pragma: no cover
