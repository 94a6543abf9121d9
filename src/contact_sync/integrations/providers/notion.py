"""Notion contact adapter: each Notion database is one routable container.

Key implementation details:
- A page is one contact; the database it lives in is the link's container
- Deletion archives the page; archived pages read as missing
- Listing pages through databases.query with start_cursor / page_size 100
- ensure_container_schema only ever adds missing properties
- Property conversion via field_mapping.to_notion_properties / from_notion_properties
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
import structlog
from notion_client import APIResponseError, AsyncClient
from notion_client.errors import HTTPResponseError, RequestTimeoutError

from src.contact_sync.contacts.schemas import ContactRead
from src.contact_sync.integrations.adapter import ProviderAdapter, error_for_status
from src.contact_sync.integrations.errors import (
    AdapterError,
    ExternalRecordNotFoundError,
    PermanentAdapterError,
    TransientAdapterError,
)
from src.contact_sync.integrations.field_mapping import (
    flatten_contact,
    from_notion_properties,
    notion_schema_properties,
    projection_from_flat,
    to_notion_properties,
)
from src.contact_sync.integrations.schemas import (
    ExternalPage,
    ExternalRecord,
    NotionSnapshot,
    SyncProvider,
)

logger = structlog.get_logger(__name__)

PAGE_SIZE = 100


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class NotionAdapter(ProviderAdapter):
    """Notion databases as contact containers.

    Args:
        token: Notion integration token (internal integration secret).
        default_database_id: Database used when no route names a container.
    """

    provider = SyncProvider.NOTION
    supports_routing = True

    def __init__(
        self,
        token: str,
        default_database_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._client = AsyncClient(auth=token)
        self._default_database_id = default_database_id or None

    @property
    def default_container(self) -> str | None:
        return self._default_database_id

    def _page_to_record(self, page: dict[str, Any], database_id: str | None) -> ExternalRecord:
        parent = page.get("parent") or {}
        flat = from_notion_properties(page.get("properties") or {})
        return ExternalRecord(
            external_id=page["id"],
            contact=projection_from_flat(flat),
            snapshot=NotionSnapshot(
                database_id=parent.get("database_id") or database_id or "",
                url=page.get("url"),
                archived=bool(page.get("archived") or page.get("in_trash")),
            ),
            last_modified=_parse_time(page.get("last_edited_time")),
        )

    async def _push(
        self, contact: ContactRead, external_id: str | None, container: str | None
    ) -> ExternalRecord:
        properties = to_notion_properties(flatten_contact(contact))

        if external_id:
            page = await self._client.pages.update(
                page_id=external_id,
                properties=properties,
            )
            logger.info("notion.contact_updated", page_id=external_id)
            return self._page_to_record(page, container)

        if not container:
            raise PermanentAdapterError(
                self.provider.value,
                "Notion database ID is required to create a new contact",
            )

        page = await self._client.pages.create(
            parent={"database_id": container},
            properties=properties,
        )
        logger.info("notion.contact_created", page_id=page["id"], database_id=container)
        return self._page_to_record(page, container)

    async def _pull(self, external_id: str) -> ExternalRecord:
        page = await self._client.pages.retrieve(page_id=external_id)
        if page.get("archived") or page.get("in_trash"):
            raise ExternalRecordNotFoundError(self.provider.value, external_id)
        return self._page_to_record(page, None)

    async def _delete(self, external_id: str) -> None:
        await self._client.pages.update(page_id=external_id, archived=True)
        logger.info("notion.contact_archived", page_id=external_id)

    async def _fetch_page(self, container: str | None, cursor: str | None) -> ExternalPage:
        if not container:
            raise PermanentAdapterError(
                self.provider.value, "Notion database ID is required to list contacts"
            )

        kwargs: dict[str, Any] = {"database_id": container, "page_size": PAGE_SIZE}
        if cursor:
            kwargs["start_cursor"] = cursor

        response = await self._client.databases.query(**kwargs)

        records = [
            self._page_to_record(page, container)
            for page in response.get("results", [])
            if not (page.get("archived") or page.get("in_trash"))
        ]
        next_cursor = response.get("next_cursor") if response.get("has_more") else None
        return ExternalPage(records=records, next_cursor=next_cursor)

    async def ensure_container_schema(self, container: str) -> list[str]:
        """Add any mapped contact property the database is missing."""

        async def _ensure() -> list[str]:
            database = await self._client.databases.retrieve(database_id=container)
            existing = set((database.get("properties") or {}).keys())
            missing = {
                name: definition
                for name, definition in notion_schema_properties().items()
                if name not in existing
            }
            if missing:
                await self._client.databases.update(
                    database_id=container,
                    properties=missing,
                )
                logger.info(
                    "notion.schema_extended",
                    database_id=container,
                    added=sorted(missing),
                )
            return sorted(missing)

        return await self._call("ensure_container_schema", _ensure)

    def _classify(self, exc: Exception, external_id: str | None) -> AdapterError:
        if isinstance(exc, RequestTimeoutError):
            return TransientAdapterError(self.provider.value, "Notion request timed out")
        if isinstance(exc, (APIResponseError, HTTPResponseError)):
            return error_for_status(self.provider, exc.status, str(exc), external_id)
        if isinstance(exc, httpx.TransportError):
            return TransientAdapterError(self.provider.value, str(exc))
        return PermanentAdapterError(self.provider.value, str(exc))
