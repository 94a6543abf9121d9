"""Link store: persistence for contact to external-record mappings.

Provides LinkStore with the session_factory callable pattern. A link's
external_data blob has a fixed layout:

    {"container": str | None, "snapshot": {...}, "contact": {...},
     "last_modified": iso8601 | None}

The container discriminator lets one contact hold several links to the same
provider (one per Notion database). Watermark rules:
- record_success advances last_synced_at to max(now, record.last_modified)
- record_failure never touches last_synced_at
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.contact_sync.integrations.errors import LinkConflictError
from src.contact_sync.integrations.models import ExternalContactLinkModel
from src.contact_sync.integrations.schemas import (
    ExternalRecord,
    LinkCreate,
    LinkRead,
    SyncProvider,
    SyncStatus,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_link(model: ExternalContactLinkModel) -> LinkRead:
    """Convert ExternalContactLinkModel to LinkRead schema."""
    return LinkRead(
        id=str(model.id),
        contact_id=str(model.contact_id),
        provider=model.provider,
        external_id=model.external_id,
        external_data=model.external_data or {},
        last_synced_at=model.last_synced_at,
        sync_status=model.sync_status,
        sync_error=model.sync_error,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def build_external_data(record: ExternalRecord | None, container: str | None) -> dict[str, Any]:
    """Serialize the snapshot blob stored on a link."""
    data: dict[str, Any] = {"container": container}
    if record is not None:
        data["snapshot"] = record.snapshot.model_dump(mode="json")
        data["contact"] = record.contact.model_dump(mode="json", exclude_none=True)
        data["last_modified"] = (
            record.last_modified.isoformat() if record.last_modified else None
        )
    return data


def next_watermark(record: ExternalRecord | None, now: datetime | None = None) -> datetime:
    """Watermark after a successful exchange.

    Never earlier than the external modification time, so an echo of our own
    write does not read as a fresh external change on the next pass.
    """
    now = now or datetime.now(timezone.utc)
    if record is None or record.last_modified is None:
        return now
    modified = record.last_modified
    if modified.tzinfo is None:
        modified = modified.replace(tzinfo=timezone.utc)
    return max(now, modified)


# ── Repository ──────────────────────────────────────────────────────────────


class LinkStore:
    """Async CRUD for ExternalContactLink rows.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create_link(self, data: LinkCreate) -> LinkRead:
        """Insert a new link.

        Raises:
            LinkConflictError: (provider, external_id) is already linked. The
                caller should re-read the winning link.
        """
        async for session in self._session_factory():
            model = ExternalContactLinkModel(
                contact_id=uuid.UUID(data.contact_id),
                provider=data.provider,
                external_id=data.external_id,
                external_data=build_external_data(data.record, data.container),
                sync_status=data.sync_status,
                last_synced_at=data.last_synced_at,
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                logger.info(
                    "links.create_conflict",
                    provider=data.provider.value,
                    external_id=data.external_id,
                )
                raise LinkConflictError(data.provider.value, data.external_id) from exc
            await session.refresh(model)
            return _model_to_link(model)

    async def get_link(self, link_id: str) -> LinkRead | None:
        async for session in self._session_factory():
            model = await session.get(ExternalContactLinkModel, uuid.UUID(link_id))
            if model is None:
                return None
            return _model_to_link(model)

    async def get_by_external_id(
        self, provider: SyncProvider, external_id: str
    ) -> LinkRead | None:
        async for session in self._session_factory():
            stmt = select(ExternalContactLinkModel).where(
                ExternalContactLinkModel.provider == provider,
                ExternalContactLinkModel.external_id == external_id,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_link(model)

    async def list_for_contact(
        self, contact_id: str, provider: SyncProvider | None = None
    ) -> list[LinkRead]:
        async for session in self._session_factory():
            stmt = select(ExternalContactLinkModel).where(
                ExternalContactLinkModel.contact_id == uuid.UUID(contact_id)
            )
            if provider is not None:
                stmt = stmt.where(ExternalContactLinkModel.provider == provider)
            result = await session.execute(stmt.order_by(ExternalContactLinkModel.created_at))
            return [_model_to_link(m) for m in result.scalars().all()]

    async def list_for_provider(self, provider: SyncProvider) -> list[LinkRead]:
        async for session in self._session_factory():
            stmt = (
                select(ExternalContactLinkModel)
                .where(ExternalContactLinkModel.provider == provider)
                .order_by(ExternalContactLinkModel.created_at)
            )
            result = await session.execute(stmt)
            return [_model_to_link(m) for m in result.scalars().all()]

    async def find_link_for(
        self,
        contact_id: str,
        provider: SyncProvider,
        container: str | None = None,
    ) -> LinkRead | None:
        """Find the link for (contact, provider, container).

        A None container matches only links stored without a container.
        """
        for link in await self.list_for_contact(contact_id, provider):
            if link.container == container:
                return link
        return None

    async def record_success(
        self, link_id: str, record: ExternalRecord | None = None
    ) -> LinkRead | None:
        """Mark a link SYNCED, clear its error and advance the watermark.

        Args:
            link_id: Link UUID string.
            record: The external state after the exchange; its snapshot
                replaces the stored one.
        """
        async for session in self._session_factory():
            model = await session.get(ExternalContactLinkModel, uuid.UUID(link_id))
            if model is None:
                return None
            container = (model.external_data or {}).get("container")
            if record is not None:
                model.external_data = build_external_data(record, container)
            model.sync_status = SyncStatus.SYNCED
            model.sync_error = None
            model.last_synced_at = next_watermark(record)
            await session.commit()
            await session.refresh(model)
            return _model_to_link(model)

    async def record_failure(self, link_id: str, message: str) -> LinkRead | None:
        """Mark a link ERROR. The watermark is left untouched."""
        async for session in self._session_factory():
            model = await session.get(ExternalContactLinkModel, uuid.UUID(link_id))
            if model is None:
                return None
            model.sync_status = SyncStatus.ERROR
            model.sync_error = message
            await session.commit()
            await session.refresh(model)
            return _model_to_link(model)

    async def delete(self, link_id: str) -> bool:
        async for session in self._session_factory():
            result = await session.execute(
                delete(ExternalContactLinkModel).where(
                    ExternalContactLinkModel.id == uuid.UUID(link_id)
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_for_container(self, provider: SyncProvider, container: str) -> int:
        """Delete every link of a provider stored against one container.

        Returns:
            Number of links removed.
        """
        async for session in self._session_factory():
            stmt = delete(ExternalContactLinkModel).where(
                ExternalContactLinkModel.provider == provider,
                ExternalContactLinkModel.external_data["container"].as_string() == container,
            )
            result = await session.execute(stmt)
            await session.commit()
            logger.info(
                "links.container_unlinked",
                provider=provider.value,
                container=container,
                removed=result.rowcount,
            )
            return result.rowcount
