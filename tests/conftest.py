"""Shared test doubles for the sync engine.

Provides in-memory stand-ins for the database-backed services
(ContactRepository, LinkStore, SyncLogService, RouteService,
IntegrationConfigStore, AdapterRegistry) and a FakeAdapter that runs
through the real ProviderAdapter call wrapper. Fixtures wire them into a
real SyncOrchestrator.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import pytest

from src.contact_sync.contacts.schemas import (
    ContactCreate,
    ContactRead,
    ContactUpdate,
    TagRead,
)
from src.contact_sync.integrations.adapter import ProviderAdapter
from src.contact_sync.integrations.errors import (
    AdapterError,
    ExternalRecordNotFoundError,
    LinkConflictError,
    MissingCredentialsError,
    PermanentAdapterError,
    ProviderDisabledError,
    RouteConflictError,
    RouteNotFoundError,
    TagNotFoundError,
)
from src.contact_sync.integrations.links import build_external_data, next_watermark
from src.contact_sync.integrations.orchestrator import SyncOrchestrator
from src.contact_sync.integrations.schemas import (
    ContactProjection,
    ExternalPage,
    ExternalRecord,
    GoogleSnapshot,
    IntegrationConfigRead,
    IntegrationConfigUpdate,
    LinkCreate,
    LinkRead,
    NotionSnapshot,
    OutlookSnapshot,
    Pagination,
    SyncLogCreate,
    SyncLogPage,
    SyncLogRead,
    SyncProvider,
    SyncStatus,
    TagRouteCreate,
    TagRouteRead,
    TagRouteUpdate,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryContactRepository:
    """In-memory ContactRepository for testing without database."""

    def __init__(self) -> None:
        self.contacts: dict[str, ContactRead] = {}
        self.tags: dict[str, TagRead] = {}
        self.tag_attach_calls = 0

    def seed_tag(self, name: str) -> TagRead:
        tag = TagRead(id=str(uuid.uuid4()), name=name)
        self.tags[tag.id] = tag
        return tag

    def set_updated_at(self, contact_id: str, value: datetime) -> None:
        self.contacts[contact_id] = self.contacts[contact_id].model_copy(
            update={"updated_at": value}
        )

    async def create_contact(self, data: ContactCreate) -> ContactRead:
        now = _now()
        contact = ContactRead(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            **data.model_dump(exclude={"tag_ids"}),
            tag_ids=list(dict.fromkeys(data.tag_ids)),
        )
        self.contacts[contact.id] = contact
        return contact

    async def get_contact(self, contact_id: str) -> ContactRead | None:
        return self.contacts.get(contact_id)

    async def list_contacts(self, tag_id: str | None = None) -> list[ContactRead]:
        return [
            c for c in self.contacts.values() if tag_id is None or tag_id in c.tag_ids
        ]

    async def update_contact(self, contact_id: str, data: ContactUpdate) -> ContactRead | None:
        contact = self.contacts.get(contact_id)
        if contact is None:
            return None
        changes: dict[str, Any] = {name: getattr(data, name) for name in data.model_fields_set}
        for name in ("emails", "phones", "addresses"):
            if name in changes and changes[name] is None:
                changes[name] = []
        changes["updated_at"] = _now()
        updated = contact.model_copy(update=changes)
        self.contacts[contact_id] = updated
        return updated

    async def delete_contact(self, contact_id: str) -> bool:
        return self.contacts.pop(contact_id, None) is not None

    async def get_tag(self, tag_id: str) -> TagRead | None:
        return self.tags.get(tag_id)

    async def add_tag(self, contact_id: str, tag_id: str) -> bool:
        self.tag_attach_calls += 1
        contact = self.contacts[contact_id]
        if tag_id in contact.tag_ids:
            return False
        self.contacts[contact_id] = contact.model_copy(
            update={"tag_ids": [*contact.tag_ids, tag_id]}
        )
        return True


class InMemoryLinkStore:
    """In-memory LinkStore with the same watermark rules as the real one."""

    def __init__(self) -> None:
        self.links: dict[str, LinkRead] = {}

    async def create_link(self, data: LinkCreate) -> LinkRead:
        for link in self.links.values():
            if link.provider == data.provider and link.external_id == data.external_id:
                raise LinkConflictError(data.provider.value, data.external_id)
        link = LinkRead(
            id=str(uuid.uuid4()),
            contact_id=data.contact_id,
            provider=data.provider,
            external_id=data.external_id,
            external_data=build_external_data(data.record, data.container),
            last_synced_at=data.last_synced_at,
            sync_status=data.sync_status,
            created_at=_now(),
        )
        self.links[link.id] = link
        return link

    async def get_link(self, link_id: str) -> LinkRead | None:
        return self.links.get(link_id)

    async def get_by_external_id(self, provider: SyncProvider, external_id: str) -> LinkRead | None:
        for link in self.links.values():
            if link.provider == provider and link.external_id == external_id:
                return link
        return None

    async def list_for_contact(
        self, contact_id: str, provider: SyncProvider | None = None
    ) -> list[LinkRead]:
        return [
            link
            for link in self.links.values()
            if link.contact_id == contact_id and (provider is None or link.provider == provider)
        ]

    async def list_for_provider(self, provider: SyncProvider) -> list[LinkRead]:
        return [link for link in self.links.values() if link.provider == provider]

    async def find_link_for(
        self, contact_id: str, provider: SyncProvider, container: str | None = None
    ) -> LinkRead | None:
        for link in await self.list_for_contact(contact_id, provider):
            if link.container == container:
                return link
        return None

    async def record_success(
        self, link_id: str, record: ExternalRecord | None = None
    ) -> LinkRead | None:
        link = self.links.get(link_id)
        if link is None:
            return None
        external_data = link.external_data
        if record is not None:
            external_data = build_external_data(record, link.container)
        updated = link.model_copy(
            update={
                "external_data": external_data,
                "sync_status": SyncStatus.SYNCED,
                "sync_error": None,
                "last_synced_at": next_watermark(record),
            }
        )
        self.links[link_id] = updated
        return updated

    async def record_failure(self, link_id: str, message: str) -> LinkRead | None:
        link = self.links.get(link_id)
        if link is None:
            return None
        updated = link.model_copy(update={"sync_status": SyncStatus.ERROR, "sync_error": message})
        self.links[link_id] = updated
        return updated

    async def delete(self, link_id: str) -> bool:
        return self.links.pop(link_id, None) is not None

    async def delete_for_container(self, provider: SyncProvider, container: str) -> int:
        doomed = [
            link.id
            for link in self.links.values()
            if link.provider == provider and link.container == container
        ]
        for link_id in doomed:
            del self.links[link_id]
        return len(doomed)


class InMemorySyncLog:
    """In-memory SyncLogService."""

    def __init__(self) -> None:
        self.entries: list[SyncLogRead] = []

    async def create_log(self, data: SyncLogCreate) -> SyncLogRead:
        entry = SyncLogRead(id=str(uuid.uuid4()), created_at=_now(), **data.model_dump())
        self.entries.append(entry)
        return entry

    async def list_logs(
        self, page: int = 1, limit: int = 50, provider: SyncProvider | None = None
    ) -> SyncLogPage:
        matching = [e for e in reversed(self.entries) if provider is None or e.provider == provider]
        start = (page - 1) * limit
        return SyncLogPage(
            logs=matching[start : start + limit],
            pagination=Pagination(
                page=page,
                limit=limit,
                total=len(matching),
                total_pages=(len(matching) + limit - 1) // limit,
            ),
        )

    def messages(self) -> list[str]:
        return [e.message or "" for e in self.entries]


class InMemoryRouteService:
    """In-memory RouteService with the same uniqueness rules."""

    def __init__(self, contacts: InMemoryContactRepository, links: InMemoryLinkStore) -> None:
        self.routes: dict[str, TagRouteRead] = {}
        self._contacts = contacts
        self._links = links

    async def list_routes(
        self, provider: SyncProvider | None = None, enabled_only: bool = False
    ) -> list[TagRouteRead]:
        return [
            r
            for r in self.routes.values()
            if (provider is None or r.provider == provider) and (r.enabled or not enabled_only)
        ]

    async def get_route(self, route_id: str) -> TagRouteRead:
        route = self.routes.get(route_id)
        if route is None:
            raise RouteNotFoundError(route_id)
        return route

    async def create_route(self, data: TagRouteCreate) -> TagRouteRead:
        if data.tag_id is not None and await self._contacts.get_tag(data.tag_id) is None:
            raise TagNotFoundError(data.tag_id)
        for existing in self.routes.values():
            if existing.provider != data.provider:
                continue
            if existing.tag_id == data.tag_id or existing.container_id == data.container_id:
                raise RouteConflictError("Route already exists")
        route = TagRouteRead(id=str(uuid.uuid4()), created_at=_now(), **data.model_dump())
        self.routes[route.id] = route
        return route

    async def update_route(self, route_id: str, data: TagRouteUpdate) -> TagRouteRead:
        route = await self.get_route(route_id)
        updated = route.model_copy(update=data.model_dump(exclude_none=True))
        self.routes[route_id] = updated
        return updated

    async def enable_route(self, route_id: str) -> TagRouteRead:
        return await self.update_route(route_id, TagRouteUpdate(enabled=True))

    async def disable_route(self, route_id: str) -> TagRouteRead:
        return await self.update_route(route_id, TagRouteUpdate(enabled=False))

    async def delete_route(self, route_id: str) -> None:
        route = await self.get_route(route_id)
        await self._links.delete_for_container(route.provider, route.container_id)
        del self.routes[route_id]

    async def matching_routes(self, provider: SyncProvider, tag_ids: list[str]) -> list[TagRouteRead]:
        return [
            r
            for r in await self.list_routes(provider, enabled_only=True)
            if r.tag_id is None or r.tag_id in tag_ids
        ]


class InMemoryConfigStore:
    """In-memory IntegrationConfigStore (enable flags and settings only)."""

    def __init__(self) -> None:
        self.configs: dict[SyncProvider, IntegrationConfigRead] = {
            p: IntegrationConfigRead(provider=p) for p in SyncProvider
        }

    async def get(self, provider: SyncProvider) -> IntegrationConfigRead:
        return self.configs[provider]

    async def list_configs(self) -> list[IntegrationConfigRead]:
        return list(self.configs.values())

    async def is_enabled(self, provider: SyncProvider) -> bool:
        return self.configs[provider].enabled

    async def require_enabled(self, provider: SyncProvider) -> IntegrationConfigRead:
        if not self.configs[provider].enabled:
            raise ProviderDisabledError(provider.value)
        return self.configs[provider]

    async def upsert(
        self, provider: SyncProvider, data: IntegrationConfigUpdate
    ) -> IntegrationConfigRead:
        updated = self.configs[provider].model_copy(
            update={**data.model_dump(exclude_none=True), "updated_at": _now()}
        )
        self.configs[provider] = updated
        return updated

    async def enable(self, provider: SyncProvider) -> IntegrationConfigRead:
        return await self.upsert(provider, IntegrationConfigUpdate(enabled=True))

    async def disable(self, provider: SyncProvider) -> IntegrationConfigRead:
        return await self.upsert(provider, IntegrationConfigUpdate(enabled=False))

    async def connect(self, provider: SyncProvider, credentials: dict) -> IntegrationConfigRead:
        updated = self.configs[provider].model_copy(
            update={"connected": True, "connected_at": _now(), "updated_at": _now()}
        )
        self.configs[provider] = updated
        return updated

    async def revoke(self, provider: SyncProvider) -> IntegrationConfigRead:
        updated = self.configs[provider].model_copy(
            update={"connected": False, "connected_at": None, "enabled": False}
        )
        self.configs[provider] = updated
        return updated


class StaticAdapterRegistry:
    """AdapterRegistry returning preregistered adapters."""

    def __init__(self) -> None:
        self.adapters: dict[SyncProvider, ProviderAdapter] = {}

    async def get(self, provider: SyncProvider) -> ProviderAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise MissingCredentialsError(provider.value)
        return adapter


class FakeAdapter(ProviderAdapter):
    """Dictionary-backed provider.

    Records live in self.records keyed by external id. Pushes stamp
    last_modified with the current time, like a real provider would.
    fail_push / fail_pull make the next calls raise.
    """

    PAGE_SIZE = 2

    def __init__(
        self,
        provider: SyncProvider,
        supports_routing: bool = False,
        default_container: str | None = None,
    ) -> None:
        super().__init__(timeout_seconds=2.0, max_retries=1, retry_backoff=0)
        self.provider = provider
        self.supports_routing = supports_routing
        self._default_container = default_container
        self.records: dict[str, ExternalRecord] = {}
        self.pushes: list[tuple[str | None, str | None]] = []
        self.deleted: list[str] = []
        self.fail_push: Exception | None = None
        self.fail_pull: Exception | None = None
        self.fail_delete: Exception | None = None
        self.schema_added: list[str] = []
        self._seq = 0

    @property
    def default_container(self) -> str | None:
        return self._default_container

    def _snapshot(self, external_id: str, container: str | None):
        if self.provider == SyncProvider.NOTION:
            return NotionSnapshot(database_id=container or "db-default")
        if self.provider == SyncProvider.GOOGLE:
            return GoogleSnapshot(resource_name=external_id)
        return OutlookSnapshot()

    def seed(
        self,
        projection: ContactProjection,
        container: str | None = None,
        last_modified: datetime | None = None,
        external_id: str | None = None,
    ) -> ExternalRecord:
        self._seq += 1
        external_id = external_id or f"{self.provider.value.lower()}-{self._seq}"
        record = ExternalRecord(
            external_id=external_id,
            contact=projection,
            snapshot=self._snapshot(external_id, container),
            last_modified=last_modified,
        )
        self.records[external_id] = record
        return record

    async def _push(
        self, contact: ContactRead, external_id: str | None, container: str | None
    ) -> ExternalRecord:
        self.pushes.append((external_id, container))
        if self.fail_push is not None:
            raise self.fail_push
        if external_id is not None:
            if external_id not in self.records:
                raise ExternalRecordNotFoundError(self.provider.value, external_id)
            container = self.records[external_id].container
        return self.seed(
            ContactProjection.from_contact(contact),
            container=container,
            last_modified=_now(),
            external_id=external_id,
        )

    async def _pull(self, external_id: str) -> ExternalRecord:
        if self.fail_pull is not None:
            raise self.fail_pull
        if external_id not in self.records:
            raise ExternalRecordNotFoundError(self.provider.value, external_id)
        return self.records[external_id]

    async def _delete(self, external_id: str) -> None:
        if self.fail_delete is not None:
            raise self.fail_delete
        self.deleted.append(external_id)
        self.records.pop(external_id, None)

    async def _fetch_page(self, container: str | None, cursor: str | None) -> ExternalPage:
        matching = [
            r
            for r in self.records.values()
            if container is None or r.container == container
        ]
        start = int(cursor or 0)
        end = start + self.PAGE_SIZE
        return ExternalPage(
            records=matching[start:end],
            next_cursor=str(end) if end < len(matching) else None,
        )

    async def ensure_container_schema(self, container: str) -> list[str]:
        return list(self.schema_added)

    def _classify(self, exc: Exception, external_id: str | None) -> AdapterError:
        return PermanentAdapterError(self.provider.value, str(exc))


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def contacts() -> InMemoryContactRepository:
    return InMemoryContactRepository()


@pytest.fixture
def links() -> InMemoryLinkStore:
    return InMemoryLinkStore()


@pytest.fixture
def sync_log() -> InMemorySyncLog:
    return InMemorySyncLog()


@pytest.fixture
def routes(contacts, links) -> InMemoryRouteService:
    return InMemoryRouteService(contacts, links)


@pytest.fixture
def config_store() -> InMemoryConfigStore:
    return InMemoryConfigStore()


@pytest.fixture
def registry() -> StaticAdapterRegistry:
    return StaticAdapterRegistry()


@pytest.fixture
def google(registry, config_store) -> FakeAdapter:
    adapter = FakeAdapter(SyncProvider.GOOGLE)
    registry.adapters[SyncProvider.GOOGLE] = adapter
    config_store.configs[SyncProvider.GOOGLE].enabled = True
    return adapter


@pytest.fixture
def notion(registry, config_store) -> FakeAdapter:
    adapter = FakeAdapter(SyncProvider.NOTION, supports_routing=True)
    registry.adapters[SyncProvider.NOTION] = adapter
    config_store.configs[SyncProvider.NOTION].enabled = True
    return adapter


@pytest.fixture
def outlook(registry, config_store) -> FakeAdapter:
    adapter = FakeAdapter(SyncProvider.OUTLOOK)
    registry.adapters[SyncProvider.OUTLOOK] = adapter
    config_store.configs[SyncProvider.OUTLOOK].enabled = True
    return adapter


@pytest.fixture
def orchestrator(contacts, links, sync_log, routes, config_store, registry) -> SyncOrchestrator:
    return SyncOrchestrator(
        contacts=contacts,
        links=links,
        sync_log=sync_log,
        routes=routes,
        config_store=config_store,
        adapters=registry,
    )
