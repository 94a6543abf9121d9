"""Pydantic schemas and enums for the contact sync engine.

Defines:
- Enums: SyncProvider, SyncDirection, SyncStatus, SyncAction
- ContactProjection: the narrow, provider-neutral view of a contact
- Typed snapshots (GoogleSnapshot, OutlookSnapshot, NotionSnapshot) combined
  into the ExternalSnapshot discriminated union
- ExternalRecord / ExternalPage: what adapters return
- Link, SyncLog, TagRoute and IntegrationConfig read/write schemas
- Result models returned by the orchestrator
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

from src.contact_sync.contacts.schemas import (
    ContactAddress,
    ContactCreate,
    ContactEmail,
    ContactPhone,
    ContactRead,
    ContactUpdate,
)

# ── Enums ───────────────────────────────────────────────────────────────────


class SyncProvider(str, Enum):
    GOOGLE = "GOOGLE"
    OUTLOOK = "OUTLOOK"
    NOTION = "NOTION"


# Most entries a provider stores per multi-valued contact field. Unlisted
# fields are unbounded.
PROVIDER_LIST_CAPACITY: dict[SyncProvider, dict[str, int]] = {
    SyncProvider.NOTION: {"emails": 1, "phones": 1, "addresses": 1},
    SyncProvider.OUTLOOK: {"emails": 3},
}


class SyncDirection(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"
    BOTH = "BOTH"


class SyncStatus(str, Enum):
    SYNCED = "SYNCED"
    PENDING = "PENDING"
    ERROR = "ERROR"


class SyncAction(str, Enum):
    PUSH_LOCAL = "PUSH_LOCAL"
    PULL_EXTERNAL = "PULL_EXTERNAL"
    NO_ACTION = "NO_ACTION"


# ── Contact projection ──────────────────────────────────────────────────────


class ContactProjection(BaseModel):
    """Provider-neutral subset of contact fields exchanged with adapters.

    A field left as None means the provider did not supply it; such fields
    are never written to the local contact.
    """

    display_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    job_title: str | None = None
    notes: str | None = None
    emails: list[ContactEmail] | None = None
    phones: list[ContactPhone] | None = None
    addresses: list[ContactAddress] | None = None

    @classmethod
    def from_contact(cls, contact: ContactRead) -> ContactProjection:
        return cls(
            display_name=contact.display_name,
            first_name=contact.first_name,
            last_name=contact.last_name,
            job_title=contact.job_title,
            notes=contact.notes,
            emails=contact.emails,
            phones=contact.phones,
            addresses=contact.addresses,
        )

    def to_update(self) -> ContactUpdate:
        """Build a partial update carrying only the supplied fields."""
        supplied = {
            name: getattr(self, name)
            for name in type(self).model_fields
            if getattr(self, name) is not None
        }
        return ContactUpdate(**supplied)

    def to_create(self, tag_ids: list[str] | None = None) -> ContactCreate:
        return ContactCreate(
            display_name=self.display_name or _fallback_name(self),
            first_name=self.first_name,
            last_name=self.last_name,
            job_title=self.job_title,
            notes=self.notes,
            emails=self.emails or [],
            phones=self.phones or [],
            addresses=self.addresses or [],
            tag_ids=tag_ids or [],
        )


def _fallback_name(projection: ContactProjection) -> str:
    joined = " ".join(p for p in (projection.first_name, projection.last_name) if p)
    return joined or "Unknown"


# ── Typed external snapshots ────────────────────────────────────────────────


class GoogleSnapshot(BaseModel):
    provider: Literal[SyncProvider.GOOGLE] = SyncProvider.GOOGLE
    resource_name: str
    etag: str | None = None
    source_type: str | None = None

    @property
    def container(self) -> str | None:
        return None


class OutlookSnapshot(BaseModel):
    provider: Literal[SyncProvider.OUTLOOK] = SyncProvider.OUTLOOK
    change_key: str | None = None
    parent_folder_id: str | None = None

    @property
    def container(self) -> str | None:
        return None


class NotionSnapshot(BaseModel):
    provider: Literal[SyncProvider.NOTION] = SyncProvider.NOTION
    database_id: str
    url: str | None = None
    archived: bool = False

    @property
    def container(self) -> str | None:
        return self.database_id


ExternalSnapshot = Annotated[
    Union[GoogleSnapshot, OutlookSnapshot, NotionSnapshot],
    Field(discriminator="provider"),
]


class ExternalRecord(BaseModel):
    """A contact as read from or written to a provider."""

    external_id: str
    contact: ContactProjection
    snapshot: ExternalSnapshot
    last_modified: datetime | None = None

    @property
    def provider(self) -> SyncProvider:
        return self.snapshot.provider

    @property
    def container(self) -> str | None:
        return self.snapshot.container


class ExternalPage(BaseModel):
    records: list[ExternalRecord] = Field(default_factory=list)
    next_cursor: str | None = None


# ── Links ───────────────────────────────────────────────────────────────────


class LinkCreate(BaseModel):
    contact_id: str
    provider: SyncProvider
    external_id: str
    container: str | None = None
    record: ExternalRecord | None = None
    sync_status: SyncStatus = SyncStatus.PENDING
    last_synced_at: datetime | None = None


class LinkRead(BaseModel):
    id: str
    contact_id: str
    provider: SyncProvider
    external_id: str
    external_data: dict[str, Any] = Field(default_factory=dict)
    last_synced_at: datetime | None = None
    sync_status: SyncStatus = SyncStatus.PENDING
    sync_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def container(self) -> str | None:
        return self.external_data.get("container")


# ── Conflict resolution ─────────────────────────────────────────────────────


class ConflictResolution(BaseModel):
    action: SyncAction
    reason: str


# ── Sync log ────────────────────────────────────────────────────────────────


class SyncLogCreate(BaseModel):
    provider: SyncProvider
    direction: SyncDirection
    status: SyncStatus
    contact_id: str | None = None
    external_id: str | None = None
    message: str | None = None
    error_details: str | None = None
    records_processed: int = 0


class SyncLogRead(SyncLogCreate):
    id: str
    created_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class SyncLogPage(BaseModel):
    logs: list[SyncLogRead] = Field(default_factory=list)
    pagination: Pagination


# ── Tag routes ──────────────────────────────────────────────────────────────


class TagRouteCreate(BaseModel):
    """A tag to container routing rule. tag_id None routes every contact."""

    tag_id: str | None = None
    container_id: str
    container_name: str
    provider: SyncProvider = SyncProvider.NOTION
    enabled: bool = True


class TagRouteUpdate(BaseModel):
    container_name: str | None = None
    enabled: bool | None = None


class TagRouteRead(BaseModel):
    id: str
    provider: SyncProvider
    tag_id: str | None = None
    container_id: str
    container_name: str
    enabled: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RouteContext(BaseModel):
    """Route an inbound record arrived through; its tag is auto-attached."""

    route_id: str
    tag_id: str | None = None
    container_id: str

    @classmethod
    def from_route(cls, route: TagRouteRead) -> RouteContext:
        return cls(route_id=route.id, tag_id=route.tag_id, container_id=route.container_id)


# ── Integration config ──────────────────────────────────────────────────────


class IntegrationConfigUpdate(BaseModel):
    enabled: bool | None = None
    settings: dict[str, Any] | None = None


class IntegrationConfigRead(BaseModel):
    provider: SyncProvider
    enabled: bool = False
    settings: dict[str, Any] = Field(default_factory=dict)
    connected: bool = False
    connected_at: datetime | None = None
    updated_at: datetime | None = None


# ── Orchestrator results ────────────────────────────────────────────────────


class SingleSyncResult(BaseModel):
    success: bool
    external_id: str | None = None


class FullSyncResult(BaseModel):
    processed: int = 0
    errors: int = 0


class RouteSyncResult(FullSyncResult):
    inbound: int = 0
    outbound: int = 0
    schema_fields_added: list[str] = Field(default_factory=list)


class InboundOutcome(BaseModel):
    """What handle_inbound_change did with one external record."""

    action: Literal["CREATED", "PUSH_LOCAL", "PULL_EXTERNAL", "NO_ACTION", "SKIPPED"]
    reason: str
    contact_id: str | None = None
    link_id: str | None = None
