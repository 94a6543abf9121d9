"""Sync engine persistence models.

Four SQLAlchemy models:
- ExternalContactLinkModel: Mapping from a local contact to one external record
- SyncLogModel: Append-only audit trail of sync attempts
- TagRouteModel: Tag to external container routing rules
- IntegrationConfigModel: Per-provider enable flag, settings and credentials
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.contact_sync.core.database import Base
from src.contact_sync.integrations.schemas import SyncDirection, SyncProvider, SyncStatus

_provider_enum = SAEnum(SyncProvider, name="sync_provider")
_direction_enum = SAEnum(SyncDirection, name="sync_direction")
_status_enum = SAEnum(SyncStatus, name="sync_status")


class ExternalContactLinkModel(Base):
    """Link between a local contact and its record at one provider.

    (provider, external_id) is unique; it is the only cross-process guard
    against duplicate links. external_data holds the container discriminator
    and the last snapshot seen from the provider.
    """

    __tablename__ = "external_contact_links"
    __table_args__ = (
        UniqueConstraint("provider", "external_id", name="uq_link_provider_external_id"),
        Index("ix_link_contact_provider", "contact_id", "provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider: Mapped[SyncProvider] = mapped_column(_provider_enum, nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_data: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    sync_status: Mapped[SyncStatus] = mapped_column(
        _status_enum, default=SyncStatus.PENDING, nullable=False
    )
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class SyncLogModel(Base):
    """One sync attempt or batch summary. Never updated after insert."""

    __tablename__ = "sync_logs"
    __table_args__ = (
        Index("ix_sync_logs_provider_created", "provider", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    provider: Mapped[SyncProvider] = mapped_column(_provider_enum, nullable=False)
    direction: Mapped[SyncDirection] = mapped_column(_direction_enum, nullable=False)
    status: Mapped[SyncStatus] = mapped_column(_status_enum, nullable=False)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    records_processed: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class TagRouteModel(Base):
    """Routing rule: contacts carrying tag_id sync into container_id.

    A null tag_id routes every contact. A tag and a container can each
    appear in at most one route per provider.
    """

    __tablename__ = "tag_routes"
    __table_args__ = (
        UniqueConstraint("provider", "tag_id", name="uq_route_provider_tag"),
        UniqueConstraint("provider", "container_id", name="uq_route_provider_container"),
        # One catch-all (null tag) route per provider; NULL tags never
        # collide in uq_route_provider_tag
        Index(
            "uq_route_provider_catch_all",
            "provider",
            unique=True,
            postgresql_where=text("tag_id IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    provider: Mapped[SyncProvider] = mapped_column(
        _provider_enum, default=SyncProvider.NOTION, nullable=False
    )
    tag_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tags.id", ondelete="CASCADE"),
        nullable=True,
    )
    container_id: Mapped[str] = mapped_column(String(255), nullable=False)
    container_name: Mapped[str] = mapped_column(String(300), nullable=False)
    enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class IntegrationConfigModel(Base):
    """Per-provider switch, provider settings and encrypted credentials."""

    __tablename__ = "integration_configs"

    provider: Mapped[SyncProvider] = mapped_column(_provider_enum, primary_key=True)
    enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    settings: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    credentials_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    connected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
