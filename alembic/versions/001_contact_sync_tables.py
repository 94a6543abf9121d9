"""Create contact and sync engine tables.

Revision ID: 001_contact_sync
Revises:
Create Date: 2026-10-19

Creates:
- contacts, tags, contact_tags: local address book
- external_contact_links: contact <-> external record mapping, unique per
  (provider, external_id)
- sync_logs: append-only audit trail
- tag_routes: tag -> external container routing rules
- integration_configs: per-provider switch, settings and encrypted credentials
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_contact_sync"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_PROVIDERS = ("GOOGLE", "OUTLOOK", "NOTION")
_DIRECTIONS = ("INBOUND", "OUTBOUND", "BOTH")
_STATUSES = ("SYNCED", "PENDING", "ERROR")


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    provider_enum = postgresql.ENUM(*_PROVIDERS, name="sync_provider", create_type=False)
    direction_enum = postgresql.ENUM(*_DIRECTIONS, name="sync_direction", create_type=False)
    status_enum = postgresql.ENUM(*_STATUSES, name="sync_status", create_type=False)
    bind = op.get_bind()
    provider_enum.create(bind, checkfirst=True)
    direction_enum.create(bind, checkfirst=True)
    status_enum.create(bind, checkfirst=True)

    # ── contacts ────────────────────────────────────────────────────────

    op.create_table(
        "contacts",
        _uuid_pk(),
        sa.Column("display_name", sa.String(300), nullable=False),
        sa.Column("first_name", sa.String(150), nullable=True),
        sa.Column("last_name", sa.String(150), nullable=True),
        sa.Column("job_title", sa.String(200), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("emails", sa.JSON(), server_default=sa.text("'[]'::json"), nullable=False),
        sa.Column("phones", sa.JSON(), server_default=sa.text("'[]'::json"), nullable=False),
        sa.Column("addresses", sa.JSON(), server_default=sa.text("'[]'::json"), nullable=False),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    op.create_table(
        "tags",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("color", sa.String(20), nullable=True),
        _created_at(),
    )

    op.create_table(
        "contact_tags",
        sa.Column(
            "contact_id",
            UUID(as_uuid=True),
            sa.ForeignKey("contacts.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "tag_id",
            UUID(as_uuid=True),
            sa.ForeignKey("tags.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _created_at(),
    )

    # ── external_contact_links ──────────────────────────────────────────

    op.create_table(
        "external_contact_links",
        _uuid_pk(),
        sa.Column(
            "contact_id",
            UUID(as_uuid=True),
            sa.ForeignKey("contacts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider", provider_enum, nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column(
            "external_data", sa.JSON(), server_default=sa.text("'{}'::json"), nullable=False
        ),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_status", status_enum, nullable=False, server_default="PENDING"),
        sa.Column("sync_error", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("provider", "external_id", name="uq_link_provider_external_id"),
    )
    op.create_index(
        "ix_link_contact_provider",
        "external_contact_links",
        ["contact_id", "provider"],
    )

    # ── sync_logs ───────────────────────────────────────────────────────

    op.create_table(
        "sync_logs",
        _uuid_pk(),
        sa.Column("provider", provider_enum, nullable=False),
        sa.Column("direction", direction_enum, nullable=False),
        sa.Column("status", status_enum, nullable=False),
        sa.Column("contact_id", UUID(as_uuid=True), nullable=True),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("error_details", sa.Text(), nullable=True),
        sa.Column("records_processed", sa.Integer(), server_default=sa.text("0"), nullable=False),
        _created_at(),
    )
    op.create_index("ix_sync_logs_provider_created", "sync_logs", ["provider", "created_at"])

    # ── tag_routes ──────────────────────────────────────────────────────

    op.create_table(
        "tag_routes",
        _uuid_pk(),
        sa.Column("provider", provider_enum, nullable=False, server_default="NOTION"),
        sa.Column(
            "tag_id",
            UUID(as_uuid=True),
            sa.ForeignKey("tags.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("container_id", sa.String(255), nullable=False),
        sa.Column("container_name", sa.String(300), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("provider", "tag_id", name="uq_route_provider_tag"),
        sa.UniqueConstraint("provider", "container_id", name="uq_route_provider_container"),
    )
    op.create_index(
        "uq_route_provider_catch_all",
        "tag_routes",
        ["provider"],
        unique=True,
        postgresql_where=sa.text("tag_id IS NULL"),
    )

    # ── integration_configs ─────────────────────────────────────────────

    op.create_table(
        "integration_configs",
        sa.Column("provider", provider_enum, primary_key=True),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("settings", sa.JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("credentials_encrypted", sa.Text(), nullable=True),
        sa.Column("connected_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_table("integration_configs")
    op.drop_index("uq_route_provider_catch_all", table_name="tag_routes")
    op.drop_table("tag_routes")
    op.drop_index("ix_sync_logs_provider_created", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_index("ix_link_contact_provider", table_name="external_contact_links")
    op.drop_table("external_contact_links")
    op.drop_table("contact_tags")
    op.drop_table("tags")
    op.drop_table("contacts")

    bind = op.get_bind()
    for name in ("sync_status", "sync_direction", "sync_provider"):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
