"""Tests for link snapshot serialization and watermark advancement."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from src.contact_sync.integrations.links import build_external_data, next_watermark
from src.contact_sync.integrations.schemas import (
    ContactProjection,
    ExternalRecord,
    LinkRead,
    NotionSnapshot,
    SyncProvider,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(last_modified: datetime | None) -> ExternalRecord:
    return ExternalRecord(
        external_id="page-1",
        contact=ContactProjection(display_name="Ada"),
        snapshot=NotionSnapshot(database_id="db-1", url="https://notion.so/page-1"),
        last_modified=last_modified,
    )


class TestNextWatermark:
    def test_defaults_to_now(self):
        assert next_watermark(None, now=NOW) == NOW
        assert next_watermark(_record(None), now=NOW) == NOW

    def test_never_behind_external_modification(self):
        ahead = NOW + timedelta(seconds=3)
        assert next_watermark(_record(ahead), now=NOW) == ahead

    def test_older_modification_keeps_now(self):
        assert next_watermark(_record(NOW - timedelta(hours=1)), now=NOW) == NOW


class TestBuildExternalData:
    def test_layout(self):
        data = build_external_data(_record(NOW), "db-1")

        assert data["container"] == "db-1"
        assert data["snapshot"]["provider"] == "NOTION"
        assert data["snapshot"]["database_id"] == "db-1"
        assert data["contact"] == {"display_name": "Ada"}
        assert data["last_modified"] == NOW.isoformat()

    def test_without_record(self):
        assert build_external_data(None, None) == {"container": None}

    def test_container_read_back_from_link(self):
        link = LinkRead(
            id="l-1",
            contact_id="c-1",
            provider=SyncProvider.NOTION,
            external_id="page-1",
            external_data=build_external_data(_record(None), "db-1"),
        )
        assert link.container == "db-1"
