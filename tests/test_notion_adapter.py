"""Notion adapter tests.

The Notion AsyncClient is replaced with MagicMock/AsyncMock sub-mocks; no
real Notion client call is made.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.contact_sync.contacts.schemas import ContactEmail, ContactRead
from src.contact_sync.integrations.errors import (
    ExternalRecordNotFoundError,
    PermanentAdapterError,
    TransientAdapterError,
)
from src.contact_sync.integrations.providers.notion import NotionAdapter


# -- Fixtures -----------------------------------------------------------------


def _make_mock_client() -> MagicMock:
    client = MagicMock()
    client.databases = MagicMock()
    client.databases.query = AsyncMock()
    client.databases.retrieve = AsyncMock()
    client.databases.update = AsyncMock()
    client.pages = MagicMock()
    client.pages.create = AsyncMock()
    client.pages.update = AsyncMock()
    client.pages.retrieve = AsyncMock()
    return client


def _make_adapter(client: MagicMock, default_database_id: str | None = "db-default") -> NotionAdapter:
    adapter = NotionAdapter(
        token="secret_test",
        default_database_id=default_database_id,
        timeout_seconds=2.0,
        max_retries=2,
        retry_backoff=0,
    )
    adapter._client = client
    return adapter


def _page(page_id: str, name: str, database_id: str = "db-1", **extra) -> dict:
    return {
        "id": page_id,
        "parent": {"type": "database_id", "database_id": database_id},
        "url": f"https://notion.so/{page_id}",
        "last_edited_time": "2026-03-01T10:00:00.000Z",
        "archived": False,
        "properties": {
            "Name": {"title": [{"plain_text": name}]},
            "Email": {"email": "ada@example.com"},
            "Phone": {"phone_number": None},
            "Job Title": {"rich_text": [{"plain_text": "Analyst"}]},
        },
        **extra,
    }


def _contact() -> ContactRead:
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    return ContactRead(
        id="c-1",
        display_name="Ada Lovelace",
        emails=[ContactEmail(value="ada@example.com", primary=True)],
        job_title="Analyst",
        created_at=now,
        updated_at=now,
    )


# -- Tests --------------------------------------------------------------------


class TestNotionPush:
    async def test_create_in_container(self):
        client = _make_mock_client()
        client.pages.create.return_value = _page("page-1", "Ada Lovelace", database_id="db-1")
        adapter = _make_adapter(client)

        record = await adapter.push_contact(_contact(), None, "db-1")

        kwargs = client.pages.create.call_args.kwargs
        assert kwargs["parent"] == {"database_id": "db-1"}
        assert kwargs["properties"]["Name"]["title"][0]["text"]["content"] == "Ada Lovelace"
        assert record.external_id == "page-1"
        assert record.container == "db-1"
        assert record.last_modified == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    async def test_create_uses_default_database(self):
        client = _make_mock_client()
        client.pages.create.return_value = _page("page-1", "Ada", database_id="db-default")
        adapter = _make_adapter(client)

        await adapter.push_contact(_contact())

        assert client.pages.create.call_args.kwargs["parent"] == {"database_id": "db-default"}

    async def test_create_without_any_database_fails(self):
        client = _make_mock_client()
        adapter = _make_adapter(client, default_database_id=None)

        with pytest.raises(PermanentAdapterError):
            await adapter.push_contact(_contact())
        client.pages.create.assert_not_awaited()

    async def test_update_existing_page(self):
        client = _make_mock_client()
        client.pages.update.return_value = _page("page-1", "Ada Lovelace")
        adapter = _make_adapter(client)

        record = await adapter.push_contact(_contact(), "page-1", "db-1")

        assert client.pages.update.call_args.kwargs["page_id"] == "page-1"
        client.pages.create.assert_not_awaited()
        assert record.contact.display_name == "Ada Lovelace"


class TestNotionPull:
    async def test_pull_maps_properties(self):
        client = _make_mock_client()
        client.pages.retrieve.return_value = _page("page-1", "Ada Lovelace")
        adapter = _make_adapter(client)

        record = await adapter.pull_contact("page-1")

        assert record.contact.display_name == "Ada Lovelace"
        assert record.contact.emails[0].value == "ada@example.com"
        assert record.contact.phones == []
        assert record.contact.job_title == "Analyst"
        # Properties the page lacks are not supplied
        assert record.contact.notes is None
        assert record.contact.addresses is None

    async def test_archived_page_reads_as_missing(self):
        client = _make_mock_client()
        client.pages.retrieve.return_value = _page("page-1", "Ada", archived=True)
        adapter = _make_adapter(client)

        with pytest.raises(ExternalRecordNotFoundError):
            await adapter.pull_contact("page-1")

    async def test_transport_error_is_retried_then_surfaced(self):
        client = _make_mock_client()
        client.pages.retrieve.side_effect = httpx.ConnectError("connection refused")
        adapter = _make_adapter(client)

        with pytest.raises(TransientAdapterError):
            await adapter.pull_contact("page-1")
        assert client.pages.retrieve.await_count == 2


class TestNotionListing:
    async def test_fetch_all_follows_cursor(self):
        client = _make_mock_client()
        client.databases.query.side_effect = [
            {"results": [_page("p1", "One")], "has_more": True, "next_cursor": "cur-2"},
            {
                "results": [_page("p2", "Two"), _page("p3", "Gone", archived=True)],
                "has_more": False,
                "next_cursor": None,
            },
        ]
        adapter = _make_adapter(client)

        records = [r async for r in adapter.fetch_all_contacts("db-1")]

        assert [r.external_id for r in records] == ["p1", "p2"]
        second_call = client.databases.query.call_args_list[1].kwargs
        assert second_call["start_cursor"] == "cur-2"
        assert second_call["database_id"] == "db-1"

    async def test_listing_without_database_fails(self):
        adapter = _make_adapter(_make_mock_client(), default_database_id=None)
        with pytest.raises(PermanentAdapterError):
            await adapter.fetch_page()


class TestNotionSchema:
    async def test_adds_only_missing_properties(self):
        client = _make_mock_client()
        client.databases.retrieve.return_value = {
            "properties": {"Name": {"title": {}}, "Email": {"email": {}}}
        }
        adapter = _make_adapter(client)

        added = await adapter.ensure_container_schema("db-1")

        assert added == ["Address", "Job Title", "Notes", "Phone"]
        sent = client.databases.update.call_args.kwargs["properties"]
        assert "Email" not in sent
        assert sent["Phone"] == {"phone_number": {}}

    async def test_complete_schema_is_untouched(self):
        client = _make_mock_client()
        client.databases.retrieve.return_value = {
            "properties": {
                name: {}
                for name in ("Name", "Email", "Phone", "Address", "Job Title", "Notes")
            }
        }
        adapter = _make_adapter(client)

        assert await adapter.ensure_container_schema("db-1") == []
        client.databases.update.assert_not_awaited()


class TestNotionDelete:
    async def test_delete_archives_page(self):
        client = _make_mock_client()
        adapter = _make_adapter(client)

        await adapter.delete_contact("page-1")

        client.pages.update.assert_awaited_once_with(page_id="page-1", archived=True)
