"""Google Contacts and Outlook adapter tests.

Google: pure person <-> contact conversion plus list_recently_modified with
the People API request execution patched out.
Outlook: conversion plus the Graph calls over an httpx.MockTransport.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from src.contact_sync.contacts.schemas import (
    ContactAddress,
    ContactEmail,
    ContactPhone,
    ContactRead,
)
from src.contact_sync.integrations.errors import (
    ExternalRecordNotFoundError,
    TransientAdapterError,
)
from src.contact_sync.integrations.providers.google import (
    GoogleContactsAdapter,
    contact_to_person,
    person_to_record,
)
from src.contact_sync.integrations.providers.outlook import (
    GRAPH_BASE_URL,
    OutlookContactsAdapter,
    contact_to_graph,
    graph_to_record,
)


def _contact(**overrides) -> ContactRead:
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    fields = {
        "id": "c-1",
        "display_name": "Ada Lovelace",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "job_title": "Analyst",
        "notes": "Met at the Royal Society",
        "emails": [ContactEmail(value="ada@example.com", label="work", primary=True)],
        "phones": [
            ContactPhone(value="+1 555 0100", label="mobile"),
            ContactPhone(value="+1 555 0101", label="work"),
        ],
        "addresses": [ContactAddress(label="home", city="London", country="UK")],
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return ContactRead(**fields)


def _person(resource_name: str = "people/c1", updated: str | None = "2026-03-01T09:00:00Z") -> dict:
    return {
        "resourceName": resource_name,
        "etag": "%EgU=",
        "names": [{"displayName": "Ada Lovelace", "givenName": "Ada", "familyName": "Lovelace"}],
        "emailAddresses": [
            {"value": "ada@example.com", "type": "work", "metadata": {"primary": True}}
        ],
        "phoneNumbers": [{"value": "+1 555 0100"}],
        "organizations": [{"title": "Analyst"}],
        "metadata": {"sources": [{"type": "CONTACT", "updateTime": updated}]},
    }


# ── Google ───────────────────────────────────────────────────────────────────


class TestGoogleConversion:
    def test_person_to_record(self):
        record = person_to_record(_person())

        assert record.external_id == "people/c1"
        assert record.snapshot.etag == "%EgU="
        assert record.snapshot.source_type == "CONTACT"
        assert record.container is None
        assert record.last_modified == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        assert record.contact.display_name == "Ada Lovelace"
        assert record.contact.emails[0].primary is True
        assert record.contact.job_title == "Analyst"
        assert record.contact.addresses == []
        assert record.contact.notes is None

    def test_contact_to_person(self):
        body = contact_to_person(_contact())

        assert body["names"][0]["givenName"] == "Ada"
        assert body["emailAddresses"] == [{"value": "ada@example.com", "type": "work"}]
        assert body["organizations"] == [{"title": "Analyst"}]
        assert body["biographies"] == [{"value": "Met at the Royal Society"}]
        assert body["addresses"] == [{"type": "home", "city": "London", "country": "UK"}]

    def test_given_name_falls_back_to_display_name(self):
        body = contact_to_person(_contact(first_name=None, last_name=None))
        assert body["names"][0]["givenName"] == "Ada Lovelace"
        assert body["names"][0]["familyName"] == ""


class TestGoogleRecentlyModified:
    async def test_filters_by_window(self):
        adapter = GoogleContactsAdapter(
            service_account_info={}, delegated_user_email="sync@example.com", retry_backoff=0
        )
        now = datetime.now(timezone.utc)
        fresh = (now - timedelta(minutes=2)).isoformat()
        stale = (now - timedelta(hours=3)).isoformat()
        adapter._execute = AsyncMock(
            return_value={
                "connections": [
                    _person("people/fresh", fresh),
                    _person("people/stale", stale),
                    _person("people/undated", None),
                ]
            }
        )

        records = await adapter.list_recently_modified(timedelta(minutes=10))

        assert [r.external_id for r in records] == ["people/fresh", "people/undated"]


# ── Outlook ──────────────────────────────────────────────────────────────────


def _graph_item(item_id: str = "AAMk-1") -> dict:
    return {
        "id": item_id,
        "changeKey": "ck-1",
        "parentFolderId": "folder-1",
        "displayName": "Ada Lovelace",
        "givenName": "Ada",
        "surname": "Lovelace",
        "emailAddresses": [{"address": "ada@example.com", "name": "Ada"}],
        "businessPhones": ["+1 555 0101"],
        "homePhones": [],
        "mobilePhone": "+1 555 0100",
        "businessAddress": {},
        "homeAddress": {"city": "London", "countryOrRegion": "UK"},
        "jobTitle": "Analyst",
        "personalNotes": "",
        "lastModifiedDateTime": "2026-03-01T09:30:00Z",
    }


class TestOutlookConversion:
    def test_graph_to_record(self):
        record = graph_to_record(_graph_item())

        assert record.external_id == "AAMk-1"
        assert record.snapshot.change_key == "ck-1"
        assert record.contact.phones[0].value == "+1 555 0100"
        assert record.contact.phones[0].primary is True
        assert [p.label for p in record.contact.phones] == ["mobile", "business"]
        assert record.contact.addresses[0].formatted_value == "London, UK"
        assert record.contact.notes is None
        assert record.last_modified == datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)

    def test_contact_to_graph(self):
        body = contact_to_graph(_contact())

        assert body["mobilePhone"] == "+1 555 0100"
        assert body["businessPhones"] == ["+1 555 0101"]
        assert body["homePhones"] == []
        assert body["homeAddress"]["city"] == "London"
        assert body["businessAddress"] == {}
        assert body["emailAddresses"] == [{"address": "ada@example.com", "name": "Ada Lovelace"}]

    def test_at_most_three_emails(self):
        emails = [ContactEmail(value=f"a{i}@example.com") for i in range(5)]
        assert len(contact_to_graph(_contact(emails=emails))["emailAddresses"]) == 3

    def test_primary_email_always_sent(self):
        emails = [ContactEmail(value=f"a{i}@example.com", primary=i == 4) for i in range(5)]
        sent = contact_to_graph(_contact(emails=emails))["emailAddresses"]
        assert [e["address"] for e in sent] == [
            "a4@example.com",
            "a0@example.com",
            "a1@example.com",
        ]


class GraphStub:
    """Records requests and answers from a route table."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list[httpx.Response]] = {}

    def add(self, method: str, path: str, *responses: httpx.Response) -> None:
        self.routes[(method, path)] = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "login.microsoftonline.com":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        queue = self.routes[(request.method, request.url.path)]
        return queue.pop(0) if len(queue) > 1 else queue[0]


def _outlook(stub: GraphStub, max_retries: int = 1) -> OutlookContactsAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub), base_url=GRAPH_BASE_URL)
    return OutlookContactsAdapter(
        tenant_id="tenant",
        client_id="client",
        client_secret="secret",
        mailbox="sync@example.com",
        http_client=client,
        max_retries=max_retries,
        retry_backoff=0,
    )


CONTACTS_PATH = "/v1.0/users/sync@example.com/contacts"


class TestOutlookAdapter:
    async def test_create_contact(self):
        stub = GraphStub()
        stub.add("POST", CONTACTS_PATH, httpx.Response(201, json=_graph_item("AAMk-new")))
        adapter = _outlook(stub)

        record = await adapter.push_contact(_contact())

        assert record.external_id == "AAMk-new"
        graph_call = stub.requests[-1]
        assert graph_call.headers["Authorization"] == "Bearer tok"
        assert json.loads(graph_call.content)["displayName"] == "Ada Lovelace"

    async def test_token_is_cached(self):
        stub = GraphStub()
        stub.add("GET", f"{CONTACTS_PATH}/AAMk-1", httpx.Response(200, json=_graph_item()))
        adapter = _outlook(stub)

        await adapter.pull_contact("AAMk-1")
        await adapter.pull_contact("AAMk-1")

        token_calls = [r for r in stub.requests if r.url.host == "login.microsoftonline.com"]
        assert len(token_calls) == 1

    async def test_missing_record(self):
        stub = GraphStub()
        stub.add("GET", f"{CONTACTS_PATH}/gone", httpx.Response(404, json={"error": {}}))
        adapter = _outlook(stub)

        with pytest.raises(ExternalRecordNotFoundError):
            await adapter.pull_contact("gone")

    async def test_throttling_is_retried(self):
        stub = GraphStub()
        stub.add(
            "GET",
            f"{CONTACTS_PATH}/AAMk-1",
            httpx.Response(429, json={"error": {}}),
            httpx.Response(200, json=_graph_item()),
        )
        adapter = _outlook(stub, max_retries=3)

        record = await adapter.pull_contact("AAMk-1")

        assert record.external_id == "AAMk-1"

    async def test_throttling_exhausts_retries(self):
        stub = GraphStub()
        stub.add("GET", f"{CONTACTS_PATH}/AAMk-1", httpx.Response(503, json={"error": {}}))
        adapter = _outlook(stub, max_retries=2)

        with pytest.raises(TransientAdapterError):
            await adapter.pull_contact("AAMk-1")

        graph_calls = [r for r in stub.requests if r.url.host == "graph.microsoft.com"]
        assert len(graph_calls) == 2

    async def test_paging_follows_next_link(self):
        stub = GraphStub()
        next_link = f"{GRAPH_BASE_URL}/users/sync@example.com/contacts?$skip=1"
        stub.add(
            "GET",
            CONTACTS_PATH,
            httpx.Response(200, json={"value": [_graph_item("a")], "@odata.nextLink": next_link}),
            httpx.Response(200, json={"value": [_graph_item("b")]}),
        )
        adapter = _outlook(stub)

        records = [r async for r in adapter.fetch_all_contacts()]

        assert [r.external_id for r in records] == ["a", "b"]
