"""Google Contacts adapter over the People API v1.

Authenticates with a service account and domain-wide delegation
(with_subject) to the mailbox whose contacts are synced, so no
interactive user token is involved. The googleapiclient is synchronous;
every request is executed in a worker thread via asyncio.to_thread.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from src.contact_sync.contacts.schemas import (
    ContactAddress,
    ContactEmail,
    ContactPhone,
    ContactRead,
)
from src.contact_sync.integrations.adapter import ProviderAdapter, error_for_status
from src.contact_sync.integrations.errors import (
    AdapterError,
    PermanentAdapterError,
    TransientAdapterError,
)
from src.contact_sync.integrations.schemas import (
    ContactProjection,
    ExternalPage,
    ExternalRecord,
    GoogleSnapshot,
    SyncProvider,
)

logger = structlog.get_logger(__name__)

CONTACTS_SCOPES = ["https://www.googleapis.com/auth/contacts"]

PERSON_FIELDS = "names,emailAddresses,phoneNumbers,addresses,organizations,biographies,metadata"
UPDATE_PERSON_FIELDS = "names,emailAddresses,phoneNumbers,addresses,organizations,biographies"
PAGE_SIZE = 100
RECENT_PAGE_SIZE = 50


# ── Person <-> contact conversion ──────────────────────────────────────────


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _is_primary(entry: dict[str, Any]) -> bool:
    return bool((entry.get("metadata") or {}).get("primary"))


def person_to_record(person: dict[str, Any]) -> ExternalRecord:
    """Convert a People API person resource into an ExternalRecord."""
    name = (person.get("names") or [{}])[0]
    organization = (person.get("organizations") or [{}])[0]
    biography = (person.get("biographies") or [{}])[0]
    sources = (person.get("metadata") or {}).get("sources") or [{}]

    projection = ContactProjection(
        display_name=name.get("displayName") or name.get("givenName"),
        first_name=name.get("givenName"),
        last_name=name.get("familyName"),
        job_title=organization.get("title"),
        notes=biography.get("value"),
        emails=[
            ContactEmail(value=e["value"], label=e.get("type"), primary=_is_primary(e))
            for e in person.get("emailAddresses") or []
            if e.get("value")
        ],
        phones=[
            ContactPhone(value=p["value"], label=p.get("type"), primary=_is_primary(p))
            for p in person.get("phoneNumbers") or []
            if p.get("value")
        ],
        addresses=[
            ContactAddress(
                label=a.get("type"),
                primary=_is_primary(a),
                formatted_value=a.get("formattedValue"),
                street=a.get("streetAddress"),
                city=a.get("city"),
                state=a.get("region"),
                postal_code=a.get("postalCode"),
                country=a.get("country"),
            )
            for a in person.get("addresses") or []
        ],
    )

    return ExternalRecord(
        external_id=person["resourceName"],
        contact=projection,
        snapshot=GoogleSnapshot(
            resource_name=person["resourceName"],
            etag=person.get("etag"),
            source_type=sources[0].get("type"),
        ),
        last_modified=_parse_time(sources[0].get("updateTime")),
    )


def contact_to_person(contact: ContactRead) -> dict[str, Any]:
    """Build a People API person body from a local contact."""
    return {
        "names": [
            {
                "givenName": contact.first_name or contact.display_name,
                "familyName": contact.last_name or "",
                "displayName": contact.display_name,
            }
        ],
        "emailAddresses": [
            {"value": e.value, "type": e.label} if e.label else {"value": e.value}
            for e in contact.emails
        ],
        "phoneNumbers": [
            {"value": p.value, "type": p.label} if p.label else {"value": p.value}
            for p in contact.phones
        ],
        "addresses": [
            {
                key: value
                for key, value in {
                    "type": a.label,
                    "formattedValue": a.formatted_value,
                    "streetAddress": a.street,
                    "city": a.city,
                    "region": a.state,
                    "postalCode": a.postal_code,
                    "country": a.country,
                }.items()
                if value
            }
            for a in contact.addresses
        ],
        "organizations": [{"title": contact.job_title}] if contact.job_title else [],
        "biographies": [{"value": contact.notes}] if contact.notes else [],
    }


# ── Adapter ─────────────────────────────────────────────────────────────────


class GoogleContactsAdapter(ProviderAdapter):
    """Google Contacts of one delegated Workspace mailbox.

    Args:
        service_account_info: Parsed service account JSON key.
        delegated_user_email: Mailbox the service account impersonates.
    """

    provider = SyncProvider.GOOGLE

    def __init__(
        self,
        service_account_info: dict[str, Any],
        delegated_user_email: str,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._service_account_info = service_account_info
        self._delegated_user_email = delegated_user_email
        self._service: Any = None

    def _get_service(self) -> Any:
        """Build (once) the People API client for the delegated mailbox."""
        if self._service is None:
            credentials = service_account.Credentials.from_service_account_info(
                self._service_account_info,
                scopes=CONTACTS_SCOPES,
            ).with_subject(self._delegated_user_email)
            self._service = build(
                "people", "v1", credentials=credentials, cache_discovery=False
            )
            logger.info("google.service_built", user_email=self._delegated_user_email)
        return self._service

    async def _execute(self, request_builder: Any) -> dict[str, Any]:
        """Build and execute a People API request in a worker thread."""

        def _run() -> dict[str, Any]:
            return request_builder(self._get_service()).execute()

        return await asyncio.to_thread(_run)

    async def _push(
        self, contact: ContactRead, external_id: str | None, container: str | None
    ) -> ExternalRecord:
        body = contact_to_person(contact)

        if external_id:
            existing = await self._execute(
                lambda s: s.people().get(resourceName=external_id, personFields="metadata")
            )
            person = await self._execute(
                lambda s: s.people().updateContact(
                    resourceName=external_id,
                    updatePersonFields=UPDATE_PERSON_FIELDS,
                    personFields=PERSON_FIELDS,
                    body={"etag": existing.get("etag"), **body},
                )
            )
            logger.info("google.contact_updated", resource_name=external_id)
            return person_to_record(person)

        person = await self._execute(
            lambda s: s.people().createContact(personFields=PERSON_FIELDS, body=body)
        )
        logger.info("google.contact_created", resource_name=person.get("resourceName"))
        return person_to_record(person)

    async def _pull(self, external_id: str) -> ExternalRecord:
        person = await self._execute(
            lambda s: s.people().get(resourceName=external_id, personFields=PERSON_FIELDS)
        )
        return person_to_record(person)

    async def _delete(self, external_id: str) -> None:
        await self._execute(lambda s: s.people().deleteContact(resourceName=external_id))
        logger.info("google.contact_deleted", resource_name=external_id)

    async def _fetch_page(self, container: str | None, cursor: str | None) -> ExternalPage:
        kwargs: dict[str, Any] = {
            "resourceName": "people/me",
            "pageSize": PAGE_SIZE,
            "personFields": PERSON_FIELDS,
        }
        if cursor:
            kwargs["pageToken"] = cursor

        response = await self._execute(lambda s: s.people().connections().list(**kwargs))
        return ExternalPage(
            records=[person_to_record(p) for p in response.get("connections", [])],
            next_cursor=response.get("nextPageToken") or None,
        )

    async def list_recently_modified(self, window: timedelta) -> list[ExternalRecord]:
        """Contacts modified within the trailing window, newest first.

        Push notifications from Google carry no payload, so the webhook
        trigger uses this to find what changed.
        """

        async def _list() -> dict[str, Any]:
            return await self._execute(
                lambda s: s.people().connections().list(
                    resourceName="people/me",
                    pageSize=RECENT_PAGE_SIZE,
                    personFields=PERSON_FIELDS,
                    sortOrder="LAST_MODIFIED_DESCENDING",
                )
            )

        response = await self._call("list_recently_modified", _list)
        cutoff = datetime.now(timezone.utc) - window
        records = []
        for person in response.get("connections", []):
            record = person_to_record(person)
            if record.last_modified is not None and record.last_modified < cutoff:
                continue
            records.append(record)
        return records

    def _classify(self, exc: Exception, external_id: str | None) -> AdapterError:
        if isinstance(exc, HttpError):
            status = getattr(exc, "status_code", None) or int(exc.resp.status)
            return error_for_status(self.provider, status, str(exc), external_id)
        if isinstance(exc, RefreshError):
            return PermanentAdapterError(self.provider.value, f"Credential refresh failed: {exc}")
        if isinstance(exc, (TransportError, ConnectionError, TimeoutError)):
            return TransientAdapterError(self.provider.value, str(exc))
        return PermanentAdapterError(self.provider.value, str(exc))
