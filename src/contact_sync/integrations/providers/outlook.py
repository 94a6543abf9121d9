"""Outlook contacts adapter over Microsoft Graph.

Uses an app-only token (OAuth2 client credentials) scoped to one mailbox's
contacts at /users/{mailbox}/contacts. Tokens are cached in memory until
shortly before expiry; refresh is serialized with an asyncio.Lock.
Paging follows @odata.nextLink, which doubles as the restart cursor.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from src.contact_sync.contacts.schemas import (
    ContactAddress,
    ContactEmail,
    ContactPhone,
    ContactRead,
    representable_entries,
)
from src.contact_sync.integrations.adapter import ProviderAdapter, error_for_status
from src.contact_sync.integrations.errors import (
    AdapterError,
    PermanentAdapterError,
    TransientAdapterError,
)
from src.contact_sync.integrations.schemas import (
    PROVIDER_LIST_CAPACITY,
    ContactProjection,
    ExternalPage,
    ExternalRecord,
    OutlookSnapshot,
    SyncProvider,
)

logger = structlog.get_logger(__name__)

# Graph stores at most three email addresses per contact
_EMAIL_CAPACITY = PROVIDER_LIST_CAPACITY[SyncProvider.OUTLOOK]["emails"]

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
PAGE_SIZE = 100
TOKEN_REFRESH_MARGIN_SECONDS = 60
SUBSCRIPTION_LIFETIME = timedelta(days=2)

SELECT_FIELDS = ",".join(
    [
        "id",
        "changeKey",
        "parentFolderId",
        "displayName",
        "givenName",
        "surname",
        "emailAddresses",
        "businessPhones",
        "homePhones",
        "mobilePhone",
        "businessAddress",
        "homeAddress",
        "jobTitle",
        "personalNotes",
        "lastModifiedDateTime",
    ]
)


# ── Graph contact <-> contact conversion ───────────────────────────────────


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _graph_address(data: dict[str, Any] | None, label: str) -> ContactAddress | None:
    if not data or not any(data.values()):
        return None
    parts = [
        data.get("street"),
        data.get("city"),
        data.get("state"),
        data.get("postalCode"),
        data.get("countryOrRegion"),
    ]
    return ContactAddress(
        label=label,
        formatted_value=", ".join(p for p in parts if p) or None,
        street=data.get("street"),
        city=data.get("city"),
        state=data.get("state"),
        postal_code=data.get("postalCode"),
        country=data.get("countryOrRegion"),
    )


def graph_to_record(item: dict[str, Any]) -> ExternalRecord:
    """Convert a Graph contact resource into an ExternalRecord."""
    phones: list[ContactPhone] = []
    if item.get("mobilePhone"):
        phones.append(ContactPhone(value=item["mobilePhone"], label="mobile"))
    phones.extend(ContactPhone(value=p, label="business") for p in item.get("businessPhones") or [])
    phones.extend(ContactPhone(value=p, label="home") for p in item.get("homePhones") or [])
    if phones:
        phones[0].primary = True

    emails = [
        ContactEmail(value=e["address"])
        for e in item.get("emailAddresses") or []
        if e.get("address")
    ]
    if emails:
        emails[0].primary = True

    addresses = [
        a
        for a in (
            _graph_address(item.get("businessAddress"), "business"),
            _graph_address(item.get("homeAddress"), "home"),
        )
        if a is not None
    ]
    if addresses:
        addresses[0].primary = True

    return ExternalRecord(
        external_id=item["id"],
        contact=ContactProjection(
            display_name=item.get("displayName") or None,
            first_name=item.get("givenName") or None,
            last_name=item.get("surname") or None,
            job_title=item.get("jobTitle") or None,
            notes=item.get("personalNotes") or None,
            emails=emails,
            phones=phones,
            addresses=addresses,
        ),
        snapshot=OutlookSnapshot(
            change_key=item.get("changeKey"),
            parent_folder_id=item.get("parentFolderId"),
        ),
        last_modified=_parse_time(item.get("lastModifiedDateTime")),
    )


def _address_body(address: ContactAddress | None) -> dict[str, Any]:
    if address is None:
        return {}
    return {
        "street": address.street or address.formatted_value or "",
        "city": address.city or "",
        "state": address.state or "",
        "postalCode": address.postal_code or "",
        "countryOrRegion": address.country or "",
    }


def contact_to_graph(contact: ContactRead) -> dict[str, Any]:
    """Build a Graph contact body from a local contact."""
    mobile = next((p.value for p in contact.phones if p.label == "mobile"), None)
    home = [p.value for p in contact.phones if p.label == "home"]
    business = [p.value for p in contact.phones if p.label not in ("mobile", "home")]
    home_address = next((a for a in contact.addresses if a.label == "home"), None)
    business_address = next((a for a in contact.addresses if a.label != "home"), None)

    return {
        "givenName": contact.first_name or contact.display_name,
        "surname": contact.last_name or "",
        "displayName": contact.display_name,
        "emailAddresses": [
            {"address": e.value, "name": contact.display_name}
            for e in representable_entries(contact.emails, _EMAIL_CAPACITY)
        ],
        "businessPhones": business,
        "homePhones": home,
        "mobilePhone": mobile,
        "businessAddress": _address_body(business_address),
        "homeAddress": _address_body(home_address),
        "jobTitle": contact.job_title,
        "personalNotes": contact.notes,
    }


# ── Adapter ─────────────────────────────────────────────────────────────────


class OutlookContactsAdapter(ProviderAdapter):
    """Outlook contacts of one mailbox via Microsoft Graph.

    Args:
        tenant_id: Entra ID (Azure AD) tenant.
        client_id: App registration client ID.
        client_secret: App registration secret.
        mailbox: User principal name or id whose contacts are synced.
        http_client: Optional preconfigured httpx.AsyncClient (tests).
    """

    provider = SyncProvider.OUTLOOK

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        mailbox: str,
        http_client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._mailbox = mailbox
        self._http = http_client or httpx.AsyncClient(base_url=GRAPH_BASE_URL)
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def _contacts_path(self) -> str:
        return f"/users/{self._mailbox}/contacts"

    async def _get_token(self) -> str:
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            response = await self._http.post(
                TOKEN_URL.format(tenant_id=self._tenant_id),
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "scope": GRAPH_SCOPE,
                },
            )
            response.raise_for_status()
            payload = response.json()
            self._token = payload["access_token"]
            self._token_expires_at = (
                time.monotonic()
                + int(payload.get("expires_in", 3600))
                - TOKEN_REFRESH_MARGIN_SECONDS
            )
            logger.debug("outlook.token_refreshed", mailbox=self._mailbox)
            return self._token

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = await self._get_token()
        response = await self._http.request(
            method,
            url,
            headers={"Authorization": f"Bearer {token}"},
            **kwargs,
        )
        if response.status_code == 401:
            # Token revoked or rotated early; next attempt fetches a new one
            self._token = None
        response.raise_for_status()
        return response

    async def _push(
        self, contact: ContactRead, external_id: str | None, container: str | None
    ) -> ExternalRecord:
        body = contact_to_graph(contact)

        if external_id:
            response = await self._request(
                "PATCH", f"{self._contacts_path}/{external_id}", json=body
            )
            logger.info("outlook.contact_updated", contact_id=external_id)
        else:
            response = await self._request("POST", self._contacts_path, json=body)
            logger.info("outlook.contact_created", contact_id=response.json().get("id"))

        return graph_to_record(response.json())

    async def _pull(self, external_id: str) -> ExternalRecord:
        response = await self._request(
            "GET",
            f"{self._contacts_path}/{external_id}",
            params={"$select": SELECT_FIELDS},
        )
        return graph_to_record(response.json())

    async def _delete(self, external_id: str) -> None:
        await self._request("DELETE", f"{self._contacts_path}/{external_id}")
        logger.info("outlook.contact_deleted", contact_id=external_id)

    async def _fetch_page(self, container: str | None, cursor: str | None) -> ExternalPage:
        if cursor:
            response = await self._request("GET", cursor)
        else:
            response = await self._request(
                "GET",
                self._contacts_path,
                params={"$top": PAGE_SIZE, "$select": SELECT_FIELDS},
            )
        payload = response.json()
        return ExternalPage(
            records=[graph_to_record(item) for item in payload.get("value", [])],
            next_cursor=payload.get("@odata.nextLink"),
        )

    async def create_subscription(self, notification_url: str, client_state: str) -> dict[str, Any]:
        """Subscribe to created/updated/deleted notifications for the mailbox contacts.

        Graph subscriptions expire; callers renew by calling this again.
        """
        expiration = datetime.now(timezone.utc) + SUBSCRIPTION_LIFETIME

        async def _subscribe() -> dict[str, Any]:
            response = await self._request(
                "POST",
                "/subscriptions",
                json={
                    "changeType": "created,updated,deleted",
                    "notificationUrl": notification_url,
                    "resource": self._contacts_path,
                    "expirationDateTime": expiration.isoformat().replace("+00:00", "Z"),
                    "clientState": client_state,
                },
            )
            return response.json()

        subscription = await self._call("create_subscription", _subscribe)
        logger.info(
            "outlook.subscription_created",
            subscription_id=subscription.get("id"),
            expires=subscription.get("expirationDateTime"),
        )
        return subscription

    def _classify(self, exc: Exception, external_id: str | None) -> AdapterError:
        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            if status == 401:
                return TransientAdapterError(self.provider.value, "Graph token rejected")
            return error_for_status(self.provider, status, str(exc), external_id)
        if isinstance(exc, httpx.TransportError):
            return TransientAdapterError(self.provider.value, str(exc))
        return PermanentAdapterError(self.provider.value, str(exc))
