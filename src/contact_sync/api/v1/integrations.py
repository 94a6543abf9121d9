"""REST API endpoints for provider integration settings.

Credentials are write-only: connect stores them encrypted and no endpoint
ever returns them.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.contact_sync.api.deps import get_adapter_registry, get_config_store
from src.contact_sync.config import get_settings
from src.contact_sync.integrations.config_store import IntegrationConfigStore
from src.contact_sync.integrations.registry import AdapterRegistry
from src.contact_sync.integrations.schemas import (
    IntegrationConfigRead,
    IntegrationConfigUpdate,
    SyncProvider,
)

router = APIRouter(prefix="/integrations", tags=["integrations"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class ConnectRequest(BaseModel):
    """Provider credentials.

    GOOGLE: {"service_account": {...service account JSON key...}}
    OUTLOOK: {"tenant_id": ..., "client_id": ..., "client_secret": ...}
    NOTION: {"token": ...}
    """

    credentials: dict[str, Any]


class SubscriptionRequest(BaseModel):
    notification_url: str


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=list[IntegrationConfigRead])
async def list_integrations(
    config_store: IntegrationConfigStore = Depends(get_config_store),
) -> list[IntegrationConfigRead]:
    return await config_store.list_configs()


@router.put("/{provider}", response_model=IntegrationConfigRead)
async def update_integration(
    provider: SyncProvider,
    body: IntegrationConfigUpdate,
    config_store: IntegrationConfigStore = Depends(get_config_store),
) -> IntegrationConfigRead:
    """Enable/disable a provider and replace its non-secret settings."""
    return await config_store.upsert(provider, body)


@router.post("/{provider}/connect", response_model=IntegrationConfigRead)
async def connect_integration(
    provider: SyncProvider,
    body: ConnectRequest,
    config_store: IntegrationConfigStore = Depends(get_config_store),
) -> IntegrationConfigRead:
    return await config_store.connect(provider, body.credentials)


@router.post("/{provider}/revoke", response_model=IntegrationConfigRead)
async def revoke_integration(
    provider: SyncProvider,
    config_store: IntegrationConfigStore = Depends(get_config_store),
) -> IntegrationConfigRead:
    """Drop stored credentials and disable the provider."""
    return await config_store.revoke(provider)


@router.post("/outlook/subscription")
async def create_outlook_subscription(
    body: SubscriptionRequest,
    config_store: IntegrationConfigStore = Depends(get_config_store),
    adapters: AdapterRegistry = Depends(get_adapter_registry),
) -> dict[str, Any]:
    """Create (or renew) the Graph change-notification subscription."""
    settings = get_settings()
    if not settings.OUTLOOK_WEBHOOK_CLIENT_STATE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="OUTLOOK_WEBHOOK_CLIENT_STATE is not configured",
        )
    await config_store.require_enabled(SyncProvider.OUTLOOK)
    adapter = await adapters.get(SyncProvider.OUTLOOK)
    subscription = await adapter.create_subscription(
        body.notification_url, settings.OUTLOOK_WEBHOOK_CLIENT_STATE
    )
    return {
        "id": subscription.get("id"),
        "expiration_date_time": subscription.get("expirationDateTime"),
    }
