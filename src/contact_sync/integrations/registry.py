"""Adapter registry: builds provider adapters from stored integration config.

Adapters are cached per provider and rebuilt when the provider's config row
changes (new credentials, new settings).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog

from src.contact_sync.config import Settings
from src.contact_sync.integrations.adapter import ProviderAdapter
from src.contact_sync.integrations.config_store import IntegrationConfigStore
from src.contact_sync.integrations.errors import ConfigurationError
from src.contact_sync.integrations.providers import (
    GoogleContactsAdapter,
    NotionAdapter,
    OutlookContactsAdapter,
)
from src.contact_sync.integrations.schemas import SyncProvider

logger = structlog.get_logger(__name__)


def _require(source: dict[str, Any], key: str, provider: SyncProvider) -> Any:
    value = source.get(key)
    if not value:
        raise ConfigurationError(f"{provider.value} integration is missing '{key}'")
    return value


class AdapterRegistry:
    """Resolves a ProviderAdapter for each provider.

    Args:
        config_store: Source of provider settings and decrypted credentials.
        settings: Application settings (timeouts, retry budget).
    """

    def __init__(self, config_store: IntegrationConfigStore, settings: Settings) -> None:
        self._config_store = config_store
        self._settings = settings
        self._cache: dict[SyncProvider, tuple[datetime | None, ProviderAdapter]] = {}

    async def get(self, provider: SyncProvider) -> ProviderAdapter:
        """Return the adapter for a provider, building it if needed.

        Raises:
            MissingCredentialsError: Provider has no stored credentials.
            ConfigurationError: A required setting or credential field is missing.
        """
        config = await self._config_store.get(provider)
        cached = self._cache.get(provider)
        if cached is not None and cached[0] == config.updated_at:
            return cached[1]

        credentials = await self._config_store.get_credentials(provider)
        adapter = self._build(provider, config.settings, credentials)
        self._cache[provider] = (config.updated_at, adapter)
        logger.info("registry.adapter_built", provider=provider.value)
        return adapter

    def _build(
        self,
        provider: SyncProvider,
        settings: dict[str, Any],
        credentials: dict[str, Any],
    ) -> ProviderAdapter:
        common: dict[str, Any] = {
            "timeout_seconds": self._settings.ADAPTER_TIMEOUT_SECONDS,
            "max_retries": self._settings.ADAPTER_MAX_RETRIES,
        }

        if provider == SyncProvider.GOOGLE:
            return GoogleContactsAdapter(
                service_account_info=_require(credentials, "service_account", provider),
                delegated_user_email=_require(settings, "delegated_user_email", provider),
                **common,
            )
        if provider == SyncProvider.OUTLOOK:
            return OutlookContactsAdapter(
                tenant_id=_require(credentials, "tenant_id", provider),
                client_id=_require(credentials, "client_id", provider),
                client_secret=_require(credentials, "client_secret", provider),
                mailbox=_require(settings, "mailbox", provider),
                **common,
            )
        if provider == SyncProvider.NOTION:
            return NotionAdapter(
                token=_require(credentials, "token", provider),
                default_database_id=settings.get("default_database_id"),
                **common,
            )
        raise ConfigurationError(f"Unsupported provider {provider}")
