"""Per-provider integration configuration with encrypted credentials.

Each provider has one row: an enabled flag, non-secret settings (delegated
mailbox, default Notion database, ...) and a credential record. The
credential record is a JSON document encrypted as a compact JWE
(dir + A256GCM) with a key derived from CREDENTIALS_SECRET_KEY.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from jose import jwe
from jose.constants import ALGORITHMS
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.contact_sync.integrations.errors import (
    MissingCredentialsError,
    ProviderDisabledError,
)
from src.contact_sync.integrations.models import IntegrationConfigModel
from src.contact_sync.integrations.schemas import (
    IntegrationConfigRead,
    IntegrationConfigUpdate,
    SyncProvider,
)

logger = structlog.get_logger(__name__)


# ── Credential encryption ───────────────────────────────────────────────────


def _derive_key(secret: str) -> bytes:
    """32-byte content key for A256GCM."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt_credentials(credentials: dict[str, Any], secret: str) -> str:
    token = jwe.encrypt(
        json.dumps(credentials),
        _derive_key(secret),
        algorithm=ALGORITHMS.DIR,
        encryption=ALGORITHMS.A256GCM,
    )
    return token.decode("ascii") if isinstance(token, bytes) else token


def decrypt_credentials(token: str, secret: str) -> dict[str, Any]:
    return json.loads(jwe.decrypt(token, _derive_key(secret)))


def _model_to_config(model: IntegrationConfigModel) -> IntegrationConfigRead:
    return IntegrationConfigRead(
        provider=model.provider,
        enabled=model.enabled,
        settings=model.settings or {},
        connected=model.credentials_encrypted is not None,
        connected_at=model.connected_at,
        updated_at=model.updated_at,
    )


# ── Store ───────────────────────────────────────────────────────────────────


class IntegrationConfigStore:
    """Reads and writes IntegrationConfig rows.

    A provider without a row behaves as disabled, unconnected and with
    empty settings.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        secret_key: Secret the credential encryption key is derived from.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
        secret_key: str,
    ) -> None:
        self._session_factory = session_factory
        self._secret_key = secret_key

    async def get(self, provider: SyncProvider) -> IntegrationConfigRead:
        async for session in self._session_factory():
            model = await session.get(IntegrationConfigModel, provider)
            if model is None:
                return IntegrationConfigRead(provider=provider)
            return _model_to_config(model)

    async def list_configs(self) -> list[IntegrationConfigRead]:
        """One entry per known provider, including unconfigured ones."""
        async for session in self._session_factory():
            result = await session.execute(select(IntegrationConfigModel))
            stored = {m.provider: _model_to_config(m) for m in result.scalars().all()}
            return [
                stored.get(provider, IntegrationConfigRead(provider=provider))
                for provider in SyncProvider
            ]

    async def is_enabled(self, provider: SyncProvider) -> bool:
        return (await self.get(provider)).enabled

    async def require_enabled(self, provider: SyncProvider) -> IntegrationConfigRead:
        """Return the config, or raise ProviderDisabledError."""
        config = await self.get(provider)
        if not config.enabled:
            raise ProviderDisabledError(provider.value)
        return config

    async def _mutate(
        self,
        provider: SyncProvider,
        apply: Callable[[IntegrationConfigModel], None],
    ) -> IntegrationConfigRead:
        async for session in self._session_factory():
            model = await session.get(IntegrationConfigModel, provider)
            if model is None:
                model = IntegrationConfigModel(provider=provider, enabled=False, settings={})
                session.add(model)
            apply(model)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_config(model)

    async def upsert(
        self, provider: SyncProvider, data: IntegrationConfigUpdate
    ) -> IntegrationConfigRead:
        def apply(model: IntegrationConfigModel) -> None:
            if data.enabled is not None:
                model.enabled = data.enabled
            if data.settings is not None:
                model.settings = data.settings

        config = await self._mutate(provider, apply)
        logger.info("integrations.config_updated", provider=provider.value, enabled=config.enabled)
        return config

    async def enable(self, provider: SyncProvider) -> IntegrationConfigRead:
        return await self.upsert(provider, IntegrationConfigUpdate(enabled=True))

    async def disable(self, provider: SyncProvider) -> IntegrationConfigRead:
        return await self.upsert(provider, IntegrationConfigUpdate(enabled=False))

    async def connect(
        self, provider: SyncProvider, credentials: dict[str, Any]
    ) -> IntegrationConfigRead:
        """Store (or replace) the provider's service credentials."""
        token = encrypt_credentials(credentials, self._secret_key)

        def apply(model: IntegrationConfigModel) -> None:
            model.credentials_encrypted = token
            model.connected_at = datetime.now(timezone.utc)

        config = await self._mutate(provider, apply)
        logger.info("integrations.connected", provider=provider.value)
        return config

    async def revoke(self, provider: SyncProvider) -> IntegrationConfigRead:
        """Drop stored credentials and disable the provider."""

        def apply(model: IntegrationConfigModel) -> None:
            model.credentials_encrypted = None
            model.connected_at = None
            model.enabled = False

        config = await self._mutate(provider, apply)
        logger.info("integrations.revoked", provider=provider.value)
        return config

    async def get_credentials(self, provider: SyncProvider) -> dict[str, Any]:
        """Decrypt the stored credential record.

        Raises:
            MissingCredentialsError: Provider was never connected or was revoked.
        """
        async for session in self._session_factory():
            model = await session.get(IntegrationConfigModel, provider)
            if model is None or model.credentials_encrypted is None:
                raise MissingCredentialsError(provider.value)
            return decrypt_credentials(model.credentials_encrypted, self._secret_key)
