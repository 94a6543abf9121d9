"""Exception hierarchy for the contact sync engine.

Every error raised by the sync layer derives from SyncEngineError and
carries the HTTP status the API surfaces for it:

- ConfigurationError (400): provider disabled, credentials missing, route disabled
- NotFoundError (404): contact, route, tag or link missing
- RouteConflictError / SyncInProgressError (409)
- AdapterError: provider call failed, split into transient and permanent
- LinkConflictError: lost the (provider, external_id) uniqueness race
- SyncFailedError (500): a single-contact sync failed at the provider
"""

from __future__ import annotations


class SyncEngineError(Exception):
    """Base class for all sync engine errors."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


# ── Configuration ───────────────────────────────────────────────────────────


class ConfigurationError(SyncEngineError):
    """Provider or route is not in a state that allows syncing."""

    status_code = 400


class ProviderDisabledError(ConfigurationError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} integration is not enabled")
        self.provider = provider


class MissingCredentialsError(ConfigurationError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"{provider} integration has no stored credentials")
        self.provider = provider


class RouteDisabledError(ConfigurationError):
    def __init__(self, route_id: str) -> None:
        super().__init__(f"Route {route_id} is disabled")
        self.route_id = route_id


# ── Lookups ─────────────────────────────────────────────────────────────────


class NotFoundError(SyncEngineError):
    status_code = 404


class ContactNotFoundError(NotFoundError):
    def __init__(self, contact_id: str) -> None:
        super().__init__(f"Contact {contact_id} not found")
        self.contact_id = contact_id


class RouteNotFoundError(NotFoundError):
    def __init__(self, route_id: str) -> None:
        super().__init__(f"Route {route_id} not found")
        self.route_id = route_id


class TagNotFoundError(NotFoundError):
    def __init__(self, tag_id: str) -> None:
        super().__init__(f"Tag {tag_id} not found")
        self.tag_id = tag_id


class LinkNotFoundError(NotFoundError):
    def __init__(self, link_id: str) -> None:
        super().__init__(f"Link {link_id} not found")
        self.link_id = link_id


# ── Conflicts ───────────────────────────────────────────────────────────────


class RouteConflictError(SyncEngineError):
    status_code = 409


class SyncInProgressError(SyncEngineError):
    status_code = 409

    def __init__(self, provider: str) -> None:
        super().__init__(f"A {provider} sync pass is already running")
        self.provider = provider


class LinkConflictError(SyncEngineError):
    """Another writer already linked this (provider, external_id)."""

    status_code = 409

    def __init__(self, provider: str, external_id: str) -> None:
        super().__init__(f"{provider} record {external_id} is already linked")
        self.provider = provider
        self.external_id = external_id


# ── Provider calls ──────────────────────────────────────────────────────────


class AdapterError(SyncEngineError):
    """A provider call failed.

    Attributes:
        provider: Provider the call was made against.
        transient: True when retrying the same call may succeed.
    """

    status_code = 502
    transient: bool = False

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class TransientAdapterError(AdapterError):
    """Timeout, throttling, 5xx or network failure."""

    transient = True


class PermanentAdapterError(AdapterError):
    """Rejected request, bad credentials or schema mismatch."""


class ExternalRecordNotFoundError(PermanentAdapterError):
    def __init__(self, provider: str, external_id: str) -> None:
        super().__init__(provider, f"{provider} record {external_id} not found")
        self.external_id = external_id


class SyncFailedError(SyncEngineError):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(f"Sync failed: {message}")
