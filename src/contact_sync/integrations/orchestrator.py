"""Sync orchestrator: decides, per (contact, provider, container), what to push or pull.

Entry points:
- on_contact_changed: outbound push after a local edit, plus route fan-out
- sync_single_contact: user-triggered push of one contact to one provider
- full_sync: reconcile every existing link of a provider
- full_sync_by_route: two-way reconciliation scoped to one routed container
- handle_inbound_change: ingest one external record (webhook, poll, route sync)
- on_contact_deleted / unlink: tear links down

Rules:
- No lock is held across adapter calls and no link state is cached between
  calls; every decision re-reads the link.
- Batch loops are sequential and swallow per-item errors into the SyncLog
  and error counters; single-item operations propagate.
- Configuration errors (provider disabled, missing credentials) are never
  written to the SyncLog.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from src.contact_sync.contacts.repository import ContactRepository
from src.contact_sync.contacts.schemas import ContactRead, merge_capped_entries
from src.contact_sync.core.monitoring import record_sync_operation, track_sync_batch
from src.contact_sync.integrations.adapter import ProviderAdapter
from src.contact_sync.integrations.config_store import IntegrationConfigStore
from src.contact_sync.integrations.conflict import resolve_conflict
from src.contact_sync.integrations.errors import (
    ConfigurationError,
    ContactNotFoundError,
    LinkConflictError,
    LinkNotFoundError,
    RouteDisabledError,
    SyncFailedError,
)
from src.contact_sync.integrations.links import LinkStore, next_watermark
from src.contact_sync.integrations.registry import AdapterRegistry
from src.contact_sync.integrations.routing import RouteService
from src.contact_sync.integrations.schemas import (
    PROVIDER_LIST_CAPACITY,
    ExternalRecord,
    FullSyncResult,
    InboundOutcome,
    LinkCreate,
    LinkRead,
    RouteContext,
    RouteSyncResult,
    SingleSyncResult,
    SyncAction,
    SyncDirection,
    SyncLogCreate,
    SyncProvider,
    SyncStatus,
)
from src.contact_sync.integrations.sync_log import SyncLogService

logger = structlog.get_logger(__name__)


class SyncOrchestrator:
    """Coordinates adapters, links, the resolver and the sync log.

    Args:
        contacts: Local contact CRUD.
        links: Link store.
        sync_log: Append-only audit log.
        routes: Tag-routing table.
        config_store: Per-provider enable flags.
        adapters: Provider adapter registry.
    """

    def __init__(
        self,
        contacts: ContactRepository,
        links: LinkStore,
        sync_log: SyncLogService,
        routes: RouteService,
        config_store: IntegrationConfigStore,
        adapters: AdapterRegistry,
    ) -> None:
        self._contacts = contacts
        self._links = links
        self._sync_log = sync_log
        self._routes = routes
        self._config_store = config_store
        self._adapters = adapters

    # ── Helpers ─────────────────────────────────────────────────────────────

    async def _log(
        self,
        provider: SyncProvider,
        direction: SyncDirection,
        status: SyncStatus,
        message: str,
        contact_id: str | None = None,
        external_id: str | None = None,
        error_details: str | None = None,
        records_processed: int = 0,
    ) -> None:
        await self._sync_log.create_log(
            SyncLogCreate(
                provider=provider,
                direction=direction,
                status=status,
                contact_id=contact_id,
                external_id=external_id,
                message=message,
                error_details=error_details,
                records_processed=records_processed,
            )
        )
        record_sync_operation(provider.value, direction.value, status.value)

    async def _enabled_adapters(self) -> dict[SyncProvider, ProviderAdapter]:
        """Adapters for every enabled, correctly configured provider."""
        adapters: dict[SyncProvider, ProviderAdapter] = {}
        for provider in SyncProvider:
            if not await self._config_store.is_enabled(provider):
                continue
            try:
                adapters[provider] = await self._adapters.get(provider)
            except ConfigurationError as exc:
                logger.warning(
                    "sync.provider_misconfigured",
                    provider=provider.value,
                    error=str(exc),
                )
        return adapters

    async def _apply_external(
        self,
        contact: ContactRead,
        provider: SyncProvider,
        record: ExternalRecord,
    ) -> None:
        """Overwrite local fields with those the external record supplies.

        For fields the provider caps, local entries it could never hold are
        kept alongside the pulled ones.
        """
        update = record.contact.to_update()
        for field, capacity in PROVIDER_LIST_CAPACITY.get(provider, {}).items():
            pulled = getattr(update, field)
            if pulled is not None:
                merged = merge_capped_entries(getattr(contact, field), pulled, capacity)
                setattr(update, field, merged)
        await self._contacts.update_contact(contact.id, update)

    async def _push_link(
        self,
        contact: ContactRead,
        link: LinkRead,
        adapter: ProviderAdapter,
    ) -> bool:
        """Push a contact over an existing link, recording the outcome."""
        try:
            record = await adapter.push_contact(contact, link.external_id, link.container)
            await self._links.record_success(link.id, record)
        except Exception as exc:
            await self._links.record_failure(link.id, str(exc))
            await self._log(
                link.provider,
                SyncDirection.OUTBOUND,
                SyncStatus.ERROR,
                "Failed to push contact",
                contact_id=contact.id,
                external_id=link.external_id,
                error_details=str(exc),
            )
            logger.error(
                "sync.outbound_error",
                provider=link.provider.value,
                contact_id=contact.id,
                link_id=link.id,
                error=str(exc),
            )
            return False

        await self._log(
            link.provider,
            SyncDirection.OUTBOUND,
            SyncStatus.SYNCED,
            "Contact pushed to external provider",
            contact_id=contact.id,
            external_id=record.external_id,
            records_processed=1,
        )
        return True

    async def _create_link_for(
        self,
        contact: ContactRead,
        adapter: ProviderAdapter,
        container: str | None,
        record: ExternalRecord,
    ) -> LinkRead:
        """Persist a link for a freshly pushed record; re-read on a lost race."""
        try:
            return await self._links.create_link(
                LinkCreate(
                    contact_id=contact.id,
                    provider=adapter.provider,
                    external_id=record.external_id,
                    container=container,
                    record=record,
                    sync_status=SyncStatus.SYNCED,
                    last_synced_at=next_watermark(record),
                )
            )
        except LinkConflictError:
            existing = await self._links.get_by_external_id(adapter.provider, record.external_id)
            if existing is None:
                raise
            return existing

    async def _push_new(
        self,
        contact: ContactRead,
        adapter: ProviderAdapter,
        container: str | None,
    ) -> LinkRead | None:
        """Create an external record for a contact that has no link there yet."""
        try:
            record = await adapter.push_contact(contact, None, container)
            link = await self._create_link_for(contact, adapter, container, record)
        except Exception as exc:
            await self._log(
                adapter.provider,
                SyncDirection.OUTBOUND,
                SyncStatus.ERROR,
                "Failed to push contact",
                contact_id=contact.id,
                error_details=str(exc),
            )
            logger.error(
                "sync.outbound_create_error",
                provider=adapter.provider.value,
                contact_id=contact.id,
                container=container,
                error=str(exc),
            )
            return None

        await self._log(
            adapter.provider,
            SyncDirection.OUTBOUND,
            SyncStatus.SYNCED,
            "Contact created in external provider",
            contact_id=contact.id,
            external_id=link.external_id,
            records_processed=1,
        )
        return link

    async def _reconcile_link(self, adapter: ProviderAdapter, link: LinkRead) -> SyncAction | None:
        """Pull, resolve and apply for one existing link.

        Returns:
            The action taken, or None if the linked contact is gone.
        """
        contact = await self._contacts.get_contact(link.contact_id)
        if contact is None:
            return None

        record = await adapter.pull_contact(link.external_id)
        resolution = resolve_conflict(contact.updated_at, record.last_modified, link.last_synced_at)

        if resolution.action == SyncAction.PUSH_LOCAL:
            pushed = await adapter.push_contact(contact, link.external_id, link.container)
            await self._links.record_success(link.id, pushed)
        elif resolution.action == SyncAction.PULL_EXTERNAL:
            await self._apply_external(contact, link.provider, record)
            await self._links.record_success(link.id, record)
        elif link.sync_status == SyncStatus.ERROR:
            # Pull succeeded and nothing changed; clear the earlier failure
            await self._links.record_success(link.id, record)

        logger.debug(
            "sync.link_reconciled",
            provider=link.provider.value,
            link_id=link.id,
            action=resolution.action.value,
            reason=resolution.reason,
        )
        return resolution.action

    # ── Outbound ────────────────────────────────────────────────────────────

    async def on_contact_changed(self, contact_id: str) -> None:
        """Push a locally edited contact everywhere it belongs.

        Every existing link of an enabled provider is re-pushed without a
        conflict check. For routing providers, each enabled route whose tag
        the contact carries (or whose tag is null) gets a new record if the
        contact has no link into that container yet. Removing a tag never
        retracts an earlier push.
        """
        contact = await self._contacts.get_contact(contact_id)
        if contact is None:
            logger.info("sync.contact_changed_missing", contact_id=contact_id)
            return

        adapters = await self._enabled_adapters()
        links = await self._links.list_for_contact(contact_id)

        pushed = 0
        failed = 0
        for link in links:
            adapter = adapters.get(link.provider)
            if adapter is None:
                continue
            if await self._push_link(contact, link, adapter):
                pushed += 1
            else:
                failed += 1

        for provider, adapter in adapters.items():
            if not adapter.supports_routing:
                continue
            linked_containers = {l.container for l in links if l.provider == provider}
            for route in await self._routes.matching_routes(provider, contact.tag_ids):
                if route.container_id in linked_containers:
                    continue
                link = await self._push_new(contact, adapter, route.container_id)
                if link is None:
                    failed += 1
                    continue
                linked_containers.add(route.container_id)
                pushed += 1

        logger.info(
            "sync.contact_changed_complete",
            contact_id=contact_id,
            pushed=pushed,
            errors=failed,
        )

    async def sync_single_contact(
        self, provider: SyncProvider, contact_id: str
    ) -> SingleSyncResult:
        """Push one contact to one provider, creating the link if needed.

        Raises:
            ProviderDisabledError: Provider is not enabled.
            ContactNotFoundError: Contact does not exist.
            SyncFailedError: The provider call failed; the failure is logged
                and recorded on the link first.
        """
        await self._config_store.require_enabled(provider)

        contact = await self._contacts.get_contact(contact_id)
        if contact is None:
            raise ContactNotFoundError(contact_id)

        adapter = await self._adapters.get(provider)
        container = adapter.default_container
        link = await self._links.find_link_for(contact_id, provider, container)

        try:
            record = await adapter.push_contact(
                contact, link.external_id if link else None, container
            )
            if link is not None:
                await self._links.record_success(link.id, record)
            else:
                link = await self._create_link_for(contact, adapter, container, record)
        except Exception as exc:
            if link is not None:
                await self._links.record_failure(link.id, str(exc))
            await self._log(
                provider,
                SyncDirection.OUTBOUND,
                SyncStatus.ERROR,
                "Failed to sync single contact",
                contact_id=contact_id,
                external_id=link.external_id if link else None,
                error_details=str(exc),
            )
            logger.error(
                "sync.single_contact_failed",
                provider=provider.value,
                contact_id=contact_id,
                error=str(exc),
            )
            raise SyncFailedError(str(exc)) from exc

        await self._log(
            provider,
            SyncDirection.OUTBOUND,
            SyncStatus.SYNCED,
            "Single contact synced",
            contact_id=contact_id,
            external_id=record.external_id,
            records_processed=1,
        )
        return SingleSyncResult(success=True, external_id=record.external_id)

    # ── Batch reconciliation ────────────────────────────────────────────────

    async def full_sync(self, provider: SyncProvider) -> FullSyncResult:
        """Reconcile every existing link of a provider, one pair at a time.

        Raises:
            ProviderDisabledError: Provider is not enabled.
        """
        await self._config_store.require_enabled(provider)
        adapter = await self._adapters.get(provider)

        processed = 0
        errors = 0

        async with track_sync_batch(provider.value, "full_sync"):
            for link in await self._links.list_for_provider(provider):
                try:
                    action = await self._reconcile_link(adapter, link)
                except Exception as exc:
                    errors += 1
                    await self._links.record_failure(link.id, str(exc))
                    await self._log(
                        provider,
                        SyncDirection.BOTH,
                        SyncStatus.ERROR,
                        "Failed to reconcile contact",
                        contact_id=link.contact_id,
                        external_id=link.external_id,
                        error_details=str(exc),
                    )
                    logger.error(
                        "sync.full_sync_item_error",
                        provider=provider.value,
                        link_id=link.id,
                        error=str(exc),
                    )
                    continue
                if action is not None:
                    processed += 1

        await self._log(
            provider,
            SyncDirection.BOTH,
            SyncStatus.ERROR if errors else SyncStatus.SYNCED,
            f"Full sync completed: {processed} processed, {errors} errors",
            error_details=f"{errors} contacts failed to sync" if errors else None,
            records_processed=processed,
        )
        logger.info(
            "sync.full_sync_complete",
            provider=provider.value,
            processed=processed,
            errors=errors,
        )
        return FullSyncResult(processed=processed, errors=errors)

    async def full_sync_by_route(self, route_id: str) -> RouteSyncResult:
        """Two-way reconciliation of one routed container.

        Inbound: every record in the container is ingested with the route's
        context (auto-tagging). Outbound: every local contact matching the
        route's tag that inbound did not already settle is pushed, creating
        links as needed.

        Raises:
            RouteNotFoundError: No such route.
            RouteDisabledError: Route is disabled.
            ProviderDisabledError: The route's provider is not enabled.
        """
        route = await self._routes.get_route(route_id)
        if not route.enabled:
            raise RouteDisabledError(route_id)
        await self._config_store.require_enabled(route.provider)
        adapter = await self._adapters.get(route.provider)

        result = RouteSyncResult()
        try:
            result.schema_fields_added = await adapter.ensure_container_schema(route.container_id)
        except Exception as exc:
            logger.warning(
                "sync.route_schema_check_failed",
                route_id=route_id,
                container_id=route.container_id,
                error=str(exc),
            )

        context = RouteContext.from_route(route)
        settled: set[str] = set()

        async with track_sync_batch(route.provider.value, "route_sync"):
            # Inbound pass
            try:
                async for record in adapter.fetch_all_contacts(route.container_id):
                    try:
                        outcome = await self.handle_inbound_change(
                            route.provider,
                            record.external_id,
                            record,
                            record.last_modified,
                            context,
                        )
                    except Exception as exc:
                        result.errors += 1
                        await self._log(
                            route.provider,
                            SyncDirection.INBOUND,
                            SyncStatus.ERROR,
                            "Failed to ingest external contact",
                            external_id=record.external_id,
                            error_details=str(exc),
                        )
                        continue
                    result.inbound += 1
                    if outcome.contact_id and outcome.action != SyncAction.PUSH_LOCAL.value:
                        settled.add(outcome.contact_id)
            except Exception as exc:
                result.errors += 1
                await self._log(
                    route.provider,
                    SyncDirection.INBOUND,
                    SyncStatus.ERROR,
                    f"Failed to list container {route.container_name}",
                    error_details=str(exc),
                )
                logger.error(
                    "sync.route_listing_failed",
                    route_id=route_id,
                    container_id=route.container_id,
                    error=str(exc),
                )

            # Outbound pass
            for contact in await self._contacts.list_contacts(tag_id=route.tag_id):
                if contact.id in settled:
                    continue
                link = await self._links.find_link_for(
                    contact.id, route.provider, route.container_id
                )
                if link is not None:
                    ok = await self._push_link(contact, link, adapter)
                else:
                    ok = await self._push_new(contact, adapter, route.container_id) is not None
                if ok:
                    result.outbound += 1
                else:
                    result.errors += 1

        result.processed = result.inbound + result.outbound
        await self._log(
            route.provider,
            SyncDirection.BOTH,
            SyncStatus.ERROR if result.errors else SyncStatus.SYNCED,
            (
                f"Route sync completed for {route.container_name}: "
                f"{result.processed} processed, {result.errors} errors"
            ),
            error_details=f"{result.errors} contacts failed to sync" if result.errors else None,
            records_processed=result.processed,
        )
        logger.info(
            "sync.route_sync_complete",
            route_id=route_id,
            inbound=result.inbound,
            outbound=result.outbound,
            errors=result.errors,
            schema_fields_added=result.schema_fields_added,
        )
        return result

    # ── Inbound ─────────────────────────────────────────────────────────────

    async def handle_inbound_change(
        self,
        provider: SyncProvider,
        external_id: str,
        record: ExternalRecord,
        last_modified: datetime | None = None,
        route_context: RouteContext | None = None,
    ) -> InboundOutcome:
        """Ingest one external record.

        Unknown records create a new local contact and link; known records go
        through the conflict resolver and are pulled only when the external
        side wins. Writes exactly one SyncLog entry.

        Args:
            provider: Provider the record came from.
            external_id: Provider identifier of the record.
            record: Record contents.
            last_modified: Provider modification time; overrides the record's own.
            route_context: Route the record arrived through, if any.
        """
        if last_modified is not None or record.external_id != external_id:
            record = record.model_copy(
                update={
                    "external_id": external_id,
                    "last_modified": last_modified or record.last_modified,
                }
            )

        link = await self._links.get_by_external_id(provider, external_id)
        if link is None:
            return await self._ingest_new(provider, record, route_context)
        return await self._ingest_existing(link, record, route_context)

    async def _ingest_new(
        self,
        provider: SyncProvider,
        record: ExternalRecord,
        route_context: RouteContext | None,
    ) -> InboundOutcome:
        tag_ids = [route_context.tag_id] if route_context and route_context.tag_id else []
        contact = await self._contacts.create_contact(record.contact.to_create(tag_ids))
        container = route_context.container_id if route_context else record.container

        try:
            link = await self._links.create_link(
                LinkCreate(
                    contact_id=contact.id,
                    provider=provider,
                    external_id=record.external_id,
                    container=container,
                    record=record,
                    sync_status=SyncStatus.SYNCED,
                    last_synced_at=next_watermark(record),
                )
            )
        except LinkConflictError:
            # A concurrent delivery linked this record first; drop our copy
            await self._contacts.delete_contact(contact.id)
            winner = await self._links.get_by_external_id(provider, record.external_id)
            if winner is None:
                raise
            logger.info(
                "sync.inbound_duplicate_discarded",
                provider=provider.value,
                external_id=record.external_id,
                discarded_contact_id=contact.id,
            )
            return await self._ingest_existing(winner, record, route_context)

        await self._log(
            provider,
            SyncDirection.INBOUND,
            SyncStatus.SYNCED,
            "New contact created from external source",
            contact_id=contact.id,
            external_id=record.external_id,
            records_processed=1,
        )
        return InboundOutcome(
            action="CREATED",
            reason="No link for external record",
            contact_id=contact.id,
            link_id=link.id,
        )

    async def _ingest_existing(
        self,
        link: LinkRead,
        record: ExternalRecord,
        route_context: RouteContext | None,
    ) -> InboundOutcome:
        contact = await self._contacts.get_contact(link.contact_id)
        if contact is None:
            await self._log(
                link.provider,
                SyncDirection.INBOUND,
                SyncStatus.SYNCED,
                "Skipped: linked contact no longer exists",
                external_id=record.external_id,
            )
            return InboundOutcome(
                action="SKIPPED",
                reason="Linked contact no longer exists",
                link_id=link.id,
            )

        if route_context and route_context.tag_id and route_context.tag_id not in contact.tag_ids:
            await self._contacts.add_tag(contact.id, route_context.tag_id)

        resolution = resolve_conflict(contact.updated_at, record.last_modified, link.last_synced_at)

        if resolution.action == SyncAction.PULL_EXTERNAL:
            await self._apply_external(contact, link.provider, record)
            await self._links.record_success(link.id, record)
            await self._log(
                link.provider,
                SyncDirection.INBOUND,
                SyncStatus.SYNCED,
                f"Contact updated from external source: {resolution.reason}",
                contact_id=contact.id,
                external_id=record.external_id,
                records_processed=1,
            )
        else:
            if resolution.action == SyncAction.NO_ACTION and link.sync_status == SyncStatus.ERROR:
                await self._links.record_success(link.id, record)
            await self._log(
                link.provider,
                SyncDirection.INBOUND,
                SyncStatus.SYNCED,
                f"No update needed: {resolution.reason}",
                contact_id=contact.id,
                external_id=record.external_id,
            )

        return InboundOutcome(
            action=resolution.action.value,
            reason=resolution.reason,
            contact_id=contact.id,
            link_id=link.id,
        )

    # ── Teardown ────────────────────────────────────────────────────────────

    async def on_contact_deleted(self, contact_id: str) -> None:
        """Best-effort delete of every external record, then drop the links.

        Called before the local row is removed. External failures are logged
        and never block the local delete.
        """
        adapters = await self._enabled_adapters()

        for link in await self._links.list_for_contact(contact_id):
            adapter = adapters.get(link.provider)
            if adapter is not None:
                try:
                    await adapter.delete_contact(link.external_id)
                    await self._log(
                        link.provider,
                        SyncDirection.OUTBOUND,
                        SyncStatus.SYNCED,
                        "Contact deleted from external provider",
                        contact_id=contact_id,
                        external_id=link.external_id,
                        records_processed=1,
                    )
                except Exception as exc:
                    await self._log(
                        link.provider,
                        SyncDirection.OUTBOUND,
                        SyncStatus.ERROR,
                        "Failed to delete external contact",
                        contact_id=contact_id,
                        external_id=link.external_id,
                        error_details=str(exc),
                    )
                    logger.warning(
                        "sync.external_delete_failed",
                        provider=link.provider.value,
                        external_id=link.external_id,
                        error=str(exc),
                    )
            await self._links.delete(link.id)

    async def unlink(self, link_id: str, delete_external: bool = False) -> None:
        """Remove a link, optionally deleting the external record first.

        Raises:
            LinkNotFoundError: No such link.
            SyncFailedError: delete_external was requested and failed.
        """
        link = await self._links.get_link(link_id)
        if link is None:
            raise LinkNotFoundError(link_id)

        if delete_external:
            adapter = await self._adapters.get(link.provider)
            try:
                await adapter.delete_contact(link.external_id)
            except Exception as exc:
                raise SyncFailedError(str(exc)) from exc

        await self._links.delete(link_id)
        logger.info(
            "sync.unlinked",
            link_id=link_id,
            provider=link.provider.value,
            deleted_external=delete_external,
        )
