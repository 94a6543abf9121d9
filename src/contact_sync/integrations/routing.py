"""Tag-routing table: which tagged contacts sync into which external container.

RouteService owns TagRoute rows:
- A tag (or the null "all contacts" tag) maps to at most one container per provider
- A container is targeted by at most one route per provider
- Deleting a route also drops the links stored against its container
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.contact_sync.contacts.repository import ContactRepository
from src.contact_sync.integrations.errors import (
    RouteConflictError,
    RouteNotFoundError,
    TagNotFoundError,
)
from src.contact_sync.integrations.links import LinkStore
from src.contact_sync.integrations.models import TagRouteModel
from src.contact_sync.integrations.schemas import (
    SyncProvider,
    TagRouteCreate,
    TagRouteRead,
    TagRouteUpdate,
)

logger = structlog.get_logger(__name__)


def _model_to_route(model: TagRouteModel) -> TagRouteRead:
    return TagRouteRead(
        id=str(model.id),
        provider=model.provider,
        tag_id=str(model.tag_id) if model.tag_id else None,
        container_id=model.container_id,
        container_name=model.container_name,
        enabled=model.enabled,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class RouteService:
    """CRUD and lookup over the tag-routing table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        contacts: Used to verify that a route's tag exists.
        links: Used to drop a container's links when its route is deleted.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
        contacts: ContactRepository,
        links: LinkStore,
    ) -> None:
        self._session_factory = session_factory
        self._contacts = contacts
        self._links = links

    async def list_routes(
        self,
        provider: SyncProvider | None = None,
        enabled_only: bool = False,
    ) -> list[TagRouteRead]:
        async for session in self._session_factory():
            stmt = select(TagRouteModel).order_by(TagRouteModel.created_at)
            if provider is not None:
                stmt = stmt.where(TagRouteModel.provider == provider)
            if enabled_only:
                stmt = stmt.where(TagRouteModel.enabled.is_(True))
            result = await session.execute(stmt)
            return [_model_to_route(m) for m in result.scalars().all()]

    async def get_route(self, route_id: str) -> TagRouteRead:
        """Fetch one route.

        Raises:
            RouteNotFoundError: No route with this id.
        """
        async for session in self._session_factory():
            model = await session.get(TagRouteModel, uuid.UUID(route_id))
            if model is None:
                raise RouteNotFoundError(route_id)
            return _model_to_route(model)

    async def create_route(self, data: TagRouteCreate) -> TagRouteRead:
        """Create a route after checking tag existence and uniqueness.

        Raises:
            TagNotFoundError: tag_id does not reference an existing tag.
            RouteConflictError: The tag or the container is already routed.
        """
        if data.tag_id is not None and await self._contacts.get_tag(data.tag_id) is None:
            raise TagNotFoundError(data.tag_id)

        for existing in await self.list_routes(provider=data.provider):
            if existing.tag_id == data.tag_id:
                target = "All contacts" if data.tag_id is None else f"Tag {data.tag_id}"
                raise RouteConflictError(
                    f"{target} is already mapped to {existing.container_name}"
                )
            if existing.container_id == data.container_id:
                raise RouteConflictError(
                    f"Container {data.container_id} is already mapped"
                )

        async for session in self._session_factory():
            model = TagRouteModel(
                provider=data.provider,
                tag_id=uuid.UUID(data.tag_id) if data.tag_id else None,
                container_id=data.container_id,
                container_name=data.container_name,
                enabled=data.enabled,
            )
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise RouteConflictError("Route already exists") from exc
            await session.refresh(model)
            logger.info(
                "routes.created",
                route_id=str(model.id),
                provider=data.provider.value,
                tag_id=data.tag_id,
                container_id=data.container_id,
            )
            return _model_to_route(model)

    async def update_route(self, route_id: str, data: TagRouteUpdate) -> TagRouteRead:
        async for session in self._session_factory():
            model = await session.get(TagRouteModel, uuid.UUID(route_id))
            if model is None:
                raise RouteNotFoundError(route_id)
            if data.container_name is not None:
                model.container_name = data.container_name
            if data.enabled is not None:
                model.enabled = data.enabled
            await session.commit()
            await session.refresh(model)
            return _model_to_route(model)

    async def enable_route(self, route_id: str) -> TagRouteRead:
        return await self.update_route(route_id, TagRouteUpdate(enabled=True))

    async def disable_route(self, route_id: str) -> TagRouteRead:
        return await self.update_route(route_id, TagRouteUpdate(enabled=False))

    async def delete_route(self, route_id: str) -> None:
        """Delete a route and the links that point into its container.

        External records are left in place; only local mappings go.
        """
        route = await self.get_route(route_id)
        removed = await self._links.delete_for_container(route.provider, route.container_id)

        async for session in self._session_factory():
            model = await session.get(TagRouteModel, uuid.UUID(route_id))
            if model is not None:
                await session.delete(model)
                await session.commit()

        logger.info(
            "routes.deleted",
            route_id=route_id,
            container_id=route.container_id,
            links_removed=removed,
        )

    async def matching_routes(
        self, provider: SyncProvider, tag_ids: list[str]
    ) -> list[TagRouteRead]:
        """Enabled routes that apply to a contact carrying tag_ids.

        A route with a null tag applies to every contact.
        """
        tags = set(tag_ids)
        return [
            route
            for route in await self.list_routes(provider=provider, enabled_only=True)
            if route.tag_id is None or route.tag_id in tags
        ]
