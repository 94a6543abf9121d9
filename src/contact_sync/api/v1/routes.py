"""REST API endpoints for the tag-routing table.

A route sends contacts carrying a tag (or every contact, for a null tag)
to one external container, and auto-tags records that arrive from it.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from src.contact_sync.api.deps import get_orchestrator, get_route_service
from src.contact_sync.integrations.orchestrator import SyncOrchestrator
from src.contact_sync.integrations.routing import RouteService
from src.contact_sync.integrations.schemas import (
    RouteSyncResult,
    SyncProvider,
    TagRouteCreate,
    TagRouteRead,
    TagRouteUpdate,
)

router = APIRouter(prefix="/routes", tags=["routes"])


@router.get("", response_model=list[TagRouteRead])
async def list_routes(
    provider: SyncProvider | None = None,
    routes: RouteService = Depends(get_route_service),
) -> list[TagRouteRead]:
    return await routes.list_routes(provider)


@router.post("", response_model=TagRouteRead, status_code=status.HTTP_201_CREATED)
async def create_route(
    body: TagRouteCreate,
    routes: RouteService = Depends(get_route_service),
) -> TagRouteRead:
    """Create a route. 404 for an unknown tag, 409 if the tag or container is taken."""
    return await routes.create_route(body)


@router.get("/{route_id}", response_model=TagRouteRead)
async def get_route(
    route_id: str,
    routes: RouteService = Depends(get_route_service),
) -> TagRouteRead:
    return await routes.get_route(route_id)


@router.patch("/{route_id}", response_model=TagRouteRead)
async def update_route(
    route_id: str,
    body: TagRouteUpdate,
    routes: RouteService = Depends(get_route_service),
) -> TagRouteRead:
    return await routes.update_route(route_id, body)


@router.delete("/{route_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_route(
    route_id: str,
    routes: RouteService = Depends(get_route_service),
) -> Response:
    """Delete a route and the links stored against its container."""
    await routes.delete_route(route_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{route_id}/enable", response_model=TagRouteRead)
async def enable_route(
    route_id: str,
    routes: RouteService = Depends(get_route_service),
) -> TagRouteRead:
    return await routes.enable_route(route_id)


@router.post("/{route_id}/disable", response_model=TagRouteRead)
async def disable_route(
    route_id: str,
    routes: RouteService = Depends(get_route_service),
) -> TagRouteRead:
    return await routes.disable_route(route_id)


@router.post("/{route_id}/sync", response_model=RouteSyncResult)
async def sync_route(
    route_id: str,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> RouteSyncResult:
    """Two-way reconciliation of the route's container."""
    return await orchestrator.full_sync_by_route(route_id)
