"""Inbound change notifications from Google and Microsoft Graph.

Both endpoints acknowledge immediately and only enqueue work; the sync
worker does the fetching and ingestion. Neither endpoint ever answers with
an error status, since providers disable endpoints that keep failing.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request, Response, status
from fastapi.responses import PlainTextResponse

from src.contact_sync.config import get_settings
from src.contact_sync.integrations.triggers.queue import SyncTask

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _enqueue(request: Request, task: SyncTask) -> bool:
    queue = getattr(request.app.state, "sync_task_queue", None)
    if queue is None:
        logger.warning("webhooks.queue_unavailable", kind=task.kind)
        return False
    try:
        await queue.enqueue(task)
    except Exception as exc:
        logger.error("webhooks.enqueue_failed", kind=task.kind, error=str(exc))
        return False
    return True


@router.post("/google")
async def google_webhook(request: Request) -> Response:
    """People API push notification. Carries no payload, only headers."""
    resource_state = request.headers.get("X-Goog-Resource-State")
    if resource_state == "sync":
        # Channel handshake sent once when a watch is created
        return Response(status_code=status.HTTP_200_OK)

    await _enqueue(request, SyncTask.google_changes())
    logger.info(
        "webhooks.google_received",
        channel_id=request.headers.get("X-Goog-Channel-ID"),
        resource_state=resource_state,
    )
    return Response(status_code=status.HTTP_200_OK)


@router.post("/outlook")
async def outlook_webhook(request: Request) -> Response:
    """Graph change notification, or the subscription validation handshake."""
    validation_token = request.query_params.get("validationToken")
    if validation_token:
        return PlainTextResponse(validation_token, status_code=status.HTTP_200_OK)

    try:
        payload: Any = await request.json()
    except ValueError:
        payload = None
    notifications = payload.get("value") if isinstance(payload, dict) else None
    if not isinstance(notifications, list):
        logger.warning("webhooks.outlook_invalid_body")
        return Response(status_code=status.HTTP_202_ACCEPTED)

    expected_state = get_settings().OUTLOOK_WEBHOOK_CLIENT_STATE
    enqueued = 0
    for notification in notifications:
        if not isinstance(notification, dict):
            continue
        if expected_state and notification.get("clientState") != expected_state:
            logger.warning(
                "webhooks.outlook_client_state_mismatch",
                subscription_id=notification.get("subscriptionId"),
            )
            continue
        resource = notification.get("resourceData")
        resource_id = resource.get("id") if isinstance(resource, dict) else None
        if not resource_id or not isinstance(resource_id, str):
            continue
        change_type = notification.get("changeType")
        task = SyncTask.outlook_notification(
            resource_id, change_type if isinstance(change_type, str) else None
        )
        if await _enqueue(request, task):
            enqueued += 1

    logger.info("webhooks.outlook_received", enqueued=enqueued)
    return Response(status_code=status.HTTP_202_ACCEPTED)
