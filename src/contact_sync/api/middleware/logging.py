"""Structured logging setup and request logging middleware.

Each request is logged once with method, path, status and duration. The
request id comes from an inbound X-Request-ID header when a proxy or provider
relay supplies one, otherwise a fresh UUID. It is bound to the structlog
context so sync events logged while serving the request carry it, and echoed
back on the response.

Health probes are logged at debug level. Provider webhook deliveries are
tagged with ``webhook_provider`` so they can be traced to the enqueued task.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.contact_sync.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_QUIET_PATHS = ("/api/v1/health", "/metrics")
_WEBHOOK_PREFIX = "/api/v1/webhooks/"


def configure_structlog() -> None:
    """Route structlog through stdlib logging at the configured level.

    JSON lines in production, coloured console output everywhere else.
    """
    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(message)s")

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.ENVIRONMENT == Environment.production
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _request_context(request: Request) -> dict[str, str]:
    path = request.url.path
    context = {
        "request_id": request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4()),
        "method": request.method,
        "path": path,
    }
    if path.startswith(_WEBHOOK_PREFIX):
        context["webhook_provider"] = path[len(_WEBHOOK_PREFIX):].split("/", 1)[0]
    return context


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 2)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with timing and propagates X-Request-ID."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        context = _request_context(request)
        start = time.monotonic()
        structlog.contextvars.bind_contextvars(**context)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("http.request_failed", status_code=500, duration_ms=_elapsed_ms(start))
            raise
        finally:
            structlog.contextvars.unbind_contextvars(*context)

        response.headers[REQUEST_ID_HEADER] = context["request_id"]

        if response.status_code >= 500:
            log = logger.error
        elif response.status_code >= 400:
            log = logger.warning
        elif context["path"].startswith(_QUIET_PATHS):
            log = logger.debug
        else:
            log = logger.info

        log(
            "http.request_completed",
            status_code=response.status_code,
            duration_ms=_elapsed_ms(start),
            **context,
        )
        return response
