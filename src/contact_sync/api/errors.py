"""Maps the sync engine's exception hierarchy onto HTTP responses."""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.contact_sync.integrations.errors import SyncEngineError

logger = structlog.get_logger(__name__)


async def sync_engine_error_handler(request: Request, exc: SyncEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("api.sync_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SyncEngineError, sync_engine_error_handler)
