"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
the sync engine services wired onto app.state, the background worker and
scheduler, and the v1 API router.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.contact_sync.api.errors import register_exception_handlers
from src.contact_sync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.contact_sync.api.v1.router import router as v1_router
from src.contact_sync.config import get_settings
from src.contact_sync.core.database import close_db, get_session, init_db
from src.contact_sync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.contact_sync.core.redis import close_redis, get_redis_pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, services and background jobs; tear down on shutdown."""
    import structlog

    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Sync engine services ────────────────────────────────────────────
    # Each block is failure-tolerant: a failed init leaves the matching
    # app.state attributes as None and endpoints answer 503.

    try:
        from src.contact_sync.contacts.repository import ContactRepository
        from src.contact_sync.integrations.config_store import IntegrationConfigStore
        from src.contact_sync.integrations.links import LinkStore
        from src.contact_sync.integrations.orchestrator import SyncOrchestrator
        from src.contact_sync.integrations.registry import AdapterRegistry
        from src.contact_sync.integrations.routing import RouteService
        from src.contact_sync.integrations.sync_log import SyncLogService

        contacts = ContactRepository(get_session)
        links = LinkStore(get_session)
        sync_log = SyncLogService(get_session)
        routes = RouteService(get_session, contacts, links)
        config_store = IntegrationConfigStore(get_session, settings.CREDENTIALS_SECRET_KEY)
        adapters = AdapterRegistry(config_store, settings)
        orchestrator = SyncOrchestrator(
            contacts=contacts,
            links=links,
            sync_log=sync_log,
            routes=routes,
            config_store=config_store,
            adapters=adapters,
        )

        app.state.contact_repository = contacts
        app.state.link_store = links
        app.state.sync_log = sync_log
        app.state.route_service = routes
        app.state.integration_config_store = config_store
        app.state.adapter_registry = adapters
        app.state.sync_orchestrator = orchestrator
        log.info("sync.services_initialized")
    except Exception:
        log.warning("sync.services_init_failed", exc_info=True)
        app.state.sync_orchestrator = None

    # ── Triggers: queue, worker, scheduler ──────────────────────────────

    try:
        from src.contact_sync.integrations.triggers.poller import ProviderPoller
        from src.contact_sync.integrations.triggers.queue import ContactSyncHook, SyncTaskQueue
        from src.contact_sync.integrations.triggers.scheduler import SyncScheduler
        from src.contact_sync.integrations.triggers.worker import SyncWorker

        redis = get_redis_pool()
        queue = SyncTaskQueue(redis)
        app.state.redis = redis
        app.state.sync_task_queue = queue
        app.state.contact_sync_hook = ContactSyncHook(
            queue, getattr(app.state, "sync_orchestrator", None)
        )

        if app.state.sync_orchestrator is not None:
            if settings.WORKER_ENABLED:
                worker = SyncWorker(
                    queue=queue,
                    orchestrator=orchestrator,
                    adapters=adapters,
                    config_store=config_store,
                    sync_log=sync_log,
                    settings=settings,
                )
                app.state.sync_worker = worker
                app.state.sync_worker_task = asyncio.create_task(worker.run())
                log.info("sync.worker_started")

            if settings.SCHEDULER_ENABLED:
                poller = ProviderPoller(
                    redis=redis,
                    orchestrator=orchestrator,
                    routes=routes,
                    config_store=config_store,
                    adapters=adapters,
                    sync_log=sync_log,
                    settings=settings,
                )
                scheduler = SyncScheduler(
                    redis=redis,
                    orchestrator=orchestrator,
                    poller=poller,
                    config_store=config_store,
                    settings=settings,
                )
                scheduler.start()
                app.state.sync_scheduler = scheduler
    except Exception:
        log.warning("sync.triggers_init_failed", exc_info=True)
        app.state.sync_task_queue = None

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    scheduler = getattr(app.state, "sync_scheduler", None)
    if scheduler is not None:
        scheduler.stop()

    worker_task = getattr(app.state, "sync_worker_task", None)
    if worker_task is not None and not worker_task.done():
        app.state.sync_worker.stop()
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
        log.info("sync.worker_stopped")

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Contact Sync API",
        version="0.1.0",
        description="Bidirectional contact sync with Google Contacts, Outlook and Notion",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    register_exception_handlers(app)
    app.include_router(v1_router, prefix="/api/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
