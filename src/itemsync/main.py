"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, lifespan
initialization of the sync engine components, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.itemsync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.itemsync.api.v1.router import router as v1_router
from src.itemsync.config import get_settings
from src.itemsync.core.monitoring import MetricsMiddleware, get_metrics_response
from src.itemsync.items.field_mapping import get_policy
from src.itemsync.items.inbound import ChangeEventReceiver
from src.itemsync.items.notifier import OutboundNotifier, WebhookTransport
from src.itemsync.items.store import build_store
from src.itemsync.items.upsert import UpsertResolver


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: configure logging and build the engine components."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    policy = get_policy(settings.RECONCILIATION_POLICY_VERSION)
    store = build_store(settings)

    app.state.store = store
    app.state.upsert_resolver = UpsertResolver(
        store=store,
        policy=policy,
        default_partition=settings.DEFAULT_PARTITION,
    )

    transport = WebhookTransport(
        url=settings.NOTIFIER_WEBHOOK_URL,
        secret=settings.NOTIFIER_WEBHOOK_SECRET,
        timeout=settings.NOTIFIER_TIMEOUT,
        user_agent=settings.NOTIFIER_USER_AGENT,
    )
    if not transport.configured:
        log.warning("startup.notifier_webhook_not_configured")
    app.state.notifier = OutboundNotifier(transport=transport, watch=policy.watch)

    app.state.receiver = ChangeEventReceiver(
        secret=settings.INBOUND_WEBHOOK_SECRET,
        supported_event_types=(policy.watch.event_type,),
    )

    log.info(
        "startup.complete",
        environment=settings.ENVIRONMENT.value,
        policy_version=policy.version,
        store_backend=settings.STORE_BACKEND.value,
    )

    yield

    log.info("shutdown.complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Item Sync API",
        version="0.1.0",
        description="Idempotent item upsert and change notification service",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
