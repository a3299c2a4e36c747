"""
Main FastAPI application entry point for the CreatorHub subscription service.
"""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from creatorhub.platform.billing.config import get_billing_config
from creatorhub.platform.billing.middleware import setup_billing_middleware
from creatorhub.platform.billing.processors import create_processor_gateway
from creatorhub.platform.billing.subscriptions.intents import SubscriptionIntentService
from creatorhub.platform.billing.subscriptions.pricing import SqlCreatorPricing
from creatorhub.platform.billing.subscriptions.router import router as subscriptions_router
from creatorhub.platform.billing.subscriptions.store import SubscriptionStore
from creatorhub.platform.billing.subscriptions.webhooks import router as webhooks_router
from creatorhub.platform.db import (
    check_database_health,
    create_all_tables_async,
    dispose_engine,
    get_session_factory,
)
from creatorhub.platform.logging import setup_logging
from creatorhub.platform.settings import get_settings
from creatorhub.platform.telemetry import setup_telemetry

logger = structlog.get_logger(__name__)


async def _sweep_expired_intents(intents: SubscriptionIntentService, interval: int) -> None:
    """Periodically delete expired intents. TTL is enforced on read regardless."""
    while True:
        await asyncio.sleep(interval)
        try:
            await intents.sweep_expired()
        except Exception as e:
            logger.warning("intents.sweep.failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle events."""
    settings = get_settings()
    config = get_billing_config()

    logger.info(
        "service.startup.begin",
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    )

    if settings.database.auto_create_tables:
        await create_all_tables_async()
        logger.info("database.tables.ensured")

    gateway = create_processor_gateway(config)
    app.state.processor_gateway = gateway
    logger.info("processor.gateway.ready", gateway=type(gateway).__name__)

    sweeper: asyncio.Task[None] | None = None
    if config.intent_sweep_interval_seconds > 0:
        session_factory = get_session_factory()
        intents = SubscriptionIntentService(
            SubscriptionStore(session_factory), gateway, SqlCreatorPricing(session_factory), config
        )
        sweeper = asyncio.create_task(
            _sweep_expired_intents(intents, config.intent_sweep_interval_seconds),
            name="intent-sweeper",
        )

    logger.info("service.startup.complete")

    yield

    logger.info("service.shutdown.begin")
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await gateway.close()
    await dispose_engine()
    logger.info("service.shutdown.complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging()

    app = FastAPI(
        title="CreatorHub Subscriptions",
        description="Creator subscription lifecycle and processor reconciliation",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    # Instrument before the middleware stack is built
    setup_telemetry(app)

    setup_billing_middleware(app)

    # Configure CORS last so it wraps responses generated by upstream middleware.
    if settings.cors.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors.origins,
            allow_credentials=settings.cors.credentials,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(subscriptions_router, prefix="/api/v1", tags=["Subscriptions"])
    app.include_router(webhooks_router, prefix="/api/v1", tags=["Webhooks"])

    # Health check endpoint (public - no auth required)
    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint for monitoring."""
        database_ok = await check_database_health()
        return {
            "status": "healthy" if database_ok else "degraded",
            "database": "ok" if database_ok else "unavailable",
            "version": settings.app_version,
            "environment": settings.environment.value,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    return app


# For development server
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "creatorhub.platform.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.observability.log_level.value.lower(),
    )
