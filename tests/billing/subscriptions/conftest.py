"""
Pytest fixtures for the subscription and webhook HTTP endpoints.
"""

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from creatorhub.platform.auth.core import JWTService


@pytest.fixture
def app(session_factory, gateway, billing_config) -> FastAPI:
    """Application wired to the per-test database and in-memory gateway."""
    from creatorhub.platform.billing.subscriptions.dependencies import (
        get_billing_settings,
        get_db_session_factory,
    )
    from creatorhub.platform.main import create_app

    app = create_app()
    # ASGITransport does not run the lifespan
    app.state.processor_gateway = gateway
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_billing_settings] = lambda: billing_config
    return app


@pytest.fixture
def auth_headers(subscriber) -> dict[str, str]:
    token = JWTService().create_access_token(subscriber.subscriber_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers(other_subscriber) -> dict[str, str]:
    token = JWTService().create_access_token(other_subscriber.subscriber_id)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def async_client(app: FastAPI):
    """Async HTTP client against the full application."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
