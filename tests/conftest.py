"""
Global pytest configuration and fixtures for the subscription service tests.

Every test gets its own SQLite file database, an in-memory processor gateway
and an adjustable clock.
"""

import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("OBSERVABILITY__OTEL_ENABLED", "false")
os.environ.setdefault("BILLING__PROCESSOR", "memory")
os.environ.setdefault("BILLING__INTENT_SWEEP_INTERVAL_SECONDS", "0")
os.environ.setdefault("JWT__SECRET_KEY", "test-secret-key-with-enough-entropy")

from creatorhub.platform.auth.context import SubscriberContext  # noqa: E402
from creatorhub.platform.auth.core import reset_jwt_service  # noqa: E402
from creatorhub.platform.billing.config import BillingConfig, set_billing_config  # noqa: E402
from creatorhub.platform.billing.metrics import set_subscription_metrics  # noqa: E402
from creatorhub.platform.billing.processors.memory import InMemoryProcessorGateway  # noqa: E402
from creatorhub.platform.billing.subscriptions.intents import (  # noqa: E402
    SubscriptionIntentService,
)
from creatorhub.platform.billing.subscriptions.lifecycle import (  # noqa: E402
    SubscriptionLifecycleService,
)
from creatorhub.platform.billing.subscriptions.models import Subscription  # noqa: E402
from creatorhub.platform.billing.subscriptions.pricing import SqlCreatorPricing  # noqa: E402
from creatorhub.platform.billing.subscriptions.queries import (  # noqa: E402
    SubscriptionQueryService,
)
from creatorhub.platform.billing.subscriptions.reconciliation import (  # noqa: E402
    ReconciliationService,
)
from creatorhub.platform.billing.subscriptions.store import SubscriptionStore  # noqa: E402
from creatorhub.platform.db import create_all_tables_async, create_session_factory  # noqa: E402
from creatorhub.platform.events import Event, get_event_bus, reset_event_bus  # noqa: E402
from creatorhub.platform.settings import reset_settings  # noqa: E402

CREATOR_ID = "creator-1"
CREATOR_PRICE = Decimal("9.99")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def reset_globals():
    """Drop cached singletons between tests."""
    reset_settings()
    set_billing_config(None)
    set_subscription_metrics(None)
    reset_event_bus()
    reset_jwt_service()
    yield
    reset_settings()
    set_billing_config(None)
    set_subscription_metrics(None)
    reset_event_bus()
    reset_jwt_service()


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """File-based SQLite so concurrent sessions see each other's commits."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'subscriptions.db'}",
        connect_args={"timeout": 30},
    )
    await create_all_tables_async(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
def billing_config() -> BillingConfig:
    return BillingConfig(
        processor="memory",
        processor_timeout_seconds=2.0,
        intent_ttl_minutes=15,
        intent_sweep_interval_seconds=0,
        max_conflict_retries=20,
        conflict_retry_wait_seconds=0.01,
        operation_claim_timeout_seconds=60,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> InMemoryProcessorGateway:
    return InMemoryProcessorGateway()


@pytest.fixture
def store(session_factory) -> SubscriptionStore:
    return SubscriptionStore(session_factory)


@pytest_asyncio.fixture
async def pricing(session_factory) -> SqlCreatorPricing:
    pricing = SqlCreatorPricing(session_factory)
    await pricing.set_price(CREATOR_ID, CREATOR_PRICE, currency="USD", plan_ref="P-PLAN-1")
    return pricing


@pytest.fixture
def intent_service(store, gateway, pricing, billing_config, clock) -> SubscriptionIntentService:
    return SubscriptionIntentService(store, gateway, pricing, billing_config, clock=clock)


@pytest.fixture
def reconciliation_service(
    store, gateway, intent_service, pricing, billing_config, clock
) -> ReconciliationService:
    return ReconciliationService(
        store, gateway, intent_service, billing_config, pricing=pricing, clock=clock
    )


@pytest.fixture
def lifecycle_service(store, gateway, billing_config, clock) -> SubscriptionLifecycleService:
    return SubscriptionLifecycleService(store, gateway, billing_config, clock=clock)


@pytest.fixture
def query_service(store) -> SubscriptionQueryService:
    return SubscriptionQueryService(store)


@pytest.fixture
def creator_id() -> str:
    return CREATOR_ID


@pytest.fixture
def subscriber() -> SubscriberContext:
    return SubscriberContext(subscriber_id="subscriber-1", correlation_id="test-correlation")


@pytest.fixture
def other_subscriber() -> SubscriberContext:
    return SubscriberContext(subscriber_id="subscriber-2")


@pytest.fixture
def published_events() -> list[Event]:
    """Every event published on the process-wide bus during the test."""
    events: list[Event] = []

    async def _capture(event: Event) -> None:
        events.append(event)

    get_event_bus().subscribe("*", _capture)
    return events


@pytest_asyncio.fixture
async def active_subscription(
    intent_service, reconciliation_service, gateway, subscriber
) -> Subscription:
    """A subscription taken through intent, approval and verification."""
    intent = await intent_service.create_intent(subscriber, CREATOR_ID, "9.99", "USD")
    gateway.approve(intent.processor_pending_id)
    return await reconciliation_service.verify_and_commit(intent.processor_pending_id, subscriber)
