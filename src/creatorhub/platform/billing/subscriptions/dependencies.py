"""
Subscription service dependencies.

Services are cheap to build per request: they share the process-wide session
factory and the processor gateway created at application startup.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creatorhub.platform.billing.config import BillingConfig, get_billing_config
from creatorhub.platform.billing.exceptions import BillingConfigurationError
from creatorhub.platform.billing.processors.base import ProcessorGateway
from creatorhub.platform.billing.subscriptions.adapter import CheckoutAdapter
from creatorhub.platform.billing.subscriptions.intents import SubscriptionIntentService
from creatorhub.platform.billing.subscriptions.lifecycle import SubscriptionLifecycleService
from creatorhub.platform.billing.subscriptions.pricing import SqlCreatorPricing
from creatorhub.platform.billing.subscriptions.queries import SubscriptionQueryService
from creatorhub.platform.billing.subscriptions.reconciliation import ReconciliationService
from creatorhub.platform.billing.subscriptions.store import SubscriptionStore
from creatorhub.platform.db import get_session_factory


def get_billing_settings() -> BillingConfig:
    """Dependency returning the billing configuration."""
    return get_billing_config()


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency returning the shared session factory."""
    return get_session_factory()


def get_processor_gateway(request: Request) -> ProcessorGateway:
    """Dependency returning the gateway created in the application lifespan."""
    gateway = getattr(request.app.state, "processor_gateway", None)
    if gateway is None:
        raise BillingConfigurationError(
            "Processor gateway is not initialised",
            config_key="billing.processor",
            recovery_hint="Start the application through create_app() so the lifespan runs",
        )
    return gateway


SessionFactoryDep = Annotated[
    async_sessionmaker[AsyncSession], Depends(get_db_session_factory)
]
GatewayDep = Annotated[ProcessorGateway, Depends(get_processor_gateway)]
ConfigDep = Annotated[BillingConfig, Depends(get_billing_settings)]


def get_subscription_store(session_factory: SessionFactoryDep) -> SubscriptionStore:
    """Dependency to get SubscriptionStore instance."""
    return SubscriptionStore(session_factory)


def get_creator_pricing(session_factory: SessionFactoryDep) -> SqlCreatorPricing:
    """Dependency to get the creator pricing lookup."""
    return SqlCreatorPricing(session_factory)


def get_intent_service(
    store: Annotated[SubscriptionStore, Depends(get_subscription_store)],
    pricing: Annotated[SqlCreatorPricing, Depends(get_creator_pricing)],
    gateway: GatewayDep,
    config: ConfigDep,
) -> SubscriptionIntentService:
    """Dependency to get SubscriptionIntentService instance."""
    return SubscriptionIntentService(store, gateway, pricing, config)


def get_reconciliation_service(
    store: Annotated[SubscriptionStore, Depends(get_subscription_store)],
    intents: Annotated[SubscriptionIntentService, Depends(get_intent_service)],
    pricing: Annotated[SqlCreatorPricing, Depends(get_creator_pricing)],
    gateway: GatewayDep,
    config: ConfigDep,
) -> ReconciliationService:
    """Dependency to get ReconciliationService instance."""
    return ReconciliationService(store, gateway, intents, config, pricing=pricing)


def get_lifecycle_service(
    store: Annotated[SubscriptionStore, Depends(get_subscription_store)],
    gateway: GatewayDep,
    config: ConfigDep,
) -> SubscriptionLifecycleService:
    """Dependency to get SubscriptionLifecycleService instance."""
    return SubscriptionLifecycleService(store, gateway, config)


def get_query_service(
    store: Annotated[SubscriptionStore, Depends(get_subscription_store)],
) -> SubscriptionQueryService:
    """Dependency to get SubscriptionQueryService instance."""
    return SubscriptionQueryService(store)


def get_checkout_adapter(
    intents: Annotated[SubscriptionIntentService, Depends(get_intent_service)],
    reconciliation: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
) -> CheckoutAdapter:
    """Dependency to get CheckoutAdapter instance."""
    return CheckoutAdapter(intents, reconciliation)


__all__ = [
    "get_billing_settings",
    "get_db_session_factory",
    "get_processor_gateway",
    "get_subscription_store",
    "get_creator_pricing",
    "get_intent_service",
    "get_reconciliation_service",
    "get_lifecycle_service",
    "get_query_service",
    "get_checkout_adapter",
]
