"""Payment processor gateways."""

from creatorhub.platform.billing.processors.base import (
    PendingSubscription,
    ProcessorGateway,
    ProcessorStatus,
    ProcessorSubscription,
)
from creatorhub.platform.billing.processors.factory import create_processor_gateway
from creatorhub.platform.billing.processors.memory import InMemoryProcessorGateway
from creatorhub.platform.billing.processors.paypal import PayPalGateway

__all__ = [
    "PendingSubscription",
    "ProcessorGateway",
    "ProcessorStatus",
    "ProcessorSubscription",
    "InMemoryProcessorGateway",
    "PayPalGateway",
    "create_processor_gateway",
]
