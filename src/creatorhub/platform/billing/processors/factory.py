"""Processor gateway selection from billing configuration."""

import structlog

from creatorhub.platform.billing.config import BillingConfig, get_billing_config
from creatorhub.platform.billing.exceptions import BillingConfigurationError
from creatorhub.platform.billing.processors.base import ProcessorGateway
from creatorhub.platform.billing.processors.memory import InMemoryProcessorGateway
from creatorhub.platform.billing.processors.paypal import PayPalGateway
from creatorhub.platform.settings import get_settings

logger = structlog.get_logger(__name__)


def create_processor_gateway(config: BillingConfig | None = None) -> ProcessorGateway:
    """
    Build the configured processor gateway.

    The in-memory gateway is only available outside production; a production
    deployment without PayPal credentials fails loudly instead of silently
    accepting subscriptions nobody is billed for.
    """
    config = config or get_billing_config()
    settings = get_settings()

    if config.processor == "paypal":
        if config.paypal is None:
            if settings.is_production:
                raise BillingConfigurationError(
                    "PayPal credentials are required in production",
                    config_key="paypal.client_id",
                )
            logger.warning("PayPal not configured, using in-memory processor gateway")
            return InMemoryProcessorGateway()
        return PayPalGateway(config.paypal, timeout=config.processor_timeout_seconds)

    if config.processor == "memory":
        if settings.is_production:
            raise BillingConfigurationError(
                "The in-memory processor gateway cannot be used in production",
                config_key="billing.processor",
            )
        return InMemoryProcessorGateway()

    raise BillingConfigurationError(
        f"Unknown processor gateway: {config.processor}",
        config_key="billing.processor",
        recovery_hint="Set BILLING__PROCESSOR to 'paypal' or 'memory'",
    )
