"""
Billing module configuration
"""

from pydantic import BaseModel, ConfigDict, Field

from creatorhub.platform.settings import Settings, get_settings


class PayPalConfig(BaseModel):
    """PayPal configuration"""

    model_config = ConfigDict()

    client_id: str = Field(..., description="PayPal client ID")
    client_secret: str = Field(..., description="PayPal client secret")
    webhook_id: str | None = Field(None, description="PayPal webhook ID")
    environment: str = Field("sandbox", description="PayPal environment (sandbox/live)")
    default_plan_id: str | None = Field(None, description="Plan used when a price has none")
    brand_name: str = Field("CreatorHub", description="Brand shown on the approval page")
    return_url: str = Field(..., description="Approval return URL")
    cancel_url: str = Field(..., description="Approval cancel URL")

    @property
    def base_url(self) -> str:
        """REST API base URL for the configured environment."""
        if self.environment == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


class BillingConfig(BaseModel):
    """Subscription lifecycle configuration"""

    model_config = ConfigDict()

    paypal: PayPalConfig | None = None

    processor: str = Field("paypal", description="Processor gateway (paypal or memory)")
    processor_timeout_seconds: float = Field(10.0, description="Processor request timeout")

    default_currency: str = Field("USD", description="Default currency code")
    default_interval: str = Field("month", description="Default billing interval")
    payment_method: str = Field("paypal", description="Payment method recorded on subscriptions")

    intent_ttl_minutes: int = Field(15, description="Lifetime of an unapproved intent")
    intent_sweep_interval_seconds: int = Field(300, description="Expired intent sweep interval")
    intent_retention_minutes: int = Field(
        1440, description="Expired intents kept this long so late approvals can be matched"
    )

    max_conflict_retries: int = Field(3, description="Bounded optimistic retry attempts")
    conflict_retry_wait_seconds: float = Field(0.05, description="Initial conflict retry wait")
    operation_claim_timeout_seconds: int = Field(60, description="Lifecycle claim staleness")

    status_poll_interval_seconds: float = Field(5.0, description="Status polling interval")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BillingConfig":
        """Create configuration from settings (secrets come from the environment)"""
        settings = settings or get_settings()
        billing = settings.billing

        paypal: PayPalConfig | None = None
        if settings.paypal.client_id:
            paypal = PayPalConfig(
                client_id=settings.paypal.client_id,
                client_secret=settings.paypal.client_secret,
                webhook_id=settings.paypal.webhook_id or None,
                environment=settings.paypal.mode,
                default_plan_id=settings.paypal.default_plan_id or None,
                brand_name=settings.paypal.brand_name,
                return_url=settings.paypal.return_url,
                cancel_url=settings.paypal.cancel_url,
            )

        return cls(
            paypal=paypal,
            processor=billing.processor,
            processor_timeout_seconds=billing.processor_timeout_seconds,
            default_currency=billing.default_currency,
            default_interval=billing.default_interval,
            payment_method=billing.payment_method,
            intent_ttl_minutes=billing.intent_ttl_minutes,
            intent_sweep_interval_seconds=billing.intent_sweep_interval_seconds,
            intent_retention_minutes=billing.intent_retention_minutes,
            max_conflict_retries=billing.max_conflict_retries,
            conflict_retry_wait_seconds=billing.conflict_retry_wait_seconds,
            operation_claim_timeout_seconds=billing.operation_claim_timeout_seconds,
            status_poll_interval_seconds=billing.status_poll_interval_seconds,
        )


# Global configuration instance
_billing_config: BillingConfig | None = None


def get_billing_config() -> BillingConfig:
    """Get the global billing configuration instance"""
    global _billing_config
    if _billing_config is None:
        _billing_config = BillingConfig.from_settings()
    return _billing_config


def set_billing_config(config: BillingConfig | None) -> None:
    """Set the global billing configuration instance"""
    global _billing_config
    _billing_config = config
