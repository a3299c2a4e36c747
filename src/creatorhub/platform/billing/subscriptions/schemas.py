"""
Subscription API schemas.

Request/response models for the subscription endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from creatorhub.platform.billing.subscriptions.models import (
    BillingInterval,
    Subscription,
    SubscriptionIntent,
    SubscriptionStatus,
)

# ============================================================================
# Requests
# ============================================================================


class CreateIntentRequest(BaseModel):
    """Start a checkout for a creator."""

    model_config = ConfigDict(str_strip_whitespace=True)

    creator_id: str = Field(..., min_length=1, description="Creator to subscribe to")
    amount: Decimal = Field(..., gt=0, description="Price the client displayed")
    currency: str = Field(..., min_length=3, max_length=3, description="ISO 4217 currency code")


class VerifyRequest(BaseModel):
    """Processor-assigned id forwarded after the subscriber approved."""

    model_config = ConfigDict(str_strip_whitespace=True)

    processor_subscription_id: str = Field(
        ..., min_length=1, description="Subscription id assigned by the processor"
    )
    client_payload: dict[str, Any] | None = Field(
        None, description="Client-reported approval data (logged as a hint only)"
    )


class CancelRequest(BaseModel):
    """Cancel an active or suspended subscription."""

    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str = Field(
        "Cancelled by subscriber", min_length=1, max_length=500, description="Cancellation reason"
    )


class LifecycleRequest(BaseModel):
    """Suspend or reactivate a subscription."""

    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str | None = Field(None, max_length=500, description="Optional reason")


# ============================================================================
# Responses
# ============================================================================


class IntentResponse(BaseModel):
    """Correlation data the checkout widget needs to render the approval flow."""

    intent_id: str
    creator_id: str
    amount: Decimal
    currency: str
    processor_checkout_token: str | None = Field(
        None, description="Pending subscription id to hand to the processor widget"
    )
    approval_url: str | None = None
    expires_at: datetime
    created_at: datetime

    @classmethod
    def from_intent(cls, intent: SubscriptionIntent) -> "IntentResponse":
        return cls(
            intent_id=intent.intent_id,
            creator_id=intent.creator_id,
            amount=intent.amount,
            currency=intent.currency,
            processor_checkout_token=intent.processor_pending_id,
            approval_url=intent.approval_url,
            expires_at=intent.expires_at,
            created_at=intent.created_at,
        )


class SubscriptionResponse(BaseModel):
    """Subscription as exposed to its owner."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    subscriber_id: str
    creator_id: str
    processor_subscription_id: str | None = None
    status: SubscriptionStatus
    amount: Decimal
    currency: str
    interval: BillingInterval
    payment_method: str
    created_at: datetime
    updated_at: datetime
    next_billing_date: datetime | None = None
    last_payment_date: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    version: int


class SubscriptionListResponse(BaseModel):
    """The caller's subscriptions."""

    subscriptions: list[SubscriptionResponse]
    total: int

    @classmethod
    def from_records(cls, records: list[Subscription]) -> "SubscriptionListResponse":
        return cls(
            subscriptions=[SubscriptionResponse.model_validate(r) for r in records],
            total=len(records),
        )


class CreatorStatusResponse(BaseModel):
    """Whether the caller is subscribed to a creator."""

    creator_id: str
    is_subscribed: bool
    status: SubscriptionStatus | None = None
    subscription: SubscriptionResponse | None = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to the processor."""

    status: str = "processed"
    subscription_id: str | None = None


__all__ = [
    "CreateIntentRequest",
    "VerifyRequest",
    "CancelRequest",
    "LifecycleRequest",
    "IntentResponse",
    "SubscriptionResponse",
    "SubscriptionListResponse",
    "CreatorStatusResponse",
    "WebhookAck",
]
