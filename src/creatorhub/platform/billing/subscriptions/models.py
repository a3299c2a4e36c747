"""
Subscription domain models.

Pydantic views of the persisted records. Services only ever hand these
detached snapshots around; writes go back through the state store with the
snapshot's ``version`` as the optimistic concurrency token.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SubscriptionStatus(str, Enum):
    """Local subscription status."""

    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class BillingInterval(str, Enum):
    """Recurring billing interval."""

    MONTH = "month"
    YEAR = "year"


class LifecycleOperation(str, Enum):
    """Processor operation guarded by a pending-operation claim."""

    CANCEL = "cancel"
    SUSPEND = "suspend"
    REACTIVATE = "reactivate"


class Subscription(BaseModel):
    """Canonical subscription record."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    subscriber_id: str
    creator_id: str
    processor_subscription_id: str | None = None
    status: SubscriptionStatus = SubscriptionStatus.PENDING_APPROVAL

    amount: Decimal
    currency: str
    interval: BillingInterval = BillingInterval.MONTH
    payment_method: str = "paypal"

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    next_billing_date: datetime | None = None
    last_payment_date: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    pending_operation: LifecycleOperation | None = None
    pending_operation_at: datetime | None = None

    version: int = 0

    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def has_live_claim(self, now: datetime, timeout_seconds: int) -> bool:
        """Whether another caller is mid-way through a lifecycle processor call."""
        if self.pending_operation is None or self.pending_operation_at is None:
            return False
        age = (now - as_utc(self.pending_operation_at)).total_seconds()
        return age < timeout_seconds


class SubscriptionIntent(BaseModel):
    """Short-lived record of a checkout that the processor has not confirmed yet."""

    model_config = ConfigDict(from_attributes=True)

    intent_id: str = Field(default_factory=lambda: str(uuid4()))
    subscriber_id: str
    creator_id: str
    amount: Decimal
    currency: str
    processor_pending_id: str | None = None
    approval_url: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    consumed_at: datetime | None = None
    consumed_by_subscription_id: str | None = None
    version: int = 0

    def is_expired(self, now: datetime) -> bool:
        return as_utc(self.expires_at) <= now

    def is_live(self, now: datetime) -> bool:
        """Not expired and not yet turned into a subscription."""
        return self.consumed_at is None and not self.is_expired(now)


class SubscriptionEvent(BaseModel):
    """Audit trail entry for a subscription state change."""

    model_config = ConfigDict(from_attributes=True)

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    subscription_id: str
    event_type: str
    from_status: SubscriptionStatus | None = None
    to_status: SubscriptionStatus | None = None
    actor_id: str | None = None
    event_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class ReconciliationFlag(BaseModel):
    """Entry in the manual-reconciliation queue."""

    model_config = ConfigDict(from_attributes=True)

    flag_id: str = Field(default_factory=lambda: str(uuid4()))
    processor_subscription_id: str
    subscriber_id: str
    creator_id: str
    conflicting_subscription_id: str | None = None
    reason: str
    processor_status: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: datetime | None = None
    resolution_note: str | None = None


class CreatorPrice(BaseModel):
    """Subscription price a creator charges."""

    model_config = ConfigDict(from_attributes=True)

    creator_id: str
    amount: Decimal
    currency: str
    interval: BillingInterval = BillingInterval.MONTH
    plan_ref: str | None = None
    is_active: bool = True


__all__ = [
    "SubscriptionStatus",
    "BillingInterval",
    "LifecycleOperation",
    "Subscription",
    "SubscriptionIntent",
    "SubscriptionEvent",
    "ReconciliationFlag",
    "CreatorPrice",
    "utcnow",
    "as_utc",
]
