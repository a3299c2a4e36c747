"""
Processor gateway contract.

The payment processor is the system of record for billing. Gateways expose
the handful of recurring-subscription operations the lifecycle core needs
and translate every failure into ``ProcessorUnavailableError`` (retry with
backoff) or ``ProcessorRejectedError`` (terminal).
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ProcessorStatus(str, Enum):
    """Subscription status as reported by the processor."""

    APPROVAL_PENDING = "APPROVAL_PENDING"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class PendingSubscription(BaseModel):
    """Processor-side pending subscription awaiting subscriber approval."""

    model_config = ConfigDict(frozen=True)

    processor_id: str = Field(description="Processor subscription id")
    status: ProcessorStatus = ProcessorStatus.APPROVAL_PENDING
    approval_url: str | None = Field(None, description="Hosted approval page")


class ProcessorSubscription(BaseModel):
    """Authoritative processor view of a subscription."""

    model_config = ConfigDict(frozen=True)

    processor_id: str
    status: ProcessorStatus
    plan_ref: str | None = None
    reference: str | None = Field(None, description="Our intent id, echoed back")
    next_billing_time: datetime | None = None
    last_payment_time: datetime | None = None


class ProcessorGateway(ABC):
    """Abstract client for the external recurring-billing processor."""

    name: str = "processor"

    @abstractmethod
    async def create_pending_subscription(
        self,
        amount: Decimal,
        currency: str,
        plan_ref: str | None,
        *,
        reference: str | None = None,
    ) -> PendingSubscription:
        """Create a processor-side pending subscription for the subscriber to approve."""

    @abstractmethod
    async def get_subscription_status(self, processor_id: str) -> ProcessorSubscription:
        """Read the authoritative status of a subscription."""

    @abstractmethod
    async def cancel_subscription(self, processor_id: str, reason: str) -> None:
        """Cancel a subscription so that no further billing happens."""

    @abstractmethod
    async def suspend_subscription(self, processor_id: str, reason: str | None = None) -> None:
        """Suspend billing for a subscription (reversible)."""

    @abstractmethod
    async def reactivate_subscription(self, processor_id: str, reason: str | None = None) -> None:
        """Resume billing for a suspended subscription."""

    async def verify_webhook_signature(self, headers: Mapping[str, str], body: bytes) -> bool:
        """Verify an inbound notification came from the processor."""
        return False

    async def close(self) -> None:
        """Release network resources."""
        return None


__all__ = [
    "ProcessorStatus",
    "PendingSubscription",
    "ProcessorSubscription",
    "ProcessorGateway",
]
