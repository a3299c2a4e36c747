"""
In-memory processor gateway for development and tests.

Simulates the processor's subscription state machine, records every call,
and lets callers inject failures or hold a call open to stage races.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from itertools import count
from typing import Any

import structlog

from creatorhub.platform.billing.exceptions import (
    ProcessorError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
)
from creatorhub.platform.billing.processors.base import (
    PendingSubscription,
    ProcessorGateway,
    ProcessorStatus,
    ProcessorSubscription,
)

logger = structlog.get_logger(__name__)


@dataclass
class _RemoteSubscription:
    processor_id: str
    amount: Decimal
    currency: str
    plan_ref: str | None
    reference: str | None
    status: ProcessorStatus = ProcessorStatus.APPROVAL_PENDING
    next_billing_time: datetime | None = None
    last_payment_time: datetime | None = None


@dataclass
class ProcessorCall:
    """One recorded gateway invocation."""

    operation: str
    processor_id: str | None
    arguments: dict[str, Any] = field(default_factory=dict)


class InMemoryProcessorGateway(ProcessorGateway):
    """Processor simulation keeping subscriptions in a dict."""

    name = "memory"

    def __init__(self, webhook_secret: str | None = None) -> None:
        self.subscriptions: dict[str, _RemoteSubscription] = {}
        self.calls: list[ProcessorCall] = []
        self.webhook_secret = webhook_secret

        self._ids = count(1)
        self._failures: dict[str, list[ProcessorError]] = {}
        self._holds: dict[str, asyncio.Event] = {}

    # Test controls --------------------------------------------------------

    def fail_next(self, operation: str, error: ProcessorError | None = None) -> None:
        """Make the next call of ``operation`` raise (unavailable by default)."""
        self._failures.setdefault(operation, []).append(
            error or ProcessorUnavailableError(f"{operation} timed out", operation=operation)
        )

    def hold(self, operation: str) -> asyncio.Event:
        """Block calls of ``operation`` until the returned event is set."""
        event = asyncio.Event()
        self._holds[operation] = event
        return event

    def approve(self, processor_id: str, *, activate: bool = True) -> None:
        """Simulate the subscriber approving on the hosted page."""
        remote = self._get(processor_id, "approve")
        now = datetime.now(UTC)
        if activate:
            remote.status = ProcessorStatus.ACTIVE
            remote.last_payment_time = now
            remote.next_billing_time = now + timedelta(days=30)
        else:
            remote.status = ProcessorStatus.APPROVED

    def set_status(self, processor_id: str, status: ProcessorStatus) -> None:
        """Force a processor-side status (out-of-band change)."""
        self._get(processor_id, "set_status").status = status

    def calls_for(self, operation: str) -> list[ProcessorCall]:
        return [call for call in self.calls if call.operation == operation]

    # Gateway contract -----------------------------------------------------

    async def _enter(self, operation: str, processor_id: str | None, **arguments: Any) -> None:
        self.calls.append(ProcessorCall(operation, processor_id, arguments))

        hold = self._holds.get(operation)
        if hold is not None:
            await hold.wait()

        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _get(self, processor_id: str, operation: str) -> _RemoteSubscription:
        remote = self.subscriptions.get(processor_id)
        if remote is None:
            raise ProcessorRejectedError(
                f"Unknown processor subscription {processor_id}",
                operation=operation,
                processor_id=processor_id,
                provider_status=404,
                reason="RESOURCE_NOT_FOUND",
            )
        return remote

    def _require(
        self, remote: _RemoteSubscription, operation: str, *allowed: ProcessorStatus
    ) -> None:
        if remote.status not in allowed:
            raise ProcessorRejectedError(
                f"Subscription status {remote.status.value} does not allow {operation}",
                operation=operation,
                processor_id=remote.processor_id,
                provider_status=422,
                reason="SUBSCRIPTION_STATUS_INVALID",
            )

    async def create_pending_subscription(
        self,
        amount: Decimal,
        currency: str,
        plan_ref: str | None,
        *,
        reference: str | None = None,
    ) -> PendingSubscription:
        await self._enter(
            "create_pending_subscription",
            None,
            amount=amount,
            currency=currency,
            plan_ref=plan_ref,
            reference=reference,
        )

        processor_id = f"I-MEM{next(self._ids):08d}"
        self.subscriptions[processor_id] = _RemoteSubscription(
            processor_id=processor_id,
            amount=amount,
            currency=currency,
            plan_ref=plan_ref,
            reference=reference,
        )
        logger.debug("In-memory pending subscription created", processor_id=processor_id)
        return PendingSubscription(
            processor_id=processor_id,
            approval_url=f"https://processor.invalid/approve/{processor_id}",
        )

    async def get_subscription_status(self, processor_id: str) -> ProcessorSubscription:
        await self._enter("get_subscription_status", processor_id)
        remote = self._get(processor_id, "get_subscription_status")
        return ProcessorSubscription(
            processor_id=remote.processor_id,
            status=remote.status,
            plan_ref=remote.plan_ref,
            reference=remote.reference,
            next_billing_time=remote.next_billing_time,
            last_payment_time=remote.last_payment_time,
        )

    async def cancel_subscription(self, processor_id: str, reason: str) -> None:
        await self._enter("cancel_subscription", processor_id, reason=reason)
        remote = self._get(processor_id, "cancel_subscription")
        self._require(
            remote,
            "cancel_subscription",
            ProcessorStatus.ACTIVE,
            ProcessorStatus.SUSPENDED,
            ProcessorStatus.APPROVED,
            ProcessorStatus.APPROVAL_PENDING,
        )
        remote.status = ProcessorStatus.CANCELLED
        remote.next_billing_time = None

    async def suspend_subscription(self, processor_id: str, reason: str | None = None) -> None:
        await self._enter("suspend_subscription", processor_id, reason=reason)
        remote = self._get(processor_id, "suspend_subscription")
        self._require(remote, "suspend_subscription", ProcessorStatus.ACTIVE)
        remote.status = ProcessorStatus.SUSPENDED

    async def reactivate_subscription(self, processor_id: str, reason: str | None = None) -> None:
        await self._enter("reactivate_subscription", processor_id, reason=reason)
        remote = self._get(processor_id, "reactivate_subscription")
        self._require(remote, "reactivate_subscription", ProcessorStatus.SUSPENDED)
        remote.status = ProcessorStatus.ACTIVE

    async def verify_webhook_signature(self, headers: Mapping[str, str], body: bytes) -> bool:
        if self.webhook_secret is None:
            return True
        lowered = {key.lower(): value for key, value in headers.items()}
        return lowered.get("x-processor-signature") == self.webhook_secret


__all__ = ["InMemoryProcessorGateway", "ProcessorCall"]
