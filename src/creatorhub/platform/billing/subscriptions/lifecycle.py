"""
Lifecycle command handlers.

Cancel, suspend and reactivate all follow processor-call-then-local-commit:
the local record changes only after the processor acknowledged. A
version-checked ``pending_operation`` claim taken before the processor call
makes concurrent commands on one subscription issue a single processor call;
losers back off, re-read and see the committed result.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime

import structlog

from creatorhub.platform.auth.context import SubscriberContext
from creatorhub.platform.billing.config import BillingConfig
from creatorhub.platform.billing.events import SubscriptionEvents, emit_subscription_event
from creatorhub.platform.billing.exceptions import (
    AlreadySubscribedError,
    BillingError,
    ConflictError,
    OperationInProgressError,
    ProcessorError,
    ProcessorUnavailableError,
    SubscriptionNotFoundError,
    ValidationError,
)
from creatorhub.platform.billing.metrics import get_subscription_metrics
from creatorhub.platform.billing.processors.base import ProcessorGateway
from creatorhub.platform.billing.subscriptions.commands import (
    CancelSubscriptionCommand,
    LifecycleCommand,
    ReactivateSubscriptionCommand,
    SuspendSubscriptionCommand,
)
from creatorhub.platform.billing.subscriptions.models import (
    LifecycleOperation,
    Subscription,
    SubscriptionEvent,
    SubscriptionStatus,
    utcnow,
)
from creatorhub.platform.billing.subscriptions.retry import conflict_retrying
from creatorhub.platform.billing.subscriptions.state_machine import (
    TERMINAL_STATUSES,
    ensure_transition,
)
from creatorhub.platform.billing.subscriptions.store import SubscriptionStore
from creatorhub.platform.logging import log_subscription_audit

logger = structlog.get_logger(__name__)

OPERATION_TARGETS = {
    LifecycleOperation.CANCEL: SubscriptionStatus.CANCELLED,
    LifecycleOperation.SUSPEND: SubscriptionStatus.SUSPENDED,
    LifecycleOperation.REACTIVATE: SubscriptionStatus.ACTIVE,
}

OPERATION_EVENTS = {
    LifecycleOperation.CANCEL: SubscriptionEvents.SUBSCRIPTION_CANCELLED,
    LifecycleOperation.SUSPEND: SubscriptionEvents.SUBSCRIPTION_SUSPENDED,
    LifecycleOperation.REACTIVATE: SubscriptionEvents.SUBSCRIPTION_REACTIVATED,
}


class SubscriptionLifecycleService:
    """Handles cancel / suspend / reactivate commands."""

    def __init__(
        self,
        store: SubscriptionStore,
        gateway: ProcessorGateway,
        config: BillingConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.config = config
        self.clock = clock
        self.metrics = get_subscription_metrics()

    async def cancel(self, command: CancelSubscriptionCommand) -> Subscription:
        """Legal from active or suspended only."""
        return await self._execute(command, LifecycleOperation.CANCEL)

    async def suspend(self, command: SuspendSubscriptionCommand) -> Subscription:
        """active -> suspended."""
        return await self._execute(command, LifecycleOperation.SUSPEND)

    async def reactivate(self, command: ReactivateSubscriptionCommand) -> Subscription:
        """suspended -> active."""
        return await self._execute(command, LifecycleOperation.REACTIVATE)

    async def _execute(
        self, command: LifecycleCommand, operation: LifecycleOperation
    ) -> Subscription:
        log = logger.bind(
            operation=operation.value,
            subscription_id=command.subscription_id,
            subscriber_id=command.caller.subscriber_id,
        )

        with self.metrics.trace_subscription_operation(
            operation.value, subscription_id=command.subscription_id
        ):
            try:
                async for attempt in conflict_retrying(self.config, operation.value):
                    with attempt:
                        claimed = await self._claim(
                            command.caller, command.subscription_id, operation
                        )
            except BillingError as e:
                self.metrics.record_lifecycle_command(operation.value, e.error_code.lower())
                raise

            try:
                await self._call_processor(operation, claimed, command.reason)
            except ProcessorError as e:
                self.metrics.record_lifecycle_command(operation.value, "processor_error")
                log.warning("Processor refused lifecycle command", error=e.message)
                await self._release_claim(claimed)
                raise

            async for attempt in conflict_retrying(self.config, operation.value):
                with attempt:
                    record, previous = await self._complete(
                        command.subscription_id, operation, command.caller, command.reason
                    )

        self.metrics.record_lifecycle_command(operation.value, "succeeded")
        log.info("Lifecycle command completed", status=record.status.value)
        log_subscription_audit(
            f"subscription.{operation.value}",
            record,
            actor_id=command.caller.subscriber_id,
            previous_status=previous.value,
        )
        if previous != record.status:
            await emit_subscription_event(
                OPERATION_EVENTS[operation],
                record,
                actor_id=command.caller.subscriber_id,
                previous_status=previous.value,
                reason=command.reason,
            )
        return record

    async def _claim(
        self,
        caller: SubscriberContext,
        subscription_id: str,
        operation: LifecycleOperation,
    ) -> Subscription:
        """Fresh read, ownership, legality, then a version-checked claim."""
        record = await self.store.get_by_id(subscription_id)
        if record is None or not caller.owns(record.subscriber_id):
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found", subscription_id=subscription_id
            )

        ensure_transition(record.status, OPERATION_TARGETS[operation], record.id)

        now = self.clock()
        if record.has_live_claim(now, self.config.operation_claim_timeout_seconds):
            raise OperationInProgressError(
                f"A {record.pending_operation.value} is already in progress for this subscription",
                resource_id=record.id,
                operation=record.pending_operation.value,
            )

        if record.processor_subscription_id is None:
            raise ValidationError(
                "Subscription has no processor reference", field="processor_subscription_id"
            )

        if operation == LifecycleOperation.REACTIVATE:
            other = await self.store.get_active_for_pair(record.subscriber_id, record.creator_id)
            if other is not None and other.id != record.id:
                raise AlreadySubscribedError(
                    "Another active subscription to this creator exists",
                    subscriber_id=record.subscriber_id,
                    creator_id=record.creator_id,
                    subscription_id=other.id,
                )

        claimed = record.model_copy(
            update={"pending_operation": operation, "pending_operation_at": now}
        )
        return await self.store.upsert(claimed, record.version)

    async def _call_processor(
        self, operation: LifecycleOperation, record: Subscription, reason: str | None
    ) -> None:
        processor_id = record.processor_subscription_id
        assert processor_id is not None

        started = time.perf_counter()
        success = False
        try:
            async with asyncio.timeout(self.config.processor_timeout_seconds):
                if operation == LifecycleOperation.CANCEL:
                    await self.gateway.cancel_subscription(
                        processor_id, reason or "Cancelled by subscriber"
                    )
                elif operation == LifecycleOperation.SUSPEND:
                    await self.gateway.suspend_subscription(processor_id, reason)
                else:
                    await self.gateway.reactivate_subscription(processor_id, reason)
            success = True
        except TimeoutError as e:
            raise ProcessorUnavailableError(
                f"Processor did not answer {operation.value} in time",
                operation=operation.value,
                processor_id=processor_id,
            ) from e
        finally:
            self.metrics.record_processor_call(
                operation.value, (time.perf_counter() - started) * 1000, success
            )

    async def _release_claim(self, claimed: Subscription) -> None:
        released = claimed.model_copy(
            update={"pending_operation": None, "pending_operation_at": None}
        )
        try:
            await self.store.upsert(released, claimed.version)
        except ConflictError:
            # Left to go stale after operation_claim_timeout_seconds
            logger.warning("Could not release lifecycle claim", subscription_id=claimed.id)

    async def _complete(
        self,
        subscription_id: str,
        operation: LifecycleOperation,
        caller: SubscriberContext,
        reason: str | None,
    ) -> tuple[Subscription, SubscriptionStatus]:
        """Commit the acknowledged change from a fresh read."""
        target = OPERATION_TARGETS[operation]
        record = await self.store.get_by_id(subscription_id)
        if record is None:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found", subscription_id=subscription_id
            )

        if record.status in TERMINAL_STATUSES and record.status != target:
            logger.warning(
                "Subscription reached a terminal status during the processor call",
                subscription_id=record.id,
                status=record.status.value,
            )
            return record, record.status

        updates: dict = {
            "status": target,
            "pending_operation": None,
            "pending_operation_at": None,
        }
        if operation == LifecycleOperation.CANCEL and record.status != target:
            updates.update(
                cancelled_at=self.clock(),
                cancellation_reason=reason,
                next_billing_date=None,
            )

        event = None
        if record.status != target:
            event = SubscriptionEvent(
                subscription_id=record.id,
                event_type=operation.value,
                from_status=record.status,
                to_status=target,
                actor_id=caller.subscriber_id,
                event_data={"reason": reason} if reason else {},
            )

        updated = await self.store.upsert(
            record.model_copy(update=updates), record.version, event=event
        )
        return updated, record.status


__all__ = ["SubscriptionLifecycleService"]
