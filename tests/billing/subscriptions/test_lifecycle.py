"""
Tests for cancel, suspend and reactivate commands.
"""

import asyncio
from unittest.mock import patch

import pytest

from creatorhub.platform.billing.events import SubscriptionEvents
from creatorhub.platform.billing.exceptions import (
    AlreadySubscribedError,
    IllegalStateTransitionError,
    OperationInProgressError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
    SubscriptionNotFoundError,
)
from creatorhub.platform.billing.processors.base import ProcessorStatus
from creatorhub.platform.billing.subscriptions.commands import (
    CancelSubscriptionCommand,
    ReactivateSubscriptionCommand,
    SuspendSubscriptionCommand,
)
from creatorhub.platform.billing.subscriptions.lifecycle import SubscriptionLifecycleService
from creatorhub.platform.billing.subscriptions.models import Subscription, SubscriptionStatus

pytestmark = pytest.mark.asyncio


def _cancel(caller, record, reason="Too expensive"):
    return CancelSubscriptionCommand(caller=caller, subscription_id=record.id, reason=reason)


class TestCancel:
    """Cancellation is processor-first."""

    async def test_cancel_active_subscription(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        gateway,
        store,
        active_subscription: Subscription,
        subscriber,
        published_events,
    ):
        record = await lifecycle_service.cancel(_cancel(subscriber, active_subscription))

        assert record.status == SubscriptionStatus.CANCELLED
        assert record.cancellation_reason == "Too expensive"
        assert record.cancelled_at is not None
        assert record.next_billing_date is None
        assert record.pending_operation is None
        # Claim plus completion
        assert record.version == active_subscription.version + 2

        pid = active_subscription.processor_subscription_id
        assert gateway.subscriptions[pid].status == ProcessorStatus.CANCELLED
        assert gateway.calls_for("cancel_subscription")[0].arguments["reason"] == "Too expensive"

        events = await store.list_events(record.id)
        assert events[-1].event_type == "cancel"
        assert events[-1].from_status == SubscriptionStatus.ACTIVE

        assert published_events[-1].event_type == SubscriptionEvents.SUBSCRIPTION_CANCELLED
        assert published_events[-1].payload["previous_status"] == "active"

    async def test_cancel_suspended_subscription(
        self, lifecycle_service: SubscriptionLifecycleService, active_subscription, subscriber
    ):
        await lifecycle_service.suspend(
            SuspendSubscriptionCommand(caller=subscriber, subscription_id=active_subscription.id)
        )

        record = await lifecycle_service.cancel(_cancel(subscriber, active_subscription))

        assert record.status == SubscriptionStatus.CANCELLED

    async def test_cancel_twice_is_illegal_and_skips_processor(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        gateway,
        active_subscription,
        subscriber,
    ):
        await lifecycle_service.cancel(_cancel(subscriber, active_subscription))

        with pytest.raises(IllegalStateTransitionError) as exc_info:
            await lifecycle_service.cancel(_cancel(subscriber, active_subscription))

        assert exc_info.value.context["current_state"] == "cancelled"
        assert len(gateway.calls_for("cancel_subscription")) == 1

    async def test_processor_failure_leaves_record_unchanged(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        gateway,
        store,
        active_subscription,
        subscriber,
    ):
        gateway.fail_next("cancel_subscription")

        with pytest.raises(ProcessorUnavailableError):
            await lifecycle_service.cancel(_cancel(subscriber, active_subscription))

        record = await store.get_by_id(active_subscription.id)
        assert record.status == SubscriptionStatus.ACTIVE
        assert record.pending_operation is None

        # The claim was released so a retry goes through
        retried = await lifecycle_service.cancel(_cancel(subscriber, active_subscription))
        assert retried.status == SubscriptionStatus.CANCELLED

    async def test_processor_timeout_is_unavailable(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        gateway,
        billing_config,
        store,
        active_subscription,
        subscriber,
    ):
        lifecycle_service.config = billing_config.model_copy(
            update={"processor_timeout_seconds": 0.05}
        )
        gateway.hold("cancel_subscription")

        with pytest.raises(ProcessorUnavailableError):
            await lifecycle_service.cancel(_cancel(subscriber, active_subscription))

        record = await store.get_by_id(active_subscription.id)
        assert record.status == SubscriptionStatus.ACTIVE

    async def test_other_subscriber_cannot_cancel(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        gateway,
        active_subscription,
        other_subscriber,
    ):
        with pytest.raises(SubscriptionNotFoundError):
            await lifecycle_service.cancel(_cancel(other_subscriber, active_subscription))

        assert gateway.calls_for("cancel_subscription") == []

    async def test_unknown_subscription(
        self, lifecycle_service: SubscriptionLifecycleService, subscriber
    ):
        with pytest.raises(SubscriptionNotFoundError):
            await lifecycle_service.cancel(
                CancelSubscriptionCommand(caller=subscriber, subscription_id="missing")
            )

    async def test_cancel_writes_audit_entry(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        active_subscription,
        subscriber,
    ):
        with patch("creatorhub.platform.logging.get_audit_logger") as mock_get_audit_logger:
            record = await lifecycle_service.cancel(_cancel(subscriber, active_subscription))

        mock_get_audit_logger.return_value.info.assert_called_once()
        args, kwargs = mock_get_audit_logger.return_value.info.call_args
        assert args == ("subscription.cancel",)
        assert kwargs["audit_actor_id"] == subscriber.subscriber_id
        assert kwargs["subscription_id"] == record.id
        assert kwargs["processor_subscription_id"] == active_subscription.processor_subscription_id
        assert kwargs["previous_status"] == "active"
        assert kwargs["status"] == "cancelled"
        assert kwargs["version"] == record.version


class TestConcurrentCommands:
    """Racing commands on one subscription make a single processor call."""

    async def test_concurrent_cancels_call_processor_once(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        gateway,
        active_subscription,
        subscriber,
    ):
        release = gateway.hold("cancel_subscription")

        first = asyncio.create_task(
            lifecycle_service.cancel(_cancel(subscriber, active_subscription))
        )
        while not gateway.calls_for("cancel_subscription"):
            await asyncio.sleep(0.005)

        second = asyncio.create_task(
            lifecycle_service.cancel(_cancel(subscriber, active_subscription))
        )
        await asyncio.sleep(0.05)
        release.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert results[0].status == SubscriptionStatus.CANCELLED
        assert isinstance(results[1], IllegalStateTransitionError)
        assert len(gateway.calls_for("cancel_subscription")) == 1

    async def test_in_flight_claim_blocks_other_commands(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        billing_config,
        gateway,
        active_subscription,
        subscriber,
    ):
        release = gateway.hold("cancel_subscription")
        first = asyncio.create_task(
            lifecycle_service.cancel(_cancel(subscriber, active_subscription))
        )
        while not gateway.calls_for("cancel_subscription"):
            await asyncio.sleep(0.005)

        # Gives up waiting long before the held cancel is released
        impatient = SubscriptionLifecycleService(
            lifecycle_service.store,
            gateway,
            billing_config.model_copy(
                update={"max_conflict_retries": 1, "processor_timeout_seconds": 0.05}
            ),
            clock=lifecycle_service.clock,
        )
        with pytest.raises(OperationInProgressError) as exc_info:
            await impatient.suspend(
                SuspendSubscriptionCommand(
                    caller=subscriber, subscription_id=active_subscription.id
                )
            )

        release.set()
        assert (await first).status == SubscriptionStatus.CANCELLED
        assert gateway.calls_for("suspend_subscription") == []
        assert exc_info.value.context["operation"] == "cancel"
        assert exc_info.value.error_code == "CONFLICT"

    async def test_second_cancel_waits_out_a_slow_processor(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        billing_config,
        gateway,
        active_subscription,
        subscriber,
    ):
        # Three quick attempts would be exhausted well before the release
        config = billing_config.model_copy(
            update={"max_conflict_retries": 3, "conflict_retry_wait_seconds": 0.01}
        )
        first_service = SubscriptionLifecycleService(
            lifecycle_service.store, gateway, config, clock=lifecycle_service.clock
        )
        second_service = SubscriptionLifecycleService(
            lifecycle_service.store, gateway, config, clock=lifecycle_service.clock
        )
        release = gateway.hold("cancel_subscription")

        first = asyncio.create_task(
            first_service.cancel(_cancel(subscriber, active_subscription))
        )
        while not gateway.calls_for("cancel_subscription"):
            await asyncio.sleep(0.005)

        second = asyncio.create_task(
            second_service.cancel(_cancel(subscriber, active_subscription))
        )
        await asyncio.sleep(0.4)
        assert not second.done()
        release.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert results[0].status == SubscriptionStatus.CANCELLED
        assert isinstance(results[1], IllegalStateTransitionError)
        assert len(gateway.calls_for("cancel_subscription")) == 1

class TestSuspendReactivate:
    """Reversible pause."""

    async def test_suspend_then_reactivate(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        gateway,
        active_subscription,
        subscriber,
        published_events,
    ):
        suspended = await lifecycle_service.suspend(
            SuspendSubscriptionCommand(
                caller=subscriber, subscription_id=active_subscription.id, reason="Holiday"
            )
        )
        assert suspended.status == SubscriptionStatus.SUSPENDED

        reactivated = await lifecycle_service.reactivate(
            ReactivateSubscriptionCommand(caller=subscriber, subscription_id=active_subscription.id)
        )
        assert reactivated.status == SubscriptionStatus.ACTIVE

        pid = active_subscription.processor_subscription_id
        assert gateway.subscriptions[pid].status == ProcessorStatus.ACTIVE
        assert [e.event_type for e in published_events[-2:]] == [
            SubscriptionEvents.SUBSCRIPTION_SUSPENDED,
            SubscriptionEvents.SUBSCRIPTION_REACTIVATED,
        ]

    async def test_reactivate_active_is_illegal(
        self, lifecycle_service: SubscriptionLifecycleService, active_subscription, subscriber
    ):
        with pytest.raises(IllegalStateTransitionError):
            await lifecycle_service.reactivate(
                ReactivateSubscriptionCommand(
                    caller=subscriber, subscription_id=active_subscription.id
                )
            )

    async def test_suspend_rejected_by_processor(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        gateway,
        store,
        active_subscription,
        subscriber,
    ):
        # Processor already moved on without telling us
        gateway.set_status(active_subscription.processor_subscription_id, ProcessorStatus.EXPIRED)

        with pytest.raises(ProcessorRejectedError):
            await lifecycle_service.suspend(
                SuspendSubscriptionCommand(
                    caller=subscriber, subscription_id=active_subscription.id
                )
            )

        assert (await store.get_by_id(active_subscription.id)).status == SubscriptionStatus.ACTIVE

    async def test_reactivate_refused_while_another_is_active(
        self,
        lifecycle_service: SubscriptionLifecycleService,
        gateway,
        store,
        active_subscription,
        subscriber,
    ):
        pending = await gateway.create_pending_subscription(
            active_subscription.amount, "USD", "P-PLAN-1"
        )
        gateway.approve(pending.processor_id)
        gateway.set_status(pending.processor_id, ProcessorStatus.SUSPENDED)
        older = await store.insert(
            Subscription(
                subscriber_id=active_subscription.subscriber_id,
                creator_id=active_subscription.creator_id,
                processor_subscription_id=pending.processor_id,
                status=SubscriptionStatus.SUSPENDED,
                amount=active_subscription.amount,
                currency="USD",
            )
        )

        with pytest.raises(AlreadySubscribedError):
            await lifecycle_service.reactivate(
                ReactivateSubscriptionCommand(caller=subscriber, subscription_id=older.id)
            )

        assert gateway.calls_for("reactivate_subscription") == []
