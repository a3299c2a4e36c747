"""
Tests for read-only subscription queries and status polling.
"""

import asyncio

import pytest

from creatorhub.platform.billing.exceptions import SubscriptionNotFoundError
from creatorhub.platform.billing.processors.base import ProcessorStatus
from creatorhub.platform.billing.subscriptions.models import SubscriptionStatus
from creatorhub.platform.billing.subscriptions.polling import StatusPoller
from creatorhub.platform.billing.subscriptions.queries import SubscriptionQueryService

pytestmark = pytest.mark.asyncio


class TestSubscriptionQueries:
    """Ownership-scoped reads."""

    async def test_get_own_subscription(
        self, query_service: SubscriptionQueryService, active_subscription, subscriber
    ):
        record = await query_service.get_subscription(subscriber, active_subscription.id)

        assert record.id == active_subscription.id

    async def test_foreign_subscription_is_not_found(
        self, query_service: SubscriptionQueryService, active_subscription, other_subscriber
    ):
        with pytest.raises(SubscriptionNotFoundError):
            await query_service.get_subscription(other_subscriber, active_subscription.id)

    async def test_list_subscriptions_by_status(
        self, query_service: SubscriptionQueryService, active_subscription, subscriber
    ):
        assert len(await query_service.list_subscriptions(subscriber)) == 1
        assert (
            await query_service.list_subscriptions(subscriber, [SubscriptionStatus.CANCELLED])
            == []
        )

    async def test_status_for_unknown_creator(
        self, query_service: SubscriptionQueryService, subscriber
    ):
        status = await query_service.get_status_for_creator(subscriber, "creator-9")

        assert status.is_subscribed is False
        assert status.status is None
        assert status.subscription is None

    async def test_status_for_subscribed_creator(
        self, query_service: SubscriptionQueryService, active_subscription, subscriber, creator_id
    ):
        status = await query_service.get_status_for_creator(subscriber, creator_id)

        assert status.is_subscribed is True
        assert status.status == SubscriptionStatus.ACTIVE
        assert status.subscription.id == active_subscription.id

    async def test_status_reports_latest_inactive_record(
        self,
        query_service: SubscriptionQueryService,
        reconciliation_service,
        gateway,
        active_subscription,
        subscriber,
        creator_id,
    ):
        pid = active_subscription.processor_subscription_id
        gateway.set_status(pid, ProcessorStatus.CANCELLED)
        await reconciliation_service.sync_from_processor(pid)

        status = await query_service.get_status_for_creator(subscriber, creator_id)

        assert status.is_subscribed is False
        assert status.status == SubscriptionStatus.CANCELLED


class TestStatusPoller:
    """Session-bound polling task."""

    async def test_poller_reports_activation(
        self,
        query_service: SubscriptionQueryService,
        intent_service,
        reconciliation_service,
        gateway,
        subscriber,
        creator_id,
    ):
        seen = []

        async def _record(status):
            seen.append(status.status)

        intent = await intent_service.create_intent(subscriber, creator_id, "9.99", "USD")

        async with StatusPoller(
            query_service, subscriber, creator_id, interval_seconds=0.01, on_change=_record
        ) as poller:
            first = await poller.wait_for_change(timeout=2)
            assert first.is_subscribed is False

            gateway.approve(intent.processor_pending_id)
            await reconciliation_service.verify_and_commit(intent.processor_pending_id, subscriber)

            changed = await poller.wait_for_change(timeout=2)
            assert changed.is_subscribed is True

        assert not poller.running
        assert seen == [None, SubscriptionStatus.ACTIVE]

    async def test_stop_cancels_the_task(
        self, query_service: SubscriptionQueryService, subscriber, creator_id
    ):
        poller = StatusPoller(query_service, subscriber, creator_id, interval_seconds=0.01)
        poller.start()
        await asyncio.sleep(0.05)

        await poller.stop()

        polls = poller.polls
        assert polls > 0
        assert not poller.running
        await asyncio.sleep(0.05)
        assert poller.polls == polls

    async def test_failed_read_keeps_polling(
        self, query_service: SubscriptionQueryService, subscriber, creator_id
    ):
        class FlakyQueries:
            calls = 0

            async def get_status_for_creator(self, caller, creator):
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("database went away")
                return await query_service.get_status_for_creator(caller, creator)

        flaky = FlakyQueries()
        async with StatusPoller(flaky, subscriber, creator_id, interval_seconds=0.01) as poller:
            status = await poller.wait_for_change(timeout=2)

        assert status.is_subscribed is False
        assert flaky.calls >= 2
