"""
Read-only subscription queries.

Nothing here writes or talks to the processor, so it is safe to call from
status polling loops as often as a client likes.
"""

import structlog
from pydantic import BaseModel

from creatorhub.platform.auth.context import SubscriberContext
from creatorhub.platform.billing.exceptions import SubscriptionNotFoundError
from creatorhub.platform.billing.subscriptions.models import Subscription, SubscriptionStatus
from creatorhub.platform.billing.subscriptions.store import SubscriptionStore

logger = structlog.get_logger(__name__)


class CreatorSubscriptionStatus(BaseModel):
    """Whether the caller currently subscribes to a creator."""

    creator_id: str
    is_subscribed: bool
    status: SubscriptionStatus | None = None
    subscription: Subscription | None = None


class SubscriptionQueryService:
    """Read-only views over the state store."""

    def __init__(self, store: SubscriptionStore) -> None:
        self.store = store

    async def get_subscription(self, caller: SubscriberContext, subscription_id: str) -> Subscription:
        record = await self.store.get_by_id(subscription_id)
        if record is None or not caller.owns(record.subscriber_id):
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found", subscription_id=subscription_id
            )
        return record

    async def list_subscriptions(
        self,
        caller: SubscriberContext,
        statuses: list[SubscriptionStatus] | None = None,
    ) -> list[Subscription]:
        """The caller's subscriptions, newest first."""
        return await self.store.list_for_subscriber(caller.subscriber_id, statuses=statuses)

    async def get_status_for_creator(
        self, caller: SubscriberContext, creator_id: str
    ) -> CreatorSubscriptionStatus:
        """
        Current relationship with a creator.

        An active subscription wins; otherwise the most recent record is
        reported so clients can show suspended or cancelled states.
        """
        records = await self.store.list_for_subscriber(caller.subscriber_id, creator_id=creator_id)
        current = next((r for r in records if r.is_active()), records[0] if records else None)

        return CreatorSubscriptionStatus(
            creator_id=creator_id,
            is_subscribed=current is not None and current.is_active(),
            status=current.status if current else None,
            subscription=current,
        )


__all__ = ["CreatorSubscriptionStatus", "SubscriptionQueryService"]
