"""
Subscription intent service.

An intent reserves a checkout for a subscriber/creator pair and holds the
processor-side pending subscription the subscriber approves on the
processor's hosted page. Duplicate checkouts inside the TTL window get the
same intent back, so at most one pending processor object exists per pair.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import Decimal

import structlog

from creatorhub.platform.auth.context import SubscriberContext
from creatorhub.platform.billing.config import BillingConfig
from creatorhub.platform.billing.events import emit_intent_created
from creatorhub.platform.billing.exceptions import (
    AlreadySubscribedError,
    ConflictError,
    CreatorNotFoundError,
    IntentExpiredError,
    IntentNotFoundError,
    ProcessorError,
    ValidationError,
)
from creatorhub.platform.billing.metrics import get_subscription_metrics
from creatorhub.platform.billing.money_utils import money_handler
from creatorhub.platform.billing.processors.base import ProcessorGateway
from creatorhub.platform.billing.subscriptions.models import (
    CreatorPrice,
    SubscriptionIntent,
    as_utc,
    utcnow,
)
from creatorhub.platform.billing.subscriptions.pricing import CreatorPricingLookup
from creatorhub.platform.billing.subscriptions.retry import conflict_retrying
from creatorhub.platform.billing.subscriptions.store import SubscriptionStore

logger = structlog.get_logger(__name__)


class SubscriptionIntentService:
    """Creates, looks up and expires checkout intents."""

    def __init__(
        self,
        store: SubscriptionStore,
        gateway: ProcessorGateway,
        pricing: CreatorPricingLookup,
        config: BillingConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.pricing = pricing
        self.config = config
        self.clock = clock
        self.metrics = get_subscription_metrics()

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.config.intent_ttl_minutes)

    async def create_intent(
        self,
        caller: SubscriberContext,
        creator_id: str,
        amount: Decimal | str,
        currency: str,
    ) -> SubscriptionIntent:
        """
        Start (or resume) a checkout for ``creator_id``.

        Raises:
            ValidationError: malformed amount/currency or a mismatch with the creator's price
            CreatorNotFoundError: the creator has no active price
            AlreadySubscribedError: the caller already holds an active subscription
            ConflictError: another request is still preparing this checkout
            ProcessorUnavailableError / ProcessorRejectedError: processor call failed
        """
        price = await self._validate_price(creator_id, amount, currency)

        active = await self.store.get_active_for_pair(caller.subscriber_id, creator_id)
        if active is not None:
            raise AlreadySubscribedError(
                "You already have an active subscription to this creator",
                subscriber_id=caller.subscriber_id,
                creator_id=creator_id,
                subscription_id=active.id,
            )

        async for attempt in conflict_retrying(self.config, "create_intent"):
            with attempt:
                intent, reserved = await self._reserve(caller, price)

        if not reserved:
            self.metrics.record_intent_reused(intent.currency)
            logger.info(
                "Returning existing subscription intent",
                intent_id=intent.intent_id,
                subscriber_id=caller.subscriber_id,
                creator_id=creator_id,
            )
            return intent

        try:
            pending = await self.gateway.create_pending_subscription(
                intent.amount,
                intent.currency,
                price.plan_ref,
                reference=intent.intent_id,
            )
        except ProcessorError:
            await self._release(intent)
            raise

        ready = intent.model_copy(
            update={
                "processor_pending_id": pending.processor_id,
                "approval_url": pending.approval_url,
            }
        )
        ready = await self.store.replace_intent(intent.intent_id, ready, intent.version)

        self.metrics.record_intent_created(ready.currency)
        logger.info(
            "Subscription intent created",
            intent_id=ready.intent_id,
            subscriber_id=caller.subscriber_id,
            creator_id=creator_id,
            processor_pending_id=pending.processor_id,
        )
        await emit_intent_created(
            intent_id=ready.intent_id,
            subscriber_id=ready.subscriber_id,
            creator_id=ready.creator_id,
            amount=str(ready.amount),
            currency=ready.currency,
            processor_pending_id=pending.processor_id,
        )
        return ready

    async def _validate_price(
        self, creator_id: str, amount: Decimal | str, currency: str
    ) -> CreatorPrice:
        requested = money_handler.create_money(amount, currency)

        price = await self.pricing.get_price(creator_id)
        if price is None:
            raise CreatorNotFoundError(
                f"Creator {creator_id} does not offer a subscription", creator_id=creator_id
            )

        expected = money_handler.create_money(price.amount, price.currency)
        if requested.currency != expected.currency:
            raise ValidationError(
                f"Currency {requested.currency.code} does not match the creator's price "
                f"currency {expected.currency.code}",
                field="currency",
            )
        if not money_handler.amounts_match(requested, expected):
            raise ValidationError(
                f"Amount {requested.amount} does not match the creator's price "
                f"{money_handler.format_money(expected)}",
                field="amount",
            )
        return price

    async def _reserve(
        self, caller: SubscriberContext, price: CreatorPrice
    ) -> tuple[SubscriptionIntent, bool]:
        """Return ``(intent, reserved)``; ``reserved`` means the caller must call the processor."""
        now = self.clock()
        existing = await self.store.get_intent_for_pair(caller.subscriber_id, price.creator_id)

        if existing is not None and existing.is_live(now):
            matches_price = existing.amount == price.amount and existing.currency == price.currency
            if existing.processor_pending_id and matches_price:
                return existing, False

            if existing.processor_pending_id is None:
                age = (now - as_utc(existing.created_at)).total_seconds()
                if age < self.config.operation_claim_timeout_seconds:
                    raise ConflictError(
                        "Checkout is being prepared, please retry shortly",
                        resource_id=existing.intent_id,
                        expected_version=existing.version,
                    )
                logger.warning("Taking over stale intent reservation", intent_id=existing.intent_id)

        fresh = SubscriptionIntent(
            subscriber_id=caller.subscriber_id,
            creator_id=price.creator_id,
            amount=price.amount,
            currency=price.currency,
            created_at=now,
            expires_at=now + self.ttl,
        )
        if existing is None:
            return await self.store.insert_intent(fresh), True
        return await self.store.replace_intent(existing.intent_id, fresh, existing.version), True

    async def _release(self, intent: SubscriptionIntent) -> None:
        released = await self.store.delete_intent(intent.intent_id, intent.version)
        logger.info(
            "Released intent reservation after processor failure",
            intent_id=intent.intent_id,
            released=released,
        )

    async def get_intent(self, intent_id: str, caller: SubscriberContext) -> SubscriptionIntent:
        """
        Look up an intent, enforcing the TTL lazily.

        Raises:
            IntentNotFoundError: unknown id or owned by someone else
            IntentExpiredError: the intent was never approved and its TTL elapsed
        """
        intent = await self.store.get_intent(intent_id)
        if intent is None or not caller.owns(intent.subscriber_id):
            raise IntentNotFoundError(f"Intent {intent_id} not found", intent_id=intent_id)

        if intent.consumed_at is None and intent.is_expired(self.clock()):
            raise IntentExpiredError(f"Intent {intent_id} has expired", intent_id=intent_id)
        return intent

    async def find_open_intent_for_processor_id(
        self, processor_pending_id: str
    ) -> SubscriptionIntent | None:
        """
        Unconsumed intent for a processor id, expired or not.

        Expired intents stay attributable until swept, so an approval that
        reaches the processor after the TTL can still be matched to its
        subscriber.
        """
        intent = await self.store.get_intent_by_processor_id(processor_pending_id)
        if intent is None or intent.consumed_at is not None:
            return None
        return intent

    async def consume(self, intent: SubscriptionIntent, subscription_id: str) -> None:
        """Mark the intent as turned into ``subscription_id``."""
        async for attempt in conflict_retrying(self.config, "consume_intent"):
            with attempt:
                current = await self.store.get_intent(intent.intent_id)
                if current is None or current.consumed_at is not None:
                    return
                consumed = current.model_copy(
                    update={
                        "consumed_at": self.clock(),
                        "consumed_by_subscription_id": subscription_id,
                    }
                )
                await self.store.replace_intent(current.intent_id, consumed, current.version)

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """
        Delete intents that expired more than the retention window ago.

        Correctness never depends on this running.
        """
        cutoff = (now or self.clock()) - timedelta(minutes=self.config.intent_retention_minutes)
        count = await self.store.delete_expired_intents(cutoff)
        self.metrics.record_intents_expired(count)
        if count:
            logger.info("Expired subscription intents swept", count=count)
        return count


__all__ = ["SubscriptionIntentService"]
