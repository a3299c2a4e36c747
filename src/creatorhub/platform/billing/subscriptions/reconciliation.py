"""
Reconciliation service.

Confirms a checkout against the processor's own status endpoint before any
canonical state is written. Client-reported approval is only a hint; the
processor read is authoritative. Local subscriptions are a cache of processor
truth: every write here follows a processor read.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from creatorhub.platform.auth.context import SubscriberContext
from creatorhub.platform.billing.config import BillingConfig
from creatorhub.platform.billing.events import (
    SubscriptionEvents,
    emit_reconciliation_flagged,
    emit_subscription_event,
)
from creatorhub.platform.billing.exceptions import (
    DuplicateActiveSubscriptionError,
    IntentExpiredError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
    SubscriptionNotFoundError,
    VerificationError,
)
from creatorhub.platform.billing.metrics import get_subscription_metrics
from creatorhub.platform.billing.processors.base import (
    ProcessorGateway,
    ProcessorStatus,
    ProcessorSubscription,
)
from creatorhub.platform.billing.subscriptions.intents import SubscriptionIntentService
from creatorhub.platform.billing.subscriptions.models import (
    BillingInterval,
    ReconciliationFlag,
    Subscription,
    SubscriptionEvent,
    SubscriptionIntent,
    SubscriptionStatus,
    as_utc,
    utcnow,
)
from creatorhub.platform.billing.subscriptions.pricing import CreatorPricingLookup
from creatorhub.platform.billing.subscriptions.retry import conflict_retrying
from creatorhub.platform.billing.subscriptions.state_machine import (
    PROCESSOR_STATUS_MAP,
    VERIFIABLE_PROCESSOR_STATUSES,
    can_reconcile,
    is_behind,
)
from creatorhub.platform.billing.subscriptions.store import SubscriptionStore
from creatorhub.platform.logging import log_subscription_audit

logger = structlog.get_logger(__name__)

STATUS_EVENTS = {
    SubscriptionStatus.APPROVED: SubscriptionEvents.SUBSCRIPTION_APPROVED,
    SubscriptionStatus.ACTIVE: SubscriptionEvents.SUBSCRIPTION_ACTIVATED,
    SubscriptionStatus.SUSPENDED: SubscriptionEvents.SUBSCRIPTION_SUSPENDED,
    SubscriptionStatus.CANCELLED: SubscriptionEvents.SUBSCRIPTION_CANCELLED,
    SubscriptionStatus.EXPIRED: SubscriptionEvents.SUBSCRIPTION_EXPIRED,
}


def _same_instant(stored: datetime | None, reported: datetime | None) -> bool:
    if stored is None or reported is None:
        return stored is reported
    return as_utc(stored) == as_utc(reported)


class ReconciliationService:
    """
    Verifies processor-side approval and commits canonical subscriptions.

    Handles:
    - Synchronous verify-after-approve from the checkout
    - Out-of-band processor notifications for the same processor id
    - The at-most-one-active-per-pair rule (conflicts go to manual review)
    """

    def __init__(
        self,
        store: SubscriptionStore,
        gateway: ProcessorGateway,
        intents: SubscriptionIntentService,
        config: BillingConfig,
        pricing: CreatorPricingLookup | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.intents = intents
        self.config = config
        self.pricing = pricing
        self.clock = clock
        self.metrics = get_subscription_metrics()

    # ==================== Verification ====================

    async def verify_and_commit(
        self,
        processor_subscription_id: str,
        caller: SubscriberContext,
        client_payload: dict[str, Any] | None = None,
    ) -> Subscription:
        """
        Verify ``processor_subscription_id`` with the processor and commit it.

        Calling this twice for the same id yields the same record.

        Raises:
            SubscriptionNotFoundError: no record or unswept intent the caller owns
            IntentExpiredError: the intent expired and the processor never approved it
            VerificationError: the processor did not confirm (``retryable`` tells why)
            DuplicateActiveSubscriptionError: the pair already has another active subscription
            ConflictError: lost version races exhausted the retry budget
        """
        if client_payload:
            # Untrusted hint, never used for state
            logger.info(
                "Client reported approval",
                processor_subscription_id=processor_subscription_id,
                reported_status=client_payload.get("status"),
            )

        with self.metrics.trace_subscription_operation(
            "verify", processor_subscription_id=processor_subscription_id
        ):
            existing = await self.store.get_by_processor_id(processor_subscription_id)
            intent: SubscriptionIntent | None = None
            if existing is not None:
                if not caller.owns(existing.subscriber_id):
                    raise self._not_found(processor_subscription_id)
            else:
                intent = await self.intents.find_open_intent_for_processor_id(
                    processor_subscription_id
                )
                if intent is None or not caller.owns(intent.subscriber_id):
                    raise self._not_found(processor_subscription_id)

            remote = await self._read_processor(processor_subscription_id)
            reported = PROCESSOR_STATUS_MAP[remote.status]

            if existing is not None and (
                reported == existing.status or is_behind(existing.status, reported)
            ):
                self.metrics.record_verification("noop", remote.status.value)
                return existing

            if intent is not None and intent.is_expired(self.clock()):
                self._accept_late_approval(intent, remote)

            target = self._accepted_status(processor_subscription_id, remote)
            if intent is not None and remote.reference and remote.reference != intent.intent_id:
                self.metrics.record_verification("rejected", remote.status.value)
                raise VerificationError(
                    "Processor subscription does not belong to this checkout",
                    processor_subscription_id=processor_subscription_id,
                    retryable=False,
                    processor_status=remote.status.value,
                )

            async for attempt in conflict_retrying(self.config, "verify"):
                with attempt:
                    record, previous = await self._commit(
                        processor_subscription_id, target, remote, caller, intent
                    )

        if intent is None:
            intent = await self.store.get_intent_by_processor_id(processor_subscription_id)
        if intent is not None and intent.consumed_at is None:
            await self.intents.consume(intent, record.id)

        if previous != record.status:
            self.metrics.record_verification("committed", remote.status.value)
            log_subscription_audit(
                "subscription.verified",
                record,
                actor_id=caller.subscriber_id,
                previous_status=previous.value if previous else None,
            )
            await emit_subscription_event(
                STATUS_EVENTS[record.status],
                record,
                actor_id=caller.subscriber_id,
                previous_status=previous.value if previous else None,
            )
        else:
            self.metrics.record_verification("noop", remote.status.value)

        logger.info(
            "Subscription verified",
            subscription_id=record.id,
            processor_subscription_id=processor_subscription_id,
            status=record.status.value,
        )
        return record

    async def _read_processor(self, processor_subscription_id: str) -> ProcessorSubscription:
        try:
            return await self.gateway.get_subscription_status(processor_subscription_id)
        except ProcessorUnavailableError as e:
            self.metrics.record_verification("unavailable")
            raise VerificationError(
                "Could not reach the payment processor to verify the subscription",
                processor_subscription_id=processor_subscription_id,
                retryable=True,
            ) from e
        except ProcessorRejectedError as e:
            self.metrics.record_verification("rejected")
            raise VerificationError(
                "The payment processor rejected the verification request",
                processor_subscription_id=processor_subscription_id,
                retryable=False,
            ) from e

    def _accept_late_approval(
        self, intent: SubscriptionIntent, remote: ProcessorSubscription
    ) -> None:
        """
        Let an expired intent through only if the processor already approved it.

        The subscriber may finish the processor's approval page after the TTL;
        the processor then bills them, so the record must still be written.
        """
        if remote.status not in VERIFIABLE_PROCESSOR_STATUSES:
            self.metrics.record_verification("expired", remote.status.value)
            raise IntentExpiredError(
                f"Intent {intent.intent_id} has expired", intent_id=intent.intent_id
            )

        logger.warning(
            "Checkout approved after intent expiry",
            intent_id=intent.intent_id,
            processor_subscription_id=remote.processor_id,
            processor_status=remote.status.value,
        )

    def _accepted_status(
        self, processor_subscription_id: str, remote: ProcessorSubscription
    ) -> SubscriptionStatus:
        target = VERIFIABLE_PROCESSOR_STATUSES.get(remote.status)
        if target is not None:
            return target

        retryable = remote.status == ProcessorStatus.APPROVAL_PENDING
        self.metrics.record_verification(
            "pending" if retryable else "rejected", remote.status.value
        )
        raise VerificationError(
            (
                "The subscription has not been approved yet"
                if retryable
                else f"The processor reports the subscription as {remote.status.value}"
            ),
            processor_subscription_id=processor_subscription_id,
            retryable=retryable,
            processor_status=remote.status.value,
        )

    async def _commit(
        self,
        processor_subscription_id: str,
        target: SubscriptionStatus,
        remote: ProcessorSubscription,
        caller: SubscriberContext,
        intent: SubscriptionIntent | None,
    ) -> tuple[Subscription, SubscriptionStatus | None]:
        """One read-merge-write attempt; returns ``(record, status before the write)``."""
        existing = await self.store.get_by_processor_id(processor_subscription_id)

        if existing is not None:
            if (
                existing.status == target
                or is_behind(existing.status, target)
                or not can_reconcile(existing.status, target)
            ):
                return existing, existing.status

            if target == SubscriptionStatus.ACTIVE:
                await self._guard_single_active(
                    existing.subscriber_id, existing.creator_id, remote, existing.id
                )

            promoted = existing.model_copy(
                update={"status": target, **self._billing_dates(remote, existing)}
            )
            record = await self.store.upsert(
                promoted,
                existing.version,
                event=self._event(existing, target, caller, "verified"),
            )
            return record, existing.status

        if intent is None:
            intent = await self.intents.find_open_intent_for_processor_id(
                processor_subscription_id
            )
            if intent is None:
                raise self._not_found(processor_subscription_id)

        if target == SubscriptionStatus.ACTIVE:
            await self._guard_single_active(intent.subscriber_id, intent.creator_id, remote)

        record = Subscription(
            subscriber_id=intent.subscriber_id,
            creator_id=intent.creator_id,
            processor_subscription_id=processor_subscription_id,
            status=target,
            amount=intent.amount,
            currency=intent.currency,
            interval=await self._interval_for(intent.creator_id),
            payment_method=self.config.payment_method,
            **self._billing_dates(remote),
        )
        event = SubscriptionEvent(
            subscription_id=record.id,
            event_type="verified",
            from_status=SubscriptionStatus.PENDING_APPROVAL,
            to_status=target,
            actor_id=caller.subscriber_id,
            event_data={"intent_id": intent.intent_id, "processor_status": remote.status.value},
        )
        return await self.store.insert(record, event), None

    async def _guard_single_active(
        self,
        subscriber_id: str,
        creator_id: str,
        remote: ProcessorSubscription,
        own_id: str | None = None,
    ) -> None:
        """Refuse to create a second active subscription; flag it for manual review."""
        other = await self.store.get_active_for_pair(subscriber_id, creator_id)
        if other is None or other.id == own_id:
            return

        flag = await self.store.get_open_flag(remote.processor_id)
        if flag is None:
            flag = await self.store.record_flag(
                ReconciliationFlag(
                    processor_subscription_id=remote.processor_id,
                    subscriber_id=subscriber_id,
                    creator_id=creator_id,
                    conflicting_subscription_id=other.id,
                    reason="Processor reports a second active subscription for the same creator",
                    processor_status=remote.status.value,
                )
            )
            self.metrics.record_flag()
            await emit_reconciliation_flagged(flag)

        raise DuplicateActiveSubscriptionError(
            "An active subscription to this creator already exists",
            processor_subscription_id=remote.processor_id,
            conflicting_subscription_id=other.id,
            flag_id=flag.flag_id,
        )

    async def _interval_for(self, creator_id: str) -> BillingInterval:
        if self.pricing is not None:
            price = await self.pricing.get_price(creator_id)
            if price is not None:
                return price.interval
        return BillingInterval(self.config.default_interval)

    def _billing_dates(
        self, remote: ProcessorSubscription, current: Subscription | None = None
    ) -> dict[str, Any]:
        return {
            "next_billing_date": remote.next_billing_time
            or (current.next_billing_date if current else None),
            "last_payment_date": remote.last_payment_time
            or (current.last_payment_date if current else None),
        }

    def _event(
        self,
        record: Subscription,
        target: SubscriptionStatus,
        caller: SubscriberContext,
        event_type: str,
        **data: Any,
    ) -> SubscriptionEvent:
        return SubscriptionEvent(
            subscription_id=record.id,
            event_type=event_type,
            from_status=record.status,
            to_status=target,
            actor_id=caller.subscriber_id,
            event_data=data,
        )

    def _not_found(self, processor_subscription_id: str) -> SubscriptionNotFoundError:
        return SubscriptionNotFoundError(
            "No pending checkout or subscription found for this processor subscription",
            processor_subscription_id=processor_subscription_id,
        )

    # ==================== Out-of-band synchronisation ====================

    async def sync_from_processor(
        self,
        processor_subscription_id: str,
        correlation_id: str | None = None,
    ) -> Subscription | None:
        """
        Re-read the processor and apply its status along legal edges.

        Used for processor notifications and operator resyncs. Unknown ids
        with an unswept intent are verified as the system caller; illegal or
        backwards moves are logged and ignored.
        """
        caller = SubscriberContext.system(correlation_id)

        existing = await self.store.get_by_processor_id(processor_subscription_id)
        if existing is None:
            intent = await self.intents.find_open_intent_for_processor_id(
                processor_subscription_id
            )
            if intent is None:
                logger.info(
                    "Ignoring notification for unknown processor subscription",
                    processor_subscription_id=processor_subscription_id,
                )
                return None
            try:
                return await self.verify_and_commit(processor_subscription_id, caller)
            except IntentExpiredError:
                logger.info(
                    "Notification for an expired checkout the processor never approved",
                    processor_subscription_id=processor_subscription_id,
                )
                return None
            except VerificationError as e:
                if e.retryable:
                    raise
                logger.info(
                    "Notification did not confirm the checkout",
                    processor_subscription_id=processor_subscription_id,
                    processor_status=e.context.get("processor_status"),
                )
                return None

        remote = await self.gateway.get_subscription_status(processor_subscription_id)
        target = PROCESSOR_STATUS_MAP[remote.status]

        async for attempt in conflict_retrying(self.config, "sync"):
            with attempt:
                current = await self.store.get_by_processor_id(processor_subscription_id)
                if current is None:
                    return None

                if current.status == target:
                    dates = self._billing_dates(remote, current)
                    if all(_same_instant(getattr(current, k), v) for k, v in dates.items()):
                        return current
                    return await self.store.upsert(
                        current.model_copy(update=dates), current.version
                    )

                if not can_reconcile(current.status, target):
                    logger.warning(
                        "Ignoring illegal processor status change",
                        subscription_id=current.id,
                        local_status=current.status.value,
                        processor_status=remote.status.value,
                    )
                    return current

                if target == SubscriptionStatus.ACTIVE:
                    await self._guard_single_active(
                        current.subscriber_id, current.creator_id, remote, current.id
                    )

                updates: dict[str, Any] = {"status": target, **self._billing_dates(remote, current)}
                if target == SubscriptionStatus.CANCELLED:
                    updates.update(
                        cancelled_at=self.clock(),
                        cancellation_reason=current.cancellation_reason
                        or "Cancelled at the payment processor",
                        next_billing_date=None,
                    )
                previous = current.status
                record = await self.store.upsert(
                    current.model_copy(update=updates),
                    current.version,
                    event=self._event(
                        current,
                        target,
                        caller,
                        "processor_sync",
                        processor_status=remote.status.value,
                    ),
                )

        logger.info(
            "Subscription synchronised from processor",
            subscription_id=record.id,
            from_status=previous.value,
            to_status=record.status.value,
        )
        log_subscription_audit(
            "subscription.synchronised",
            record,
            actor_id=caller.subscriber_id,
            previous_status=previous.value,
            source="processor",
        )
        await emit_subscription_event(
            STATUS_EVENTS[record.status],
            record,
            actor_id=caller.subscriber_id,
            previous_status=previous.value,
            source="processor",
        )
        return record

    async def recover_expired_checkout(
        self, caller: SubscriberContext, creator_id: str
    ) -> Subscription | None:
        """
        Settle the pair's expired checkout before a new one replaces it.

        Replacing the intent row would lose the only link between the old
        processor subscription and its subscriber, so an approval that landed
        after the TTL is committed first.
        """
        intent = await self.store.get_intent_for_pair(caller.subscriber_id, creator_id)
        if (
            intent is None
            or intent.consumed_at is not None
            or intent.processor_pending_id is None
            or not intent.is_expired(self.clock())
        ):
            return None

        try:
            return await self.verify_and_commit(intent.processor_pending_id, caller)
        except IntentExpiredError:
            return None
        except VerificationError as e:
            if e.retryable:
                raise
            logger.info(
                "Expired checkout was not approved",
                intent_id=intent.intent_id,
                processor_status=e.context.get("processor_status"),
            )
            return None

    # ==================== Manual reconciliation queue ====================

    async def list_open_flags(self) -> list[ReconciliationFlag]:
        return await self.store.list_open_flags()

    async def resolve_flag(self, flag_id: str, note: str) -> ReconciliationFlag:
        flag = await self.store.resolve_flag(flag_id, note, self.clock())
        logger.info("Reconciliation flag resolved", flag_id=flag_id)
        return flag


__all__ = ["ReconciliationService"]
