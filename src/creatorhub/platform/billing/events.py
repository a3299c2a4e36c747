"""
Subscription event types and event emission helpers.

This module defines the subscription lifecycle events and provides
helper functions for emitting them through the event bus once the
corresponding state change has been committed.
"""

from typing import TYPE_CHECKING, Any

import structlog

from creatorhub.platform.events import EventPriority, get_event_bus

if TYPE_CHECKING:
    from creatorhub.platform.billing.subscriptions.models import (
        ReconciliationFlag,
        Subscription,
    )
    from creatorhub.platform.events import EventBus

logger = structlog.get_logger(__name__)


# ============================================================================
# Subscription Event Types
# ============================================================================


class SubscriptionEvents:
    """Subscription event type constants."""

    INTENT_CREATED = "subscription.intent_created"

    SUBSCRIPTION_APPROVED = "subscription.approved"
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_SUSPENDED = "subscription.suspended"
    SUBSCRIPTION_REACTIVATED = "subscription.reactivated"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    SUBSCRIPTION_EXPIRED = "subscription.expired"

    RECONCILIATION_FLAGGED = "subscription.reconciliation_flagged"


def _subscription_payload(subscription: "Subscription") -> dict[str, Any]:
    return {
        "subscription_id": subscription.id,
        "subscriber_id": subscription.subscriber_id,
        "creator_id": subscription.creator_id,
        "processor_subscription_id": subscription.processor_subscription_id,
        "status": subscription.status.value,
        "amount": str(subscription.amount),
        "currency": subscription.currency,
        "interval": subscription.interval,
        "version": subscription.version,
    }


# ============================================================================
# Event Emission Helpers
# ============================================================================


async def emit_subscription_event(
    event_type: str,
    subscription: "Subscription",
    actor_id: str | None = None,
    event_bus: "EventBus | None" = None,
    **extra_data: Any,
) -> None:
    """
    Emit a subscription lifecycle event.

    Args:
        event_type: One of the ``SubscriptionEvents`` constants
        subscription: Committed subscription state
        actor_id: Subscriber (or ``system``) who caused the change
        event_bus: Event bus instance (injected, optional - will use global if not provided)
        **extra_data: Additional event data
    """
    if event_bus is None:
        event_bus = get_event_bus()

    await event_bus.publish(
        event_type=event_type,
        payload={**_subscription_payload(subscription), **extra_data},
        metadata={
            "actor_id": actor_id,
            "source": "billing.subscriptions",
        },
        priority=EventPriority.HIGH,
    )

    logger.info(
        "Subscription event emitted",
        event_type=event_type,
        subscription_id=subscription.id,
        status=subscription.status.value,
    )


async def emit_intent_created(
    intent_id: str,
    subscriber_id: str,
    creator_id: str,
    amount: str,
    currency: str,
    processor_pending_id: str,
    event_bus: "EventBus | None" = None,
) -> None:
    """Emit intent created event."""
    if event_bus is None:
        event_bus = get_event_bus()

    await event_bus.publish(
        event_type=SubscriptionEvents.INTENT_CREATED,
        payload={
            "intent_id": intent_id,
            "subscriber_id": subscriber_id,
            "creator_id": creator_id,
            "amount": amount,
            "currency": currency,
            "processor_pending_id": processor_pending_id,
        },
        metadata={"actor_id": subscriber_id, "source": "billing.subscriptions"},
        priority=EventPriority.NORMAL,
    )


async def emit_reconciliation_flagged(
    flag: "ReconciliationFlag",
    event_bus: "EventBus | None" = None,
) -> None:
    """
    Emit a manual-reconciliation event.

    Raised when a processor reports a second active subscription for a
    subscriber/creator pair that already has one locally.
    """
    if event_bus is None:
        event_bus = get_event_bus()

    await event_bus.publish(
        event_type=SubscriptionEvents.RECONCILIATION_FLAGGED,
        payload={
            "flag_id": flag.flag_id,
            "processor_subscription_id": flag.processor_subscription_id,
            "subscriber_id": flag.subscriber_id,
            "creator_id": flag.creator_id,
            "conflicting_subscription_id": flag.conflicting_subscription_id,
            "reason": flag.reason,
        },
        metadata={"source": "billing.subscriptions"},
        priority=EventPriority.CRITICAL,
    )

    logger.warning(
        "Subscription flagged for manual reconciliation",
        flag_id=flag.flag_id,
        processor_subscription_id=flag.processor_subscription_id,
    )


__all__ = [
    "SubscriptionEvents",
    "emit_subscription_event",
    "emit_intent_created",
    "emit_reconciliation_flagged",
]
