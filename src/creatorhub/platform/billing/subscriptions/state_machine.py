"""
Subscription status transitions.

``LIFECYCLE_TRANSITIONS`` holds the edges subscriber commands may take;
``RECONCILIATION_TRANSITIONS`` adds the edges only processor truth may
drive (initial commit, approval promotion, processor-side expiry).
"""

from creatorhub.platform.billing.exceptions import IllegalStateTransitionError
from creatorhub.platform.billing.processors.base import ProcessorStatus
from creatorhub.platform.billing.subscriptions.models import SubscriptionStatus

S = SubscriptionStatus

LIFECYCLE_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    S.PENDING_APPROVAL: frozenset(),
    S.APPROVED: frozenset(),
    S.ACTIVE: frozenset({S.SUSPENDED, S.CANCELLED}),
    S.SUSPENDED: frozenset({S.ACTIVE, S.CANCELLED}),
    S.CANCELLED: frozenset(),
    S.EXPIRED: frozenset(),
}

RECONCILIATION_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    S.PENDING_APPROVAL: frozenset({S.ACTIVE, S.APPROVED}),
    S.APPROVED: frozenset({S.ACTIVE, S.EXPIRED}),
    S.ACTIVE: frozenset({S.SUSPENDED, S.CANCELLED, S.EXPIRED}),
    S.SUSPENDED: frozenset({S.ACTIVE, S.CANCELLED}),
    S.CANCELLED: frozenset(),
    S.EXPIRED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.CANCELLED, S.EXPIRED})

# Statuses accepted when verifying a freshly approved checkout
VERIFIABLE_PROCESSOR_STATUSES: dict[ProcessorStatus, SubscriptionStatus] = {
    ProcessorStatus.ACTIVE: S.ACTIVE,
    ProcessorStatus.APPROVED: S.APPROVED,
}

PROCESSOR_STATUS_MAP: dict[ProcessorStatus, SubscriptionStatus] = {
    ProcessorStatus.APPROVAL_PENDING: S.PENDING_APPROVAL,
    ProcessorStatus.APPROVED: S.APPROVED,
    ProcessorStatus.ACTIVE: S.ACTIVE,
    ProcessorStatus.SUSPENDED: S.SUSPENDED,
    ProcessorStatus.CANCELLED: S.CANCELLED,
    ProcessorStatus.EXPIRED: S.EXPIRED,
}

# Rough ordering used to recognise stale (backwards) updates
_PROGRESS = {
    S.PENDING_APPROVAL: 0,
    S.APPROVED: 1,
    S.ACTIVE: 2,
    S.SUSPENDED: 2,
    S.CANCELLED: 3,
    S.EXPIRED: 3,
}


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    """Whether a subscriber command may move ``current`` to ``target``."""
    return target in LIFECYCLE_TRANSITIONS[current]


def can_reconcile(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    """Whether processor truth may move ``current`` to ``target``."""
    return target in RECONCILIATION_TRANSITIONS[current]


def is_behind(current: SubscriptionStatus, reported: SubscriptionStatus) -> bool:
    """Whether ``reported`` is a status the record has already moved past."""
    return _PROGRESS[reported] < _PROGRESS[current]


def ensure_transition(
    current: SubscriptionStatus,
    target: SubscriptionStatus,
    subscription_id: str | None = None,
) -> None:
    """Raise ``IllegalStateTransitionError`` unless the command edge exists."""
    if not can_transition(current, target):
        raise IllegalStateTransitionError(
            f"Subscription cannot move from {current.value} to {target.value}",
            current_state=current.value,
            requested_state=target.value,
            subscription_id=subscription_id,
        )


__all__ = [
    "LIFECYCLE_TRANSITIONS",
    "RECONCILIATION_TRANSITIONS",
    "TERMINAL_STATUSES",
    "VERIFIABLE_PROCESSOR_STATUSES",
    "PROCESSOR_STATUS_MAP",
    "can_transition",
    "can_reconcile",
    "is_behind",
    "ensure_transition",
]
