"""
Lifecycle commands.

Each command carries the explicit caller context it runs under.
"""

from pydantic import BaseModel, ConfigDict, Field

from creatorhub.platform.auth.context import SubscriberContext


class LifecycleCommand(BaseModel):
    """Base for subscriber-initiated lifecycle commands."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    caller: SubscriberContext
    subscription_id: str = Field(min_length=1)
    reason: str | None = Field(None, max_length=500)


class CancelSubscriptionCommand(LifecycleCommand):
    """Cancel at the processor, then record the cancellation."""

    reason: str = Field("Cancelled by subscriber", min_length=1, max_length=500)


class SuspendSubscriptionCommand(LifecycleCommand):
    """Pause billing (reversible)."""


class ReactivateSubscriptionCommand(LifecycleCommand):
    """Resume billing for a suspended subscription."""


__all__ = [
    "LifecycleCommand",
    "CancelSubscriptionCommand",
    "SuspendSubscriptionCommand",
    "ReactivateSubscriptionCommand",
]
