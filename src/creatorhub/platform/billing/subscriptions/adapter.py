"""
Checkout adapter.

The boundary the UI checkout widget talks to. It hands out the correlation
data needed to render the processor's approval flow and forwards the
processor-assigned id after approval. It never decides a subscription's
status itself; that is always the server-side verification's call.
"""

from decimal import Decimal
from typing import Any

import structlog

from creatorhub.platform.auth.context import SubscriberContext
from creatorhub.platform.billing.subscriptions.intents import SubscriptionIntentService
from creatorhub.platform.billing.subscriptions.reconciliation import ReconciliationService
from creatorhub.platform.billing.subscriptions.schemas import (
    IntentResponse,
    SubscriptionResponse,
)

logger = structlog.get_logger(__name__)


class CheckoutAdapter:
    """Presentation-facing facade over intent creation and verification."""

    def __init__(
        self,
        intents: SubscriptionIntentService,
        reconciliation: ReconciliationService,
    ) -> None:
        self.intents = intents
        self.reconciliation = reconciliation

    async def create_intent(
        self,
        caller: SubscriberContext,
        creator_id: str,
        amount: Decimal | str,
        currency: str,
    ) -> IntentResponse:
        # An approval for the previous, expired checkout must land before its intent is replaced
        await self.reconciliation.recover_expired_checkout(caller, creator_id)
        intent = await self.intents.create_intent(caller, creator_id, amount, currency)
        return IntentResponse.from_intent(intent)

    async def on_approve(
        self,
        caller: SubscriberContext,
        processor_subscription_id: str,
        client_payload: dict[str, Any] | None = None,
    ) -> SubscriptionResponse:
        """Forward the approved id for server-side verification."""
        subscription = await self.reconciliation.verify_and_commit(
            processor_subscription_id, caller, client_payload=client_payload
        )
        return SubscriptionResponse.model_validate(subscription)


__all__ = ["CheckoutAdapter"]
