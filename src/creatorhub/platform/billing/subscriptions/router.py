"""
Creator subscription router.

Checkout, verification, status and lifecycle endpoints for subscribers.
Every endpoint resolves the caller from the bearer token; billing errors are
rendered by the billing error handler.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, status

from creatorhub.platform.auth.context import SubscriberContext, get_subscriber_context
from creatorhub.platform.billing.subscriptions.adapter import CheckoutAdapter
from creatorhub.platform.billing.subscriptions.commands import (
    CancelSubscriptionCommand,
    ReactivateSubscriptionCommand,
    SuspendSubscriptionCommand,
)
from creatorhub.platform.billing.subscriptions.dependencies import (
    get_checkout_adapter,
    get_intent_service,
    get_lifecycle_service,
    get_query_service,
)
from creatorhub.platform.billing.subscriptions.intents import SubscriptionIntentService
from creatorhub.platform.billing.subscriptions.lifecycle import SubscriptionLifecycleService
from creatorhub.platform.billing.subscriptions.models import SubscriptionStatus
from creatorhub.platform.billing.subscriptions.queries import SubscriptionQueryService
from creatorhub.platform.billing.subscriptions.schemas import (
    CancelRequest,
    CreateIntentRequest,
    CreatorStatusResponse,
    IntentResponse,
    LifecycleRequest,
    SubscriptionListResponse,
    SubscriptionResponse,
    VerifyRequest,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/subscriptions")


# ==================== Checkout ====================


@router.post("/intents", response_model=IntentResponse, status_code=status.HTTP_201_CREATED)
async def create_subscription_intent(
    payload: CreateIntentRequest,
    caller: Annotated[SubscriberContext, Depends(get_subscriber_context)],
    adapter: Annotated[CheckoutAdapter, Depends(get_checkout_adapter)],
) -> IntentResponse:
    """
    Start a checkout for a creator.

    Re-submitting while an intent is live returns the same intent.
    """
    return await adapter.create_intent(
        caller, payload.creator_id, payload.amount, payload.currency
    )


@router.get("/intents/{intent_id}", response_model=IntentResponse)
async def get_subscription_intent(
    intent_id: str,
    caller: Annotated[SubscriberContext, Depends(get_subscriber_context)],
    intents: Annotated[SubscriptionIntentService, Depends(get_intent_service)],
) -> IntentResponse:
    """Look up one of the caller's intents; expired intents are reported as gone."""
    intent = await intents.get_intent(intent_id, caller)
    return IntentResponse.from_intent(intent)


@router.post("/verify", response_model=SubscriptionResponse)
async def verify_subscription(
    payload: VerifyRequest,
    caller: Annotated[SubscriberContext, Depends(get_subscriber_context)],
    adapter: Annotated[CheckoutAdapter, Depends(get_checkout_adapter)],
) -> SubscriptionResponse:
    """
    Confirm an approved checkout against the processor and record it.

    Idempotent: repeated calls for the same processor id return the same record.
    """
    return await adapter.on_approve(
        caller, payload.processor_subscription_id, client_payload=payload.client_payload
    )


# ==================== Read-only views ====================


@router.get("/me", response_model=SubscriptionListResponse)
async def list_my_subscriptions(
    caller: Annotated[SubscriberContext, Depends(get_subscriber_context)],
    queries: Annotated[SubscriptionQueryService, Depends(get_query_service)],
    status_filter: list[SubscriptionStatus] | None = Query(
        None, alias="status", description="Filter by status"
    ),
) -> SubscriptionListResponse:
    """List the caller's subscriptions, newest first."""
    records = await queries.list_subscriptions(caller, statuses=status_filter)
    return SubscriptionListResponse.from_records(records)


@router.get("/status/{creator_id}", response_model=CreatorStatusResponse)
async def get_creator_status(
    creator_id: str,
    caller: Annotated[SubscriberContext, Depends(get_subscriber_context)],
    queries: Annotated[SubscriptionQueryService, Depends(get_query_service)],
) -> CreatorStatusResponse:
    """Whether the caller is subscribed to a creator. Safe to poll."""
    view = await queries.get_status_for_creator(caller, creator_id)
    return CreatorStatusResponse(
        creator_id=view.creator_id,
        is_subscribed=view.is_subscribed,
        status=view.status,
        subscription=(
            SubscriptionResponse.model_validate(view.subscription) if view.subscription else None
        ),
    )


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: str,
    caller: Annotated[SubscriberContext, Depends(get_subscriber_context)],
    queries: Annotated[SubscriptionQueryService, Depends(get_query_service)],
) -> SubscriptionResponse:
    """Get one of the caller's subscriptions."""
    record = await queries.get_subscription(caller, subscription_id)
    return SubscriptionResponse.model_validate(record)


# ==================== Lifecycle ====================


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: str,
    caller: Annotated[SubscriberContext, Depends(get_subscriber_context)],
    lifecycle: Annotated[SubscriptionLifecycleService, Depends(get_lifecycle_service)],
    payload: CancelRequest | None = None,
) -> SubscriptionResponse:
    """Cancel at the processor, then record the cancellation."""
    payload = payload or CancelRequest()
    record = await lifecycle.cancel(
        CancelSubscriptionCommand(
            caller=caller, subscription_id=subscription_id, reason=payload.reason
        )
    )
    return SubscriptionResponse.model_validate(record)


@router.post("/{subscription_id}/suspend", response_model=SubscriptionResponse)
async def suspend_subscription(
    subscription_id: str,
    caller: Annotated[SubscriberContext, Depends(get_subscriber_context)],
    lifecycle: Annotated[SubscriptionLifecycleService, Depends(get_lifecycle_service)],
    payload: LifecycleRequest | None = None,
) -> SubscriptionResponse:
    """Pause billing for an active subscription."""
    reason = payload.reason if payload else None
    record = await lifecycle.suspend(
        SuspendSubscriptionCommand(caller=caller, subscription_id=subscription_id, reason=reason)
    )
    return SubscriptionResponse.model_validate(record)


@router.post("/{subscription_id}/reactivate", response_model=SubscriptionResponse)
async def reactivate_subscription(
    subscription_id: str,
    caller: Annotated[SubscriberContext, Depends(get_subscriber_context)],
    lifecycle: Annotated[SubscriptionLifecycleService, Depends(get_lifecycle_service)],
    payload: LifecycleRequest | None = None,
) -> SubscriptionResponse:
    """Resume billing for a suspended subscription."""
    reason = payload.reason if payload else None
    record = await lifecycle.reactivate(
        ReactivateSubscriptionCommand(
            caller=caller, subscription_id=subscription_id, reason=reason
        )
    )
    return SubscriptionResponse.model_validate(record)


__all__ = ["router"]
