"""
Processor webhook endpoint.

Notifications are treated as a prompt to re-read: the body only supplies the
processor subscription id, the status always comes from the processor's own
status endpoint via ``ReconciliationService.sync_from_processor``.
"""

import json
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Request

from creatorhub.platform.billing.exceptions import (
    DuplicateActiveSubscriptionError,
    WebhookError,
)
from creatorhub.platform.billing.processors.base import ProcessorGateway
from creatorhub.platform.billing.subscriptions.dependencies import (
    get_processor_gateway,
    get_reconciliation_service,
)
from creatorhub.platform.billing.subscriptions.reconciliation import ReconciliationService
from creatorhub.platform.billing.subscriptions.schemas import WebhookAck

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks")

# Payment events reference the subscription through billing_agreement_id
SUBSCRIPTION_ID_KEYS = ("billing_agreement_id", "id")


def extract_processor_subscription_id(event: dict[str, Any]) -> str | None:
    """Pull the processor subscription id out of a notification body."""
    resource = event.get("resource")
    if not isinstance(resource, dict):
        return None
    event_type = str(event.get("event_type", ""))
    keys = SUBSCRIPTION_ID_KEYS if event_type.startswith("PAYMENT.") else ("id",)
    for key in keys:
        value = resource.get(key)
        if isinstance(value, str) and value:
            return value
    return None


@router.post("/processor", response_model=WebhookAck)
async def handle_processor_webhook(
    request: Request,
    gateway: Annotated[ProcessorGateway, Depends(get_processor_gateway)],
    reconciliation: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
) -> WebhookAck:
    """
    Receive a processor notification.

    Unknown subscriptions and duplicate-active conflicts are acknowledged so
    the processor stops redelivering; transient processor failures surface
    as 503 so it retries.
    """
    body = await request.body()
    if not await gateway.verify_webhook_signature(request.headers, body):
        raise WebhookError("Invalid webhook signature")

    try:
        event = json.loads(body)
    except json.JSONDecodeError as e:
        raise WebhookError("Webhook body is not valid JSON") from e
    if not isinstance(event, dict):
        raise WebhookError("Webhook body must be a JSON object")

    event_type = event.get("event_type")
    processor_subscription_id = extract_processor_subscription_id(event)
    if processor_subscription_id is None:
        logger.info("Ignoring webhook without a subscription reference", event_type=event_type)
        return WebhookAck(status="ignored")

    logger.info(
        "Processor webhook received",
        event_type=event_type,
        processor_subscription_id=processor_subscription_id,
    )

    correlation_id = getattr(request.state, "correlation_id", None)
    try:
        record = await reconciliation.sync_from_processor(
            processor_subscription_id, correlation_id=correlation_id
        )
    except DuplicateActiveSubscriptionError as e:
        logger.warning(
            "Webhook produced a duplicate active subscription; flagged for review",
            processor_subscription_id=processor_subscription_id,
            flag_id=e.context.get("flag_id"),
        )
        return WebhookAck(status="flagged")

    if record is None:
        return WebhookAck(status="ignored")
    return WebhookAck(status="processed", subscription_id=record.id)


__all__ = ["router", "extract_processor_subscription_id"]
