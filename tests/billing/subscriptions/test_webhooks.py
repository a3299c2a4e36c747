"""
Tests for the processor notification endpoint.
"""

import httpx
import pytest
from httpx import AsyncClient

from creatorhub.platform.billing.config import PayPalConfig
from creatorhub.platform.billing.processors.base import ProcessorStatus
from creatorhub.platform.billing.processors.paypal import PayPalGateway
from creatorhub.platform.billing.subscriptions.models import SubscriptionStatus
from creatorhub.platform.billing.subscriptions.webhooks import extract_processor_subscription_id

URL = "/api/v1/webhooks/processor"

PAYPAL_SIGNATURE_HEADERS = {
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    "PAYPAL-CERT-URL": "https://api.paypal.com/cert",
    "PAYPAL-TRANSMISSION-ID": "tx-1",
    "PAYPAL-TRANSMISSION-SIG": "sig",
    "PAYPAL-TRANSMISSION-TIME": "2026-10-19T10:00:00Z",
    "Content-Type": "application/json",
}


def _notification(event_type: str, resource: dict) -> dict:
    return {"id": "WH-1", "event_type": event_type, "resource": resource}


@pytest.mark.unit
class TestExtractProcessorSubscriptionId:
    """Locating the subscription id in notification bodies."""

    def test_subscription_events_use_resource_id(self):
        event = _notification("BILLING.SUBSCRIPTION.CANCELLED", {"id": "I-1"})

        assert extract_processor_subscription_id(event) == "I-1"

    def test_payment_events_use_billing_agreement(self):
        event = _notification(
            "PAYMENT.SALE.COMPLETED", {"id": "SALE-9", "billing_agreement_id": "I-2"}
        )

        assert extract_processor_subscription_id(event) == "I-2"

    def test_missing_resource(self):
        assert extract_processor_subscription_id({"event_type": "X"}) is None
        assert extract_processor_subscription_id(_notification("X", {"id": 42})) is None


@pytest.mark.asyncio
@pytest.mark.integration
class TestProcessorWebhook:
    """Notifications trigger a re-read of processor truth."""

    async def test_cancellation_notification(
        self, async_client: AsyncClient, gateway, store, active_subscription
    ):
        pid = active_subscription.processor_subscription_id
        gateway.set_status(pid, ProcessorStatus.CANCELLED)

        response = await async_client.post(
            URL, json=_notification("BILLING.SUBSCRIPTION.CANCELLED", {"id": pid})
        )

        assert response.status_code == 200
        assert response.json() == {"status": "processed", "subscription_id": active_subscription.id}
        record = await store.get_by_id(active_subscription.id)
        assert record.status == SubscriptionStatus.CANCELLED

    async def test_body_status_is_not_trusted(
        self, async_client: AsyncClient, store, active_subscription
    ):
        pid = active_subscription.processor_subscription_id

        response = await async_client.post(
            URL,
            json=_notification("BILLING.SUBSCRIPTION.CANCELLED", {"id": pid, "status": "CANCELLED"}),
        )

        assert response.status_code == 200
        record = await store.get_by_id(active_subscription.id)
        assert record.status == SubscriptionStatus.ACTIVE

    async def test_unknown_subscription_is_ignored(self, async_client: AsyncClient):
        response = await async_client.post(
            URL, json=_notification("BILLING.SUBSCRIPTION.ACTIVATED", {"id": "I-UNKNOWN"})
        )

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    async def test_invalid_json(self, async_client: AsyncClient):
        response = await async_client.post(
            URL, content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["error_code"] == "WEBHOOK_ERROR"

    async def test_invalid_json_with_paypal_gateway(self, app, async_client: AsyncClient):
        seen: list[httpx.Request] = []

        def _paypal(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(500)

        app.state.processor_gateway = PayPalGateway(
            PayPalConfig(
                client_id="client",
                client_secret="secret",
                webhook_id="WH-ID",
                return_url="https://app.example.com/return",
                cancel_url="https://app.example.com/cancel",
            ),
            transport=httpx.MockTransport(_paypal),
        )

        response = await async_client.post(
            URL, content=b"{not json", headers=PAYPAL_SIGNATURE_HEADERS
        )

        assert response.status_code == 400
        assert response.json()["error"]["error_code"] == "WEBHOOK_ERROR"
        assert seen == []

    async def test_signature_is_checked(
        self, async_client: AsyncClient, gateway, active_subscription
    ):
        gateway.webhook_secret = "s3cret"
        body = _notification(
            "BILLING.SUBSCRIPTION.CANCELLED", {"id": active_subscription.processor_subscription_id}
        )

        rejected = await async_client.post(URL, json=body)
        accepted = await async_client.post(
            URL, json=body, headers={"X-Processor-Signature": "s3cret"}
        )

        assert rejected.status_code == 400
        assert accepted.status_code == 200

    async def test_processor_outage_asks_for_redelivery(
        self, async_client: AsyncClient, gateway, active_subscription
    ):
        gateway.fail_next("get_subscription_status")

        response = await async_client.post(
            URL,
            json=_notification(
                "BILLING.SUBSCRIPTION.UPDATED", {"id": active_subscription.processor_subscription_id}
            ),
        )

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
