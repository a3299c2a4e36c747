"""
Tests for the subscription HTTP endpoints.
"""

import pytest
from httpx import AsyncClient

from creatorhub.platform.billing.processors.base import ProcessorStatus

pytestmark = [pytest.mark.asyncio, pytest.mark.integration]

BASE = "/api/v1/subscriptions"


async def _checkout(client: AsyncClient, headers, creator_id="creator-1", amount="9.99"):
    return await client.post(
        f"{BASE}/intents",
        json={"creator_id": creator_id, "amount": amount, "currency": "USD"},
        headers=headers,
    )


async def _subscribe(client: AsyncClient, headers, gateway) -> dict:
    intent = (await _checkout(client, headers)).json()
    pid = intent["processor_checkout_token"]
    gateway.approve(pid)
    response = await client.post(
        f"{BASE}/verify", json={"processor_subscription_id": pid}, headers=headers
    )
    assert response.status_code == 200
    return response.json()


class TestCheckoutEndpoints:
    """Intent creation and verification over HTTP."""

    async def test_requires_authentication(self, async_client: AsyncClient, pricing):
        response = await _checkout(async_client, {})

        assert response.status_code == 401

    async def test_create_intent(self, async_client: AsyncClient, auth_headers, pricing):
        response = await _checkout(async_client, auth_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["creator_id"] == "creator-1"
        assert data["amount"] == "9.99"
        assert data["processor_checkout_token"].startswith("I-MEM")
        assert data["approval_url"].endswith(data["processor_checkout_token"])

    async def test_duplicate_checkout_returns_same_intent(
        self, async_client: AsyncClient, auth_headers, pricing, gateway
    ):
        first = (await _checkout(async_client, auth_headers)).json()
        second = (await _checkout(async_client, auth_headers)).json()

        assert second["intent_id"] == first["intent_id"]
        assert len(gateway.calls_for("create_pending_subscription")) == 1

    async def test_price_mismatch_is_422(self, async_client: AsyncClient, auth_headers, pricing):
        response = await _checkout(async_client, auth_headers, amount="1.00")

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["error_code"] == "VALIDATION_ERROR"
        assert error["context"]["field"] == "amount"

    async def test_unknown_creator_is_404(self, async_client: AsyncClient, auth_headers, pricing):
        response = await _checkout(async_client, auth_headers, creator_id="creator-404")

        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "CREATOR_NOT_FOUND"

    async def test_malformed_request_is_rejected(self, async_client: AsyncClient, auth_headers):
        response = await async_client.post(
            f"{BASE}/intents",
            json={"creator_id": "creator-1", "amount": "0", "currency": "DOLLARS"},
            headers=auth_headers,
        )

        assert response.status_code == 422

    async def test_get_intent_and_ownership(
        self, async_client: AsyncClient, auth_headers, other_auth_headers, pricing
    ):
        intent = (await _checkout(async_client, auth_headers)).json()

        own = await async_client.get(f"{BASE}/intents/{intent['intent_id']}", headers=auth_headers)
        foreign = await async_client.get(
            f"{BASE}/intents/{intent['intent_id']}", headers=other_auth_headers
        )

        assert own.status_code == 200
        assert foreign.status_code == 404
        assert foreign.json()["error"]["error_code"] == "INTENT_NOT_FOUND"

    async def test_verify_after_approval(
        self, async_client: AsyncClient, auth_headers, pricing, gateway
    ):
        record = await _subscribe(async_client, auth_headers, gateway)

        assert record["status"] == "active"
        assert record["subscriber_id"] == "subscriber-1"
        assert record["version"] == 1

    async def test_verify_before_approval_is_retryable(
        self, async_client: AsyncClient, auth_headers, pricing
    ):
        intent = (await _checkout(async_client, auth_headers)).json()

        response = await async_client.post(
            f"{BASE}/verify",
            json={"processor_subscription_id": intent["processor_checkout_token"]},
            headers=auth_headers,
        )

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        error = response.json()["error"]
        assert error["error_code"] == "VERIFICATION_RETRYABLE"
        assert error["retryable"] is True

    async def test_checkout_after_subscribing_is_conflict(
        self, async_client: AsyncClient, auth_headers, pricing, gateway
    ):
        await _subscribe(async_client, auth_headers, gateway)

        response = await _checkout(async_client, auth_headers)

        assert response.status_code == 409
        assert response.json()["error"]["error_code"] == "ALREADY_SUBSCRIBED"


class TestReadEndpoints:
    """Subscription listing and status views."""

    async def test_list_my_subscriptions(
        self, async_client: AsyncClient, auth_headers, other_auth_headers, pricing, gateway
    ):
        record = await _subscribe(async_client, auth_headers, gateway)

        mine = (await async_client.get(f"{BASE}/me", headers=auth_headers)).json()
        theirs = (await async_client.get(f"{BASE}/me", headers=other_auth_headers)).json()
        filtered = (
            await async_client.get(
                f"{BASE}/me", params={"status": "cancelled"}, headers=auth_headers
            )
        ).json()

        assert mine["total"] == 1
        assert mine["subscriptions"][0]["id"] == record["id"]
        assert theirs["total"] == 0
        assert filtered["total"] == 0

    async def test_creator_status(self, async_client: AsyncClient, auth_headers, pricing, gateway):
        before = (await async_client.get(f"{BASE}/status/creator-1", headers=auth_headers)).json()
        await _subscribe(async_client, auth_headers, gateway)
        after = (await async_client.get(f"{BASE}/status/creator-1", headers=auth_headers)).json()

        assert before["is_subscribed"] is False
        assert before["subscription"] is None
        assert after["is_subscribed"] is True
        assert after["status"] == "active"

    async def test_get_subscription_ownership(
        self, async_client: AsyncClient, auth_headers, other_auth_headers, pricing, gateway
    ):
        record = await _subscribe(async_client, auth_headers, gateway)

        own = await async_client.get(f"{BASE}/{record['id']}", headers=auth_headers)
        foreign = await async_client.get(f"{BASE}/{record['id']}", headers=other_auth_headers)

        assert own.status_code == 200
        assert foreign.status_code == 404
        assert foreign.json()["error"]["error_code"] == "SUBSCRIPTION_NOT_FOUND"


class TestLifecycleEndpoints:
    """Cancel, suspend and reactivate over HTTP."""

    async def test_cancel(self, async_client: AsyncClient, auth_headers, pricing, gateway):
        record = await _subscribe(async_client, auth_headers, gateway)

        response = await async_client.post(
            f"{BASE}/{record['id']}/cancel", json={"reason": "Moving on"}, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "cancelled"
        assert data["cancellation_reason"] == "Moving on"
        assert gateway.subscriptions[record["processor_subscription_id"]].status == (
            ProcessorStatus.CANCELLED
        )

    async def test_cancel_without_body_uses_default_reason(
        self, async_client: AsyncClient, auth_headers, pricing, gateway
    ):
        record = await _subscribe(async_client, auth_headers, gateway)

        response = await async_client.post(f"{BASE}/{record['id']}/cancel", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["cancellation_reason"] == "Cancelled by subscriber"

    async def test_cancel_twice_is_illegal(
        self, async_client: AsyncClient, auth_headers, pricing, gateway
    ):
        record = await _subscribe(async_client, auth_headers, gateway)
        await async_client.post(f"{BASE}/{record['id']}/cancel", headers=auth_headers)

        response = await async_client.post(f"{BASE}/{record['id']}/cancel", headers=auth_headers)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["error_code"] == "ILLEGAL_STATE_TRANSITION"
        assert error["context"]["current_state"] == "cancelled"

    async def test_suspend_and_reactivate(
        self, async_client: AsyncClient, auth_headers, pricing, gateway
    ):
        record = await _subscribe(async_client, auth_headers, gateway)

        suspended = await async_client.post(
            f"{BASE}/{record['id']}/suspend", json={"reason": "Holiday"}, headers=auth_headers
        )
        reactivated = await async_client.post(
            f"{BASE}/{record['id']}/reactivate", headers=auth_headers
        )

        assert suspended.json()["status"] == "suspended"
        assert reactivated.json()["status"] == "active"

    async def test_processor_outage_is_503(
        self, async_client: AsyncClient, auth_headers, pricing, gateway
    ):
        record = await _subscribe(async_client, auth_headers, gateway)
        gateway.fail_next("cancel_subscription")

        response = await async_client.post(f"{BASE}/{record['id']}/cancel", headers=auth_headers)

        assert response.status_code == 503
        assert response.json()["error"]["error_code"] == "PROCESSOR_UNAVAILABLE"


class TestRequestContext:
    """Correlation ids on responses."""

    async def test_correlation_id_round_trip(
        self, async_client: AsyncClient, auth_headers, pricing
    ):
        response = await async_client.post(
            f"{BASE}/intents",
            json={"creator_id": "creator-1", "amount": "1.00", "currency": "USD"},
            headers={**auth_headers, "X-Correlation-ID": "corr-123"},
        )

        assert response.headers["X-Correlation-ID"] == "corr-123"
        assert response.json()["correlation_id"] == "corr-123"
