"""
PayPal Billing Subscriptions gateway.

Talks to the PayPal REST API (``/v1/billing/subscriptions``) with an OAuth2
client-credentials token that is cached until shortly before it expires.
"""

import json
import time
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx
import structlog

from creatorhub.platform.billing.config import PayPalConfig
from creatorhub.platform.billing.exceptions import (
    BillingConfigurationError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
)
from creatorhub.platform.billing.money_utils import money_handler
from creatorhub.platform.billing.processors.base import (
    PendingSubscription,
    ProcessorGateway,
    ProcessorStatus,
    ProcessorSubscription,
)

logger = structlog.get_logger(__name__)

# Refresh the access token this many seconds before PayPal expires it
TOKEN_EXPIRY_MARGIN_SECONDS = 60

WEBHOOK_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class PayPalGateway(ProcessorGateway):
    """PayPal API client for recurring subscriptions."""

    name = "paypal"

    def __init__(
        self,
        config: PayPalConfig,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize PayPal gateway.

        Args:
            config: PayPal credentials and URLs
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        if not config.client_id or not config.client_secret:
            raise BillingConfigurationError(
                "PayPal client credentials are not configured",
                config_key="paypal.client_id",
            )

        self.config = config
        self.timeout = timeout
        self._transport = transport

        self._client: httpx.AsyncClient | None = None
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers={"Accept": "application/json"},
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _get_access_token(self) -> str:
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        client = await self._get_client()
        try:
            response = await client.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=httpx.BasicAuth(self.config.client_id, self.config.client_secret),
            )
        except httpx.TimeoutException as e:
            logger.error("PayPal token request timeout", error=str(e))
            raise ProcessorUnavailableError(
                "PayPal token request timed out", operation="authenticate"
            ) from e
        except httpx.RequestError as e:
            logger.error("PayPal token request error", error=str(e))
            raise ProcessorUnavailableError(
                f"PayPal token request failed: {e}", operation="authenticate"
            ) from e

        if response.status_code >= 500:
            raise ProcessorUnavailableError(
                "PayPal authentication is unavailable",
                operation="authenticate",
                provider_status=response.status_code,
            )
        if response.status_code >= 400:
            raise BillingConfigurationError(
                "PayPal rejected the configured client credentials",
                config_key="paypal.client_secret",
            )

        payload = response.json()
        self._access_token = payload["access_token"]
        expires_in = int(payload.get("expires_in", 0))
        self._token_expires_at = time.monotonic() + max(
            expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0
        )
        return self._access_token

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        data: dict[str, Any] | None = None,
        processor_id: str | None = None,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Make an authenticated request to the PayPal API.

        Raises:
            ProcessorUnavailableError: timeout, network error, 5xx or 429
            ProcessorRejectedError: any other 4xx
        """
        token = await self._get_access_token()
        client = await self._get_client()

        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        if request_id:
            headers["PayPal-Request-Id"] = request_id

        try:
            response = await client.request(method=method, url=path, json=data, headers=headers)
        except httpx.TimeoutException as e:
            logger.error("PayPal request timeout", path=path, operation=operation, error=str(e))
            raise ProcessorUnavailableError(
                f"PayPal request timed out: {operation}",
                operation=operation,
                processor_id=processor_id,
            ) from e
        except httpx.RequestError as e:
            logger.error("PayPal request error", path=path, operation=operation, error=str(e))
            raise ProcessorUnavailableError(
                f"PayPal request failed: {e}",
                operation=operation,
                processor_id=processor_id,
            ) from e

        if response.status_code == 401:
            # Token revoked early; drop it so the next call re-authenticates
            self._access_token = None

        if response.status_code >= 500 or response.status_code in (401, 429):
            logger.warning(
                "PayPal unavailable",
                operation=operation,
                status_code=response.status_code,
            )
            raise ProcessorUnavailableError(
                f"PayPal is unavailable for {operation}",
                operation=operation,
                processor_id=processor_id,
                provider_status=response.status_code,
            )

        if response.status_code >= 400:
            reason = response.text
            try:
                error_json = response.json()
                reason = error_json.get("name") or error_json.get("message") or str(error_json)
            except ValueError:
                pass

            logger.warning(
                "PayPal rejected request",
                operation=operation,
                status_code=response.status_code,
                reason=reason,
            )
            raise ProcessorRejectedError(
                f"PayPal rejected {operation}: {reason}",
                operation=operation,
                processor_id=processor_id,
                provider_status=response.status_code,
                reason=reason,
            )

        if response.status_code == 204 or not response.content:
            return {}

        return response.json()

    async def create_pending_subscription(
        self,
        amount: Decimal,
        currency: str,
        plan_ref: str | None,
        *,
        reference: str | None = None,
    ) -> PendingSubscription:
        plan_id = plan_ref or self.config.default_plan_id
        if not plan_id:
            raise BillingConfigurationError(
                "No PayPal plan configured for this price",
                config_key="paypal.default_plan_id",
            )

        value = money_handler.to_processor_value(money_handler.create_money(amount, currency))
        body: dict[str, Any] = {
            "plan_id": plan_id,
            "plan": {
                "billing_cycles": [
                    {
                        "sequence": 1,
                        "pricing_scheme": {
                            "fixed_price": {"value": value, "currency_code": currency}
                        },
                    }
                ]
            },
            "application_context": {
                "brand_name": self.config.brand_name,
                "user_action": "SUBSCRIBE_NOW",
                "shipping_preference": "NO_SHIPPING",
                "return_url": self.config.return_url,
                "cancel_url": self.config.cancel_url,
            },
        }
        if reference:
            body["custom_id"] = reference

        # Reusing the intent id as request id makes PayPal dedupe retried creates
        payload = await self._request(
            "POST",
            "/v1/billing/subscriptions",
            operation="create_pending_subscription",
            data=body,
            request_id=reference,
        )

        approval_url = next(
            (link["href"] for link in payload.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        logger.info(
            "PayPal pending subscription created",
            processor_id=payload["id"],
            reference=reference,
        )
        return PendingSubscription(
            processor_id=payload["id"],
            status=ProcessorStatus(payload.get("status", "APPROVAL_PENDING")),
            approval_url=approval_url,
        )

    async def get_subscription_status(self, processor_id: str) -> ProcessorSubscription:
        payload = await self._request(
            "GET",
            f"/v1/billing/subscriptions/{processor_id}",
            operation="get_subscription_status",
            processor_id=processor_id,
        )

        try:
            status = ProcessorStatus(payload["status"])
        except (KeyError, ValueError) as e:
            raise ProcessorRejectedError(
                f"PayPal returned an unknown subscription status: {payload.get('status')}",
                operation="get_subscription_status",
                processor_id=processor_id,
            ) from e

        billing_info = payload.get("billing_info") or {}
        last_payment = billing_info.get("last_payment") or {}
        return ProcessorSubscription(
            processor_id=payload.get("id", processor_id),
            status=status,
            plan_ref=payload.get("plan_id"),
            reference=payload.get("custom_id"),
            next_billing_time=_parse_time(billing_info.get("next_billing_time")),
            last_payment_time=_parse_time(last_payment.get("time")),
        )

    async def cancel_subscription(self, processor_id: str, reason: str) -> None:
        await self._request(
            "POST",
            f"/v1/billing/subscriptions/{processor_id}/cancel",
            operation="cancel_subscription",
            data={"reason": reason or "Cancelled by subscriber"},
            processor_id=processor_id,
        )
        logger.info("PayPal subscription cancelled", processor_id=processor_id)

    async def suspend_subscription(self, processor_id: str, reason: str | None = None) -> None:
        await self._request(
            "POST",
            f"/v1/billing/subscriptions/{processor_id}/suspend",
            operation="suspend_subscription",
            data={"reason": reason or "Suspended by subscriber"},
            processor_id=processor_id,
        )
        logger.info("PayPal subscription suspended", processor_id=processor_id)

    async def reactivate_subscription(self, processor_id: str, reason: str | None = None) -> None:
        await self._request(
            "POST",
            f"/v1/billing/subscriptions/{processor_id}/activate",
            operation="reactivate_subscription",
            data={"reason": reason or "Reactivated by subscriber"},
            processor_id=processor_id,
        )
        logger.info("PayPal subscription reactivated", processor_id=processor_id)

    async def verify_webhook_signature(self, headers: Mapping[str, str], body: bytes) -> bool:
        """Verify a webhook through PayPal's verify-webhook-signature endpoint."""
        if not self.config.webhook_id:
            logger.warning("PayPal webhook id not configured, rejecting notification")
            return False

        lowered = {key.lower(): value for key, value in headers.items()}
        data: dict[str, Any] = {}
        for field, header in WEBHOOK_SIGNATURE_HEADERS.items():
            if header not in lowered:
                return False
            data[field] = lowered[header]

        try:
            webhook_event = json.loads(body)
        except json.JSONDecodeError:
            logger.warning("PayPal webhook body is not valid JSON, rejecting notification")
            return False

        data["webhook_id"] = self.config.webhook_id
        data["webhook_event"] = webhook_event

        payload = await self._request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            operation="verify_webhook_signature",
            data=data,
        )
        return payload.get("verification_status") == "SUCCESS"


__all__ = ["PayPalGateway"]
