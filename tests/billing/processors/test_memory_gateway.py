"""
Tests for the in-memory processor gateway and gateway selection.
"""

import asyncio
from decimal import Decimal

import pytest

from creatorhub.platform.billing.config import BillingConfig, PayPalConfig
from creatorhub.platform.billing.exceptions import (
    BillingConfigurationError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
)
from creatorhub.platform.billing.processors import (
    InMemoryProcessorGateway,
    PayPalGateway,
    ProcessorStatus,
    create_processor_gateway,
)


@pytest.mark.asyncio
class TestInMemoryProcessorGateway:
    """Simulated processor state machine."""

    async def test_pending_then_approved(self):
        gateway = InMemoryProcessorGateway()

        pending = await gateway.create_pending_subscription(
            Decimal("9.99"), "USD", "P-1", reference="intent-1"
        )
        assert (await gateway.get_subscription_status(pending.processor_id)).status == (
            ProcessorStatus.APPROVAL_PENDING
        )

        gateway.approve(pending.processor_id)
        remote = await gateway.get_subscription_status(pending.processor_id)

        assert remote.status == ProcessorStatus.ACTIVE
        assert remote.reference == "intent-1"
        assert remote.next_billing_time is not None

    async def test_lifecycle_rules(self):
        gateway = InMemoryProcessorGateway()
        pending = await gateway.create_pending_subscription(Decimal("1"), "USD", None)
        pid = pending.processor_id

        with pytest.raises(ProcessorRejectedError):
            await gateway.suspend_subscription(pid)

        gateway.approve(pid)
        await gateway.suspend_subscription(pid)
        await gateway.reactivate_subscription(pid)
        await gateway.cancel_subscription(pid, "done")

        with pytest.raises(ProcessorRejectedError):
            await gateway.cancel_subscription(pid, "again")

    async def test_unknown_subscription(self):
        with pytest.raises(ProcessorRejectedError) as exc_info:
            await InMemoryProcessorGateway().get_subscription_status("I-NONE")

        assert exc_info.value.context["provider_status"] == 404

    async def test_injected_failure_applies_once(self):
        gateway = InMemoryProcessorGateway()
        gateway.fail_next("create_pending_subscription")

        with pytest.raises(ProcessorUnavailableError):
            await gateway.create_pending_subscription(Decimal("1"), "USD", None)

        await gateway.create_pending_subscription(Decimal("1"), "USD", None)
        assert len(gateway.calls_for("create_pending_subscription")) == 2

    async def test_hold_blocks_until_released(self):
        gateway = InMemoryProcessorGateway()
        pending = await gateway.create_pending_subscription(Decimal("1"), "USD", None)
        gateway.approve(pending.processor_id)
        release = gateway.hold("cancel_subscription")

        task = asyncio.create_task(gateway.cancel_subscription(pending.processor_id, "bye"))
        await asyncio.sleep(0.01)
        assert not task.done()

        release.set()
        await task
        assert gateway.subscriptions[pending.processor_id].status == ProcessorStatus.CANCELLED

    async def test_webhook_secret(self):
        assert await InMemoryProcessorGateway().verify_webhook_signature({}, b"{}")

        gateway = InMemoryProcessorGateway(webhook_secret="s3cret")
        assert not await gateway.verify_webhook_signature({}, b"{}")
        assert await gateway.verify_webhook_signature({"X-Processor-Signature": "s3cret"}, b"{}")


@pytest.mark.unit
class TestCreateProcessorGateway:
    """Gateway selection from configuration."""

    def test_memory_gateway(self):
        gateway = create_processor_gateway(BillingConfig(processor="memory"))

        assert isinstance(gateway, InMemoryProcessorGateway)

    def test_paypal_gateway(self):
        config = BillingConfig(
            processor="paypal",
            paypal=PayPalConfig(
                client_id="id",
                client_secret="secret",
                return_url="https://example.com/return",
                cancel_url="https://example.com/cancel",
            ),
        )

        assert isinstance(create_processor_gateway(config), PayPalGateway)

    def test_paypal_without_credentials_falls_back_outside_production(self):
        gateway = create_processor_gateway(BillingConfig(processor="paypal"))

        assert isinstance(gateway, InMemoryProcessorGateway)

    def test_memory_gateway_refused_in_production(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("SECRET_KEY", "a-real-production-secret")

        with pytest.raises(BillingConfigurationError):
            create_processor_gateway(BillingConfig(processor="memory"))

    def test_unknown_gateway(self):
        with pytest.raises(BillingConfigurationError):
            create_processor_gateway(BillingConfig(processor="stripe"))
