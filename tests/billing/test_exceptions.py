"""Tests for billing exceptions and their HTTP rendering."""

import pytest

from creatorhub.platform.billing.exceptions import (
    AlreadySubscribedError,
    BillingError,
    ConflictError,
    DuplicateActiveSubscriptionError,
    IntentExpiredError,
    IntentNotFoundError,
    NotFoundError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
    SubscriptionNotFoundError,
    ValidationError,
    VerificationError,
)

pytestmark = pytest.mark.unit


class TestBillingErrors:
    """Status codes, codes and retryability."""

    @pytest.mark.parametrize(
        ("error", "status_code", "error_code", "retryable"),
        [
            (ValidationError("bad", field="amount"), 422, "VALIDATION_ERROR", False),
            (
                SubscriptionNotFoundError("gone", subscription_id="s"),
                404,
                "SUBSCRIPTION_NOT_FOUND",
                False,
            ),
            (IntentExpiredError("late", intent_id="i"), 404, "INTENT_EXPIRED", False),
            (ConflictError("race", resource_id="s"), 409, "CONFLICT", True),
            (AlreadySubscribedError("dup", "u", "c", "s"), 409, "ALREADY_SUBSCRIBED", False),
            (ProcessorUnavailableError("down", operation="op"), 503, "PROCESSOR_UNAVAILABLE", True),
            (ProcessorRejectedError("no", operation="op"), 402, "PROCESSOR_REJECTED", False),
            (VerificationError("wait", "I-1", retryable=True), 503, "VERIFICATION_RETRYABLE", True),
            (VerificationError("no", "I-1", retryable=False), 409, "VERIFICATION_REJECTED", False),
        ],
    )
    def test_error_attributes(self, error, status_code, error_code, retryable):
        """Test each error maps to the documented HTTP shape."""
        assert isinstance(error, BillingError)
        assert error.status_code == status_code
        assert error.error_code == error_code
        assert error.retryable is retryable

    def test_expired_intent_is_a_not_found(self):
        """Test expired intents are reported like missing ones."""
        error = IntentExpiredError("late", intent_id="i")

        assert isinstance(error, IntentNotFoundError)
        assert isinstance(error, NotFoundError)
        assert error.context == {"intent_id": "i"}

    def test_to_dict(self):
        """Test the serialised form used by the error handler."""
        error = DuplicateActiveSubscriptionError(
            "dup",
            processor_subscription_id="I-2",
            conflicting_subscription_id="sub-1",
            flag_id="flag-1",
        )

        data = error.to_dict()

        assert data["error_code"] == "DUPLICATE_ACTIVE_SUBSCRIPTION"
        assert data["message"] == "dup"
        assert data["context"]["flag_id"] == "flag-1"
        assert data["retryable"] is False

    def test_processor_error_context(self):
        """Test provider details are carried in the context."""
        error = ProcessorRejectedError(
            "no", operation="cancel", processor_id="I-1", provider_status=422, reason="INVALID"
        )

        assert error.context == {
            "operation": "cancel",
            "processor_id": "I-1",
            "provider_status": 422,
            "reason": "INVALID",
        }
