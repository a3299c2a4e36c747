"""
Billing system exceptions.

Custom exceptions for subscription operations with clear error messages.
Every error carries an HTTP status code, a machine-readable code, context,
a recovery hint and whether the caller may retry the same request.
"""

from typing import Any


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
        retryable: Whether repeating the request may succeed
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
            "retryable": self.retryable,
        }


class ValidationError(BillingError):
    """Bad input; not retryable."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = dict(context or {})
        if field:
            context["field"] = field

        super().__init__(
            message,
            "VALIDATION_ERROR",
            status_code=422,
            context=context,
            recovery_hint="Correct the request and submit it again",
        )


class NotFoundError(BillingError):
    """Requested resource does not exist or is not visible to the caller."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "NOT_FOUND",
            status_code=404,
            context=context,
            recovery_hint=recovery_hint or "Verify the identifier and ensure it exists",
        )


class SubscriptionNotFoundError(NotFoundError):
    """Subscription not found error."""

    def __init__(
        self,
        message: str,
        subscription_id: str | None = None,
        processor_subscription_id: str | None = None,
    ):
        context = {}
        if subscription_id:
            context["subscription_id"] = subscription_id
        if processor_subscription_id:
            context["processor_subscription_id"] = processor_subscription_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the subscription ID and ensure it exists and is accessible",
        )
        self.error_code = "SUBSCRIPTION_NOT_FOUND"


class CreatorNotFoundError(NotFoundError):
    """Creator has no active subscription price."""

    def __init__(self, message: str, creator_id: str) -> None:
        super().__init__(
            message,
            context={"creator_id": creator_id},
            recovery_hint="Verify the creator ID and ensure the creator offers subscriptions",
        )
        self.error_code = "CREATOR_NOT_FOUND"


class IntentNotFoundError(NotFoundError):
    """Subscription intent not found error."""

    def __init__(self, message: str, intent_id: str | None = None) -> None:
        context = {}
        if intent_id:
            context["intent_id"] = intent_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Start a new checkout to create a fresh subscription intent",
        )
        self.error_code = "INTENT_NOT_FOUND"


class IntentExpiredError(IntentNotFoundError):
    """Subscription intent outlived its TTL before approval."""

    def __init__(self, message: str, intent_id: str | None = None) -> None:
        super().__init__(message, intent_id=intent_id)
        self.error_code = "INTENT_EXPIRED"


class ConflictError(BillingError):
    """Optimistic concurrency lost; retry with a fresh read."""

    retryable = True

    def __init__(
        self,
        message: str,
        resource_id: str | None = None,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        context: dict[str, Any] = {}
        if resource_id:
            context["resource_id"] = resource_id
        if expected_version is not None:
            context["expected_version"] = expected_version
        if actual_version is not None:
            context["actual_version"] = actual_version

        super().__init__(
            message,
            "CONFLICT",
            status_code=409,
            context=context,
            recovery_hint="Please refresh and retry",
        )


class OperationInProgressError(ConflictError):
    """Another lifecycle command holds the claim on this subscription."""

    def __init__(self, message: str, resource_id: str | None = None, operation: str | None = None):
        super().__init__(message, resource_id=resource_id)
        if operation:
            self.context["operation"] = operation
        self.recovery_hint = "Wait for the running operation to finish and retry"


class IllegalStateTransitionError(BillingError):
    """Requested lifecycle transition is not allowed from the current status."""

    def __init__(
        self,
        message: str,
        current_state: str,
        requested_state: str,
        subscription_id: str | None = None,
    ) -> None:
        context = {"current_state": current_state, "requested_state": requested_state}
        if subscription_id:
            context["subscription_id"] = subscription_id

        super().__init__(
            message,
            "ILLEGAL_STATE_TRANSITION",
            status_code=409,
            context=context,
            recovery_hint=f"Cannot transition from {current_state} to {requested_state}. Check subscription status first.",
        )


class AlreadySubscribedError(BillingError):
    """Subscriber already holds an active subscription to the creator."""

    def __init__(self, message: str, subscriber_id: str, creator_id: str, subscription_id: str):
        super().__init__(
            message,
            "ALREADY_SUBSCRIBED",
            status_code=409,
            context={
                "subscriber_id": subscriber_id,
                "creator_id": creator_id,
                "subscription_id": subscription_id,
            },
            recovery_hint="Manage the existing subscription instead of starting a new checkout",
        )


class DuplicateActiveSubscriptionError(BillingError):
    """A second subscription would become active for the same subscriber/creator pair."""

    def __init__(
        self,
        message: str,
        processor_subscription_id: str,
        conflicting_subscription_id: str,
        flag_id: str | None = None,
    ) -> None:
        context = {
            "processor_subscription_id": processor_subscription_id,
            "conflicting_subscription_id": conflicting_subscription_id,
        }
        if flag_id:
            context["flag_id"] = flag_id

        super().__init__(
            message,
            "DUPLICATE_ACTIVE_SUBSCRIPTION",
            status_code=409,
            context=context,
            recovery_hint="The subscription was flagged for manual reconciliation; contact support",
        )


class ProcessorError(BillingError):
    """Payment processor errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "PROCESSOR_ERROR",
        status_code: int = 502,
        operation: str | None = None,
        processor_id: str | None = None,
        provider_status: int | None = None,
        recovery_hint: str | None = None,
    ) -> None:
        context: dict[str, Any] = {}
        if operation:
            context["operation"] = operation
        if processor_id:
            context["processor_id"] = processor_id
        if provider_status is not None:
            context["provider_status"] = provider_status

        super().__init__(
            message,
            error_code,
            status_code=status_code,
            context=context,
            recovery_hint=recovery_hint,
        )


class ProcessorUnavailableError(ProcessorError):
    """Network failure, timeout or processor-side outage; retry with backoff."""

    retryable = True

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        processor_id: str | None = None,
        provider_status: int | None = None,
    ) -> None:
        super().__init__(
            message,
            "PROCESSOR_UNAVAILABLE",
            status_code=503,
            operation=operation,
            processor_id=processor_id,
            provider_status=provider_status,
            recovery_hint="The payment processor is temporarily unavailable; retry shortly",
        )


class ProcessorRejectedError(ProcessorError):
    """Processor explicitly refused the request (declined, invalid state, unknown id)."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        processor_id: str | None = None,
        provider_status: int | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(
            message,
            "PROCESSOR_REJECTED",
            status_code=402,
            operation=operation,
            processor_id=processor_id,
            provider_status=provider_status,
            recovery_hint="The payment processor declined the request; it will not succeed if repeated",
        )
        if reason:
            self.context["reason"] = reason


class VerificationError(BillingError):
    """Processor did not confirm the subscription during verification."""

    def __init__(
        self,
        message: str,
        processor_subscription_id: str,
        retryable: bool,
        processor_status: str | None = None,
    ) -> None:
        context: dict[str, Any] = {"processor_subscription_id": processor_subscription_id}
        if processor_status:
            context["processor_status"] = processor_status

        super().__init__(
            message,
            "VERIFICATION_RETRYABLE" if retryable else "VERIFICATION_REJECTED",
            status_code=503 if retryable else 409,
            context=context,
            recovery_hint=(
                "Verification could not complete yet; retry shortly"
                if retryable
                else "The processor did not approve this subscription; start a new checkout"
            ),
        )
        self.retryable = retryable


class BillingConfigurationError(BillingError):
    """Billing configuration errors."""

    def __init__(
        self, message: str, config_key: str | None = None, recovery_hint: str | None = None
    ):
        context = {}
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message,
            "BILLING_CONFIG_ERROR",
            status_code=500,
            context=context,
            recovery_hint=recovery_hint or "Check billing configuration settings",
        )


class WebhookError(BillingError):
    """Webhook processing errors."""

    def __init__(self, message: str, event_type: str | None = None) -> None:
        context = {}
        if event_type:
            context["event_type"] = event_type

        super().__init__(
            message,
            "WEBHOOK_ERROR",
            status_code=400,
            context=context,
            recovery_hint="Check webhook configuration and retry the webhook delivery",
        )
