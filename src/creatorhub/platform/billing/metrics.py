"""
Billing module metrics and monitoring
"""

from contextlib import AbstractContextManager

import structlog
from opentelemetry import metrics, trace

from creatorhub.platform.telemetry import get_meter, get_tracer

logger = structlog.get_logger(__name__)


type SpanContextManager = AbstractContextManager[trace.Span]


class SubscriptionMetrics:
    """Subscription lifecycle metrics collector"""

    def __init__(
        self,
        meter: metrics.Meter | None = None,
        tracer: trace.Tracer | None = None,
    ) -> None:
        """Initialize subscription metrics"""
        self.meter = meter or get_meter("creatorhub.billing")
        self.tracer = tracer or get_tracer("creatorhub.billing")

        # Intent metrics
        self.intent_created_counter = self._create_counter(
            name="billing.subscription.intent.created",
            description="Number of intents that opened a processor-side pending subscription",
        )
        self.intent_reused_counter = self._create_counter(
            name="billing.subscription.intent.reused",
            description="Number of duplicate checkouts answered with an existing intent",
        )
        self.intent_expired_counter = self._create_counter(
            name="billing.subscription.intent.expired",
            description="Number of expired intents swept",
        )

        # Reconciliation metrics
        self.verification_counter = self._create_counter(
            name="billing.subscription.verification",
            description="Verification attempts by outcome",
        )
        self.conflict_counter = self._create_counter(
            name="billing.subscription.conflict",
            description="Optimistic concurrency conflicts",
        )
        self.flag_counter = self._create_counter(
            name="billing.subscription.reconciliation_flag",
            description="Subscriptions flagged for manual reconciliation",
        )

        # Lifecycle metrics
        self.lifecycle_counter = self._create_counter(
            name="billing.subscription.lifecycle",
            description="Lifecycle commands by command and outcome",
        )
        self.processor_call_histogram = self.meter.create_histogram(
            name="billing.subscription.processor.duration",
            description="Processor call duration",
            unit="ms",
        )

    # Intent metrics
    def record_intent_created(self, currency: str) -> None:
        """Record intent creation"""
        self.intent_created_counter.add(1, {"currency": currency})

    def record_intent_reused(self, currency: str) -> None:
        """Record an idempotent intent hit"""
        self.intent_reused_counter.add(1, {"currency": currency})

    def record_intents_expired(self, count: int) -> None:
        """Record intents reclaimed by the sweep"""
        if count:
            self.intent_expired_counter.add(count)

    # Reconciliation metrics
    def record_verification(self, outcome: str, processor_status: str | None = None) -> None:
        """Record verification outcome"""
        attributes = {"outcome": outcome}
        if processor_status:
            attributes["processor_status"] = processor_status
        self.verification_counter.add(1, attributes)
        logger.debug("Verification recorded", outcome=outcome, processor_status=processor_status)

    def record_conflict(self, operation: str) -> None:
        """Record a lost version race"""
        self.conflict_counter.add(1, {"operation": operation})

    def record_flag(self) -> None:
        """Record a manual-reconciliation flag"""
        self.flag_counter.add(1)

    # Lifecycle metrics
    def record_lifecycle_command(self, command: str, outcome: str) -> None:
        """Record lifecycle command result"""
        self.lifecycle_counter.add(1, {"command": command, "outcome": outcome})

    def record_processor_call(self, operation: str, duration_ms: float, success: bool) -> None:
        """Record processor round trip"""
        self.processor_call_histogram.record(
            duration_ms, {"operation": operation, "success": str(success)}
        )

    # Internal helpers -----------------------------------------------------

    def _create_counter(self, name: str, description: str, unit: str = "1") -> metrics.Counter:
        return self.meter.create_counter(name=name, description=description, unit=unit)

    # Tracing helpers
    def trace_subscription_operation(
        self,
        operation: str,
        subscription_id: str | None = None,
        processor_subscription_id: str | None = None,
    ) -> SpanContextManager:
        """Create a trace span for subscription operations"""
        attributes = {"operation": operation}
        if subscription_id:
            attributes["subscription_id"] = subscription_id
        if processor_subscription_id:
            attributes["processor_subscription_id"] = processor_subscription_id
        return self.tracer.start_as_current_span(
            f"billing.subscription.{operation}",
            kind=trace.SpanKind.INTERNAL,
            attributes=attributes,
        )


# Global metrics instance
_subscription_metrics: SubscriptionMetrics | None = None


def get_subscription_metrics() -> SubscriptionMetrics:
    """Get the global subscription metrics instance"""
    global _subscription_metrics
    if _subscription_metrics is None:
        _subscription_metrics = SubscriptionMetrics()
    return _subscription_metrics


def set_subscription_metrics(metrics_instance: SubscriptionMetrics | None) -> None:
    """Set the global subscription metrics instance"""
    global _subscription_metrics
    _subscription_metrics = metrics_instance
