"""
Structured logging setup using structlog directly.

No wrappers, just standard structlog configuration.
"""

import logging
import sys
from typing import TYPE_CHECKING

import structlog

from creatorhub.platform.settings import get_settings

if TYPE_CHECKING:
    from creatorhub.platform.billing.subscriptions.models import Subscription


def setup_logging() -> None:
    """
    Setup structured logging with structlog.

    Uses settings from centralized configuration.
    """
    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=settings.observability.log_level.value,
    )

    processors: list[structlog.typing.Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Correlation IDs are bound per request via structlog.contextvars
    if settings.observability.enable_correlation_ids:
        processors.insert(0, structlog.contextvars.merge_contextvars)

    if settings.observability.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name, defaults to caller's module name

    Returns:
        Configured structured logger
    """
    return structlog.get_logger(name)


def get_audit_logger() -> structlog.stdlib.BoundLogger:
    """
    Get a logger specifically for audit events.

    Audit events are just structured logs with specific metadata.
    """
    return structlog.get_logger("audit")


def log_audit_event(
    action: str,
    category: str,
    actor_id: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    **kwargs: object,
) -> None:
    """Log an audit event as a structured log entry."""
    audit_logger = get_audit_logger()

    audit_logger.info(
        action,
        audit_category=category,
        audit_actor_id=actor_id,
        audit_resource_type=resource_type,
        audit_resource_id=resource_id,
        **kwargs,
    )


def log_subscription_audit(
    action: str,
    subscription: "Subscription",
    actor_id: str | None = None,
    **kwargs: object,
) -> None:
    """
    Audit a subscription state change.

    Subscription state changes are persisted in the event table as well;
    this is the log-stream copy used by log shipping. It carries both the
    local and the processor identifiers so an entry can be matched against
    processor dashboards and webhook deliveries.
    """
    log_audit_event(
        action,
        category="billing",
        actor_id=actor_id,
        resource_type="subscription",
        resource_id=subscription.id,
        subscription_id=subscription.id,
        processor_subscription_id=subscription.processor_subscription_id,
        subscriber_id=subscription.subscriber_id,
        creator_id=subscription.creator_id,
        status=subscription.status.value,
        version=subscription.version,
        **kwargs,
    )
