"""Bounded optimistic-concurrency retries."""

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from creatorhub.platform.billing.config import BillingConfig
from creatorhub.platform.billing.exceptions import ConflictError, OperationInProgressError
from creatorhub.platform.billing.metrics import get_subscription_metrics

logger = structlog.get_logger(__name__)


def _max_wait(config: BillingConfig) -> float:
    return config.conflict_retry_wait_seconds * 20


def conflict_retrying(config: BillingConfig, operation: str) -> AsyncRetrying:
    """
    Retry a read-modify-write block while it loses version races.

    Each attempt must start from a fresh read. After
    ``max_conflict_retries`` attempts the last ``ConflictError`` surfaces.

    An ``OperationInProgressError`` means another command is waiting on the
    processor, which can take up to ``processor_timeout_seconds``. Those are
    retried on a time budget instead, so a second caller sees the outcome of
    the first rather than a premature conflict.

    Usage::

        async for attempt in conflict_retrying(config, "cancel"):
            with attempt:
                record = await store.get_by_id(...)
                ...
    """
    version_races = stop_after_attempt(max(config.max_conflict_retries, 1))
    claim_held = stop_after_delay(config.processor_timeout_seconds + _max_wait(config))

    def _stop(retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is not None and isinstance(outcome.exception(), OperationInProgressError):
            return claim_held(retry_state)
        return version_races(retry_state)

    def _before_sleep(retry_state: RetryCallState) -> None:
        get_subscription_metrics().record_conflict(operation)
        waiting = isinstance(retry_state.outcome.exception(), OperationInProgressError)
        logger.info(
            "Operation in progress, waiting for its claim to clear"
            if waiting
            else "Version conflict, retrying from a fresh read",
            operation=operation,
            attempt=retry_state.attempt_number,
        )

    return AsyncRetrying(
        stop=_stop,
        wait=wait_exponential(
            multiplier=config.conflict_retry_wait_seconds,
            max=_max_wait(config),
        ),
        retry=retry_if_exception_type(ConflictError),
        before_sleep=_before_sleep,
        reraise=True,
    )


__all__ = ["conflict_retrying"]
