"""
Subscription status polling.

Clients without push notifications poll the creator status view while a
checkout page is open. The poller is an asyncio task tied to the viewing
session: entering the context starts it, leaving (or ``stop()``) cancels it.
It only calls the read-only query service.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from types import TracebackType

import structlog

from creatorhub.platform.auth.context import SubscriberContext
from creatorhub.platform.billing.subscriptions.queries import (
    CreatorSubscriptionStatus,
    SubscriptionQueryService,
)

logger = structlog.get_logger(__name__)

type StatusCallback = Callable[[CreatorSubscriptionStatus], Awaitable[None]]


class StatusPoller:
    """Cancellable repeating read of a creator subscription status."""

    def __init__(
        self,
        queries: SubscriptionQueryService,
        caller: SubscriberContext,
        creator_id: str,
        interval_seconds: float = 5.0,
        on_change: StatusCallback | None = None,
    ) -> None:
        self.queries = queries
        self.caller = caller
        self.creator_id = creator_id
        self.interval_seconds = interval_seconds
        self.on_change = on_change

        self.latest: CreatorSubscriptionStatus | None = None
        self.polls = 0
        self._changed = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"status-poller:{self.creator_id}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def __aenter__(self) -> "StatusPoller":
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def wait_for_change(self, timeout: float | None = None) -> CreatorSubscriptionStatus:
        """Wait until the observed status differs from the previous poll."""
        async with asyncio.timeout(timeout):
            await self._changed.wait()
        self._changed.clear()
        assert self.latest is not None
        return self.latest

    async def _run(self) -> None:
        while True:
            try:
                status = await self.queries.get_status_for_creator(self.caller, self.creator_id)
            except Exception:
                # A failed read must not end the session's polling
                logger.exception("Status poll failed", creator_id=self.creator_id)
            else:
                self.polls += 1
                if self.latest is None or (status.status, status.is_subscribed) != (
                    self.latest.status,
                    self.latest.is_subscribed,
                ):
                    self.latest = status
                    self._changed.set()
                    if self.on_change is not None:
                        await self.on_change(status)
                else:
                    self.latest = status

            await asyncio.sleep(self.interval_seconds)


__all__ = ["StatusPoller", "StatusCallback"]
