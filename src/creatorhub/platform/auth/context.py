"""
Request-scoped caller context.

Every billing operation receives the caller explicitly instead of reading a
process-wide credential.
"""

from typing import Annotated

import structlog
from fastapi import Depends
from pydantic import BaseModel, ConfigDict

from creatorhub.platform.auth.core import UserInfo, get_current_user

SYSTEM_SUBSCRIBER_ID = "system"


class SubscriberContext(BaseModel):
    """Who is calling, for ownership checks and audit."""

    model_config = ConfigDict(frozen=True)

    subscriber_id: str
    correlation_id: str | None = None
    is_system: bool = False

    @classmethod
    def system(cls, correlation_id: str | None = None) -> "SubscriberContext":
        """Caller used by webhooks and operator tooling; exempt from ownership."""
        return cls(
            subscriber_id=SYSTEM_SUBSCRIBER_ID, correlation_id=correlation_id, is_system=True
        )

    def owns(self, subscriber_id: str) -> bool:
        return self.is_system or self.subscriber_id == subscriber_id


async def get_subscriber_context(
    current_user: Annotated[UserInfo, Depends(get_current_user)],
) -> SubscriberContext:
    """FastAPI dependency resolving the authenticated subscriber."""
    correlation_id = structlog.contextvars.get_contextvars().get("correlation_id")
    return SubscriberContext(subscriber_id=current_user.user_id, correlation_id=correlation_id)


__all__ = ["SubscriberContext", "SYSTEM_SUBSCRIBER_ID", "get_subscriber_context"]
