"""
SQLAlchemy tables for creator subscriptions.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from creatorhub.platform.db import Base, TimestampMixin


class CreatorSubscriptionTable(Base, TimestampMixin):
    """SQLAlchemy table for canonical subscriptions."""

    __tablename__ = "creator_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    subscriber_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    processor_subscription_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, unique=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Pricing
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    interval: Mapped[str] = mapped_column(String(10), nullable=False, default="month")
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False, default="paypal")

    # Billing dates copied from the processor
    next_billing_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # In-flight lifecycle claim
    pending_operation: Mapped[str | None] = mapped_column(String(20))
    pending_operation_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        # At most one active subscription per subscriber/creator pair
        Index(
            "uq_creator_subscriptions_active_pair",
            "subscriber_id",
            "creator_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_creator_subscriptions_pair", "subscriber_id", "creator_id"),
    )


class SubscriptionIntentTable(Base):
    """SQLAlchemy table for checkout intents."""

    __tablename__ = "subscription_intents"

    intent_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subscriber_id: Mapped[str] = mapped_column(String(64), nullable=False)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    processor_pending_id: Mapped[str | None] = mapped_column(String(128), index=True)
    approval_url: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    consumed_by_subscription_id: Mapped[str | None] = mapped_column(String(36))

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("subscriber_id", "creator_id", name="uq_subscription_intents_pair"),
    )


class SubscriptionEventTable(Base):
    """SQLAlchemy table for the subscription audit trail."""

    __tablename__ = "creator_subscription_events"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subscription_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(20))
    to_status: Mapped[str | None] = mapped_column(String(20))
    actor_id: Mapped[str | None] = mapped_column(String(64))
    event_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ReconciliationFlagTable(Base):
    """SQLAlchemy table for the manual-reconciliation queue."""

    __tablename__ = "subscription_reconciliation_flags"

    flag_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    processor_subscription_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    subscriber_id: Mapped[str] = mapped_column(String(64), nullable=False)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    conflicting_subscription_id: Mapped[str | None] = mapped_column(String(36))
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    processor_status: Mapped[str | None] = mapped_column(String(30))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    resolution_note: Mapped[str | None] = mapped_column(Text)


class CreatorPriceTable(Base, TimestampMixin):
    """SQLAlchemy table for creator subscription prices."""

    __tablename__ = "creator_prices"

    creator_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    interval: Mapped[str] = mapped_column(String(10), nullable=False, default="month")
    plan_ref: Mapped[str | None] = mapped_column(String(128))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


__all__ = [
    "CreatorSubscriptionTable",
    "SubscriptionIntentTable",
    "SubscriptionEventTable",
    "ReconciliationFlagTable",
    "CreatorPriceTable",
]
