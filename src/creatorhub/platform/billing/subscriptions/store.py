"""
Subscription state store.

Durable, versioned storage of subscriptions, intents, audit events and
reconciliation flags. Every write is a version-checked statement in its own
short transaction; a stale ``expected_version`` raises ``ConflictError`` and
the caller re-reads and retries. There is no row locking.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creatorhub.platform.billing.exceptions import ConflictError, NotFoundError, ValidationError
from creatorhub.platform.billing.subscriptions.entities import (
    CreatorSubscriptionTable,
    ReconciliationFlagTable,
    SubscriptionEventTable,
    SubscriptionIntentTable,
)
from creatorhub.platform.billing.subscriptions.models import (
    ReconciliationFlag,
    Subscription,
    SubscriptionEvent,
    SubscriptionIntent,
    SubscriptionStatus,
    utcnow,
)

logger = structlog.get_logger(__name__)


def _subscription_values(record: Subscription) -> dict[str, Any]:
    return {
        "subscriber_id": record.subscriber_id,
        "creator_id": record.creator_id,
        "processor_subscription_id": record.processor_subscription_id,
        "status": record.status.value,
        "amount": record.amount,
        "currency": record.currency,
        "interval": record.interval.value,
        "payment_method": record.payment_method,
        "next_billing_date": record.next_billing_date,
        "last_payment_date": record.last_payment_date,
        "cancelled_at": record.cancelled_at,
        "cancellation_reason": record.cancellation_reason,
        "pending_operation": record.pending_operation.value if record.pending_operation else None,
        "pending_operation_at": record.pending_operation_at,
    }


def _intent_values(intent: SubscriptionIntent) -> dict[str, Any]:
    return {
        "intent_id": intent.intent_id,
        "subscriber_id": intent.subscriber_id,
        "creator_id": intent.creator_id,
        "amount": intent.amount,
        "currency": intent.currency,
        "processor_pending_id": intent.processor_pending_id,
        "approval_url": intent.approval_url,
        "created_at": intent.created_at,
        "expires_at": intent.expires_at,
        "consumed_at": intent.consumed_at,
        "consumed_by_subscription_id": intent.consumed_by_subscription_id,
    }


def _event_row(event: SubscriptionEvent) -> SubscriptionEventTable:
    return SubscriptionEventTable(
        event_id=event.event_id,
        subscription_id=event.subscription_id,
        event_type=event.event_type,
        from_status=event.from_status.value if event.from_status else None,
        to_status=event.to_status.value if event.to_status else None,
        actor_id=event.actor_id,
        event_data=event.event_data,
        created_at=event.created_at,
    )


class SubscriptionStore:
    """Versioned persistence for the subscription lifecycle."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    # ==================== Subscriptions ====================

    async def get_by_id(self, subscription_id: str) -> Subscription | None:
        async with self._session() as session:
            row = await session.get(CreatorSubscriptionTable, subscription_id)
            return Subscription.model_validate(row) if row else None

    async def get_by_processor_id(self, processor_subscription_id: str) -> Subscription | None:
        async with self._session() as session:
            result = await session.execute(
                select(CreatorSubscriptionTable).where(
                    CreatorSubscriptionTable.processor_subscription_id
                    == processor_subscription_id
                )
            )
            row = result.scalar_one_or_none()
            return Subscription.model_validate(row) if row else None

    async def get_active_for_pair(self, subscriber_id: str, creator_id: str) -> Subscription | None:
        async with self._session() as session:
            result = await session.execute(
                select(CreatorSubscriptionTable).where(
                    CreatorSubscriptionTable.subscriber_id == subscriber_id,
                    CreatorSubscriptionTable.creator_id == creator_id,
                    CreatorSubscriptionTable.status == SubscriptionStatus.ACTIVE.value,
                )
            )
            row = result.scalar_one_or_none()
            return Subscription.model_validate(row) if row else None

    async def list_for_subscriber(
        self,
        subscriber_id: str,
        creator_id: str | None = None,
        statuses: list[SubscriptionStatus] | None = None,
    ) -> list[Subscription]:
        stmt = select(CreatorSubscriptionTable).where(
            CreatorSubscriptionTable.subscriber_id == subscriber_id
        )
        if creator_id is not None:
            stmt = stmt.where(CreatorSubscriptionTable.creator_id == creator_id)
        if statuses:
            stmt = stmt.where(CreatorSubscriptionTable.status.in_([s.value for s in statuses]))
        stmt = stmt.order_by(CreatorSubscriptionTable.created_at.desc())

        async with self._session() as session:
            result = await session.execute(stmt)
            return [Subscription.model_validate(row) for row in result.scalars().all()]

    async def insert(
        self, record: Subscription, event: SubscriptionEvent | None = None
    ) -> Subscription:
        """
        Insert a new subscription at version 1.

        Raises:
            ConflictError: the processor id already exists or the pair already
                holds an active subscription (unique index)
        """
        now = utcnow()
        stored = record.model_copy(update={"version": 1, "created_at": now, "updated_at": now})
        row = CreatorSubscriptionTable(
            id=stored.id,
            created_at=now,
            updated_at=now,
            version=1,
            **_subscription_values(stored),
        )

        async with self._session() as session:
            session.add(row)
            if event is not None:
                session.add(_event_row(event.model_copy(update={"subscription_id": stored.id})))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.info(
                    "Subscription insert lost a uniqueness race",
                    processor_subscription_id=record.processor_subscription_id,
                    subscriber_id=record.subscriber_id,
                    creator_id=record.creator_id,
                )
                raise ConflictError(
                    "Subscription already exists",
                    resource_id=record.processor_subscription_id,
                    expected_version=0,
                ) from e

        logger.debug("Subscription inserted", subscription_id=stored.id, status=stored.status.value)
        return stored

    async def upsert(
        self,
        record: Subscription,
        expected_version: int,
        event: SubscriptionEvent | None = None,
    ) -> Subscription:
        """
        Write ``record`` if the stored version still equals ``expected_version``.

        ``expected_version == 0`` means the record must not exist yet.

        Raises:
            ConflictError: stored version differs, the row vanished, or a
                unique constraint rejected the write
            ValidationError: the processor subscription id would be reassigned
        """
        if expected_version == 0:
            return await self.insert(record, event)

        now = utcnow()
        async with self._session() as session:
            current = await session.get(CreatorSubscriptionTable, record.id)
            if current is None:
                raise ConflictError(
                    "Subscription no longer exists",
                    resource_id=record.id,
                    expected_version=expected_version,
                )
            if (
                current.processor_subscription_id is not None
                and current.processor_subscription_id != record.processor_subscription_id
            ):
                raise ValidationError(
                    "processor_subscription_id cannot be reassigned",
                    field="processor_subscription_id",
                )

            result = await session.execute(
                update(CreatorSubscriptionTable)
                .where(
                    CreatorSubscriptionTable.id == record.id,
                    CreatorSubscriptionTable.version == expected_version,
                )
                .values(
                    **_subscription_values(record),
                    updated_at=now,
                    version=expected_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise ConflictError(
                    "Subscription was modified concurrently",
                    resource_id=record.id,
                    expected_version=expected_version,
                    actual_version=current.version,
                )

            if event is not None:
                session.add(_event_row(event))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError(
                    "Subscription write violates a uniqueness constraint",
                    resource_id=record.id,
                    expected_version=expected_version,
                ) from e

        return record.model_copy(update={"version": expected_version + 1, "updated_at": now})

    async def list_events(self, subscription_id: str) -> list[SubscriptionEvent]:
        async with self._session() as session:
            result = await session.execute(
                select(SubscriptionEventTable)
                .where(SubscriptionEventTable.subscription_id == subscription_id)
                .order_by(SubscriptionEventTable.created_at)
            )
            return [SubscriptionEvent.model_validate(row) for row in result.scalars().all()]

    # ==================== Intents ====================

    async def get_intent(self, intent_id: str) -> SubscriptionIntent | None:
        async with self._session() as session:
            row = await session.get(SubscriptionIntentTable, intent_id)
            return SubscriptionIntent.model_validate(row) if row else None

    async def get_intent_for_pair(
        self, subscriber_id: str, creator_id: str
    ) -> SubscriptionIntent | None:
        async with self._session() as session:
            result = await session.execute(
                select(SubscriptionIntentTable).where(
                    SubscriptionIntentTable.subscriber_id == subscriber_id,
                    SubscriptionIntentTable.creator_id == creator_id,
                )
            )
            row = result.scalar_one_or_none()
            return SubscriptionIntent.model_validate(row) if row else None

    async def get_intent_by_processor_id(
        self, processor_pending_id: str
    ) -> SubscriptionIntent | None:
        async with self._session() as session:
            result = await session.execute(
                select(SubscriptionIntentTable).where(
                    SubscriptionIntentTable.processor_pending_id == processor_pending_id
                )
            )
            row = result.scalars().first()
            return SubscriptionIntent.model_validate(row) if row else None

    async def insert_intent(self, intent: SubscriptionIntent) -> SubscriptionIntent:
        """Insert the pair's first intent; a concurrent insert raises ``ConflictError``."""
        async with self._session() as session:
            session.add(SubscriptionIntentTable(version=1, **_intent_values(intent)))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError(
                    "An intent for this subscriber and creator already exists",
                    resource_id=f"{intent.subscriber_id}:{intent.creator_id}",
                    expected_version=0,
                ) from e
        return intent.model_copy(update={"version": 1})

    async def replace_intent(
        self,
        current_intent_id: str,
        intent: SubscriptionIntent,
        expected_version: int,
    ) -> SubscriptionIntent:
        """
        Overwrite the pair's intent row (possibly under a new intent id).

        Used both to replace an expired or consumed intent and to update the
        live one (processor id, consumption).
        """
        async with self._session() as session:
            result = await session.execute(
                update(SubscriptionIntentTable)
                .where(
                    SubscriptionIntentTable.intent_id == current_intent_id,
                    SubscriptionIntentTable.version == expected_version,
                )
                .values(**_intent_values(intent), version=expected_version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise ConflictError(
                    "Intent was modified concurrently",
                    resource_id=current_intent_id,
                    expected_version=expected_version,
                )
            await session.commit()
        return intent.model_copy(update={"version": expected_version + 1})

    async def delete_intent(self, intent_id: str, expected_version: int) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(SubscriptionIntentTable)
                .where(
                    SubscriptionIntentTable.intent_id == intent_id,
                    SubscriptionIntentTable.version == expected_version,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_expired_intents(self, cutoff: datetime) -> int:
        """Remove intents that expired at or before ``cutoff`` (consumed or not)."""
        async with self._session() as session:
            result = await session.execute(
                delete(SubscriptionIntentTable)
                .where(SubscriptionIntentTable.expires_at <= cutoff)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    # ==================== Reconciliation flags ====================

    async def record_flag(self, flag: ReconciliationFlag) -> ReconciliationFlag:
        async with self._session() as session:
            session.add(ReconciliationFlagTable(**flag.model_dump()))
            await session.commit()
        return flag

    async def get_open_flag(self, processor_subscription_id: str) -> ReconciliationFlag | None:
        async with self._session() as session:
            result = await session.execute(
                select(ReconciliationFlagTable).where(
                    ReconciliationFlagTable.processor_subscription_id
                    == processor_subscription_id,
                    ReconciliationFlagTable.resolved_at.is_(None),
                )
            )
            row = result.scalars().first()
            return ReconciliationFlag.model_validate(row) if row else None

    async def list_open_flags(self) -> list[ReconciliationFlag]:
        async with self._session() as session:
            result = await session.execute(
                select(ReconciliationFlagTable)
                .where(ReconciliationFlagTable.resolved_at.is_(None))
                .order_by(ReconciliationFlagTable.created_at)
            )
            return [ReconciliationFlag.model_validate(row) for row in result.scalars().all()]

    async def resolve_flag(self, flag_id: str, note: str, now: datetime) -> ReconciliationFlag:
        async with self._session() as session:
            row = await session.get(ReconciliationFlagTable, flag_id)
            if row is None:
                raise NotFoundError(
                    f"Reconciliation flag {flag_id} not found", context={"flag_id": flag_id}
                )
            row.resolved_at = now
            row.resolution_note = note
            await session.commit()
            return ReconciliationFlag.model_validate(row)


__all__ = ["SubscriptionStore"]
