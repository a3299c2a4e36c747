"""
Creator pricing lookup.

Intent creation validates the requested amount against the price the creator
configured. The lookup is a protocol so the price catalogue can live
elsewhere; ``SqlCreatorPricing`` keeps it in the ``creator_prices`` table.
"""

from decimal import Decimal
from typing import Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creatorhub.platform.billing.money_utils import money_handler
from creatorhub.platform.billing.subscriptions.entities import CreatorPriceTable
from creatorhub.platform.billing.subscriptions.models import BillingInterval, CreatorPrice

logger = structlog.get_logger(__name__)


class CreatorPricingLookup(Protocol):
    """Resolves the active subscription price of a creator."""

    async def get_price(self, creator_id: str) -> CreatorPrice | None: ...


class SqlCreatorPricing:
    """Creator prices stored in the subscription database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_price(self, creator_id: str) -> CreatorPrice | None:
        async with self._session_factory() as session:
            row = await session.get(CreatorPriceTable, creator_id)
            if row is None or not row.is_active:
                return None
            return CreatorPrice.model_validate(row)

    async def set_price(
        self,
        creator_id: str,
        amount: Decimal | str,
        currency: str = "USD",
        interval: BillingInterval = BillingInterval.MONTH,
        plan_ref: str | None = None,
        is_active: bool = True,
    ) -> CreatorPrice:
        """Create or replace a creator's price (operator tooling and tests)."""
        money = money_handler.round_money(money_handler.create_money(amount, currency))

        async with self._session_factory() as session:
            row = await session.get(CreatorPriceTable, creator_id)
            if row is None:
                row = CreatorPriceTable(creator_id=creator_id)
                session.add(row)
            row.amount = money.amount
            row.currency = money.currency.code
            row.interval = interval.value
            row.plan_ref = plan_ref
            row.is_active = is_active
            await session.commit()
            await session.refresh(row)

            logger.info(
                "Creator price set",
                creator_id=creator_id,
                amount=str(money.amount),
                currency=money.currency.code,
            )
            return CreatorPrice.model_validate(row)


__all__ = ["CreatorPricingLookup", "SqlCreatorPricing"]
