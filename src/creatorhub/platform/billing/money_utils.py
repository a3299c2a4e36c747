"""
Money and currency utilities using py-moneyed and Babel.

Provides currency handling with proper decimal precision,
locale-aware formatting, and currency validation.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from babel import Locale
from babel.core import UnknownLocaleError
from babel.numbers import format_currency, get_currency_precision
from moneyed import Currency, Money, get_currency
from moneyed.classes import CurrencyDoesNotExist

from creatorhub.platform.billing.exceptions import ValidationError

# Default locale for formatting
DEFAULT_LOCALE = "en_US"


class MoneyHandler:
    """Central handler for money operations with proper error handling."""

    def __init__(self, default_currency: str = "USD", default_locale: str = DEFAULT_LOCALE) -> None:
        self.default_currency = self._validate_currency(default_currency)
        self.default_locale = self._validate_locale(default_locale)

    def _validate_currency(self, currency_code: str) -> Currency:
        """Validate and return Currency object."""
        try:
            return get_currency(currency_code.strip().upper())
        except CurrencyDoesNotExist:
            raise ValidationError(f"Invalid currency code: {currency_code}", field="currency")

    def _validate_locale(self, locale_code: str) -> str:
        """Validate locale code."""
        try:
            Locale.parse(locale_code)
            return locale_code
        except UnknownLocaleError:
            return DEFAULT_LOCALE

    def parse_amount(self, amount: int | Decimal | str) -> Decimal:
        """Parse a caller-supplied amount as an exact, positive Decimal."""
        if isinstance(amount, float):
            amount = str(amount)
        try:
            value = Decimal(str(amount).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid amount: {amount!r}", field="amount")

        if not value.is_finite() or value <= 0:
            raise ValidationError(f"Amount must be a positive number: {amount!r}", field="amount")
        return value

    def create_money(self, amount: int | Decimal | str, currency: str | None = None) -> Money:
        """Create Money object with proper validation."""
        currency = currency or self.default_currency.code
        validated_currency = self._validate_currency(currency)
        return Money(amount=self.parse_amount(amount), currency=validated_currency)

    def format_money(self, money: Money, locale: str | None = None, **kwargs: Any) -> str:
        """Format Money object with locale-aware formatting."""
        locale = locale or self.default_locale
        validated_locale = self._validate_locale(locale)

        try:
            return format_currency(
                number=money.amount, currency=money.currency.code, locale=validated_locale, **kwargs
            )
        except (TypeError, ValueError):
            # Fallback to simple formatting if locale issues
            return f"{money.currency.code} {money.amount}"

    def get_currency_precision(self, currency_code: str) -> int:
        """Get decimal precision for a currency."""
        return get_currency_precision(currency_code.upper())

    def round_money(self, money: Money) -> Money:
        """Round Money to proper currency precision."""
        precision = self.get_currency_precision(money.currency.code)
        rounded_amount = money.amount.quantize(Decimal("0.1") ** precision)
        return Money(amount=rounded_amount, currency=money.currency)

    def amounts_match(self, left: Money, right: Money) -> bool:
        """Compare two amounts at the currency's minor-unit precision."""
        if left.currency != right.currency:
            return False
        return self.round_money(left).amount == self.round_money(right).amount

    def to_processor_value(self, money: Money) -> str:
        """Render an amount the way processor APIs expect it ("9.99", "500")."""
        return str(self.round_money(money).amount)


# Global instance for convenience
money_handler = MoneyHandler()


# Convenience functions
def create_money(amount: int | Decimal | str, currency: str = "USD") -> Money:
    """Create Money object with default handler."""
    return money_handler.create_money(amount, currency)


def format_money(money: Money, locale: str | None = None, **kwargs: Any) -> str:
    """Format Money with default handler."""
    return money_handler.format_money(money, locale, **kwargs)


__all__ = [
    "MoneyHandler",
    "money_handler",
    "create_money",
    "format_money",
]
