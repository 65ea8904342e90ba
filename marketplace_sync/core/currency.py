"""
Money helpers for invoice lines.

All amounts are Decimal; marketplace prices arrive as strings or floats and are
normalized here before they reach the invoice.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from marketplace_sync.core.config import settings


def to_decimal(value: Any) -> Decimal:
    """
    Convert a wire amount ("10.00", 10, 10.0) to a rounded Decimal.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not an amount: {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Not an amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not an amount: {value!r}")
    return round_currency(amount)


def round_currency(amount: Decimal, decimals: int = 2) -> Decimal:
    """
    Round currency amount to specified decimals (default 2).

    Uses ROUND_HALF_UP (commercial rounding).
    """
    quantize_to = Decimal(10) ** -decimals
    return amount.quantize(quantize_to, rounding=ROUND_HALF_UP)


def calculate_tax_amount(net: Decimal, tax_rate: Decimal) -> Decimal:
    """
    Calculate tax amount from net and tax rate.

    Args:
        net: Net amount
        tax_rate: Tax rate as percentage (e.g., 23 for 23%)

    Returns:
        Tax amount (rounded to 2 decimals)
    """
    tax = net * (tax_rate / Decimal("100"))
    return round_currency(tax)


def calculate_gross_from_net(net: Decimal, tax_rate: Decimal) -> Decimal:
    """
    Calculate gross amount from net amount and tax rate.

    Examples:
        >>> calculate_gross_from_net(Decimal("100.00"), Decimal("23"))
        Decimal("123.00")
    """
    multiplier = Decimal("1") + (tax_rate / Decimal("100"))
    gross = net * multiplier
    return round_currency(gross)


def format_currency(
    amount: Decimal, currency: Optional[str] = None, locale: Optional[str] = None
) -> str:
    """
    Format currency amount for display (e.g., "1 234,56 zł").
    """
    from babel.numbers import format_currency as babel_format_currency

    return babel_format_currency(
        amount, currency or settings.base_currency, locale=locale or settings.locale
    )
