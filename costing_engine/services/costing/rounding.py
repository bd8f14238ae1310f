"""
Decimal rounding helpers shared by the costing services
"""
from decimal import Decimal, ROUND_HALF_UP, ROUND_DOWN
from typing import Optional

from costing_engine.core.config import settings

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _exponent(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def to_decimal(value) -> Decimal:
    """Coerce ORM / JSON numbers to Decimal without float artefacts"""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value) -> Decimal:
    return to_decimal(value).quantize(_exponent(settings.CURRENCY_DECIMAL_PLACES), rounding=ROUND_HALF_UP)


def money_floor(value) -> Decimal:
    """Truncate toward zero to the currency minor unit"""
    return to_decimal(value).quantize(_exponent(settings.CURRENCY_DECIMAL_PLACES), rounding=ROUND_DOWN)


def unit_rate(value) -> Decimal:
    return to_decimal(value).quantize(_exponent(settings.RATE_DECIMAL_PLACES), rounding=ROUND_HALF_UP)


def quantity(value) -> Decimal:
    return to_decimal(value).quantize(_exponent(settings.QUANTITY_DECIMAL_PLACES), rounding=ROUND_HALF_UP)


def percent(value) -> Decimal:
    return to_decimal(value).quantize(_exponent(settings.PERCENT_DECIMAL_PLACES), rounding=ROUND_HALF_UP)


def percentage_of(part, whole) -> Optional[Decimal]:
    """part / whole * 100, or None when whole is zero"""
    whole = to_decimal(whole)
    if whole == 0:
        return None
    return percent(to_decimal(part) / whole * HUNDRED)
