"""
Money Utilities
Decimal arithmetic for prices, gateway minor units and commissions
"""
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_HALF_UP, InvalidOperation
from typing import Union

from marketplace.core.exceptions import ValidationError

Number = Union[Decimal, float, int, str]

# Minor-unit exponent per supported currency (paise, cents, pence)
CURRENCY_EXPONENTS = {
    "INR": 2,
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
}

TWO_PLACES = Decimal("0.01")


def to_decimal(value: Number) -> Decimal:
    """Exact decimal from a float/int/str (floats go through str to avoid binary noise)"""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}", field="amount")


def _exponent(currency: str) -> int:
    exponent = CURRENCY_EXPONENTS.get((currency or "").upper())
    if exponent is None:
        raise ValidationError(f"Unsupported currency: {currency}", field="currency")
    return exponent


def to_minor_units(amount: Number, currency: str) -> int:
    """
    Convert a major-unit amount to the gateway's integer minor units.
    Rounds half-up, e.g. 999.005 INR -> 99901 paise.
    """
    exponent = _exponent(currency)
    minor = (to_decimal(amount) * (Decimal(10) ** exponent)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    if minor <= 0:
        raise ValidationError("Amount must be positive", field="amount")
    return int(minor)


def from_minor_units(minor: int, currency: str) -> Decimal:
    """Convert gateway minor units back to a major-unit Decimal"""
    exponent = _exponent(currency)
    return (Decimal(int(minor)) / (Decimal(10) ** exponent)).quantize(
        Decimal(1).scaleb(-exponent)
    )


def percentage_of(amount: Number, percentage: Number) -> Decimal:
    """amount * percentage / 100, rounded half-even to 2 decimals"""
    value = to_decimal(amount) * to_decimal(percentage) / Decimal(100)
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_EVEN)


def as_float(value: Number) -> float:
    """Storage representation used in MongoDB documents"""
    return float(to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_EVEN))
