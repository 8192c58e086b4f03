"""
Decimal price helpers.

Prices travel through the app as ``Decimal`` and are stored as integer
minor units (pence, cents; the raw amount for zero-decimal currencies).
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from core.exceptions import InvalidPriceError

# Currencies Stripe treats as having no minor unit
ZERO_DECIMAL_CURRENCIES = {
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
}


def currency_exponent(currency: str) -> int:
    return 0 if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES else 2


def parse_price(value: Any) -> Decimal:
    """
    Coerce ``value`` into a non-negative finite Decimal.

    Floats go through ``str`` so 19.99 stays 19.99. Booleans are rejected.

    Raises:
        InvalidPriceError: if the value is missing, malformed, non-finite or negative
    """
    if value is None or isinstance(value, bool):
        raise InvalidPriceError(f"Invalid price: {value!r}")
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidPriceError(f"Invalid price: {value!r}") from e
    if not price.is_finite():
        raise InvalidPriceError(f"Price must be finite: {value!r}")
    if price < 0:
        raise InvalidPriceError(f"Price must be >= 0: {value!r}")
    return price


def to_minor_units(amount: Decimal, currency: str, rounding: str = ROUND_HALF_UP) -> int:
    exp = currency_exponent(currency)
    quantum = Decimal(1).scaleb(-exp)
    return int((amount.quantize(quantum, rounding=rounding) * (10 ** exp)).to_integral_value())


def from_minor_units(units: int, currency: str) -> Decimal:
    exp = currency_exponent(currency)
    return (Decimal(int(units)).scaleb(-exp)).quantize(Decimal(1).scaleb(-exp))


def discount_percentage(original_price: Decimal, target_price: Decimal) -> int:
    """Whole-number percentage off ``original_price`` that reaches ``target_price``."""
    if original_price <= 0:
        return 0
    pct = (original_price - target_price) / original_price * 100
    return int(pct.quantize(Decimal(1), rounding=ROUND_HALF_UP))
