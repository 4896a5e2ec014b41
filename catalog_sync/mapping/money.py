# catalog_sync/mapping/money.py
# Minor-unit conversions shared by the catalog side and the ERP side.
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any

# ISO 4217 currencies whose minor unit is not 1/100
ZERO_DECIMAL_CURRENCIES = {
    "bif", "clp", "djf", "gnf", "isk", "jpy", "kmf", "krw", "pyg",
    "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
}
THREE_DECIMAL_CURRENCIES = {"bhd", "iqd", "jod", "kwd", "lyd", "omr", "tnd"}


def currency_exponent(currency: str) -> int:
    code = (currency or "").strip().lower()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats like 19.99 don't drag binary noise along
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"not a monetary amount: {value!r}") from e


def to_minor_units(amount: Any, currency: str, *, already_minor: bool = False) -> int:
    """
    Normalize an amount to integer minor units (cents for USD, pesos for CLP).

    `already_minor=True` means the value is already expressed in minor units
    and only needs to be coerced to an int.
    """
    d = _as_decimal(amount)
    if already_minor:
        return int(d.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    scaled = d * (Decimal(10) ** currency_exponent(currency))
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_major_units(minor: int, currency: str) -> float:
    """Convert integer minor units to the float major amount the ERP stores."""
    exp = currency_exponent(currency)
    d = Decimal(int(minor)) / (Decimal(10) ** exp)
    return float(d)
