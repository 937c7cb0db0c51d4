"""Money helpers for the rewards platform.

Balances are USD held as ``Decimal`` with two places.
Crypto amounts keep up to ten places.

Conversion chain
----------------
crypto amount × rate → USD (unrounded)
USD → cents via ``to_usd`` (round half-up)
USD ÷ rate → crypto amount via ``usd_to_crypto``
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

# ─── constants ───────────────────────────────────────────────────────────────

USD_QUANT = Decimal("0.01")
CRYPTO_QUANT = Decimal("0.0000000001")
ZERO = Decimal("0")

Number = Union[Decimal, int, float, str]


# ─── conversion helpers ───────────────────────────────────────────────────────


def to_decimal(value: Number) -> Decimal:
    """Coerce ``value`` to Decimal without going through binary floats."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a decimal amount: {value!r}") from exc


def to_usd(value: Number) -> Decimal:
    """Round a USD value to cents (half-up)."""
    return to_decimal(value).quantize(USD_QUANT, rounding=ROUND_HALF_UP)


def to_crypto(value: Number) -> Decimal:
    """Round a crypto amount to the stored precision (half-up)."""
    return to_decimal(value).quantize(CRYPTO_QUANT, rounding=ROUND_HALF_UP)


def usd_to_crypto(usd: Number, rate: Number) -> Decimal:
    """Convert a USD amount to units of a network. A zero rate yields zero."""
    rate = to_decimal(rate)
    if rate <= ZERO:
        return ZERO
    return to_crypto(to_decimal(usd) / rate)
