"""
Money helpers.

All amounts are integer cents. Percentages are basis points (1000 == 10%).
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

BPS_DENOMINATOR = 10_000


def percent_of(amount_cents: int, rate_bps: int) -> int:
    """
    Apply a basis-point rate to a cent amount.

    Rounds half away from zero to the cent, e.g. 2.5 cents -> 3, -2.5 -> -3.
    """
    raw = Decimal(amount_cents) * Decimal(rate_bps) / Decimal(BPS_DENOMINATOR)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_cents(amount_cents: int | None) -> str | None:
    if amount_cents is None:
        return None
    sign = "-" if amount_cents < 0 else ""
    whole, frac = divmod(abs(amount_cents), 100)
    return f"{sign}{whole}.{frac:02d}"
