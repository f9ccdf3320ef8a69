"""
Monetary rounding and text truncation helpers.

Architecture: insurance_kernel/domain.  ZERO I/O.

Invariants enforced:
    - Money is rounded half away from zero (``ROUND_HALF_UP`` on
      ``Decimal`` rounds magnitudes, so -0.005 becomes -0.01).
    - Truncation never raises; callers decide whether to warn.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

MONEY_PLACES = 2
RATE_PLACES = 6


def round_money(amount: Decimal, places: int = MONEY_PLACES) -> Decimal:
    """Round to ``places`` decimals, half away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return Decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)


def round_rate(rate: Decimal) -> Decimal:
    return round_money(rate, RATE_PLACES)


def to_decimal(value: object) -> Decimal:
    """Coerce database numerics (float, int, str, None) to Decimal."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def truncate(text: str | None, limit: int) -> tuple[str | None, bool]:
    """Cut ``text`` to ``limit`` characters.

    Returns:
        The possibly shortened text and whether it was shortened.
    """
    if text is None or len(text) <= limit:
        return text, False
    return text[:limit], True


def is_blank(text: str | None) -> bool:
    return text is None or not text.strip()
