"""
ExchangeRateResolver -- point-in-time conversion into the functional currency.

Architecture: insurance_kernel/domain.  ZERO I/O.

Invariants enforced:
    - The chosen rate is the one with the greatest ``valid_as_of`` that is
      on or before the cutoff date.
    - The functional currency always converts at 1; no other currency ever
      falls back to a default.
    - Converted amounts are rounded to 2 places, half away from zero.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import replace
from datetime import date
from decimal import Decimal

from insurance_kernel.domain.types import ExchangeRate
from insurance_kernel.domain.values import round_money, round_rate
from insurance_kernel.domain.worksheets import SourceExchangeRate
from insurance_kernel.exceptions import ExchangeRateNotFoundError

ONE = Decimal("1")


def rate_for(
    currency: str,
    as_of: date,
    rates: Iterable[ExchangeRate],
    functional_currency: str | None = None,
) -> Decimal:
    """Functional units per unit of ``currency`` on ``as_of``.

    Raises:
        ExchangeRateNotFoundError: no rate for ``currency`` on or before
            ``as_of``.
    """
    if functional_currency is not None and currency == functional_currency:
        return ONE
    best: ExchangeRate | None = None
    for rate in rates:
        if rate.currency_id != currency or rate.valid_as_of > as_of:
            continue
        if best is None or rate.valid_as_of > best.valid_as_of:
            best = rate
    if best is None:
        raise ExchangeRateNotFoundError(currency, as_of.isoformat())
    return best.rate


def convert(amount: Decimal, rate: Decimal) -> Decimal:
    """Magnitude of ``amount`` in functional units, rounded to cents."""
    return abs(round_money(amount * rate))


class RateBook:
    """Rates indexed by currency for repeated lookups within one step."""

    def __init__(self, rates: Iterable[ExchangeRate], functional_currency: str):
        self.functional_currency = functional_currency
        self._by_currency: dict[str, list[ExchangeRate]] = defaultdict(list)
        for rate in rates:
            self._by_currency[rate.currency_id].append(rate)

    def rate_for(self, currency: str, as_of: date) -> Decimal:
        return rate_for(
            currency,
            as_of,
            self._by_currency.get(currency, ()),
            self.functional_currency,
        )

    def currencies(self) -> frozenset[str]:
        return frozenset(self._by_currency)


def to_platform_rate(source: SourceExchangeRate) -> ExchangeRate:
    """Platform form of a source rate: ``round(1 / rate, 6)`` units per one functional unit."""
    return ExchangeRate(
        currency_id=source.currency_id,
        valid_as_of=source.valid_as_of,
        amount_in_currency=round_rate(ONE / source.amount_in_functional),
        amount_in_functional=ONE,
    )


def first_of_month(day: date) -> date:
    return day.replace(day=1)


def plan_rate_updates(
    desired: Iterable[ExchangeRate], existing: Iterable[ExchangeRate]
) -> list[ExchangeRate]:
    """Rates to save so the platform matches ``desired``.

    A rate identical to an existing one on every amount is dropped; a rate
    whose (currency, date) already exists with other amounts carries the
    existing id, so saving it updates in place.
    """
    existing = list(existing)
    unchanged = {r.comparison_key for r in existing}
    ids = {(r.currency_id, r.valid_as_of): r.id for r in existing}
    changes = []
    for rate in desired:
        if rate.comparison_key in unchanged:
            continue
        changes.append(replace(rate, id=ids.get((rate.currency_id, rate.valid_as_of), 0)))
    return changes
