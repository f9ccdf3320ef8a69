"""
RuleFilter -- predicate-based row exclusion with diagnostics.

Responsibility:
    Remove rows that fail a validation rule and report what was removed.
    Rules are applied one at a time in a fixed, declared order so that a
    later diagnostic never names a row an earlier rule already dropped.

Architecture position:
    Kernel > Domain -- pure.  The only side effect is one ERROR log record
    (``worksheets_excluded``) per rule that excluded something.

Invariants enforced:
    - ``apply`` keeps exactly ``rows - {r : predicate(r)}``, in input order.
    - ``excluded_keys == {key(r) : predicate(r)}`` (deduplicated).
    - Rows are never mutated.
    - ``apply_by_key`` lifts the predicate to the natural key: when any row
      of a worksheet fails, every row of that worksheet is dropped.

Failure modes:
    - A predicate that raises propagates unchanged; rule predicates are
      expected to be total over their row type.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from insurance_kernel.logging_config import get_logger

logger = get_logger("domain.rule_filter")

T = TypeVar("T")

Predicate = Callable[[Any], bool]
KeyFn = Callable[[Any], str]


def natural_key(row: Any) -> str:
    return row.natural_key


@dataclass(frozen=True)
class FilterResult(Generic[T]):
    """Outcome of one rule application."""

    kept: tuple[T, ...]
    excluded_keys: frozenset[str]
    reason: str
    values: tuple[str, ...] = ()

    @property
    def excluded_count(self) -> int:
        return len(self.excluded_keys)


@dataclass(frozen=True)
class Rule:
    """A named exclusion rule.

    ``describe`` optionally lists the offending values (currency codes,
    account pairs, ...) taken from the excluded rows; they go into the
    diagnostic next to the keys.
    """

    reason: str
    predicate: Predicate
    describe: Callable[[Any], object] | None = None
    by_key: bool = True


def _report(result: FilterResult) -> None:
    if not result.excluded_keys:
        return
    logger.error(
        "worksheets_excluded",
        extra={
            "count": result.excluded_count,
            "keys": sorted(result.excluded_keys),
            "reason": result.reason,
            "values": list(result.values),
        },
    )


def _describe(rows: Iterable[Any], describe: Callable[[Any], object] | None) -> tuple[str, ...]:
    if describe is None:
        return ()
    seen: dict[str, None] = {}
    for row in rows:
        value = describe(row)
        if value is not None:
            seen.setdefault(str(value), None)
    return tuple(seen)


def apply(
    rows: Sequence[T],
    predicate: Predicate,
    reason: str,
    *,
    key: KeyFn = natural_key,
    describe: Callable[[Any], object] | None = None,
) -> FilterResult[T]:
    """Drop every row for which ``predicate`` holds."""
    kept: list[T] = []
    excluded: list[T] = []
    for row in rows:
        (excluded if predicate(row) else kept).append(row)
    result = FilterResult(
        kept=tuple(kept),
        excluded_keys=frozenset(key(r) for r in excluded),
        reason=reason,
        values=_describe(excluded, describe),
    )
    _report(result)
    return result


def apply_by_key(
    rows: Sequence[T],
    predicate: Predicate,
    reason: str,
    *,
    key: KeyFn = natural_key,
    describe: Callable[[Any], object] | None = None,
) -> FilterResult[T]:
    """Drop every row whose natural key has at least one failing row."""
    failing = [r for r in rows if predicate(r)]
    failing_keys = {key(r) for r in failing}
    kept = tuple(r for r in rows if key(r) not in failing_keys)
    result = FilterResult(
        kept=kept,
        excluded_keys=frozenset(failing_keys),
        reason=reason,
        values=_describe(failing, describe),
    )
    _report(result)
    return result


def apply_rules(
    rows: Sequence[T],
    rules: Iterable[Rule],
    *,
    key: KeyFn = natural_key,
) -> tuple[tuple[T, ...], tuple[FilterResult[T], ...]]:
    """Apply ``rules`` in order; each sees only the rows earlier rules kept.

    Returns:
        The surviving rows and one result per rule (including rules that
        excluded nothing).
    """
    current: tuple[T, ...] = tuple(rows)
    results: list[FilterResult[T]] = []
    for rule in rules:
        fn = apply_by_key if rule.by_key else apply
        result = fn(current, rule.predicate, rule.reason, key=key, describe=rule.describe)
        results.append(result)
        current = result.kept
    return current, tuple(results)


def excluded_total(results: Iterable[FilterResult]) -> int:
    """Number of distinct keys excluded across ``results``."""
    keys: set[str] = set()
    for result in results:
        keys.update(result.excluded_keys)
    return len(keys)
