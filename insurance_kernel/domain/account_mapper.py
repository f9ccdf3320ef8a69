"""
AccountMapper -- attach dual-account posting templates to worksheet rows.

Architecture: insurance_kernel/domain.  ZERO I/O.

A missing mapping is an operational gap, not a defect: the row is
returned unmapped with a warning, and the "account not found" rule drops
it later.  A broken table (empty, or two different templates on one key)
is a defect and raises ``MappingTableError``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Mapping, TypeVar

from insurance_kernel.domain.worksheets import AccountMapping
from insurance_kernel.exceptions import MappingTableError
from insurance_kernel.logging_config import get_logger

logger = get_logger("domain.account_mapper")

R = TypeVar("R")


class MappingTable:
    """Immutable index of posting templates by mapping key."""

    def __init__(self, name: str, templates: Mapping[tuple, AccountMapping]):
        self.name = name
        self._templates = MappingProxyType(dict(templates))

    @classmethod
    def build(cls, name: str, templates: Iterable[AccountMapping]) -> MappingTable:
        """Index ``templates`` by key.

        Raises:
            MappingTableError: the table is empty or inconsistent (two
                templates on one key, a direction other than +1 or -1).
        """
        index: dict[tuple, AccountMapping] = {}
        for template in templates:
            for direction in (template.direction_a, template.direction_b):
                if direction not in (None, 1, -1):
                    raise MappingTableError(
                        name, f"direction {direction!r} for key {template.key!r} is not +1 or -1"
                    )
            existing = index.get(template.key)
            if existing is not None and existing != template:
                raise MappingTableError(name, f"conflicting templates for key {template.key!r}")
            index[template.key] = template
        if not index:
            raise MappingTableError(name, "table is empty")
        return cls(name, index)

    def get(self, key: tuple) -> AccountMapping | None:
        return self._templates.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def keys(self) -> frozenset[tuple]:
        return frozenset(self._templates)

    def first_components(self) -> frozenset:
        """Set of the first key components (account codes or remittance types)."""
        return frozenset(k[0] for k in self._templates)


def map_row(row: R, table: MappingTable) -> R:
    """Return ``row`` with its template attached, or unchanged on a miss."""
    key = row.mapping_key  # type: ignore[attr-defined]
    template = table.get(key)
    if template is None:
        logger.warning(
            "mapping_not_found",
            extra={
                "table": table.name,
                "worksheet_id": getattr(row, "worksheet_id", None),
                "mapping_key": list(key),
            },
        )
        return row
    return replace(row, mapping=template)  # type: ignore[type-var]


def map_rows(rows: Sequence[R], table: MappingTable) -> tuple[R, ...]:
    return tuple(map_row(r, table) for r in rows)


def is_unmapped(row: Any) -> bool:
    return row.mapping is None
