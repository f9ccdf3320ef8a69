"""
AccountingGateway -- the accounting-platform capability consumed by the importer.

Responsibility:
    Declare, as a typed protocol, every platform operation the importer
    needs: tenant settings, id lookup by code, filtered and paginated
    entity fetch, batched save, exchange rates, and document
    save/close/delete.  Dispatch per entity kind goes through the
    ``EntityKind`` enum argument, never through attribute names resolved
    at runtime.

Architecture position:
    Kernel > Gateway.  Implementations live next to this module
    (``memory``) or outside the package (the real platform client, passed
    in by the host via ``scripts/run_importer.py --gateway-factory``).

Invariants enforced:
    - An OR-filter longer than the budget (1024 characters) is never sent;
      ``fetch_all`` drops it and pages through the whole collection.
    - Pagination stops at the first short page.

Failure modes:
    - ``EntityNotFoundError`` from ``get_id_by_code``.
    - ``TransientGatewayError`` (or ``ConnectionError``/``TimeoutError``)
      for retryable transport failures; ``GatewayRejectedError`` for
      requests the platform refuses.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Protocol, runtime_checkable

from insurance_kernel.domain.codes import code_serial_number
from insurance_kernel.domain.types import (
    AccountingDocument,
    EntityKind,
    ExchangeRate,
    MasterEntity,
    TenantProfile,
)
from insurance_kernel.logging_config import get_logger

logger = get_logger("gateway")

DEFAULT_PAGE_SIZE = 500
FILTER_BUDGET = 1024


# =============================================================================
# OR-filter
# =============================================================================

# Entity attribute -> platform property name.
PLATFORM_FIELD_NAMES = {
    "code": "Code",
    "name": "Name",
    "text3": "Text3",
    "concept": "Concept",
    "currency_id": "CurrencyId",
    "agent1_id": "Agent1Id",
    "agent2_id": "Agent2Id",
    "lookup1_id": "Lookup1Id",
    "lookup2_id": "Lookup2Id",
    "lookup3_id": "Lookup3Id",
}


def _literal(value: object) -> str:
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return str(value)


@dataclass(frozen=True)
class KeyFilter:
    """OR of AND-clauses over entity attributes.

    ``KeyFilter.any_of("code", ["A", "B"])`` renders ``Code='A' OR Code='B'``;
    composite clauses render in parentheses, e.g.
    ``(Agent1Id=1 AND Agent2Id=2 AND Lookup1Id=3)``.
    """

    clauses: tuple[tuple[tuple[str, object], ...], ...]

    @classmethod
    def any_of(cls, field_name: str, values: Iterable[object]) -> KeyFilter:
        seen = dict.fromkeys(v for v in values if v is not None)
        return cls(tuple(((field_name, v),) for v in seen))

    @classmethod
    def any_of_keys(cls, fields: Sequence[str], keys: Iterable[tuple]) -> KeyFilter:
        seen = dict.fromkeys(keys)
        return cls(tuple(tuple(zip(fields, key)) for key in seen))

    @property
    def is_empty(self) -> bool:
        return not self.clauses

    def render(self) -> str:
        parts = []
        for clause in self.clauses:
            terms = [
                f"{PLATFORM_FIELD_NAMES.get(name, name)}={_literal(value)}"
                for name, value in clause
            ]
            parts.append(terms[0] if len(terms) == 1 else "(" + " AND ".join(terms) + ")")
        return " OR ".join(parts)

    def fits(self, budget: int = FILTER_BUDGET) -> bool:
        return len(self.render()) < budget

    def matches(self, entity: MasterEntity) -> bool:
        return any(
            all(getattr(entity, name) == value for name, value in clause)
            for clause in self.clauses
        )


# =============================================================================
# Protocol
# =============================================================================


@dataclass(frozen=True)
class SavedDocument:
    """Platform id assigned to a saved document."""

    id: int
    serial_number: int


@runtime_checkable
class AccountingGateway(Protocol):
    """Operations of the accounting platform, scoped per tenant.

    Contract:
        - ``fetch_entities`` returns at most ``top`` entities ordered by id.
        - ``save_entities`` creates entities with ``id == 0`` and updates
          the others; it returns nothing, callers re-fetch.
        - ``save_documents`` is keyed by (definition, serial number):
          saving a serial that already exists updates that document.

    Non-goals:
        - No transaction across calls; every call stands alone.
    """

    def get_tenant_profile(self, tenant_id: int) -> TenantProfile: ...

    def get_id_by_code(
        self,
        tenant_id: int,
        kind: EntityKind,
        code: str,
        definition_id: int | None = None,
    ) -> int: ...

    def fetch_entities(
        self,
        tenant_id: int,
        kind: EntityKind,
        *,
        definition_id: int | None = None,
        key_filter: KeyFilter | None = None,
        skip: int = 0,
        top: int = DEFAULT_PAGE_SIZE,
    ) -> list[MasterEntity]: ...

    def save_entities(
        self,
        tenant_id: int,
        kind: EntityKind,
        definition_id: int | None,
        entities: Sequence[MasterEntity],
    ) -> None: ...

    def get_max_code(
        self, tenant_id: int, kind: EntityKind, definition_id: int | None
    ) -> str | None: ...

    def fetch_exchange_rates(self, tenant_id: int, valid_from: date) -> list[ExchangeRate]: ...

    def save_exchange_rates(self, tenant_id: int, rates: Sequence[ExchangeRate]) -> None: ...

    def save_documents(
        self,
        tenant_id: int,
        definition_id: int,
        documents: Sequence[AccountingDocument],
    ) -> list[SavedDocument]: ...

    def close_documents(
        self, tenant_id: int, definition_id: int, document_ids: Sequence[int]
    ) -> None: ...

    def delete_documents(
        self, tenant_id: int, definition_id: int, document_ids: Sequence[int]
    ) -> None: ...


# =============================================================================
# Helpers
# =============================================================================


def fetch_all(
    gateway: AccountingGateway,
    tenant_id: int,
    kind: EntityKind,
    *,
    definition_id: int | None = None,
    key_filter: KeyFilter | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
    filter_budget: int = FILTER_BUDGET,
) -> list[MasterEntity]:
    """Every entity matching ``key_filter``, page by page.

    A filter at or over ``filter_budget`` characters is dropped and the
    whole collection is fetched instead; callers match keys locally.
    """
    if key_filter is not None and not key_filter.fits(filter_budget):
        logger.info(
            "filter_over_budget",
            extra={"kind": kind.value, "clauses": len(key_filter.clauses), "budget": filter_budget},
        )
        key_filter = None

    result: list[MasterEntity] = []
    skip = 0
    while True:
        page = gateway.fetch_entities(
            tenant_id,
            kind,
            definition_id=definition_id,
            key_filter=key_filter,
            skip=skip,
            top=page_size,
        )
        result.extend(page)
        if len(page) < page_size:
            return result
        skip += page_size


def get_max_serial_number(
    gateway: AccountingGateway, tenant_id: int, kind: EntityKind, definition_id: int | None
) -> int:
    """Numeric suffix of the highest code in a definition; 0 when empty."""
    return code_serial_number(gateway.get_max_code(tenant_id, kind, definition_id))


def ids_by_code(entities: Iterable[MasterEntity]) -> dict[str, int]:
    return {e.code: e.id for e in entities if e.code}
