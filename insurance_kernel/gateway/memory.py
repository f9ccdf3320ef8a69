"""
InMemoryAccountingGateway -- reference implementation of ``AccountingGateway``.

Holds each tenant's platform state in dictionaries.  Used by the test
suite; it counts every save so idempotence is observable, and
``fail_next`` injects failures for retry and containment tests.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import date

from insurance_kernel.domain.types import (
    AccountingDocument,
    EntityKind,
    ExchangeRate,
    MasterEntity,
    TenantProfile,
)
from insurance_kernel.exceptions import EntityNotFoundError, GatewayRejectedError
from insurance_kernel.gateway.base import DEFAULT_PAGE_SIZE, KeyFilter, SavedDocument
from insurance_kernel.logging_config import get_logger

logger = get_logger("gateway.memory")


@dataclass(frozen=True)
class StoredDocument:
    id: int
    definition_id: int
    document: AccountingDocument
    closed: bool = False


class InMemoryAccountingGateway:
    """Dictionary-backed platform, keyed by tenant id."""

    def __init__(self) -> None:
        self._profiles: dict[int, TenantProfile] = {}
        self._entities: dict[tuple[int, EntityKind], dict[int, MasterEntity]] = defaultdict(dict)
        self._rates: dict[int, dict[int, ExchangeRate]] = defaultdict(dict)
        self._documents: dict[int, dict[int, StoredDocument]] = defaultdict(dict)
        self._failures: dict[str, list[BaseException]] = defaultdict(list)
        self._next_id = 1
        self.calls: dict[str, int] = defaultdict(int)
        self.saved_entities: list[tuple[EntityKind, int | None, int]] = []
        self.close_batches: list[int] = []
        self.delete_batches: list[int] = []

    # -------------------------------------------------------------------------
    # Seeding and inspection
    # -------------------------------------------------------------------------

    def _new_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def add_tenant(self, profile: TenantProfile) -> TenantProfile:
        self._profiles[profile.tenant_id] = profile
        return profile

    def add_entity(self, tenant_id: int, kind: EntityKind, entity: MasterEntity) -> MasterEntity:
        stored = replace(entity, id=entity.id or self._new_id())
        self._entities[(tenant_id, kind)][stored.id] = stored
        return stored

    def add_definition(self, tenant_id: int, kind: EntityKind, code: str) -> int:
        return self.add_entity(tenant_id, kind, MasterEntity(code=code, name=code)).id

    def add_exchange_rate(self, tenant_id: int, rate: ExchangeRate) -> ExchangeRate:
        stored = replace(rate, id=rate.id or self._new_id())
        self._rates[tenant_id][stored.id] = stored
        return stored

    def entities(
        self, tenant_id: int, kind: EntityKind, definition_id: int | None = None
    ) -> list[MasterEntity]:
        return [
            e
            for e in sorted(self._entities[(tenant_id, kind)].values(), key=lambda e: e.id)
            if definition_id is None or e.definition_id == definition_id
        ]

    def exchange_rates(self, tenant_id: int) -> list[ExchangeRate]:
        return sorted(self._rates[tenant_id].values(), key=lambda r: r.id)

    def documents(self, tenant_id: int, definition_id: int | None = None) -> list[StoredDocument]:
        return [
            d
            for d in sorted(self._documents[tenant_id].values(), key=lambda d: d.id)
            if definition_id is None or d.definition_id == definition_id
        ]

    @property
    def save_count(self) -> int:
        """Number of entity, rate and document save calls."""
        return (
            self.calls["save_entities"]
            + self.calls["save_exchange_rates"]
            + self.calls["save_documents"]
        )

    def fail_next(self, operation: str, error: BaseException, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        self._failures[operation].extend([error] * times)

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    # -------------------------------------------------------------------------
    # AccountingGateway
    # -------------------------------------------------------------------------

    def get_tenant_profile(self, tenant_id: int) -> TenantProfile:
        self._enter("get_tenant_profile")
        try:
            return self._profiles[tenant_id]
        except KeyError:
            raise GatewayRejectedError("get_tenant_profile", f"unknown tenant {tenant_id}") from None

    def get_id_by_code(
        self,
        tenant_id: int,
        kind: EntityKind,
        code: str,
        definition_id: int | None = None,
    ) -> int:
        self._enter("get_id_by_code")
        for entity in self.entities(tenant_id, kind, definition_id):
            if entity.code == code:
                return entity.id
        raise EntityNotFoundError(kind.value, code, definition_id)

    def fetch_entities(
        self,
        tenant_id: int,
        kind: EntityKind,
        *,
        definition_id: int | None = None,
        key_filter: KeyFilter | None = None,
        skip: int = 0,
        top: int = DEFAULT_PAGE_SIZE,
    ) -> list[MasterEntity]:
        self._enter("fetch_entities")
        matching = [
            e
            for e in self.entities(tenant_id, kind, definition_id)
            if key_filter is None or key_filter.matches(e)
        ]
        return matching[skip: skip + top]

    def save_entities(
        self,
        tenant_id: int,
        kind: EntityKind,
        definition_id: int | None,
        entities: Sequence[MasterEntity],
    ) -> None:
        self._enter("save_entities")
        store = self._entities[(tenant_id, kind)]
        for entity in entities:
            if entity.id and entity.id not in store:
                raise GatewayRejectedError("save_entities", f"unknown id {entity.id}", (entity.id,))
            saved = replace(
                entity,
                id=entity.id or self._new_id(),
                definition_id=entity.definition_id or definition_id,
            )
            store[saved.id] = saved
        self.saved_entities.append((kind, definition_id, len(entities)))

    def get_max_code(
        self, tenant_id: int, kind: EntityKind, definition_id: int | None
    ) -> str | None:
        self._enter("get_max_code")
        codes = [e.code for e in self.entities(tenant_id, kind, definition_id) if e.code]
        return max(codes) if codes else None

    def fetch_exchange_rates(self, tenant_id: int, valid_from: date) -> list[ExchangeRate]:
        self._enter("fetch_exchange_rates")
        return [r for r in self.exchange_rates(tenant_id) if r.valid_as_of >= valid_from]

    def save_exchange_rates(self, tenant_id: int, rates: Sequence[ExchangeRate]) -> None:
        self._enter("save_exchange_rates")
        for rate in rates:
            self.add_exchange_rate(tenant_id, rate)

    def save_documents(
        self,
        tenant_id: int,
        definition_id: int,
        documents: Sequence[AccountingDocument],
    ) -> list[SavedDocument]:
        self._enter("save_documents")
        store = self._documents[tenant_id]
        by_serial = {
            d.document.serial_number: d.id
            for d in store.values()
            if d.definition_id == definition_id
        }
        saved = []
        for document in documents:
            document_id = document.external_id or by_serial.get(document.serial_number) or self._new_id()
            store[document_id] = StoredDocument(document_id, definition_id, document)
            by_serial[document.serial_number] = document_id
            saved.append(SavedDocument(id=document_id, serial_number=document.serial_number))
        return saved

    def close_documents(
        self, tenant_id: int, definition_id: int, document_ids: Sequence[int]
    ) -> None:
        self._enter("close_documents")
        store = self._documents[tenant_id]
        unknown = tuple(i for i in document_ids if i not in store)
        if unknown:
            raise GatewayRejectedError("close_documents", "unknown document ids", unknown)
        for document_id in document_ids:
            store[document_id] = replace(store[document_id], closed=True)
        self.close_batches.append(len(document_ids))

    def delete_documents(
        self, tenant_id: int, definition_id: int, document_ids: Sequence[int]
    ) -> None:
        self._enter("delete_documents")
        store = self._documents[tenant_id]
        unknown = tuple(i for i in document_ids if i not in store)
        if unknown:
            raise GatewayRejectedError("delete_documents", "unknown document ids", unknown)
        for document_id in document_ids:
            del store[document_id]
        self.delete_batches.append(len(document_ids))
