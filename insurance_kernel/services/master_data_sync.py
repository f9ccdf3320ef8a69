"""
MasterDataSynchronizer -- idempotent upsert of reference entities.

Responsibility:
    Bring a set of desired agents (insurance agents, contracts, business
    partners, trade receivable accounts) in line with the platform using
    one filtered fetch, one batched save and, where the kind allows it,
    one re-fetch for platform-assigned ids.

Architecture position:
    Kernel > Services.  Planning (key matching, per-kind equality, name
    disambiguation, generated codes) is delegated to the pure
    ``insurance_kernel.domain.master_data.plan_sync``; this class owns the
    I/O around it.

Invariants enforced:
    - ``sync(X)`` followed by ``sync(X)`` with no drift issues no save on
      the second call.
    - At most one ``save_entities`` call per ``sync``.
    - The OR-filter never exceeds the budget; past it the collection is
      fetched unfiltered and matched locally.

Failure modes:
    - ``EntityNotFoundError`` when the agent definition does not exist.
    - Gateway errors propagate to the calling step.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from insurance_kernel.domain.codes import PlatformCode
from insurance_kernel.domain.master_data import SyncPlan, SyncPolicy, dedupe_by_key, plan_sync, policy_for
from insurance_kernel.domain.types import EntityKind, MasterEntity
from insurance_kernel.gateway.base import (
    DEFAULT_PAGE_SIZE,
    FILTER_BUDGET,
    AccountingGateway,
    KeyFilter,
    fetch_all,
    get_max_serial_number,
)
from insurance_kernel.logging_config import get_logger

logger = get_logger("services.master_data_sync")


@dataclass(frozen=True)
class SyncResult:
    """Existing plus saved entities of one definition after a sync."""

    definition_id: int
    entities: tuple[MasterEntity, ...]
    plan: SyncPlan

    def ids_by_code(self) -> dict[str, int]:
        return {e.code: e.id for e in self.entities if e.code and e.id}

    @property
    def created(self) -> int:
        return len(self.plan.creates)

    @property
    def updated(self) -> int:
        return len(self.plan.updates)


class MasterDataSynchronizer:
    """Sync desired agents of one definition per call."""

    def __init__(
        self,
        gateway: AccountingGateway,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        filter_budget: int = FILTER_BUDGET,
    ):
        self._gateway = gateway
        self._page_size = page_size
        self._filter_budget = filter_budget

    def definition_id(self, tenant_id: int, definition: PlatformCode) -> int:
        return self._gateway.get_id_by_code(
            tenant_id, EntityKind.AGENT_DEFINITION, definition.value
        )

    def fetch(
        self,
        tenant_id: int,
        definition_id: int,
        key_filter: KeyFilter | None = None,
    ) -> list[MasterEntity]:
        if key_filter is not None and key_filter.is_empty:
            return []
        return fetch_all(
            self._gateway,
            tenant_id,
            EntityKind.AGENT,
            definition_id=definition_id,
            key_filter=key_filter,
            page_size=self._page_size,
            filter_budget=self._filter_budget,
        )

    def sync(
        self,
        tenant_id: int,
        definition: PlatformCode,
        desired: Iterable[MasterEntity],
    ) -> SyncResult:
        """Create or update ``desired`` so the platform matches it.

        Returns:
            The unchanged existing entities plus the saved ones.  Saved
            entities carry platform ids unless the kind skips the
            re-fetch (business partners).
        """
        policy = policy_for(definition)
        definition_id = self.definition_id(tenant_id, definition)
        candidates, discarded = dedupe_by_key(desired, policy.key)
        if discarded:
            logger.warning(
                "master_data_empty_keys",
                extra={"definition": definition.value, "discarded": discarded},
            )
        if not candidates:
            return SyncResult(definition_id, (), SyncPlan((), (), (), discarded))

        existing = self.fetch(tenant_id, definition_id, self._existing_filter(policy, candidates))
        max_serial = (
            get_max_serial_number(self._gateway, tenant_id, EntityKind.AGENT, definition_id)
            if policy.generates_codes
            else 0
        )
        plan = plan_sync(candidates, existing, policy, max_serial=max_serial)
        plan = SyncPlan(plan.creates, plan.updates, plan.unchanged, discarded)

        if plan.is_noop:
            logger.debug(
                "master_data_up_to_date",
                extra={"definition": definition.value, "count": len(plan.unchanged)},
            )
            return SyncResult(definition_id, plan.unchanged, plan)

        self._gateway.save_entities(tenant_id, EntityKind.AGENT, definition_id, plan.to_save)
        logger.info(
            "master_data_saved",
            extra={
                "definition": definition.value,
                "entities_created": len(plan.creates),
                "entities_updated": len(plan.updates),
                "entities_unchanged": len(plan.unchanged),
            },
        )

        if not policy.refetch_after_save:
            return SyncResult(definition_id, plan.unchanged + plan.to_save, plan)

        codes = {e.code for e in plan.to_save}
        refetched = [
            e
            for e in self.fetch(tenant_id, definition_id, KeyFilter.any_of("code", sorted(codes)))
            if e.code in codes
        ]
        return SyncResult(definition_id, plan.unchanged + tuple(refetched), plan)

    @staticmethod
    def _existing_filter(policy: SyncPolicy, candidates: list[MasterEntity]) -> KeyFilter:
        # The fallback key is a subset of the primary one, so filtering on
        # it also returns every primary-key match.
        key = policy.fallback_key or policy.key
        keys = [k for k in (key.of(e) for e in candidates) if k is not None]
        if key.is_code:
            return KeyFilter.any_of("code", sorted(k[0] for k in keys))
        return KeyFilter.any_of_keys(key.fields, keys)
