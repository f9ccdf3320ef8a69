"""
Master-data sync policies -- business keys, per-kind equality and merge rules.

Responsibility:
    Decide, without any I/O, which desired reference entities must be
    created, which existing ones must be updated, and which are already
    up to date.  ``MasterDataSynchronizer`` (services layer) does the
    fetching and saving around ``plan_sync``.

Architecture position:
    Kernel > Domain -- pure.

Invariants enforced:
    - One entity per business key.  Desired entities with an empty key
      are discarded; duplicates keep the first occurrence.
    - Idempotence: the merged desired state is compared with the existing
      one, so ``plan_sync`` over the result of a previous sync yields no
      creates and no updates.
    - Date ranges merge conservatively: ``from_date`` never moves later
      than what the platform already has; ``to_date`` follows the source.

Key shapes:
    - Code key: ``(code,)`` for agents, contracts and trade receivable
      accounts.
    - Composite key: ``(agent1_id, agent2_id, lookup1_id)`` for business
      partners (contract, partner agent, partnership type), which have no
      natural code.  Their codes are generated (``BP00001``...).

Per-kind equality (kept deliberately different per kind):
    - Names compare tolerantly: ``"X"`` equals ``"X - {code}"`` (the
      disambiguated form).
    - Description treats blank and null as equal for contracts only.
    - Business partners match on the composite key alone.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from types import MappingProxyType

from insurance_kernel.domain.codes import PlatformCode, UNASSIGNED_CODE, business_partner_code
from insurance_kernel.domain.types import MasterEntity
from insurance_kernel.domain.values import is_blank


# =============================================================================
# Business keys
# =============================================================================


@dataclass(frozen=True)
class BusinessKey:
    """Attributes that identify one entity of a kind."""

    fields: tuple[str, ...]

    def of(self, entity: MasterEntity) -> tuple | None:
        """Key tuple, or None when any component is empty."""
        values = tuple(getattr(entity, f) for f in self.fields)
        for value in values:
            if value is None or (isinstance(value, str) and is_blank(value)):
                return None
        return values

    @property
    def is_code(self) -> bool:
        return self.fields == ("code",)


CODE_KEY = BusinessKey(("code",))
PARTNER_KEY = BusinessKey(("agent1_id", "agent2_id", "lookup1_id"))
# A partner whose agent changed is found again by contract and type.
PARTNER_FALLBACK_KEY = BusinessKey(("agent1_id", "lookup1_id"))


def names_equal(existing: str | None, desired: str | None, code: str) -> bool:
    if existing == desired:
        return True
    return desired is not None and existing == f"{desired} - {code}"


# =============================================================================
# Policies
# =============================================================================


class SyncPolicy:
    """Base policy: code-keyed entity compared on name only."""

    definition: PlatformCode = PlatformCode.INSURANCE_AGENT
    key: BusinessKey = CODE_KEY
    fallback_key: BusinessKey | None = None
    compared_fields: tuple[str, ...] = ()
    blank_equals_null: frozenset[str] = frozenset()
    disambiguate_names: bool = False
    generates_codes: bool = False
    refetch_after_save: bool = True

    def merge(self, desired: MasterEntity, existing: MasterEntity | None) -> MasterEntity:
        """State to save: the desired values onto the existing identity."""
        merged = replace(desired, name2=desired.name)
        if existing is not None:
            merged = replace(merged, id=existing.id, definition_id=existing.definition_id)
        return merged

    def equal(self, merged: MasterEntity, existing: MasterEntity) -> bool:
        if not names_equal(existing.name, merged.name, merged.code):
            return False
        if not names_equal(existing.name2, merged.name2, merged.code):
            return False
        for name in self.compared_fields:
            left, right = getattr(existing, name), getattr(merged, name)
            if left == right:
                continue
            if name in self.blank_equals_null and is_blank(left) and is_blank(right):
                continue
            return False
        return True


class InsuranceAgentPolicy(SyncPolicy):
    definition = PlatformCode.INSURANCE_AGENT
    disambiguate_names = True


class InsuranceContractPolicy(SyncPolicy):
    definition = PlatformCode.INSURANCE_CONTRACT
    compared_fields = (
        "agent2_id",
        "lookup1_id",
        "lookup3_id",
        "from_date",
        "to_date",
        "description",
        "description2",
    )
    blank_equals_null = frozenset({"description"})

    def merge(self, desired: MasterEntity, existing: MasterEntity | None) -> MasterEntity:
        merged = super().merge(desired, existing)
        if existing is not None and existing.from_date is not None:
            if merged.from_date is None or existing.from_date < merged.from_date:
                merged = replace(merged, from_date=existing.from_date)
        return merged


class TradeReceivableAccountPolicy(SyncPolicy):
    definition = PlatformCode.TRADE_RECEIVABLE_ACCOUNT
    compared_fields = ("agent1_id", "agent2_id", "lookup2_id")


class BusinessPartnerPolicy(SyncPolicy):
    definition = PlatformCode.BUSINESS_PARTNER
    key = PARTNER_KEY
    fallback_key = PARTNER_FALLBACK_KEY
    generates_codes = True
    refetch_after_save = False

    def merge(self, desired: MasterEntity, existing: MasterEntity | None) -> MasterEntity:
        code = existing.code if existing is not None else desired.code
        name = f"{code}: {desired.name}"
        merged = replace(desired, code=code, name=name, name2=name)
        if existing is not None:
            merged = replace(merged, id=existing.id, definition_id=existing.definition_id)
        return merged

    def equal(self, merged: MasterEntity, existing: MasterEntity) -> bool:
        return self.key.of(merged) == self.key.of(existing)


POLICIES = MappingProxyType(
    {
        policy.definition: policy
        for policy in (
            InsuranceAgentPolicy(),
            InsuranceContractPolicy(),
            TradeReceivableAccountPolicy(),
            BusinessPartnerPolicy(),
        )
    }
)


def policy_for(definition: PlatformCode) -> SyncPolicy:
    try:
        return POLICIES[definition]
    except KeyError:
        raise ValueError(f"No sync policy for definition {definition.value!r}") from None


# =============================================================================
# Planning
# =============================================================================


@dataclass(frozen=True)
class SyncPlan:
    creates: tuple[MasterEntity, ...]
    updates: tuple[MasterEntity, ...]
    unchanged: tuple[MasterEntity, ...]
    discarded: int = 0

    @property
    def to_save(self) -> tuple[MasterEntity, ...]:
        return self.creates + self.updates

    @property
    def is_noop(self) -> bool:
        return not self.creates and not self.updates


def dedupe_by_key(
    desired: Iterable[MasterEntity], key: BusinessKey
) -> tuple[list[MasterEntity], int]:
    """Drop entities with empty keys and repeated keys (first wins)."""
    kept: dict[tuple, MasterEntity] = {}
    discarded = 0
    for entity in desired:
        k = key.of(entity)
        if k is None:
            discarded += 1
            continue
        kept.setdefault(k, entity)
    return list(kept.values()), discarded


def _index(entities: Iterable[MasterEntity], key: BusinessKey) -> dict[tuple, MasterEntity]:
    index: dict[tuple, MasterEntity] = {}
    for entity in entities:
        k = key.of(entity)
        if k is not None:
            index.setdefault(k, entity)
    return index


def disambiguate(entities: Sequence[MasterEntity]) -> list[MasterEntity]:
    """Append ``" - {code}"`` to names shared (case-insensitively) in one batch."""
    counts: dict[str, int] = {}
    for entity in entities:
        if entity.name:
            counts[entity.name.lower()] = counts.get(entity.name.lower(), 0) + 1
    result = []
    for entity in entities:
        if entity.name and counts[entity.name.lower()] > 1:
            name = f"{entity.name} - {entity.code}"
            entity = replace(entity, name=name, name2=name)
        result.append(entity)
    return result


def plan_sync(
    desired: Iterable[MasterEntity],
    existing: Iterable[MasterEntity],
    policy: SyncPolicy,
    *,
    max_serial: int = 0,
) -> SyncPlan:
    """Split ``desired`` into creates, updates and unchanged entities.

    Args:
        max_serial: Highest serial already used for generated codes
            (business partners); new codes continue from it.
    """
    candidates, discarded = dedupe_by_key(desired, policy.key)
    existing = list(existing)
    by_key = _index(existing, policy.key)
    by_fallback = _index(existing, policy.fallback_key) if policy.fallback_key else {}

    creates: list[MasterEntity] = []
    updates: list[MasterEntity] = []
    unchanged: list[MasterEntity] = []
    claimed: set[int] = set()

    for entity in candidates:
        match = by_key.get(policy.key.of(entity))
        if match is None and policy.fallback_key is not None:
            fallback = by_fallback.get(policy.fallback_key.of(entity))
            if fallback is not None and fallback.id not in claimed:
                match = fallback
        if match is None:
            creates.append(entity)
            continue
        claimed.add(match.id)
        merged = policy.merge(entity, match)
        if policy.equal(merged, match):
            unchanged.append(match)
        else:
            updates.append(merged)

    if policy.generates_codes:
        serial = max_serial
        numbered = []
        for entity in creates:
            if entity.code in (None, "", UNASSIGNED_CODE):
                serial += 1
                entity = replace(entity, code=business_partner_code(serial))
            numbered.append(entity)
        creates = numbered

    creates = [policy.merge(entity, None) for entity in creates]

    if policy.disambiguate_names:
        batch = disambiguate(creates + updates)
        creates, updates = batch[: len(creates)], batch[len(creates):]

    return SyncPlan(
        creates=tuple(creates),
        updates=tuple(updates),
        unchanged=tuple(unchanged),
        discarded=discarded,
    )
