"""
Tests for insurance_kernel.domain.master_data -- sync planning per kind.

Focus: key selection, per-kind equality, conservative date merging,
generated partner codes and idempotence of a second plan.
"""

from dataclasses import replace
from datetime import date

import pytest

from insurance_kernel.domain.codes import UNASSIGNED_CODE, PlatformCode
from insurance_kernel.domain.master_data import (
    BusinessPartnerPolicy,
    InsuranceAgentPolicy,
    InsuranceContractPolicy,
    TradeReceivableAccountPolicy,
    dedupe_by_key,
    disambiguate,
    names_equal,
    plan_sync,
    policy_for,
    CODE_KEY,
)
from insurance_kernel.domain.types import MasterEntity

AGENTS = InsuranceAgentPolicy()
CONTRACTS = InsuranceContractPolicy()
PARTNERS = BusinessPartnerPolicy()


def saved(entities, start_id=100):
    """Simulate the platform assigning ids to created entities."""
    return [replace(e, id=start_id + i) if e.id == 0 else e for i, e in enumerate(entities)]


# =============================================================================
# Keys and helpers
# =============================================================================


class TestKeys:

    def test_blank_codes_are_discarded(self):
        kept, discarded = dedupe_by_key(
            [MasterEntity(code=""), MasterEntity(code="  "), MasterEntity(code="A1")], CODE_KEY
        )
        assert [e.code for e in kept] == ["A1"]
        assert discarded == 2

    def test_first_duplicate_wins(self):
        kept, _ = dedupe_by_key(
            [MasterEntity(code="A1", name="first"), MasterEntity(code="A1", name="second")], CODE_KEY
        )
        assert [e.name for e in kept] == ["first"]

    def test_disambiguated_name_equals_plain_name(self):
        assert names_equal("Agent One - AG1", "Agent One", "AG1")
        assert not names_equal("Agent One - AG2", "Agent One", "AG1")
        assert not names_equal("Agent One", None, "AG1")

    def test_shared_names_get_code_suffix(self):
        result = disambiguate([
            MasterEntity(code="A1", name="Acme"),
            MasterEntity(code="A2", name="ACME"),
            MasterEntity(code="A3", name="Other"),
        ])
        assert [e.name for e in result] == ["Acme - A1", "ACME - A2", "Other"]
        assert result[0].name2 == "Acme - A1"

    def test_policy_lookup(self):
        assert isinstance(policy_for(PlatformCode.TRADE_RECEIVABLE_ACCOUNT), TradeReceivableAccountPolicy)
        with pytest.raises(ValueError):
            policy_for(PlatformCode.BANK_ACCOUNT)


# =============================================================================
# Code-keyed kinds
# =============================================================================


class TestAgents:

    def test_new_agent_is_created(self):
        plan = plan_sync([MasterEntity(code="AG1", name="Agent One")], [], AGENTS)
        (created,) = plan.creates
        assert created.name2 == "Agent One"
        assert created.id == 0
        assert plan.updates == ()

    def test_matching_agent_is_unchanged(self):
        existing = MasterEntity(code="AG1", name="Agent One", name2="Agent One", id=5)
        plan = plan_sync([MasterEntity(code="AG1", name="Agent One")], [existing], AGENTS)
        assert plan.is_noop
        assert plan.unchanged == (existing,)

    def test_renamed_agent_is_updated_in_place(self):
        existing = MasterEntity(code="AG1", name="Old", name2="Old", id=5, definition_id=3)
        plan = plan_sync([MasterEntity(code="AG1", name="New")], [existing], AGENTS)
        (updated,) = plan.updates
        assert (updated.id, updated.definition_id, updated.name) == (5, 3, "New")

    def test_agents_sharing_a_name_are_disambiguated(self):
        plan = plan_sync(
            [MasterEntity(code="AG1", name="Acme"), MasterEntity(code="AG2", name="Acme")], [], AGENTS
        )
        assert [e.name for e in plan.creates] == ["Acme - AG1", "Acme - AG2"]

    def test_second_plan_is_a_noop(self):
        desired = [MasterEntity(code="AG1", name="Acme"), MasterEntity(code="AG2", name="Acme")]
        first = plan_sync(desired, [], AGENTS)
        second = plan_sync(desired, saved(first.to_save), AGENTS)
        assert second.is_noop
        assert len(second.unchanged) == 2


class TestContracts:

    def existing(self, **fields):
        values = dict(
            code="C1", name="Contract One", name2="Contract One", id=9,
            from_date=date(2023, 1, 1), to_date=date(2024, 12, 31), lookup3_id=4,
        )
        values.update(fields)
        return MasterEntity(**values)

    def desired(self, **fields):
        values = dict(code="C1", name="Contract One", from_date=date(2024, 1, 1),
                      to_date=date(2024, 12, 31), lookup3_id=4)
        values.update(fields)
        return MasterEntity(**values)

    def test_later_start_date_keeps_the_earlier_one(self):
        plan = plan_sync([self.desired()], [self.existing()], CONTRACTS)
        assert plan.is_noop

    def test_earlier_start_date_is_applied(self):
        plan = plan_sync([self.desired(from_date=date(2022, 6, 1))], [self.existing()], CONTRACTS)
        assert plan.updates[0].from_date == date(2022, 6, 1)

    def test_end_date_follows_the_source(self):
        plan = plan_sync([self.desired(to_date=date(2025, 12, 31))], [self.existing()], CONTRACTS)
        (updated,) = plan.updates
        assert updated.to_date == date(2025, 12, 31)
        assert updated.from_date == date(2023, 1, 1)

    def test_blank_description_equals_null(self):
        plan = plan_sync([self.desired(description="  ")], [self.existing(description=None)], CONTRACTS)
        assert plan.is_noop

    def test_business_type_change_is_an_update(self):
        plan = plan_sync([self.desired(lookup3_id=8)], [self.existing()], CONTRACTS)
        assert plan.updates[0].lookup3_id == 8


# =============================================================================
# Business partners
# =============================================================================


def partner(agent2_id=2, **fields):
    values = dict(code=UNASSIGNED_CODE, name="Cedant X", agent1_id=1, agent2_id=agent2_id, lookup1_id=3)
    values.update(fields)
    return MasterEntity(**values)


class TestBusinessPartners:

    def test_codes_continue_from_the_highest_serial(self):
        plan = plan_sync([partner(), partner(agent2_id=5, name="Broker Y")], [], PARTNERS, max_serial=41)
        assert [e.code for e in plan.creates] == ["BP00042", "BP00043"]
        assert plan.creates[0].name == "BP00042: Cedant X"

    def test_existing_partner_matches_on_composite_key(self):
        existing = partner(code="BP00001", name="BP00001: Cedant X", id=77)
        plan = plan_sync([partner(name="Renamed")], [existing], PARTNERS)
        assert plan.is_noop

    def test_partner_with_changed_agent_is_found_by_contract_and_type(self):
        existing = partner(agent2_id=9, code="BP00001", name="BP00001: Cedant X", id=77)
        plan = plan_sync([partner()], [existing], PARTNERS, max_serial=1)
        (updated,) = plan.updates
        assert (updated.id, updated.code, updated.agent2_id) == (77, "BP00001", 2)
        assert plan.creates == ()

    def test_fallback_match_is_claimed_once(self):
        existing = partner(agent2_id=9, code="BP00001", name="BP00001: Cedant X", id=77)
        plan = plan_sync([partner(), partner(agent2_id=5)], [existing], PARTNERS, max_serial=1)
        assert len(plan.updates) == 1
        assert [e.code for e in plan.creates] == ["BP00002"]

    def test_incomplete_key_is_discarded(self):
        plan = plan_sync([partner(agent2_id=None)], [], PARTNERS)
        assert plan.discarded == 1
        assert plan.is_noop
