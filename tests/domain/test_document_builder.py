"""
Tests for insurance_kernel.domain.document_builder.

Covers the three document shapes (technical, remittance, pairing), the
balance invariant, the forex gain/loss entry, canonical entry order,
zero-entry removal and field truncation.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from insurance_kernel.domain.document_builder import (
    PairingContext,
    PostingContext,
    balancing_entry,
    build_pairing_document,
    build_remittance_document,
    build_technical_document,
    canonical_order,
    group_pairings,
    group_technicals,
    oriented,
)
from insurance_kernel.domain.exchange_rates import RateBook
from insurance_kernel.domain.types import ExchangeRate, PostingEntry
from insurance_kernel.exceptions import (
    DirectionResolutionError,
    DocumentError,
    ExchangeRateNotFoundError,
    MissingReferenceError,
)
from insurance_kernel.services.log_capture import LogCapture

from tests.conftest import (
    REMITTANCE_MAPPING,
    TECHNICAL_MAPPING,
    make_pairing,
    make_remittance,
    make_technical,
)

ACCOUNTS = {"16002": 1, "06001": 2, "11001": 3}
GAIN_ACCOUNT, LOSS_ACCOUNT = 90, 91


@pytest.fixture
def posting():
    return PostingContext(
        line_definition_id=10,
        center_id=20,
        inward_lookup_id=30,
        outward_lookup_id=31,
        vat_agent_id=40,
        accounts=ACCOUNTS,
        agents={"AG1": 50},
        customer_accounts={"C1-MC1-AG1": 60},
        bank_accounts={"IBAN001": 70},
    )


def pairing_context(posting, eur_rate="0.98", previous=date(2024, 1, 1)) -> PairingContext:
    rates = RateBook([ExchangeRate("EUR", date(2024, 3, 1), Decimal("1"), Decimal(eur_rate))], "USD")
    return PairingContext(
        posting=posting,
        rates=rates,
        remittance_account_id=ACCOUNTS["16002"],
        gain_account_id=GAIN_ACCOUNT,
        loss_account_id=LOSS_ACCOUNT,
        previous_transactions_date=previous,
        fx_entry_type_id=99,
    )


def entry(direction, value, account_id=1) -> PostingEntry:
    return PostingEntry(
        account_id=account_id,
        currency_id="USD",
        direction=direction,
        monetary_value=Decimal(value),
        value=Decimal(value),
    )


# =============================================================================
# Entry helpers
# =============================================================================


class TestEntryHelpers:

    def test_negative_amount_flips_direction(self):
        assert oriented(1, Decimal("-10"), Decimal("-9")) == (-1, Decimal("10"), Decimal("9"))

    def test_zero_value_takes_sign_from_monetary(self):
        assert oriented(1, Decimal("-10"), Decimal("0")) == (-1, Decimal("10"), Decimal("0"))

    def test_canonical_order_reverses_when_first_is_credit(self):
        credit, debit = entry(-1, "5"), entry(1, "5")
        assert canonical_order([credit, debit]) == [debit, credit]
        assert canonical_order([debit, credit]) == [debit, credit]

    def test_balancing_entry_within_tolerance(self):
        assert balancing_entry(
            Decimal("0.01"), gain_account_id=1, loss_account_id=2, currency_id="USD", rate=Decimal("1")
        ) is None

    def test_negative_residual_is_a_loss_debit(self):
        adjustment = balancing_entry(
            Decimal("-20"), gain_account_id=1, loss_account_id=2, currency_id="EUR", rate=Decimal("0.8")
        )
        assert adjustment.account_id == 2
        assert adjustment.direction == 1
        assert adjustment.value == Decimal("20.00")
        assert adjustment.monetary_value == Decimal("25.00")


# =============================================================================
# Technical worksheets
# =============================================================================


class TestTechnicalDocument:

    def test_single_row_produces_balanced_pair(self, posting):
        row = make_technical(mapping=TECHNICAL_MAPPING)
        document = build_technical_document([row], posting)

        first, second = document.entries
        assert (first.account_id, first.direction, first.value) == (1, 1, Decimal("920"))
        assert (second.account_id, second.direction, second.value) == (2, -1, Decimal("920"))
        assert first.monetary_value == Decimal("1000")
        assert document.is_balanced()
        assert len(document.entries) == 2

    def test_document_fields(self, posting):
        row = make_technical(mapping=TECHNICAL_MAPPING, technical_notes="note")
        document = build_technical_document([row], posting)

        assert document.serial_number == 100
        assert document.posting_date == date(2024, 3, 1)
        assert document.memo == "note"
        assert document.external_id == 0
        assert document.lookup1_id == 31
        assert document.source_keys == ("TW100",)
        assert document.lines[0].definition_id == 10

    def test_entries_carry_customer_account_and_contract_period(self, posting):
        document = build_technical_document([make_technical(mapping=TECHNICAL_MAPPING)], posting)
        for posted in document.entries:
            assert posted.agent_id == 60
            assert posted.center_id == 20
            assert posted.time1 == date(2024, 1, 1)
            assert posted.time2 == date(2024, 12, 31)

    def test_credit_first_pair_is_reversed(self, posting):
        row = make_technical(mapping=TECHNICAL_MAPPING, direction=-1)
        document = build_technical_document([row], posting)
        assert [e.direction for e in document.entries] == [1, -1]
        assert document.entries[0].account_id == 2

    def test_negative_amounts_become_magnitudes(self, posting):
        row = make_technical(
            mapping=TECHNICAL_MAPPING,
            contract_amount=Decimal("-1000"),
            value_fc2=Decimal("-920"),
        )
        document = build_technical_document([row], posting)
        assert all(e.value == Decimal("920") for e in document.entries)
        assert document.entries[0].account_id == 2

    def test_tax_side_posts_to_vat_agent(self, posting):
        mapping = replace(TECHNICAL_MAPPING, tax_account_b=True)
        document = build_technical_document([make_technical(mapping=mapping)], posting)
        tax = next(e for e in document.entries if e.account_id == 2)
        assert tax.agent_id == 40
        assert tax.noted_agent_id == 60

    def test_noted_date_is_the_worksheet_maximum(self, posting):
        mapping = replace(TECHNICAL_MAPPING, has_noted_date_a=True)
        rows = [
            make_technical(pk=1, mapping=mapping, noted_date=date(2024, 5, 1)),
            make_technical(pk=2, mapping=mapping, noted_date=date(2024, 7, 1)),
        ]
        document = build_technical_document(rows, posting)
        debits = [e for e in document.entries if e.account_id == 1]
        assert {e.noted_date for e in debits} == {date(2024, 7, 1)}
        assert all(e.noted_date is None for e in document.entries if e.account_id == 2)

    def test_several_rows_accumulate_into_one_line(self, posting):
        rows = [
            make_technical(pk=1, mapping=TECHNICAL_MAPPING, technical_notes="a"),
            make_technical(pk=2, mapping=TECHNICAL_MAPPING, technical_notes="b",
                           value_fc2=Decimal("80"), contract_amount=Decimal("100")),
        ]
        document = build_technical_document(rows, posting)
        assert len(document.lines) == 1
        assert len(document.entries) == 4
        assert document.memo == "b"
        assert document.lines[0].turnover == Decimal("1000")

    def test_zero_entries_are_dropped(self, posting):
        rows = [
            make_technical(pk=1, mapping=TECHNICAL_MAPPING),
            make_technical(pk=2, mapping=TECHNICAL_MAPPING,
                           contract_amount=Decimal("0"), value_fc2=Decimal("0")),
        ]
        document = build_technical_document(rows, posting)
        assert len(document.entries) == 2

    def test_all_zero_document_is_rejected(self, posting):
        row = make_technical(mapping=TECHNICAL_MAPPING, contract_amount=Decimal("0"), value_fc2=Decimal("0"))
        with pytest.raises(DocumentError):
            build_technical_document([row], posting)

    def test_long_memo_is_truncated_with_warning(self, posting):
        row = make_technical(mapping=TECHNICAL_MAPPING, technical_notes="x" * 300)
        with LogCapture() as capture:
            document = build_technical_document([row], posting)
        assert len(document.memo) == 255
        assert capture.query_by_message("field_truncated")[0]["field"] == "memo"

    def test_unknown_customer_account_raises(self, posting):
        row = make_technical(mapping=TECHNICAL_MAPPING, agent_code="AG2")
        with pytest.raises(MissingReferenceError) as exc_info:
            build_technical_document([row], posting)
        assert exc_info.value.reference == "C1-MC1-AG2"

    def test_existing_document_keeps_its_id(self, posting):
        row = make_technical(mapping=TECHNICAL_MAPPING, external_document_id=555)
        assert build_technical_document([row], posting).external_id == 555

    def test_grouping_separates_worksheet_types(self):
        rows = [
            make_technical(pk=1, worksheet_id="TW5"),
            make_technical(pk=2, worksheet_id="CW5"),
            make_technical(pk=3, worksheet_id="TW5"),
        ]
        groups = group_technicals(rows)
        assert list(groups) == [("TW", 5), ("CW", 5)]
        assert [r.pk for r in groups[("TW", 5)]] == [1, 3]


# =============================================================================
# Remittance worksheets
# =============================================================================


class TestRemittanceDocument:

    def test_bank_and_agent_sides(self, posting):
        row = make_remittance(mapping=REMITTANCE_MAPPING)
        document = build_remittance_document(row, posting)

        bank, agent = document.entries
        assert (bank.account_id, bank.direction, bank.agent_id) == (3, 1, 70)
        assert bank.external_reference == "REF-1"
        assert bank.noted_agent_name == "Agent One"
        assert (agent.account_id, agent.direction, agent.agent_id) == (1, -1, 50)
        assert agent.external_reference is None
        assert document.is_balanced()
        assert document.posting_date == date(2024, 3, 12)
        assert document.serial_number == 200
        assert document.lookup1_id == 30

    def test_memo_names_type_direction_and_pk(self, posting):
        row = make_remittance(mapping=REMITTANCE_MAPPING, remittance_notes="March")
        document = build_remittance_document(row, posting)
        assert document.memo == "Wire transfer, wire, DIR = 1, PK = 1, March"

    def test_exchange_difference_is_negated(self, posting):
        mapping = replace(REMITTANCE_MAPPING, key=("exdiff", 1), is_bank_account_a=False)
        row = make_remittance(mapping=mapping, remittance_type="exdiff")
        document = build_remittance_document(row, posting)
        assert [e.account_id for e in document.entries] == [1, 3]
        assert document.entries[1].direction == -1

    def test_outgoing_wire_uses_outward_lookup(self, posting):
        mapping = replace(REMITTANCE_MAPPING, key=("wire2", 1))
        row = make_remittance(mapping=mapping, remittance_type="wire2")
        assert build_remittance_document(row, posting).lookup1_id == 31

    def test_long_reference_is_truncated(self, posting):
        row = make_remittance(mapping=REMITTANCE_MAPPING, reference="R" * 80)
        document = build_remittance_document(row, posting)
        assert len(document.entries[0].external_reference) == 50

    def test_unknown_agent_raises(self, posting):
        row = make_remittance(mapping=REMITTANCE_MAPPING, agent_code="AG9")
        with pytest.raises(MissingReferenceError):
            build_remittance_document(row, posting)

    def test_mapping_without_directions_is_rejected(self, posting):
        mapping = replace(REMITTANCE_MAPPING, direction_a=None)
        with pytest.raises(DocumentError):
            build_remittance_document(make_remittance(mapping=mapping), posting)


# =============================================================================
# Pairings
# =============================================================================


class TestPairingDocument:

    def test_technical_above_remittance_books_a_gain(self, posting):
        ctx = pairing_context(posting)
        document = build_pairing_document([make_pairing()], ctx)

        gain = next(e for e in document.entries if e.account_id == GAIN_ACCOUNT)
        assert gain.direction == -1
        assert gain.value == Decimal("20.00")
        assert gain.monetary_value == Decimal("20.41")
        assert gain.entry_type_id == 99
        assert document.is_balanced()
        assert len(document.entries) == 3

    def test_remittance_and_technical_entries(self, posting):
        document = build_pairing_document([make_pairing()], pairing_context(posting))
        remittance = next(e for e in document.entries if e.account_id == 1)
        technical = next(e for e in document.entries if e.account_id == 2)

        assert (remittance.direction, remittance.value, remittance.agent_id) == (-1, Decimal("980.00"), 50)
        assert remittance.noted_date == date(2024, 3, 18)
        assert (technical.direction, technical.value, technical.agent_id) == (1, Decimal("1000.00"), 60)

    def test_remittance_above_technical_books_a_loss(self, posting):
        ctx = pairing_context(posting, eur_rate="1.02")
        document = build_pairing_document([make_pairing()], ctx)
        loss = next(e for e in document.entries if e.account_id == LOSS_ACCOUNT)
        assert loss.direction == 1
        assert loss.value == Decimal("20.00")
        assert document.is_balanced()

    def test_matching_values_need_no_adjustment(self, posting):
        ctx = pairing_context(posting, eur_rate="1")
        document = build_pairing_document([make_pairing()], ctx)
        assert len(document.entries) == 2

    def test_small_difference_does_not_warn(self, posting):
        with LogCapture() as capture:
            build_pairing_document([make_pairing()], pairing_context(posting))
        assert capture.query_by_message("high_forex_difference") == []

    def test_large_difference_warns(self, posting):
        with LogCapture() as capture:
            build_pairing_document([make_pairing()], pairing_context(posting, eur_rate="0.90"))
        (record,) = capture.query_by_message("high_forex_difference")
        assert record["pairing_pk"] == 7
        assert record["level"] == "WARNING"

    def test_serial_is_the_pairing_pk(self, posting):
        document = build_pairing_document([make_pairing()], pairing_context(posting))
        assert document.serial_number == 7
        assert document.source_keys == ("7",)
        assert document.posting_date == date(2024, 3, 20)

    def test_old_pairing_posts_on_payment_date(self, posting):
        ctx = pairing_context(posting, previous=date(2025, 5, 16))
        document = build_pairing_document([make_pairing()], ctx)
        assert document.posting_date == date(2024, 3, 18)

    def test_partial_pairing_scales_technical_sums(self, posting):
        row = make_pairing(
            tech_amount=Decimal("-500"),
            remit_amount=Decimal("500"),
            sum_monetary_value=Decimal("1000"),
            sum_value=Decimal("1000"),
        )
        document = build_pairing_document([row], pairing_context(posting, eur_rate="1"))
        technical = next(e for e in document.entries if e.account_id == 2)
        assert technical.value == Decimal("500.00")
        assert len(document.entries) == 2

    def test_unresolved_direction_aborts_the_document(self, posting):
        with pytest.raises(DirectionResolutionError):
            build_pairing_document([make_pairing(tech_direction=0)], pairing_context(posting))

    def test_missing_rate_aborts_the_document(self, posting):
        row = make_pairing(remittance_payment_date=date(2024, 2, 1))
        with pytest.raises(ExchangeRateNotFoundError):
            build_pairing_document([row], pairing_context(posting))

    def test_pairing_without_remittance_side_is_rejected(self, posting):
        row = make_pairing(remit_ws_id="TW300", tech_ws_id="TW100")
        with pytest.raises(DocumentError):
            build_pairing_document([row], pairing_context(posting))

    def test_grouping_by_pk(self):
        rows = [make_pairing(pk=1), make_pairing(pk=2), make_pairing(pk=1)]
        assert {k: len(v) for k, v in group_pairings(rows).items()} == {1: 2, 2: 1}
