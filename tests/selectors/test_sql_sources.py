"""
SQL worksheet source tests against an in-memory SQLite database.

Verifies:
- Only pending rows of the requested tenant are fetched.
- Document ids and the imported flag are written back per worksheet.
- Pairings are offered only when both sides are imported; the rest are
  reported as blocked.
- Exchange rates are limited to one calendar month.
- Database failures surface as SourceError.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from insurance_kernel.db import create_tables, get_session_factory, init_engine_from_url, reset_engine, session_scope
from insurance_kernel.exceptions import MappingTableError, SourceError
from insurance_kernel.models import (
    IMPORTED,
    ExchangeRateModel,
    PairingModel,
    RemittanceMappingModel,
    RemittanceModel,
    TechnicalMappingModel,
    TechnicalModel,
)
from insurance_kernel.selectors import (
    ExchangeRateSource,
    MappedWorksheetSource,
    PairingSource,
    SqlExchangeRateSource,
    SqlPairingSource,
    SqlRemittanceSource,
    SqlTechnicalSource,
)

IMPORTED_ON = date(2024, 3, 1)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def session_factory():
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield get_session_factory()
    reset_engine()


def technical(pk, worksheet_id, tenant_code="IR1", imported=False, **overrides):
    values = dict(
        pk=pk,
        worksheet_id=worksheet_id,
        tenant_code=tenant_code,
        posting_date=date(2024, 3, 10),
        account_code="A100",
        is_inward=False,
        direction=1,
        contract_amount=Decimal("100"),
        contract_currency_id="USD",
        value_fc2=Decimal("80"),
        contract_code="C1",
        main_class_code="MC1",
        agent_code="AG1",
    )
    if imported:
        values.update(transfer_to_tellma=IMPORTED, import_date=IMPORTED_ON)
    values.update(overrides)
    return TechnicalModel(**values)


def remittance(pk, worksheet_id, tenant_code="IR1", imported=False, **overrides):
    values = dict(
        pk=pk,
        worksheet_id=worksheet_id,
        tenant_code=tenant_code,
        payment_date=date(2024, 3, 5),
        direction=1,
        transfer_amount=Decimal("100"),
        transfer_currency_id="USD",
        value_fc2=Decimal("80"),
        remit_type="Wire",
        agent_code="AG1",
    )
    if imported:
        values.update(transfer_to_tellma=IMPORTED, import_date=IMPORTED_ON)
    values.update(overrides)
    return RemittanceModel(**values)


def pairing(pk, tech_ws_id, remit_ws_id, bal1, bal2):
    return PairingModel(
        pk=pk,
        pairing_date=date(2024, 3, 12),
        tech_ws_id=tech_ws_id,
        tech_amount=Decimal("100"),
        tech_currency="USD",
        remit_ws_id=remit_ws_id,
        remit_amount=Decimal("100"),
        remit_currency="USD",
        bal1_object_id=bal1,
        bal2_object_id=bal2,
        tenant_code1="IR1",
        tenant_code2="IR1",
    )


def seed(session_factory, *rows):
    with session_scope(session_factory) as session:
        session.add_all(rows)


# ---------------------------------------------------------------------------
# Technical worksheets
# ---------------------------------------------------------------------------


class TestTechnicalSource:

    @pytest.fixture
    def source(self, session_factory, clock):
        seed(
            session_factory,
            technical(1, "TW1"),
            technical(2, "TW1", account_code="A200"),
            technical(3, "TW2", tenant_code="IR160"),
            technical(4, "TW3", imported=True),
        )
        return SqlTechnicalSource(session_factory, clock)

    def test_satisfies_the_source_protocol(self, source):
        assert isinstance(source, MappedWorksheetSource)

    def test_fetches_pending_rows_of_one_tenant(self, source):
        rows = source.fetch("IR1")
        assert [(r.pk, r.worksheet_id) for r in rows] == [(1, "TW1"), (2, "TW1")]
        assert rows[0].contract_amount == Decimal("100")
        assert rows[0].external_document_id == 0

    def test_document_ids_are_written_back(self, source):
        source.mark_document_ids("IR1", {"TW1": 77})
        assert {r.external_document_id for r in source.fetch("IR1")} == {77}

    def test_imported_rows_are_no_longer_pending(self, source, session_factory):
        source.mark_imported("IR1", ["TW1", "TW1"])
        assert source.fetch("IR1") == []

        with session_scope(session_factory) as session:
            row = session.execute(select(TechnicalModel).where(TechnicalModel.pk == 1)).scalar_one()
            assert row.transfer_to_tellma == IMPORTED
            assert row.import_date == date(2024, 3, 15)
        assert [r.worksheet_id for r in source.fetch("IR160")] == ["TW2"]

    def test_mark_imported_with_no_keys(self, source):
        source.mark_imported("IR1", [])
        assert len(source.fetch("IR1")) == 2

    def test_mapping_table(self, source, session_factory):
        seed(
            session_factory,
            TechnicalMappingModel(
                sics_account="A100", is_inward=False, a_account="16002", b_account="06001",
                a_tax_account=True, can_be_pairing=True,
            ),
        )
        table = source.fetch_mapping_table()
        template = table.get(("A100", False))
        assert template.account_a == "16002"
        assert template.tax_account_a is True
        assert template.has_noted_date_b is False

    def test_empty_mapping_table(self, source):
        with pytest.raises(MappingTableError):
            source.fetch_mapping_table()


# ---------------------------------------------------------------------------
# Remittance worksheets
# ---------------------------------------------------------------------------


class TestRemittanceSource:

    def test_missing_reference_becomes_a_dash(self, session_factory, clock):
        seed(session_factory, remittance(1, "RW1", reference=None), remittance(2, "RW2", reference="INV-7"))
        rows = SqlRemittanceSource(session_factory, clock).fetch("IR1")
        assert [r.reference for r in rows] == ["-", "INV-7"]
        assert rows[0].posting_date == date(2024, 3, 5)

    def test_mapping_key_is_case_insensitive(self, session_factory, clock):
        seed(
            session_factory,
            RemittanceMappingModel(
                remittance_type_code="Wire", direction=1, a_account="16002", b_account="06001",
                a_is_bank_account=True, a_direction=1, b_direction=-1,
            ),
        )
        table = SqlRemittanceSource(session_factory, clock).fetch_mapping_table()
        template = table.get(("wire", 1))
        assert template.is_bank_account_a is True
        assert (template.direction_a, template.direction_b) == (1, -1)


# ---------------------------------------------------------------------------
# Pairings
# ---------------------------------------------------------------------------


class TestPairingSource:

    @pytest.fixture
    def source(self, session_factory, clock):
        seed(
            session_factory,
            TechnicalMappingModel(sics_account="A100", is_inward=False, b_account="06002", can_be_pairing=True),
            TechnicalMappingModel(sics_account="A200", is_inward=False, b_account="06003", can_be_pairing=False),
            technical(1, "TW5", imported=True, bal_object_id="B2"),
            technical(2, "TW5", imported=True, bal_object_id="B2", contract_amount=Decimal("50")),
            technical(3, "TW5", imported=True, bal_object_id="B2", account_code="A200"),
            technical(4, "TW6", bal_object_id="B3"),
            remittance(1, "RW5", imported=True, bal_object_id="B1"),
            pairing(10, "TW5", "RW5", "B1", "B2"),
            pairing(11, "TW6", "RW5", "B1", "B3"),
        )
        return SqlPairingSource(session_factory, clock)

    def test_satisfies_the_source_protocol(self, source):
        assert isinstance(source, PairingSource)

    def test_only_fully_imported_pairings_are_fetched(self, source):
        (line,) = source.fetch("IR1")
        assert line.pk == 10
        assert line.account_code == "06002"
        assert line.sum_monetary_value == Decimal("150")
        assert line.sum_value == Decimal("160")
        assert line.remit_worksheet == "RW5"
        assert line.remittance_payment_date == date(2024, 3, 5)

    def test_blocked_pairings_are_described(self, source):
        assert source.fetch_blocked("IR1") == ["PK: 11 has nonimported Remit: RW5 or Tech: TW6"]

    def test_other_tenants_see_nothing(self, source):
        assert source.fetch("IR160") == []
        assert source.fetch_blocked("IR160") == []

    def test_mark_imported_uses_the_pairing_key(self, source):
        source.mark_document_ids("IR1", {"10": 501})
        source.mark_imported("IR1", ["10"])
        assert source.fetch("IR1") == []
        assert source.fetch_blocked("IR1") == ["PK: 11 has nonimported Remit: RW5 or Tech: TW6"]


# ---------------------------------------------------------------------------
# Exchange rates
# ---------------------------------------------------------------------------


class TestExchangeRateSource:

    def test_fetches_one_month_without_the_functional_currency(self, session_factory, clock):
        seed(
            session_factory,
            ExchangeRateModel(currency_id="USD", valid_as_of=date(2024, 3, 5), amount_in_functional=Decimal("600")),
            ExchangeRateModel(currency_id="EUR", valid_as_of=date(2024, 3, 20), amount_in_functional=Decimal("650")),
            ExchangeRateModel(currency_id="USD", valid_as_of=date(2024, 2, 29), amount_in_functional=Decimal("590")),
            ExchangeRateModel(currency_id="USD", valid_as_of=date(2024, 4, 1), amount_in_functional=Decimal("610")),
            ExchangeRateModel(currency_id="SDG", valid_as_of=date(2024, 3, 5), amount_in_functional=Decimal("1")),
        )
        source = SqlExchangeRateSource(session_factory, clock)
        assert isinstance(source, ExchangeRateSource)

        rates = source.fetch_month(date(2024, 3, 15), "SDG")
        assert [(r.currency_id, r.valid_as_of) for r in rates] == [
            ("EUR", date(2024, 3, 20)),
            ("USD", date(2024, 3, 5)),
        ]
        assert rates[1].amount_in_functional == Decimal("600")

    def test_december_rolls_into_the_next_year(self, session_factory, clock):
        seed(
            session_factory,
            ExchangeRateModel(currency_id="USD", valid_as_of=date(2023, 12, 31), amount_in_functional=Decimal("1")),
            ExchangeRateModel(currency_id="USD", valid_as_of=date(2024, 1, 1), amount_in_functional=Decimal("2")),
        )
        rates = SqlExchangeRateSource(session_factory, clock).fetch_month(date(2023, 12, 1), "SDG")
        assert [r.valid_as_of for r in rates] == [date(2023, 12, 31)]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestSourceFailures:

    def test_missing_tables_raise_source_error(self, clock):
        engine = create_engine("sqlite://")
        source = SqlTechnicalSource(sessionmaker(bind=engine), clock)
        with pytest.raises(SourceError) as exc_info:
            source.fetch("IR1")
        assert exc_info.value.operation == "fetch_technicals"
        assert exc_info.value.code == "WORKSHEET_SOURCE_ERROR"
        engine.dispose()
