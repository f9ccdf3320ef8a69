"""
Pytest fixtures for the insurance importer test suite.

Provides:
- Structured logging configured once per session, LogContext cleared per test
- ``platform``: an InMemoryAccountingGateway seeded with the definitions,
  lookups, accounts and currencies a tenant needs
- Row factories for technical, remittance and pairing worksheets
- In-memory worksheet sources and a ``make_context`` factory for steps
- A deterministic clock fixed in March 2024

No database is needed; SQL sources are tested separately against
in-memory SQLite (tests/selectors).
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from types import MappingProxyType

import pytest

from insurance_config.schema import ImporterConfig, RetryConfig
from insurance_kernel.domain.account_mapper import MappingTable
from insurance_kernel.domain.clock import DeterministicClock
from insurance_kernel.domain.codes import PartnershipType, PlatformCode
from insurance_kernel.domain.types import EntityKind, MasterEntity, TenantProfile
from insurance_kernel.domain.worksheets import (
    AccountMapping,
    PairingWorksheet,
    RemittanceWorksheet,
    TechnicalWorksheet,
)
from insurance_kernel.gateway.memory import InMemoryAccountingGateway
from insurance_kernel.logging_config import LogContext, configure_logging, reset_logging
from insurance_kernel.services.document_service import DocumentService
from insurance_kernel.services.master_data_sync import MasterDataSynchronizer

from insurance_batch.tasks.base import StepContext, WorksheetSources

TENANT_CODE = "IR1"
TENANT_ID = 601
FUNCTIONAL_CURRENCY = "USD"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


# =============================================================================
# Clock and configuration
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return ImporterConfig(
        tenants=MappingProxyType({TENANT_CODE: TENANT_ID}),
        retry=RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0),
        checksum="test",
    )


# =============================================================================
# Seeded platform
# =============================================================================


@dataclass
class SeededPlatform:
    """In-memory platform plus the ids of the records seeded into it."""

    gateway: InMemoryAccountingGateway
    tenant_id: int
    ids: dict[str, int] = field(default_factory=dict)

    def add(self, kind: EntityKind, entity: MasterEntity) -> MasterEntity:
        return self.gateway.add_entity(self.tenant_id, kind, entity)

    def add_agent(self, definition: PlatformCode, code: str, name: str | None = None, **fields) -> MasterEntity:
        return self.add(
            EntityKind.AGENT,
            MasterEntity(code=code, name=name or code, definition_id=self.ids[definition.value], **fields),
        )

    def agents(self, definition: PlatformCode) -> list[MasterEntity]:
        return self.gateway.entities(self.tenant_id, EntityKind.AGENT, self.ids[definition.value])

    def documents(self, definition: PlatformCode):
        return self.gateway.documents(self.tenant_id, self.ids[definition.value])

    def account_id(self, code: str) -> int:
        return self.ids[f"account:{code}"]


ACCOUNT_CODES = ("16002", "06001", "11001", "4400050", "5212018")


def seed_platform(gateway: InMemoryAccountingGateway, tenant_id: int = TENANT_ID) -> SeededPlatform:
    platform = SeededPlatform(gateway, tenant_id)
    ids = platform.ids
    gateway.add_tenant(TenantProfile(tenant_id, "Test Insurance", FUNCTIONAL_CURRENCY))

    for code in (
        PlatformCode.INSURANCE_AGENT,
        PlatformCode.INSURANCE_CONTRACT,
        PlatformCode.BUSINESS_PARTNER,
        PlatformCode.TRADE_RECEIVABLE_ACCOUNT,
        PlatformCode.BANK_ACCOUNT,
        PlatformCode.TAX_DEPARTMENT,
    ):
        ids[code.value] = gateway.add_definition(tenant_id, EntityKind.AGENT_DEFINITION, code.value)
    for code in (
        PlatformCode.TECHNICAL_IN_OUTWARD,
        PlatformCode.MAIN_BUSINESS_CLASS,
        PlatformCode.CITIZENSHIP,
        PlatformCode.BUSINESS_TYPE,
        PlatformCode.PARTNERSHIP_TYPES,
    ):
        ids[code.value] = gateway.add_definition(tenant_id, EntityKind.LOOKUP_DEFINITION, code.value)
    for code in (
        PlatformCode.TECHNICAL_WORKSHEET,
        PlatformCode.CLAIM_WORKSHEET,
        PlatformCode.REMITTANCE_WORKSHEET,
        PlatformCode.PAIRING_WORKSHEET,
    ):
        ids[code.value] = gateway.add_definition(tenant_id, EntityKind.DOCUMENT_DEFINITION, code.value)
    ids[PlatformCode.MANUAL_LINE.value] = gateway.add_definition(
        tenant_id, EntityKind.LINE_DEFINITION, PlatformCode.MANUAL_LINE.value
    )

    def lookup(definition: PlatformCode, code: str) -> int:
        return platform.add(
            EntityKind.LOOKUP,
            MasterEntity(code=code, name=code, definition_id=ids[definition.value]),
        ).id

    ids["inward"] = lookup(PlatformCode.TECHNICAL_IN_OUTWARD, PlatformCode.INWARD.value)
    ids["outward"] = lookup(PlatformCode.TECHNICAL_IN_OUTWARD, PlatformCode.OUTWARD.value)
    ids["business_type:BT1"] = lookup(PlatformCode.BUSINESS_TYPE, "BT1")
    ids["main_class:MC1"] = lookup(PlatformCode.MAIN_BUSINESS_CLASS, "MC1")
    ids["country:ET"] = lookup(PlatformCode.CITIZENSHIP, "ET")
    for partnership in PartnershipType:
        ids[f"partnership:{partnership.value}"] = lookup(PlatformCode.PARTNERSHIP_TYPES, partnership.value)

    ids["center"] = platform.add(EntityKind.CENTER, MasterEntity(code="20", name="Operations")).id
    for code in ACCOUNT_CODES:
        ids[f"account:{code}"] = platform.add(EntityKind.ACCOUNT, MasterEntity(code=code, name=code)).id
    for code in (FUNCTIONAL_CURRENCY, "EUR"):
        platform.add(EntityKind.CURRENCY, MasterEntity(code=code, name=code))
    ids["fx_entry_type"] = platform.add(
        EntityKind.ENTRY_TYPE,
        MasterEntity(
            code=PlatformCode.OTHER_GAINS_LOSSES.value,
            name="Other gains and losses",
            concept=PlatformCode.OTHER_GAINS_LOSSES.value,
        ),
    ).id
    ids["vat"] = platform.add_agent(
        PlatformCode.TAX_DEPARTMENT, PlatformCode.VALUE_ADDED_TAX.value, "Value added tax"
    ).id
    ids["bank:IBAN001"] = platform.add_agent(
        PlatformCode.BANK_ACCOUNT, "BA1", "Main bank", text3="IBAN001", currency_id=FUNCTIONAL_CURRENCY
    ).id
    return platform


@pytest.fixture
def platform():
    return seed_platform(InMemoryAccountingGateway())


@pytest.fixture
def gateway(platform):
    return platform.gateway


# =============================================================================
# Row factories
# =============================================================================


def make_technical(**overrides) -> TechnicalWorksheet:
    values = dict(
        pk=1,
        worksheet_id="TW100",
        tenant_code=TENANT_CODE,
        posting_date=date(2024, 3, 10),
        account_code="A100",
        is_inward=False,
        direction=1,
        contract_amount=Decimal("1000"),
        contract_currency_id=FUNCTIONAL_CURRENCY,
        value_fc2=Decimal("920"),
        contract_code="C1",
        contract_name="Contract One",
        business_type_code="BT1",
        main_class_code="MC1",
        main_class_name="Motor",
        agent_code="AG1",
        agent_name="Agent One",
        risk_country="ET",
        effective_date=date(2024, 1, 1),
        expiry_date=date(2024, 12, 31),
    )
    values.update(overrides)
    return TechnicalWorksheet(**values)


def make_remittance(**overrides) -> RemittanceWorksheet:
    values = dict(
        pk=1,
        worksheet_id="RW200",
        tenant_code=TENANT_CODE,
        posting_date=date(2024, 3, 12),
        direction=1,
        remittance_type="wire",
        transfer_amount=Decimal("500"),
        transfer_currency_id=FUNCTIONAL_CURRENCY,
        value_fc2=Decimal("500"),
        agent_code="AG1",
        agent_name="Agent One",
        reference="REF-1",
        bank_account_currency_id=FUNCTIONAL_CURRENCY,
        bank_account_code="IBAN001",
    )
    values.update(overrides)
    return RemittanceWorksheet(**values)


def make_pairing(**overrides) -> PairingWorksheet:
    values = dict(
        pk=7,
        pairing_date=date(2024, 3, 20),
        tech_ws_id="TW100",
        tech_amount=Decimal("-1000"),
        tech_currency="EUR",
        remit_ws_id="RW200",
        remit_amount=Decimal("1000"),
        remit_currency="EUR",
        tenant_code1=TENANT_CODE,
        tenant_code2=TENANT_CODE,
        sum_monetary_value=Decimal("1000"),
        sum_value=Decimal("1000"),
        tech_direction=1,
        contract_code="C1",
        contract_currency_id="EUR",
        agent_code1="AG1",
        agent_code2="AG1",
        remit_agent_code="AG1",
        tech_agent_code="AG1",
        remittance_payment_date=date(2024, 3, 18),
        main_class_code="MC1",
        tech_worksheet="TW100",
        remit_worksheet="RW200",
    )
    values.update(overrides)
    return PairingWorksheet(**values)


TECHNICAL_MAPPING = AccountMapping(key=("A100", False), account_a="16002", account_b="06001")
REMITTANCE_MAPPING = AccountMapping(
    key=("wire", 1),
    account_a="11001",
    account_b="16002",
    is_bank_account_a=True,
    direction_a=1,
    direction_b=-1,
    type_name="Wire transfer",
)


# =============================================================================
# In-memory sources
# =============================================================================


class FakeWorksheetSource:
    """List-backed ``WorksheetSource`` that records what the step writes back."""

    def __init__(self, rows=(), mappings=(), blocked=()):
        self.rows = list(rows)
        self.mappings = list(mappings)
        self.blocked = list(blocked)
        self.document_ids: dict[str, int] = {}
        self.imported: set[str] = set()
        self.fetch_calls = 0

    def fetch(self, tenant_code):
        self.fetch_calls += 1
        return [
            r for r in self.rows
            if r.natural_key not in self.imported
            and getattr(r, "tenant_code", getattr(r, "tenant_code1", None)) == tenant_code
        ]

    def fetch_mapping_table(self):
        return MappingTable.build("test_mapping", self.mappings)

    def fetch_blocked(self, tenant_code):
        return list(self.blocked)

    def mark_document_ids(self, tenant_code, document_ids):
        self.document_ids.update(document_ids)

    def mark_imported(self, tenant_code, keys):
        self.imported.update(keys)


class FakeExchangeRateSource:

    def __init__(self, rates=()):
        self.rates = list(rates)

    def fetch_month(self, month_start, functional_currency):
        return [
            r for r in self.rates
            if (r.valid_as_of.year, r.valid_as_of.month) == (month_start.year, month_start.month)
            and r.currency_id != functional_currency
        ]


# =============================================================================
# Step context
# =============================================================================


@pytest.fixture
def make_context(platform, config, clock):
    """Factory for a StepContext over the seeded platform."""

    def _make(
        sources: WorksheetSources | None = None,
        *,
        cancel_event: threading.Event | None = None,
        profile: TenantProfile | None = None,
        config_overrides: dict | None = None,
    ) -> StepContext:
        gateway = platform.gateway
        step_config = replace(config, **(config_overrides or {}))
        return StepContext(
            tenant_code=TENANT_CODE,
            tenant_id=TENANT_ID,
            profile=profile or gateway.get_tenant_profile(TENANT_ID),
            config=step_config,
            gateway=gateway,
            sources=sources or WorksheetSources(),
            synchronizer=MasterDataSynchronizer(gateway),
            documents=DocumentService(gateway),
            clock=clock,
            cancel_event=cancel_event,
        )

    return _make
