"""
Worksheet rows and posting templates.

Architecture: insurance_kernel/domain.  ZERO I/O.

A worksheet is a read-only record of one business event in the legacy
source.  Rows are frozen; mapping produces a new row carrying its
``AccountMapping`` template (see ``account_mapper``).

Natural keys:
    - Technical and remittance rows: the worksheet id (one worksheet may
      span several rows; exclusion always removes all of them).
    - Pairing rows: the pairing PK.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

# Remittance types that do not move money through a bank account.
NON_BANK_REMITTANCE_TYPES = frozenset({"write_off", "bcharge"})


def worksheet_prefix(worksheet_id: str | None) -> str:
    """Two-letter type prefix of a worksheet id ("TW123" -> "TW")."""
    return (worksheet_id or "")[:2]


def serial_number_of(worksheet_id: str) -> int:
    """Numeric suffix of a worksheet id ("TW123" -> 123).

    Raises:
        ValueError: the suffix is not an integer.
    """
    return int(worksheet_id[2:])


def parse_prefixes(value: str | None, default: str) -> tuple[str, ...]:
    """Split a comma-separated prefix list, trimming blanks."""
    raw = value if value is not None else default
    return tuple(p.strip() for p in raw.split(",") if p.strip())


# =============================================================================
# Posting template
# =============================================================================


@dataclass(frozen=True)
class AccountMapping:
    """Dual-account posting template from a mapping table.

    Technical templates are keyed by ``(account_code, is_inward)``;
    remittance templates by ``(remittance_type.lower(), direction)``.
    """

    key: tuple
    account_a: str | None
    account_b: str | None
    purpose_concept_a: str | None = None
    purpose_concept_b: str | None = None
    tax_account_a: bool = False
    tax_account_b: bool = False
    has_noted_date_a: bool = False
    has_noted_date_b: bool = False
    is_bank_account_a: bool = False
    is_bank_account_b: bool = False
    direction_a: int | None = None
    direction_b: int | None = None
    noted_agent_id_a: int | None = None
    noted_agent_id_b: int | None = None
    resource_id_a: int | None = None
    resource_id_b: int | None = None
    noted_resource_id_a: int | None = None
    noted_resource_id_b: int | None = None
    quantity_a: Decimal | None = None
    quantity_b: Decimal | None = None
    type_name: str | None = None
    can_be_pairing: bool = False


def technical_mapping_key(account_code: str, is_inward: bool) -> tuple[str, bool]:
    return (account_code.strip(), bool(is_inward))


def remittance_mapping_key(remittance_type: str, direction: int) -> tuple[str, int]:
    return (remittance_type.strip().lower(), int(direction))


# =============================================================================
# Worksheet rows
# =============================================================================


@dataclass(frozen=True)
class TechnicalWorksheet:
    """One row of a technical (TW) or claim (CW) worksheet."""

    pk: int
    worksheet_id: str
    tenant_code: str
    posting_date: date
    account_code: str
    is_inward: bool
    direction: int
    contract_amount: Decimal
    contract_currency_id: str
    value_fc2: Decimal
    description: str | None = None
    closing_date: date | None = None
    contract_code: str | None = None
    contract_name: str | None = None
    business_type_code: str | None = None
    main_class_code: str | None = None
    main_class_name: str | None = None
    agent_code: str | None = None
    agent_name: str | None = None
    broker_code: str | None = None
    broker_name: str | None = None
    cedant_code: str | None = None
    cedant_name: str | None = None
    reinsurer_code: str | None = None
    reinsurer_name: str | None = None
    insured_code: str | None = None
    insured_name: str | None = None
    channel_code: str | None = None
    channel_name: str | None = None
    risk_country: str | None = None
    effective_date: date | None = None
    expiry_date: date | None = None
    noted_date: date | None = None
    technical_notes: str | None = None
    external_document_id: int = 0
    mapping: AccountMapping | None = None

    @property
    def natural_key(self) -> str:
        return self.worksheet_id

    @property
    def mapping_key(self) -> tuple[str, bool]:
        return technical_mapping_key(self.account_code, self.is_inward)

    @property
    def customer_account_code(self) -> str:
        return f"{self.contract_code}-{self.main_class_code}-{self.agent_code}"


@dataclass(frozen=True)
class RemittanceWorksheet:
    """One cash remittance (RW) worksheet."""

    pk: int
    worksheet_id: str
    tenant_code: str
    posting_date: date
    direction: int
    remittance_type: str
    transfer_amount: Decimal
    transfer_currency_id: str
    value_fc2: Decimal
    agent_code: str | None = None
    agent_name: str | None = None
    reference: str | None = "-"
    bank_account_amount: Decimal = Decimal("0")
    bank_account_fee: Decimal = Decimal("0")
    bank_account_currency_id: str | None = None
    bank_account_code: str | None = None
    bank_account_name: str | None = None
    remittance_notes: str | None = None
    external_document_id: int = 0
    mapping: AccountMapping | None = None

    @property
    def natural_key(self) -> str:
        return self.worksheet_id

    @property
    def mapping_key(self) -> tuple[str, int]:
        return remittance_mapping_key(self.remittance_type, self.direction)

    @property
    def uses_bank_account(self) -> bool:
        return self.remittance_type.strip().lower() not in NON_BANK_REMITTANCE_TYPES


@dataclass(frozen=True)
class PairingWorksheet:
    """One technical line of a pairing between a technical and a remittance side.

    A pairing PK groups several lines; ``sum_monetary_value`` and
    ``sum_value`` are the signed technical sums of the line's worksheet.
    """

    pk: int
    pairing_date: date
    tech_ws_id: str
    tech_amount: Decimal
    tech_currency: str
    remit_ws_id: str
    remit_amount: Decimal
    remit_currency: str
    tenant_code1: str
    tenant_code2: str
    sum_monetary_value: Decimal
    sum_value: Decimal
    tech_direction: int
    contract_code: str | None = None
    contract_currency_id: str | None = None
    agent_code1: str | None = None
    agent_code2: str | None = None
    remit_agent_code: str | None = None
    tech_agent_code: str | None = None
    remittance_payment_date: date | None = None
    tech_is_inward: bool = False
    main_class_code: str | None = None
    broker_code: str | None = None
    tech_worksheet: str | None = None
    remit_worksheet: str | None = None
    tech_noted_date: date | None = None
    effective_date: date | None = None
    expiry_date: date | None = None
    account_code: str = "06001"
    tax_account_b: bool = False
    external_document_id: int = 0

    @property
    def natural_key(self) -> str:
        return str(self.pk)

    @property
    def customer_account_code(self) -> str:
        return f"{self.contract_code}-{self.main_class_code}-{self.tech_agent_code}"

    @property
    def is_normal_pairing(self) -> bool:
        return self.remit_ws_id.startswith("RW")

    @property
    def is_reverse_pairing(self) -> bool:
        return self.tech_ws_id.startswith("RW")


@dataclass(frozen=True)
class SourceExchangeRate:
    """A rate row from the legacy database: functional units per currency unit."""

    currency_id: str
    valid_as_of: date
    amount_in_functional: Decimal
