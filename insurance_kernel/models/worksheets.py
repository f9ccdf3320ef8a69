"""
Module: insurance_kernel.models.worksheets
Responsibility: ORM mapping of the legacy worksheet database: technical and
    remittance worksheets, pairings, the two account-mapping tables and the
    exchange-rate table.  Column names are the legacy ones, verbatim.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A row is pending while ``TRANSFER_TO_TELLMA = 'N'`` and
      ``IMPORT_DATE`` is null; marking it imported sets both.
    - ``TELLMA_DOCUMENT_ID`` holds the platform document id once saved.

Non-goals:
    - The importer never inserts or deletes legacy rows; ``create_all`` on
      these models is for test databases only.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, Date, Integer, Numeric, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from insurance_kernel.db.base import Base

PENDING = "N"
IMPORTED = "Y"


class TechnicalModel(Base):
    """One line of a technical (TW) or claim (CW) worksheet."""

    __tablename__ = "Technicals"

    pk: Mapped[int] = mapped_column("PK", Integer, primary_key=True)
    worksheet_id: Mapped[str] = mapped_column("WORKSHEET_ID", String(50))
    description: Mapped[str | None] = mapped_column("DESCRIPTION", String(255))
    posting_date: Mapped[date] = mapped_column("POSTING_DATE", Date)
    closing_date: Mapped[date | None] = mapped_column("CLOSING_DATE", Date)
    is_inward: Mapped[bool] = mapped_column("IS_INWARD", Boolean, default=False)
    contract_code: Mapped[str | None] = mapped_column("CONTRACT_CODE", String(50))
    contract_name: Mapped[str | None] = mapped_column("CONTRACT_NAME", String(255))
    business_type_code: Mapped[str | None] = mapped_column("BUSINESS_TYPE_CODE", String(50))
    main_class_code: Mapped[str | None] = mapped_column("BUSINESS_MAIN_CLASS_CODE", String(50))
    main_class_name: Mapped[str | None] = mapped_column("BUSINESS_MAIN_CLASS_NAME", String(255))
    agent_code: Mapped[str | None] = mapped_column("AGENT_CODE", String(50))
    agent_name: Mapped[str | None] = mapped_column("AGENT_NAME", String(255))
    broker_code: Mapped[str | None] = mapped_column("BROKER_CODE", String(50))
    broker_name: Mapped[str | None] = mapped_column("BROKER_NAME", String(255))
    cedant_code: Mapped[str | None] = mapped_column("CEDANT_CODE", String(50))
    cedant_name: Mapped[str | None] = mapped_column("CEDANT_NAME", String(255))
    reinsurer_code: Mapped[str | None] = mapped_column("REINSURER_CODE", String(50))
    reinsurer_name: Mapped[str | None] = mapped_column("REINSURER_NAME", String(255))
    insured_code: Mapped[str | None] = mapped_column("INSURED_CODE", String(50))
    insured_name: Mapped[str | None] = mapped_column("INSURED_NAME", String(255))
    channel_code: Mapped[str | None] = mapped_column("CHANNEL_CODE", String(50))
    channel_name: Mapped[str | None] = mapped_column("CHANNEL_NAME", String(255))
    risk_country: Mapped[str | None] = mapped_column("RISK_COUNTRY", String(50))
    effective_date: Mapped[date | None] = mapped_column("EFFECTIVE_DATE", Date)
    expiry_date: Mapped[date | None] = mapped_column("EXPIRY_DATE", Date)
    direction: Mapped[int] = mapped_column("DIRECTION", SmallInteger)
    contract_amount: Mapped[Decimal] = mapped_column("CONTRACT_AMOUNT", Numeric(38, 9))
    contract_currency_id: Mapped[str] = mapped_column("CONTRACT_CURRENCY_ID", String(3))
    value_fc2: Mapped[Decimal] = mapped_column("VALUE_FC2", Numeric(38, 9))
    noted_date: Mapped[date | None] = mapped_column("NOTED_DATE", Date)
    tenant_code: Mapped[str] = mapped_column("TENANT_CODE", String(20))
    tenant_name: Mapped[str | None] = mapped_column("TENANT_NAME", String(255))
    tellma_document_id: Mapped[int | None] = mapped_column("TELLMA_DOCUMENT_ID", Integer)
    account_code: Mapped[str] = mapped_column("ACCOUNT_CODE", String(50))
    technical_notes: Mapped[str | None] = mapped_column("Technical_Notes", String(1000))
    bal_object_id: Mapped[str | None] = mapped_column("BAL_OBJECT_ID", String(50))
    d_object_id: Mapped[str | None] = mapped_column("D_OBJECT_ID", String(50))
    transfer_to_tellma: Mapped[str] = mapped_column("TRANSFER_TO_TELLMA", String(1), default=PENDING)
    import_date: Mapped[date | None] = mapped_column("IMPORT_DATE", Date)


class RemittanceModel(Base):
    """One cash remittance (RW) worksheet."""

    __tablename__ = "Remittances"

    pk: Mapped[int] = mapped_column("PK", Integer, primary_key=True)
    worksheet_id: Mapped[str] = mapped_column("WORKSHEET_ID", String(50))
    payment_date: Mapped[date] = mapped_column("PAYMENT_DATE", Date)
    reference: Mapped[str | None] = mapped_column("REFERENCE", String(255))
    agent_code: Mapped[str | None] = mapped_column("AGENT_CODE", String(50))
    agent_name: Mapped[str | None] = mapped_column("AGENT_Name", String(255))
    tenant_code: Mapped[str] = mapped_column("TENANT_CODE", String(20))
    direction: Mapped[int] = mapped_column("DIRECTION", SmallInteger)
    transfer_amount: Mapped[Decimal] = mapped_column("TRANSFER_AMOUNT", Numeric(38, 9))
    transfer_currency_id: Mapped[str] = mapped_column("TRANSFER_CURRENCY_ID", String(3))
    bank_account_amount: Mapped[Decimal] = mapped_column("BANK_ACCOUNT_AMOUNT", Numeric(38, 9), default=Decimal("0"))
    bank_account_fee: Mapped[Decimal] = mapped_column("BANK_ACCOUNT_FEE", Numeric(38, 9), default=Decimal("0"))
    bank_account_currency_id: Mapped[str | None] = mapped_column("BANK_ACCOUNT_CURRENCY_ID", String(3))
    bank_account_code: Mapped[str | None] = mapped_column("BANK_ACCOUNT_CODE", String(50))
    bank_account_name: Mapped[str | None] = mapped_column("BANK_ACCOUNT_NAME", String(255))
    value_fc2: Mapped[Decimal] = mapped_column("VALUE_FC2", Numeric(38, 9))
    remit_type: Mapped[str] = mapped_column("RemitType", String(50))
    remittance_notes: Mapped[str | None] = mapped_column("Remittance_Notes", String(1000))
    tellma_document_id: Mapped[int | None] = mapped_column("TELLMA_DOCUMENT_ID", Integer)
    bal_object_id: Mapped[str | None] = mapped_column("BAL_OBJECT_ID", String(50))
    transfer_to_tellma: Mapped[str] = mapped_column("TRANSFER_TO_TELLMA", String(1), default=PENDING)
    import_date: Mapped[date | None] = mapped_column("IMPORT_DATE", Date)


class PairingModel(Base):
    """A settlement pairing between a technical and a remittance worksheet."""

    __tablename__ = "Pairing"

    pk: Mapped[int] = mapped_column("PK", Integer, primary_key=True)
    pairing_date: Mapped[date] = mapped_column("PAIRING_DATE", Date)
    tech_ws_id: Mapped[str | None] = mapped_column("TECH_WS_ID", String(50))
    tech_amount: Mapped[Decimal] = mapped_column("TECH_AMOUNT", Numeric(38, 9))
    tech_currency: Mapped[str | None] = mapped_column("TECH_CURRENCY", String(3))
    remit_ws_id: Mapped[str | None] = mapped_column("REMIT_WS_ID", String(50))
    remit_amount: Mapped[Decimal] = mapped_column("REMIT_AMOUNT", Numeric(38, 9))
    remit_currency: Mapped[str | None] = mapped_column("REMIT_CURRENCY", String(3))
    tellma_document_id: Mapped[int | None] = mapped_column("TELLMA_DOCUMENT_ID", Integer)
    batch_id: Mapped[int | None] = mapped_column("BATCH_ID", Integer)
    bal1_object_id: Mapped[str | None] = mapped_column("Bal1_OBJECT_ID", String(50))
    bal2_object_id: Mapped[str | None] = mapped_column("Bal2_OBJECT_ID", String(50))
    agent_code1: Mapped[str | None] = mapped_column("AGENT_CODE1", String(50))
    agent_code2: Mapped[str | None] = mapped_column("AGENT_CODE2", String(50))
    tenant_code1: Mapped[str | None] = mapped_column("TENANT_CODE1", String(20))
    tenant_code2: Mapped[str | None] = mapped_column("TENANT_CODE2", String(20))
    transfer_to_tellma: Mapped[str] = mapped_column("TRANSFER_TO_TELLMA", String(1), default=PENDING)
    import_date: Mapped[date | None] = mapped_column("IMPORT_DATE", Date)


class TechnicalMappingModel(Base):
    """Posting template per (SICS account, inward flag)."""

    __tablename__ = "Tellma_Mapping_Technical"

    sics_account: Mapped[str] = mapped_column("SICS_Account", String(50), primary_key=True)
    is_inward: Mapped[bool] = mapped_column("IS_INWARD", Boolean, primary_key=True)
    a_account: Mapped[str | None] = mapped_column("A Account", String(50))
    a_tax_account: Mapped[bool | None] = mapped_column("A TAX Account", Boolean)
    a_purpose_concept: Mapped[str | None] = mapped_column("A Purpose - Concept", String(255))
    a_has_noted_date: Mapped[bool | None] = mapped_column("A Has NOTED_DATE", Boolean)
    b_account: Mapped[str | None] = mapped_column("B Account", String(50))
    b_tax_account: Mapped[bool | None] = mapped_column("B TAX Account", Boolean)
    b_purpose_concept: Mapped[str | None] = mapped_column("B Purpose - Concept", String(255))
    b_has_noted_date: Mapped[bool | None] = mapped_column("B Has NOTED_DATE", Boolean)
    can_be_pairing: Mapped[bool | None] = mapped_column("CanBePairing", Boolean)


class RemittanceMappingModel(Base):
    """Posting template per (remittance type, direction)."""

    __tablename__ = "Tellma_Mapping_Remittance"

    remittance_type_code: Mapped[str] = mapped_column("RemittanceTypeCode", String(50), primary_key=True)
    direction: Mapped[int] = mapped_column("Direction", SmallInteger, primary_key=True)
    remittance_type_name: Mapped[str | None] = mapped_column("RemittanceTypeName", String(255))
    a_account: Mapped[str | None] = mapped_column("A Account", String(50))
    a_noted_agent_id: Mapped[int | None] = mapped_column("ANotedAgentId", Integer)
    a_resource_id: Mapped[int | None] = mapped_column("AResourceId", Integer)
    a_noted_resource_id: Mapped[int | None] = mapped_column("ANotedResourceId", Integer)
    a_purpose_concept: Mapped[str | None] = mapped_column("A Purpose - Concept", String(255))
    a_direction: Mapped[int | None] = mapped_column("A Direction", SmallInteger)
    a_quantity: Mapped[Decimal | None] = mapped_column("A Quantity", Numeric(38, 9))
    a_has_noted_date: Mapped[bool | None] = mapped_column("A Has NOTED_DATE", Boolean)
    a_is_bank_account: Mapped[bool | None] = mapped_column("A Is Bank_Account?", Boolean)
    b_account: Mapped[str | None] = mapped_column("B Account", String(50))
    b_noted_agent_id: Mapped[int | None] = mapped_column("BNotedAgentId", Integer)
    b_resource_id: Mapped[int | None] = mapped_column("BResourceId", Integer)
    b_noted_resource_id: Mapped[int | None] = mapped_column("BNotedResourceId", Integer)
    b_purpose_concept: Mapped[str | None] = mapped_column("B Purpose - Concept", String(255))
    b_direction: Mapped[int | None] = mapped_column("B Direction", SmallInteger)
    b_quantity: Mapped[Decimal | None] = mapped_column("B Quantity", Numeric(38, 9))
    b_has_noted_date: Mapped[bool | None] = mapped_column("B Has NOTED_DATE", Boolean)
    b_is_bank_account: Mapped[bool | None] = mapped_column("B Is Bank_Account?", Boolean)


class ExchangeRateModel(Base):
    """Daily rate: functional units per one unit of the currency."""

    __tablename__ = "ExchangeRates"

    currency_id: Mapped[str] = mapped_column("CurrencyId", String(3), primary_key=True)
    valid_as_of: Mapped[date] = mapped_column("ValidAsOf", Date, primary_key=True)
    amount_in_functional: Mapped[Decimal] = mapped_column("AmountInFunctional", Numeric(38, 9))
