"""
Codes of well-known records on the accounting platform.

The importer resolves definitions, lookups and centers by these codes at
the start of each step; their numeric ids differ per tenant.
"""

from __future__ import annotations

from enum import Enum


class PlatformCode(str, Enum):
    """Business codes of definitions and fixed records."""

    # Agent definitions
    INSURANCE_AGENT = "InsuranceAgent"
    INSURANCE_CONTRACT = "InsuranceContract"
    BUSINESS_PARTNER = "BusinessPartner"
    TRADE_RECEIVABLE_ACCOUNT = "TradeReceivableAccount"
    BANK_ACCOUNT = "BankAccount"
    TAX_DEPARTMENT = "TaxDepartment"

    # Fixed agents
    VALUE_ADDED_TAX = "ValueAddedTax"

    # Lookup definitions
    TECHNICAL_IN_OUTWARD = "TechnicalInOutward"
    MAIN_BUSINESS_CLASS = "MainBusinessClass"
    CITIZENSHIP = "Citizenship"
    BUSINESS_TYPE = "BusinessType"
    PARTNERSHIP_TYPES = "PartnershipTypes"

    # Lookups
    INWARD = "Inward"
    OUTWARD = "Outward"

    # Document definitions
    TECHNICAL_WORKSHEET = "TechnicalWorksheet"
    CLAIM_WORKSHEET = "ClaimWorksheet"
    REMITTANCE_WORKSHEET = "RemittanceWorksheet"
    PAIRING_WORKSHEET = "PairingWorksheet"

    # Line definitions
    MANUAL_LINE = "ManualLine"

    # Entry types
    OTHER_GAINS_LOSSES = "OtherGainsLosses"


class PartnershipType(str, Enum):
    """Lookup codes linking a partner agent to a contract."""

    CEDANT = "Cedant"
    BROKER_CHANNEL = "BrokerCh"
    INSURED = "Insured"
    REINSURER = "Reinsurer"


BUSINESS_PARTNER_CODE_PREFIX = "BP"
# Placeholder code for partners whose code the platform side assigns.
UNASSIGNED_CODE = "-"


def business_partner_code(serial: int) -> str:
    """``BP`` followed by a five-digit serial (``BP00042``)."""
    return f"{BUSINESS_PARTNER_CODE_PREFIX}{serial:05d}"


def code_serial_number(code: str | None) -> int:
    """Numeric suffix after the two-character prefix of a code; 0 if none."""
    if not code:
        return 0
    return int(code[2:])
