"""
Pure domain layer.

Worksheet rows, posting types and the validation, mapping, direction,
exchange-rate, document and master-data rules.  No dependencies on:
- ORM (SQLAlchemy)
- Database
- The accounting platform
- Time/clock (injected)

All domain objects are immutable.
"""

from insurance_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from insurance_kernel.domain.types import (
    AccountingDocument,
    DocumentLine,
    EntityKind,
    ExchangeRate,
    MasterEntity,
    PostingEntry,
    TenantProfile,
)
from insurance_kernel.domain.worksheets import (
    AccountMapping,
    PairingWorksheet,
    RemittanceWorksheet,
    SourceExchangeRate,
    TechnicalWorksheet,
)

__all__ = [
    "AccountMapping",
    "AccountingDocument",
    "Clock",
    "DeterministicClock",
    "DocumentLine",
    "EntityKind",
    "ExchangeRate",
    "MasterEntity",
    "PairingWorksheet",
    "PostingEntry",
    "RemittanceWorksheet",
    "SourceExchangeRate",
    "SystemClock",
    "TechnicalWorksheet",
    "TenantProfile",
]
