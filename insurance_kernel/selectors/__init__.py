"""
Worksheet sources -- read pending legacy rows, write back import state.
"""

from insurance_kernel.selectors.base import (
    ExchangeRateSource,
    MappedWorksheetSource,
    PairingSource,
    WorksheetSource,
)
from insurance_kernel.selectors.worksheet_source import (
    SqlExchangeRateSource,
    SqlPairingSource,
    SqlRemittanceSource,
    SqlTechnicalSource,
)

__all__ = [
    "ExchangeRateSource",
    "MappedWorksheetSource",
    "PairingSource",
    "SqlExchangeRateSource",
    "SqlPairingSource",
    "SqlRemittanceSource",
    "SqlTechnicalSource",
    "WorksheetSource",
]
