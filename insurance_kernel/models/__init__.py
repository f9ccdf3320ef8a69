"""
ORM models of the legacy worksheet database.

Import this package before ``create_all`` so every table is registered.
"""

from insurance_kernel.models.worksheets import (
    IMPORTED,
    PENDING,
    ExchangeRateModel,
    PairingModel,
    RemittanceMappingModel,
    RemittanceModel,
    TechnicalMappingModel,
    TechnicalModel,
)

__all__ = [
    "IMPORTED",
    "PENDING",
    "ExchangeRateModel",
    "PairingModel",
    "RemittanceMappingModel",
    "RemittanceModel",
    "TechnicalMappingModel",
    "TechnicalModel",
]
