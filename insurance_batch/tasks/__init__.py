"""
insurance_batch.tasks -- ImportStep protocol, registry, and the four import steps.
"""

from insurance_batch.tasks.base import ImportStep, StepContext, StepRegistry, WorksheetSources
from insurance_batch.tasks.exchange_rate_step import ExchangeRateStep
from insurance_batch.tasks.pairing_step import PairingStep
from insurance_batch.tasks.remittance_step import RemittanceStep
from insurance_batch.tasks.technical_step import TechnicalStep


def default_step_registry() -> StepRegistry:
    """A StepRegistry pre-loaded with every import step."""
    registry = StepRegistry()
    registry.register(ExchangeRateStep())
    registry.register(RemittanceStep())
    registry.register(TechnicalStep())
    registry.register(PairingStep())
    return registry


__all__ = [
    "ExchangeRateStep",
    "ImportStep",
    "PairingStep",
    "RemittanceStep",
    "StepContext",
    "StepRegistry",
    "TechnicalStep",
    "WorksheetSources",
    "default_step_registry",
]
