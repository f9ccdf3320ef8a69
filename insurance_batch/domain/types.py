"""
insurance_batch.domain.types -- Frozen results of an import run.

ZERO I/O.  Follows the batch-result pattern: frozen dataclasses with
``str`` enum status fields and tuples for immutable collections.

Invariants enforced:
    - Every result object is immutable once returned.
    - A tenant's status is derived from its step results only
      (``TenantRunResult.derive_status``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from insurance_kernel.services.log_capture import RunReport


# =============================================================================
# Status enums
# =============================================================================


class StepName(str, Enum):
    """Import steps, in the order a tenant run executes them."""

    EXCHANGE_RATES = "exchange_rates"
    REMITTANCES = "remittances"
    TECHNICALS = "technicals"
    PAIRINGS = "pairings"


STEP_ORDER: tuple[StepName, ...] = (
    StepName.EXCHANGE_RATES,
    StepName.REMITTANCES,
    StepName.TECHNICALS,
    StepName.PAIRINGS,
)


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"  # Step aborted by a gateway or source failure
    SKIPPED = "skipped"  # Disabled in the configuration snapshot
    CANCELLED = "cancelled"


class TenantStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"  # Some steps failed, others ran
    FAILED = "failed"  # Aborted (configuration defect) or every step failed
    CANCELLED = "cancelled"


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class StepResult:
    """Counters of one step for one tenant."""

    step: StepName
    status: StepStatus = StepStatus.SUCCEEDED
    fetched: int = 0
    excluded: int = 0
    documents_saved: int = 0
    documents_closed: int = 0
    documents_skipped: int = 0
    rows_imported: int = 0
    entities_saved: int = 0
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def skipped(cls, step: StepName) -> StepResult:
        return cls(step=step, status=StepStatus.SKIPPED)

    @classmethod
    def failed(cls, step: StepName, error: Exception) -> StepResult:
        return cls(
            step=step,
            status=StepStatus.FAILED,
            error=str(error),
            error_code=getattr(error, "code", type(error).__name__),
        )


@dataclass(frozen=True)
class TenantRunResult:
    """Outcome of one tenant's pass, with the captured activity report."""

    tenant_code: str
    status: TenantStatus
    steps: tuple[StepResult, ...] = ()
    report: RunReport = field(default_factory=lambda: RunReport.from_records(()))
    error: str | None = None

    @staticmethod
    def derive_status(steps: tuple[StepResult, ...], cancelled: bool = False) -> TenantStatus:
        if cancelled:
            return TenantStatus.CANCELLED
        ran = [s for s in steps if s.status != StepStatus.SKIPPED]
        failed = [s for s in ran if s.status == StepStatus.FAILED]
        if not failed:
            return TenantStatus.SUCCEEDED
        if len(failed) == len(ran):
            return TenantStatus.FAILED
        return TenantStatus.PARTIALLY_FAILED

    def step(self, name: StepName) -> StepResult | None:
        for result in self.steps:
            if result.step == name:
                return result
        return None


@dataclass(frozen=True)
class RunSummary:
    """One ``run_once`` call across all configured tenants."""

    run_id: str
    started_at: datetime
    finished_at: datetime
    cancelled: bool = False
    tenants: tuple[TenantRunResult, ...] = ()

    @property
    def succeeded(self) -> bool:
        return not self.cancelled and all(
            t.status == TenantStatus.SUCCEEDED for t in self.tenants
        )

    def tenant(self, tenant_code: str) -> TenantRunResult | None:
        for result in self.tenants:
            if result.tenant_code == tenant_code:
                return result
        return None
