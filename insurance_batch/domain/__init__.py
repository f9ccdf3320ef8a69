"""
insurance_batch.domain -- Pure schedule functions and run result types.
"""

from insurance_batch.domain.schedule import DailySchedule, next_run, seconds_until
from insurance_batch.domain.types import (
    STEP_ORDER,
    RunSummary,
    StepName,
    StepResult,
    StepStatus,
    TenantRunResult,
    TenantStatus,
)

__all__ = [
    "DailySchedule",
    "RunSummary",
    "STEP_ORDER",
    "StepName",
    "StepResult",
    "StepStatus",
    "TenantRunResult",
    "TenantStatus",
    "next_run",
    "seconds_until",
]
