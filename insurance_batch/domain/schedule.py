"""
Pure daily-schedule evaluation.

Contract:
    ``next_run(schedule, now)`` and ``seconds_until(schedule, now)`` are
    PURE -- no I/O, no clock reads.  The scheduler passes the current time
    from its injected Clock.

Architecture: insurance_batch/domain.  ZERO I/O.

Invariants enforced:
    - A ``DailySchedule`` only exists with hour 0-23, minute 0-59 and
      second 0-59; anything else raises ``InvalidScheduleError``.
    - ``next_run`` is strictly after ``now``: a time already reached today
      rolls to tomorrow.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from insurance_kernel.exceptions import InvalidScheduleError


@dataclass(frozen=True)
class DailySchedule:
    """Time of day at which the import runs."""

    hour: int
    minute: int = 0
    second: int = 0

    def __post_init__(self) -> None:
        if not (
            0 <= self.hour <= 23
            and 0 <= self.minute <= 59
            and 0 <= self.second <= 59
        ):
            raise InvalidScheduleError(self.hour, self.minute, self.second)

    @classmethod
    def from_config(cls, config) -> DailySchedule:
        """Build from an ``insurance_config.ScheduleConfig``."""
        return cls(hour=config.hour, minute=config.minute, second=config.second)

    def __str__(self) -> str:
        return f"{self.hour:02}:{self.minute:02}:{self.second:02}"


def next_run(schedule: DailySchedule, now: datetime) -> datetime:
    """First occurrence of the schedule time strictly after ``now``.

    The result keeps the tzinfo of ``now``.
    """
    candidate = now.replace(
        hour=schedule.hour,
        minute=schedule.minute,
        second=schedule.second,
        microsecond=0,
    )
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def seconds_until(schedule: DailySchedule, now: datetime) -> float:
    return (next_run(schedule, now) - now).total_seconds()
