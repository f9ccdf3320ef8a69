"""
DailyScheduler -- In-process daily trigger for ``ImportOrchestrator.run_once``.

Contract:
    Computes the next run time from the schedule of the current
    configuration snapshot (``next_run``, pure) and calls ``run_once`` once
    that time is reached.  A schedule change in the configuration file is
    picked up on the next tick.

Architecture: insurance_batch/services.  Uses insurance_batch.domain.schedule
    for pure evaluation and the orchestrator for execution.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - The stop event is also the cancellation signal of the running import,
      so ``stop()`` ends a run between steps or document batches.
"""

from __future__ import annotations

import threading
from datetime import datetime

from insurance_config import ConfigSource
from insurance_kernel.domain.clock import Clock, SystemClock
from insurance_kernel.logging_config import get_logger

from insurance_batch.domain.schedule import DailySchedule, next_run
from insurance_batch.domain.types import RunSummary
from insurance_batch.orchestrator import ImportOrchestrator

logger = get_logger("batch.scheduler")


class DailyScheduler:
    """Background thread running the import once a day.

    Contract:
        - ``tick()`` runs the import when due and returns its summary.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (one process, one thread).
        - Does NOT catch up on missed days; a late start waits for the
          next occurrence.
    """

    def __init__(
        self,
        orchestrator: ImportOrchestrator,
        config_source: ConfigSource,
        clock: Clock | None = None,
        poll_interval_seconds: float = 60.0,
    ):
        self._orchestrator = orchestrator
        self._config_source = config_source
        self._clock = clock or SystemClock()
        self._poll_interval = poll_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._schedule: DailySchedule | None = None
        self._next_run: datetime | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def next_run_at(self) -> datetime | None:
        return self._next_run

    def tick(self) -> RunSummary | None:
        """Run the import if it is due (public for testing).

        Returns the run summary, or None when nothing ran.
        """
        now = self._clock.now()
        schedule = DailySchedule.from_config(self._config_source.snapshot().schedule)
        if schedule != self._schedule or self._next_run is None:
            self._schedule = schedule
            self._next_run = next_run(schedule, now)
            logger.info(
                "import_scheduled",
                extra={"schedule": str(schedule), "next_run_at": self._next_run.isoformat()},
            )
            return None
        if now < self._next_run:
            return None

        try:
            return self._orchestrator.run_once(self._stop_event)
        finally:
            self._next_run = next_run(schedule, self._clock.now())
            logger.info("import_scheduled", extra={"next_run_at": self._next_run.isoformat()})

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="import-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"poll_interval": self._poll_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop (cancelling a running import) and wait for the thread.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._wait_seconds())

    def _wait_seconds(self) -> float:
        if self._next_run is None:
            return self._poll_interval
        remaining = (self._next_run - self._clock.now()).total_seconds()
        return max(0.0, min(self._poll_interval, remaining))
