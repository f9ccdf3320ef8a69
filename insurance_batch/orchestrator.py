"""
ImportOrchestrator -- runs every import step for every configured tenant.

Contract:
    ``run_once(cancel_event)`` takes one configuration snapshot, then for
    each tenant in configuration order runs the enabled steps in the fixed
    order exchange rates -> remittances -> technicals -> pairings and
    returns a frozen ``RunSummary``.

Architecture: insurance_batch (top-level).  The single place where the
    gateway, the sources, the retry policy and the step registry are
    composed.

Invariants enforced:
    - One tenant, one step, one document batch at a time.
    - The snapshot taken at the start of the run is the only configuration
      any step sees.
    - Cancellation is checked between tenants, between steps and between
      document batches; documents already closed stay closed.

Failure modes:
    - ``ConfigurationError`` (unknown tenant, mapping table defect) and any
      unexpected error abort the tenant; the next tenant still runs.
    - Gateway and source failures abort the current step only.
    - ``ImportCancelledError`` ends the run; the summary is marked cancelled.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable
from uuid import uuid4

from insurance_config import ConfigSource
from insurance_config.schema import ImporterConfig
from insurance_kernel.domain.clock import Clock, SystemClock
from insurance_kernel.exceptions import (
    GatewayError,
    ImportCancelledError,
    SourceError,
)
from insurance_kernel.gateway.base import AccountingGateway
from insurance_kernel.gateway.retrying import RetryingAccountingGateway
from insurance_kernel.logging_config import LogContext, get_logger
from insurance_kernel.services.document_service import DocumentService
from insurance_kernel.services.log_capture import LogCapture, RunReport
from insurance_kernel.services.master_data_sync import MasterDataSynchronizer
from insurance_kernel.services.retry_service import TRANSIENT_ERRORS, RetryPolicy

from insurance_batch.domain.types import (
    STEP_ORDER,
    RunSummary,
    StepName,
    StepResult,
    StepStatus,
    TenantRunResult,
    TenantStatus,
)
from insurance_batch.tasks import StepContext, StepRegistry, WorksheetSources, default_step_registry

logger = get_logger("batch.orchestrator")

# Failures that abort one step and let the tenant continue.
STEP_ERRORS: tuple[type[BaseException], ...] = (GatewayError, SourceError) + TRANSIENT_ERRORS


def retry_policy(config: ImporterConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.retry.max_attempts,
        base_delay=config.retry.base_delay,
        max_delay=config.retry.max_delay,
        jitter=config.retry.jitter,
    )


class ImportOrchestrator:
    """Composes and runs the import for all tenants.

    Contract:
        - ``run_once()`` imports every tenant once and returns a summary.
        - ``run_tenant()`` imports one tenant under a given snapshot.

    Non-goals:
        - Does NOT schedule; ``DailyScheduler`` calls ``run_once``.
        - Does NOT deliver the report; the summary carries it.
    """

    def __init__(
        self,
        config_source: ConfigSource,
        gateway: AccountingGateway,
        sources: WorksheetSources,
        *,
        step_registry: StepRegistry | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._config_source = config_source
        self._gateway = gateway
        self._sources = sources
        self._registry = step_registry if step_registry is not None else default_step_registry()
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._rng = rng

    @property
    def step_registry(self) -> StepRegistry:
        return self._registry

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run_once(self, cancel_event: threading.Event | None = None) -> RunSummary:
        """Import every configured tenant once.

        Raises:
            ConfigurationError: The configuration snapshot cannot be loaded.
        """
        cancel_event = cancel_event or threading.Event()
        config = self._config_source.snapshot()
        run_id = str(uuid4())
        started_at = self._clock.now()
        tenants: list[TenantRunResult] = []
        cancelled = False

        with LogContext.bind(run_id=run_id):
            logger.info(
                "import_run_started",
                extra={"tenants": list(config.tenant_codes), "checksum": config.checksum},
            )
            for tenant_code in config.tenant_codes:
                if cancel_event.is_set():
                    cancelled = True
                    break
                result = self.run_tenant(config, tenant_code, cancel_event)
                tenants.append(result)
                if result.status == TenantStatus.CANCELLED:
                    cancelled = True
                    break

            summary = RunSummary(
                run_id=run_id,
                started_at=started_at,
                finished_at=self._clock.now(),
                cancelled=cancelled,
                tenants=tuple(tenants),
            )
            logger.info(
                "import_run_finished",
                extra={
                    "cancelled": cancelled,
                    "tenants": {t.tenant_code: t.status.value for t in tenants},
                },
            )
        return summary

    def run_tenant(
        self,
        config: ImporterConfig,
        tenant_code: str,
        cancel_event: threading.Event | None = None,
    ) -> TenantRunResult:
        steps: list[StepResult] = []
        error: str | None = None
        status: TenantStatus | None = None
        capture = LogCapture()

        with LogContext.bind(tenant_code=tenant_code), capture:
            logger.info("tenant_run_started")
            try:
                ctx = self._context(config, tenant_code, cancel_event)
                for name in STEP_ORDER:
                    ctx.check_cancelled(f"before {name.value}")
                    steps.append(self._run_step(ctx, name))
            except ImportCancelledError as exc:
                status = TenantStatus.CANCELLED
                error = str(exc)
                logger.warning("tenant_run_cancelled", extra={"where": exc.where})
            except Exception as exc:
                # Any defect stays inside this tenant; the next one still runs.
                status = TenantStatus.FAILED
                error = str(exc)
                logger.exception(
                    "tenant_run_failed",
                    extra={"error_code": getattr(exc, "code", type(exc).__name__)},
                )

            if status is None:
                status = TenantRunResult.derive_status(tuple(steps))
            logger.info(
                "tenant_run_finished",
                extra={"status": status.value, "steps": {s.step.value: s.status.value for s in steps}},
            )

        return TenantRunResult(
            tenant_code=tenant_code,
            status=status,
            steps=tuple(steps),
            report=RunReport.from_records(capture.take_records()),
            error=error,
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _context(
        self,
        config: ImporterConfig,
        tenant_code: str,
        cancel_event: threading.Event | None,
    ) -> StepContext:
        tenant_id = config.tenant_id(tenant_code)
        gateway = RetryingAccountingGateway(
            self._gateway,
            retry_policy(config),
            sleep=self._sleep,
            rng=self._rng,
            cancel_event=cancel_event,
        )
        profile = gateway.get_tenant_profile(tenant_id)
        return StepContext(
            tenant_code=tenant_code,
            tenant_id=tenant_id,
            profile=profile,
            config=config,
            gateway=gateway,
            sources=self._sources,
            synchronizer=MasterDataSynchronizer(
                gateway,
                page_size=config.gateway.page_size,
                filter_budget=config.gateway.filter_budget,
            ),
            documents=DocumentService(gateway, close_chunk_size=config.gateway.close_chunk_size),
            clock=self._clock,
            cancel_event=cancel_event,
        )

    def _run_step(self, ctx: StepContext, name: StepName) -> StepResult:
        if name not in self._registry:
            return StepResult.skipped(name)
        step = self._registry.get(name)
        if not step.is_enabled(ctx.settings):
            logger.info("step_disabled", extra={"step_name": name.value})
            return StepResult.skipped(name)

        with LogContext.bind(step=name.value):
            try:
                result = step.run(ctx)
            except STEP_ERRORS as exc:
                logger.exception(
                    "step_failed",
                    extra={"error_code": getattr(exc, "code", type(exc).__name__)},
                )
                return StepResult.failed(name, exc)
            if result.status == StepStatus.SUCCEEDED:
                logger.info(
                    "step_finished",
                    extra={
                        "fetched": result.fetched,
                        "excluded": result.excluded,
                        "documents_saved": result.documents_saved,
                        "documents_skipped": result.documents_skipped,
                        "rows_imported": result.rows_imported,
                    },
                )
            return result
