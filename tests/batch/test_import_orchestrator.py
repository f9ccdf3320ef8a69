"""
Tests for ImportOrchestrator: tenant isolation, step containment, retry,
cancellation and the captured per-tenant report.
"""

import threading
from dataclasses import replace
from types import MappingProxyType

import pytest

from insurance_config import ConfigSource
from insurance_config.schema import ImporterSettings
from insurance_kernel.exceptions import SourceError, TransientGatewayError
from insurance_kernel.logging_config import LogContext

from insurance_batch.domain.types import StepName, StepStatus, TenantStatus
from insurance_batch.orchestrator import ImportOrchestrator
from insurance_batch.tasks import WorksheetSources

from tests.conftest import (
    REMITTANCE_MAPPING,
    TECHNICAL_MAPPING,
    TENANT_CODE,
    TENANT_ID,
    FakeWorksheetSource,
    make_remittance,
    make_technical,
    seed_platform,
)


class FailingSource(FakeWorksheetSource):
    """Source whose fetch raises ``SourceError``."""

    def fetch(self, tenant_code):
        raise SourceError("fetch remittances", "connection refused")


class BrokenTenantSource(FakeWorksheetSource):
    """Source that hits an unexpected defect while reading one tenant."""

    def __init__(self, tenant_code, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.broken_tenant = tenant_code

    def fetch(self, tenant_code):
        if tenant_code == self.broken_tenant:
            raise RuntimeError("row decoder crashed")
        return super().fetch(tenant_code)


class CancellingSource(FakeWorksheetSource):
    """Source that requests cancellation while it is being read."""

    def __init__(self, event, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.event = event

    def fetch(self, tenant_code):
        self.event.set()
        return super().fetch(tenant_code)


@pytest.fixture
def sources():
    return WorksheetSources(
        technicals=FakeWorksheetSource([make_technical()], [TECHNICAL_MAPPING]),
        remittances=FakeWorksheetSource([make_remittance()], [REMITTANCE_MAPPING]),
    )


@pytest.fixture
def make_orchestrator(gateway, config, clock):
    def _make(sources, run_config=None):
        return ImportOrchestrator(
            ConfigSource.fixed(run_config or config),
            gateway,
            sources,
            clock=clock,
            sleep=lambda seconds: None,
        )

    return _make


# =============================================================================
# Normal runs
# =============================================================================


class TestRunOnce:

    def test_runs_every_step_in_order(self, make_orchestrator, sources):
        summary = make_orchestrator(sources).run_once()

        assert summary.succeeded
        tenant = summary.tenant(TENANT_CODE)
        assert [s.step for s in tenant.steps] == [
            StepName.EXCHANGE_RATES, StepName.REMITTANCES, StepName.TECHNICALS, StepName.PAIRINGS,
        ]
        assert tenant.step(StepName.EXCHANGE_RATES).status == StepStatus.SKIPPED
        assert tenant.step(StepName.REMITTANCES).rows_imported == 1
        assert tenant.step(StepName.TECHNICALS).rows_imported == 1

    def test_second_run_imports_nothing(self, make_orchestrator, sources, gateway):
        orchestrator = make_orchestrator(sources)
        orchestrator.run_once()
        saves = gateway.save_count

        summary = orchestrator.run_once()
        assert summary.succeeded
        assert gateway.save_count == saves

    def test_disabled_step_is_skipped(self, make_orchestrator, sources, config):
        run_config = replace(config, importer=ImporterSettings(enable_remittance=False))
        summary = make_orchestrator(sources, run_config).run_once()

        tenant = summary.tenant(TENANT_CODE)
        assert tenant.step(StepName.REMITTANCES).status == StepStatus.SKIPPED
        assert sources.remittances.fetch_calls == 0
        assert [r["step_name"] for r in tenant.report.records if r["message"] == "step_disabled"] == [
            "remittances"
        ]

    def test_report_is_scoped_to_the_tenant(self, make_orchestrator, sources):
        summary = make_orchestrator(sources).run_once()
        report = summary.tenant(TENANT_CODE).report
        assert report.records
        assert all(r.get("tenant_code") == TENANT_CODE for r in report.records)
        assert LogContext.get_all() == {}

    def test_transient_failures_are_retried(self, make_orchestrator, sources, gateway):
        gateway.fail_next("get_tenant_profile", TransientGatewayError("get_tenant_profile", "503"), times=2)
        summary = make_orchestrator(sources).run_once()
        assert summary.succeeded


# =============================================================================
# Failures
# =============================================================================


class TestFailureContainment:

    def test_step_failure_leaves_other_steps_running(self, make_orchestrator, sources):
        broken = replace(sources, remittances=FailingSource())
        summary = make_orchestrator(broken).run_once()

        tenant = summary.tenant(TENANT_CODE)
        assert tenant.status == TenantStatus.PARTIALLY_FAILED
        remittances = tenant.step(StepName.REMITTANCES)
        assert remittances.status == StepStatus.FAILED
        assert remittances.error_code == "WORKSHEET_SOURCE_ERROR"
        assert tenant.step(StepName.TECHNICALS).rows_imported == 1
        assert [r["message"] for r in tenant.report.errors] == ["step_failed"]

    def test_unreachable_tenant_does_not_stop_the_next(self, make_orchestrator, sources, config):
        run_config = replace(config, tenants=MappingProxyType({"IR160": 999, TENANT_CODE: 601}))
        summary = make_orchestrator(sources, run_config).run_once()

        assert [t.tenant_code for t in summary.tenants] == ["IR160", TENANT_CODE]
        assert summary.tenant("IR160").status == TenantStatus.FAILED
        assert summary.tenant("IR160").steps == ()
        assert summary.tenant(TENANT_CODE).status == TenantStatus.SUCCEEDED
        assert not summary.succeeded

    def test_configuration_defect_fails_the_tenant(self, make_orchestrator, sources):
        broken = replace(sources, technicals=FakeWorksheetSource([make_technical()], mappings=()))
        summary = make_orchestrator(broken).run_once()

        tenant = summary.tenant(TENANT_CODE)
        assert tenant.status == TenantStatus.FAILED
        assert [s.step for s in tenant.steps] == [StepName.EXCHANGE_RATES, StepName.REMITTANCES]
        (failure,) = tenant.report.errors
        assert failure["message"] == "tenant_run_failed"
        assert failure["error_code"] == "MAPPING_TABLE_ERROR"

    @pytest.fixture
    def two_tenants(self, config, gateway):
        seed_platform(gateway, tenant_id=602)
        return replace(config, tenants=MappingProxyType({TENANT_CODE: TENANT_ID, "IR160": 602}))

    def test_unexpected_error_does_not_stop_the_next_tenant(self, make_orchestrator, two_tenants):
        broken = WorksheetSources(
            remittances=BrokenTenantSource(TENANT_CODE, [make_remittance()], [REMITTANCE_MAPPING]),
        )
        summary = make_orchestrator(broken, two_tenants).run_once()

        assert [t.tenant_code for t in summary.tenants] == [TENANT_CODE, "IR160"]
        first = summary.tenant(TENANT_CODE)
        assert first.status == TenantStatus.FAILED
        assert first.error == "row decoder crashed"
        (failure,) = first.report.errors
        assert failure["message"] == "tenant_run_failed"
        assert failure["error_code"] == "RuntimeError"
        other = summary.tenant("IR160")
        assert other.status == TenantStatus.SUCCEEDED
        assert other.step(StepName.REMITTANCES).status == StepStatus.SUCCEEDED

    def test_bad_mapping_direction_fails_each_tenant_in_turn(self, make_orchestrator, two_tenants):
        bad = replace(REMITTANCE_MAPPING, direction_a=0)
        rows = [make_remittance(), make_remittance(pk=2, worksheet_id="RW201", tenant_code="IR160")]
        broken = WorksheetSources(remittances=FakeWorksheetSource(rows, [bad]))
        summary = make_orchestrator(broken, two_tenants).run_once()

        assert [t.tenant_code for t in summary.tenants] == [TENANT_CODE, "IR160"]
        for tenant in summary.tenants:
            assert tenant.status == TenantStatus.FAILED
            (failure,) = tenant.report.errors
            assert failure["error_code"] == "MAPPING_TABLE_ERROR"
        assert broken.remittances.imported == set()

    def test_every_step_failing_is_a_failed_tenant(self, make_orchestrator):
        summary = make_orchestrator(WorksheetSources(remittances=FailingSource())).run_once()
        assert summary.tenant(TENANT_CODE).status == TenantStatus.FAILED


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:

    def test_cancelled_before_start(self, make_orchestrator, sources):
        cancel = threading.Event()
        cancel.set()
        summary = make_orchestrator(sources).run_once(cancel)
        assert summary.cancelled
        assert summary.tenants == ()

    def test_cancelled_between_steps(self, make_orchestrator, sources, config):
        cancel = threading.Event()
        cancelling = replace(
            sources,
            remittances=CancellingSource(cancel, [make_remittance()], [REMITTANCE_MAPPING]),
        )
        run_config = replace(config, tenants=MappingProxyType({TENANT_CODE: 601, "IR160": 602}))
        summary = make_orchestrator(cancelling, run_config).run_once(cancel)

        assert summary.cancelled
        assert [t.tenant_code for t in summary.tenants] == [TENANT_CODE]
        tenant = summary.tenant(TENANT_CODE)
        assert tenant.status == TenantStatus.CANCELLED
        assert tenant.step(StepName.TECHNICALS) is None
        assert sources.technicals.fetch_calls == 0
