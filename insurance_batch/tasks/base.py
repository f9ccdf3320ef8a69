"""
ImportStep protocol, StepContext, and StepRegistry.

Contract:
    ``ImportStep`` defines the interface every import step implements.
    ``StepRegistry`` stores registered steps keyed by ``StepName``.
    ``StepContext`` carries everything one step needs for one tenant: the
    configuration snapshot, the tenant profile, the gateway, the sources
    and the cancellation signal.  Steps read no other state.

Architecture:
    insurance_batch/tasks.  Steps depend on kernel protocols
    (``AccountingGateway``, ``WorksheetSource``) and kernel services, never
    on concrete SQL or transport classes.

Invariants enforced:
    - One step per ``StepName``.
    - The configuration is a frozen snapshot taken before the tenant run.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from insurance_config.schema import ImporterConfig, ImporterSettings
from insurance_kernel.domain.clock import Clock, SystemClock
from insurance_kernel.domain.codes import PlatformCode
from insurance_kernel.domain.types import EntityKind, TenantProfile
from insurance_kernel.domain.worksheets import PairingWorksheet, RemittanceWorksheet, TechnicalWorksheet
from insurance_kernel.exceptions import ImportCancelledError
from insurance_kernel.gateway.base import AccountingGateway
from insurance_kernel.selectors.base import ExchangeRateSource, MappedWorksheetSource, PairingSource
from insurance_kernel.services.document_service import DocumentService
from insurance_kernel.services.master_data_sync import MasterDataSynchronizer

from insurance_batch.domain.types import StepName, StepResult


# =============================================================================
# Context
# =============================================================================


@dataclass(frozen=True)
class WorksheetSources:
    """Legacy sources, one per worksheet kind.  A missing source disables its step."""

    technicals: MappedWorksheetSource[TechnicalWorksheet] | None = None
    remittances: MappedWorksheetSource[RemittanceWorksheet] | None = None
    pairings: PairingSource[PairingWorksheet] | None = None
    exchange_rates: ExchangeRateSource | None = None


@dataclass(frozen=True)
class StepContext:
    """Inputs of one step for one tenant."""

    tenant_code: str
    tenant_id: int
    profile: TenantProfile
    config: ImporterConfig
    gateway: AccountingGateway
    sources: WorksheetSources
    synchronizer: MasterDataSynchronizer
    documents: DocumentService
    clock: Clock = field(default_factory=SystemClock)
    cancel_event: threading.Event | None = None

    @property
    def settings(self) -> ImporterSettings:
        return self.config.importer

    def check_cancelled(self, where: str) -> None:
        """Raise ``ImportCancelledError`` once the cancellation signal is set."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ImportCancelledError(where)

    def id_of(self, kind: EntityKind, code: str, definition_id: int | None = None) -> int:
        return self.gateway.get_id_by_code(self.tenant_id, kind, code, definition_id)

    def definition_id(self, kind: EntityKind, code: PlatformCode) -> int:
        return self.id_of(kind, code.value)


# =============================================================================
# ImportStep Protocol
# =============================================================================


@runtime_checkable
class ImportStep(Protocol):
    """One stage of a tenant run.

    Contract:
        - ``name``: unique key registered in ``StepRegistry``.
        - ``is_enabled()``: reads the toggles of the snapshot only.
        - ``run()``: imports everything pending for ``ctx.tenant_code``.
          Row and document problems are logged and counted; gateway and
          source failures propagate.

    Non-goals:
        - Does NOT retry; the retrying gateway does.
        - Does NOT catch ``ConfigurationError``; the orchestrator aborts
          the tenant on it.
    """

    @property
    def name(self) -> StepName: ...

    @property
    def description(self) -> str: ...

    def is_enabled(self, settings: ImporterSettings) -> bool: ...

    def run(self, ctx: StepContext) -> StepResult: ...


# =============================================================================
# StepRegistry
# =============================================================================


class StepRegistry:
    """Registry mapping step names to ImportStep implementations.

    Contract:
        - ``register()`` adds a step; raises ValueError on duplicate.
        - ``get()`` retrieves by name; raises KeyError if missing.
        - ``list_steps()`` returns the registered names.
    """

    def __init__(self) -> None:
        self._steps: dict[StepName, ImportStep] = {}

    def register(self, step: ImportStep) -> None:
        """Register an import step.

        Raises:
            ValueError: If a step with the same name is already registered.
        """
        if step.name in self._steps:
            raise ValueError(f"Step '{step.name.value}' is already registered")
        self._steps[step.name] = step

    def get(self, name: StepName) -> ImportStep:
        """Retrieve a registered step.

        Raises:
            KeyError: If no step is registered under ``name``.
        """
        try:
            return self._steps[name]
        except KeyError:
            raise KeyError(
                f"No step registered for '{getattr(name, 'value', name)}'. "
                f"Available: {sorted(s.value for s in self._steps)}"
            ) from None

    def list_steps(self) -> tuple[StepName, ...]:
        return tuple(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __contains__(self, name: StepName) -> bool:
        return name in self._steps
