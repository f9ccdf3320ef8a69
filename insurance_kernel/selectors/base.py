"""
Module: insurance_kernel.selectors.base
Responsibility: The ``WorksheetSource`` capability the import steps consume,
    and the exchange-rate source.  Steps depend on these protocols only;
    the SQL-backed implementations live in ``worksheet_source``.
Architecture position: Kernel > Selectors.

Contract:
    - ``fetch`` returns the rows of one tenant that are not yet imported.
    - ``mark_document_ids`` records the platform document id per natural
      key (worksheet id, or pairing PK as a string).
    - ``mark_imported`` flags rows as transferred; it is called only after
      the documents built from them were saved and closed.
    - Every failure surfaces as ``SourceError``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date
from typing import Protocol, TypeVar, runtime_checkable

from insurance_kernel.domain.account_mapper import MappingTable
from insurance_kernel.domain.worksheets import SourceExchangeRate

R = TypeVar("R", covariant=True)


@runtime_checkable
class WorksheetSource(Protocol[R]):

    def fetch(self, tenant_code: str) -> list[R]: ...

    def mark_document_ids(self, tenant_code: str, document_ids: Mapping[str, int]) -> None: ...

    def mark_imported(self, tenant_code: str, keys: Iterable[str]) -> None: ...


@runtime_checkable
class MappedWorksheetSource(WorksheetSource[R], Protocol[R]):
    """A source whose rows are posted through a mapping table."""

    def fetch_mapping_table(self) -> MappingTable: ...


@runtime_checkable
class PairingSource(WorksheetSource[R], Protocol[R]):

    def fetch_blocked(self, tenant_code: str) -> list[str]:
        """Descriptions of pending pairings whose sides are not imported yet."""
        ...


@runtime_checkable
class ExchangeRateSource(Protocol):

    def fetch_month(self, month_start: date, functional_currency: str) -> list[SourceExchangeRate]:
        """Rates valid within the month of ``month_start``, other than the functional currency."""
        ...
