"""
LogCapture -- in-process structured log capture for the per-tenant report.

Responsibility:
    Collects every structured record emitted under the ``insurance_kernel``
    logger hierarchy while one tenant is imported.  The captured records
    form the activity report attached to ``TenantRunResult``, which the
    mailing collaborator outside this package delivers.

Architecture position:
    Kernel > Services -- read-side infrastructure.  Purely in-memory.

Failure modes:
    - A record the formatter cannot turn into a dict is captured from its
      ``LogRecord`` attributes instead.
    - Query on an empty capture returns an empty list.

Usage::

    with LogCapture() as capture:
        run_tenant(...)
    report = RunReport.from_records(capture.take_records())
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from insurance_kernel.logging_config import StructuredFormatter

_LOGGER_PREFIX = "insurance_kernel"

_STDLIB_KEYS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class LogCapture(logging.Handler):
    """
    In-process log handler that captures structured log records.

    Guarantees:
        - Records are stored as dicts with at least ``ts``, ``level``,
          ``logger``, ``message`` and the ``extra`` fields of the call.
        - ``records`` returns a copy.
    """

    def __init__(self, level: int = logging.INFO):
        super().__init__(level)
        self._records: list[dict] = []
        self._formatter = StructuredFormatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = self._formatter.format_to_dict(record)
        except (TypeError, ValueError):
            entry = self._build_entry_from_record(record)
        self._records.append({k: self._serialize(v) for k, v in entry.items()})

    def _build_entry_from_record(self, record: logging.LogRecord) -> dict:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": str(record.msg),
        }
        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in entry:
                entry[key] = val
        return entry

    @staticmethod
    def _serialize(val: Any) -> Any:
        if val is None or isinstance(val, (str, int, float, bool)):
            return val
        if isinstance(val, (datetime, date)):
            return val.isoformat()
        if isinstance(val, Decimal):
            return str(val)
        if isinstance(val, Enum):
            return val.value
        if isinstance(val, dict):
            return {k: LogCapture._serialize(v) for k, v in val.items()}
        if isinstance(val, (list, tuple, set, frozenset)):
            return [LogCapture._serialize(v) for v in val]
        return str(val)

    # -----------------------------------------------------------------------
    # Install / Uninstall
    # -----------------------------------------------------------------------

    def install(self) -> LogCapture:
        """Attach to the insurance_kernel logger hierarchy. Returns self."""
        logger = logging.getLogger(_LOGGER_PREFIX)
        logger.addHandler(self)
        if logger.level > self.level or logger.level == logging.NOTSET:
            logger.setLevel(self.level)
        return self

    def uninstall(self) -> None:
        logging.getLogger(_LOGGER_PREFIX).removeHandler(self)

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def query_by_message(self, message: str) -> list[dict]:
        return [r for r in self._records if r.get("message") == message]

    def query_by_tenant(self, tenant_code: str) -> list[dict]:
        return [r for r in self._records if r.get("tenant_code") == tenant_code]

    @property
    def records(self) -> list[dict]:
        """All captured records (copy)."""
        return list(self._records)

    def take_records(self) -> list[dict]:
        """Return and clear the captured records."""
        records = self._records
        self._records = []
        return records

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def __enter__(self) -> LogCapture:
        return self.install()

    def __exit__(self, *exc: Any) -> None:
        self.uninstall()


@dataclass(frozen=True)
class RunReport:
    """Captured records of one tenant run, grouped by level."""

    records: tuple[dict, ...] = ()
    by_level: dict[str, tuple[dict, ...]] = field(default_factory=dict)

    @classmethod
    def from_records(cls, records: Iterable[dict]) -> RunReport:
        records = tuple(records)
        grouped: dict[str, list[dict]] = {}
        for record in records:
            grouped.setdefault(record.get("level", "INFO"), []).append(record)
        return cls(records, {level: tuple(items) for level, items in grouped.items()})

    def at(self, level: str) -> tuple[dict, ...]:
        return self.by_level.get(level, ())

    @property
    def errors(self) -> tuple[dict, ...]:
        return self.at("ERROR") + self.at("CRITICAL")

    @property
    def warnings(self) -> tuple[dict, ...]:
        return self.at("WARNING")

    def summary_lines(self) -> list[str]:
        """One line per record, errors first, for a plain-text report body."""
        ordered = self.errors + self.warnings + self.at("INFO")
        lines = []
        for record in ordered:
            detail = {
                k: v
                for k, v in record.items()
                if k not in ("ts", "level", "logger", "message", "traceback")
            }
            lines.append(f"[{record.get('level')}] {record.get('message')} {detail}")
        return lines
