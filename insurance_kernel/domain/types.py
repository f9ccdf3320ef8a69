"""
insurance_kernel.domain.types -- Frozen value types shared by the pipeline.

Architecture: insurance_kernel/domain.  ZERO I/O.

Invariants enforced:
    - PostingEntry stores magnitudes only; the sign lives in ``direction``.
    - AccountingDocument memo never exceeds the platform limit.
    - MasterEntity is immutable; the synchronizer derives new instances
      with ``dataclasses.replace`` instead of mutating.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

MEMO_MAX_LENGTH = 255
REFERENCE_MAX_LENGTH = 50
NAME_MAX_LENGTH = 50

# Functional-currency units within which a line counts as balanced.
BALANCE_TOLERANCE = Decimal("0.01")


# =============================================================================
# Platform entity kinds
# =============================================================================


class EntityKind(str, Enum):
    """Collections exposed by the accounting platform."""

    AGENT = "agents"
    LOOKUP = "lookups"
    ACCOUNT = "accounts"
    CURRENCY = "currencies"
    ENTRY_TYPE = "entry_types"
    CENTER = "centers"
    AGENT_DEFINITION = "agent_definitions"
    LOOKUP_DEFINITION = "lookup_definitions"
    DOCUMENT_DEFINITION = "document_definitions"
    LINE_DEFINITION = "line_definitions"


@dataclass(frozen=True)
class MasterEntity:
    """A reference-data record on the platform (agent, lookup, account, ...).

    One shape serves every kind; fields a kind does not use stay ``None``.
    ``id == 0`` means "not yet saved".
    """

    code: str
    name: str | None = None
    name2: str | None = None
    id: int = 0
    definition_id: int | None = None
    agent1_id: int | None = None
    agent2_id: int | None = None
    lookup1_id: int | None = None
    lookup2_id: int | None = None
    lookup3_id: int | None = None
    from_date: date | None = None
    to_date: date | None = None
    description: str | None = None
    description2: str | None = None
    text3: str | None = None
    currency_id: str | None = None
    concept: str | None = None


@dataclass(frozen=True)
class TenantProfile:
    """Settings of one tenant on the accounting platform."""

    tenant_id: int
    company_name: str
    functional_currency: str
    freeze_date: date | None = None
    archive_date: date | None = None


@dataclass(frozen=True)
class ExchangeRate:
    """A point-in-time conversion rate into the functional currency.

    ``amount_in_currency`` units of ``currency_id`` equal
    ``amount_in_functional`` functional units.
    """

    currency_id: str
    valid_as_of: date
    amount_in_currency: Decimal
    amount_in_functional: Decimal
    id: int = 0

    @property
    def rate(self) -> Decimal:
        """Functional units per one unit of the currency."""
        return self.amount_in_functional / self.amount_in_currency

    @property
    def comparison_key(self) -> tuple[str, date, Decimal, Decimal]:
        return (
            self.currency_id,
            self.valid_as_of,
            self.amount_in_currency,
            self.amount_in_functional,
        )


# =============================================================================
# Documents
# =============================================================================


@dataclass(frozen=True)
class PostingEntry:
    """One debit/credit-equivalent entry of a document line."""

    account_id: int
    currency_id: str
    direction: int
    monetary_value: Decimal
    value: Decimal
    agent_id: int | None = None
    center_id: int | None = None
    entry_type_id: int | None = None
    noted_agent_id: int | None = None
    noted_agent_name: str | None = None
    noted_date: date | None = None
    resource_id: int | None = None
    noted_resource_id: int | None = None
    quantity: Decimal | None = None
    external_reference: str | None = None
    time1: date | None = None
    time2: date | None = None

    def __post_init__(self) -> None:
        if self.direction not in (1, -1):
            raise ValueError(f"Entry direction must be +1 or -1, got {self.direction}")
        if self.monetary_value < 0 or self.value < 0:
            raise ValueError(
                "Entry values are magnitudes; "
                f"got monetary={self.monetary_value}, value={self.value}"
            )

    @property
    def signed_value(self) -> Decimal:
        return self.value * self.direction

    @property
    def is_zero(self) -> bool:
        return self.monetary_value == 0 and self.value == 0


@dataclass(frozen=True)
class DocumentLine:
    """An ordered group of entries that must net to zero."""

    definition_id: int
    entries: tuple[PostingEntry, ...]

    @property
    def residual(self) -> Decimal:
        return sum((e.signed_value for e in self.entries), Decimal("0"))

    @property
    def turnover(self) -> Decimal:
        """Sum of the debit-side values."""
        return sum((e.value for e in self.entries if e.direction > 0), Decimal("0"))

    def is_balanced(self, tolerance: Decimal = BALANCE_TOLERANCE) -> bool:
        return abs(self.residual) <= tolerance


@dataclass(frozen=True)
class AccountingDocument:
    """A document ready for submission.

    ``external_id`` is 0 for documents to create and the previously
    recorded platform id for documents to update.  ``source_keys`` lists
    the worksheet keys the document was built from, so the caller can mark
    exactly those rows as imported.
    """

    serial_number: int
    posting_date: date
    memo: str
    lines: tuple[DocumentLine, ...]
    external_id: int = 0
    lookup1_id: int | None = None
    source_keys: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if len(self.memo) > MEMO_MAX_LENGTH:
            raise ValueError(
                f"Memo of document {self.serial_number} exceeds {MEMO_MAX_LENGTH} characters"
            )

    @property
    def entries(self) -> tuple[PostingEntry, ...]:
        return tuple(e for line in self.lines for e in line.entries)

    def is_balanced(self, tolerance: Decimal = BALANCE_TOLERANCE) -> bool:
        return all(line.is_balanced(tolerance) for line in self.lines)
