"""
Helpers shared by the import steps.

- Period rules (archive and freeze dates of the tenant profile).
- Platform id resolution by code, with the OR-filter budget.
- Per-document build with ``DocumentError`` containment.
- Batched submission: save, write back ids, close, mark imported.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any, TypeVar

from insurance_kernel.domain.rule_filter import Rule
from insurance_kernel.domain.types import AccountingDocument, EntityKind, MasterEntity, TenantProfile
from insurance_kernel.domain.values import is_blank
from insurance_kernel.domain.worksheets import worksheet_prefix
from insurance_kernel.exceptions import DocumentError
from insurance_kernel.gateway.base import KeyFilter, fetch_all
from insurance_kernel.logging_config import LogContext, get_logger
from insurance_kernel.selectors.base import WorksheetSource
from insurance_kernel.services.document_service import chunked

from insurance_batch.tasks.base import StepContext

logger = get_logger("batch.steps")

# Documents saved, closed and marked imported together.
SUBMIT_BATCH_SIZE = 200

R = TypeVar("R")


# =============================================================================
# Rules
# =============================================================================


def required(attribute: str, reason: str) -> Rule:
    return Rule(reason, lambda row: is_blank(getattr(row, attribute)))


def supported_prefix_rule(
    prefixes: Sequence[str],
    id_of: Callable[[Any], str | None] = lambda row: row.worksheet_id,
    reason: str = "Unsupported worksheet type",
) -> Rule:
    allowed = tuple(prefixes)
    return Rule(
        reason,
        lambda row: not (id_of(row) or "").startswith(allowed),
        describe=lambda row: worksheet_prefix(id_of(row)),
    )


def period_rules(
    profile: TenantProfile,
    date_of: Callable[[Any], date | None],
    *,
    inclusive: bool = False,
) -> list[Rule]:
    """Archive and freeze rules.

    Rows that already have a document are dropped when their date lies
    before the archive date; any row is dropped when its date lies before
    the freeze date.  ``inclusive`` also drops rows on the limit date.
    """

    def before(row: Any, limit: date | None) -> bool:
        day = date_of(row)
        if day is None or limit is None:
            return False
        return day <= limit if inclusive else day < limit

    return [
        Rule(
            f"Existing document dated before the archive date {profile.archive_date}",
            lambda row: row.external_document_id > 0 and before(row, profile.archive_date),
        ),
        Rule(
            f"Posting date before the freeze date {profile.freeze_date}",
            lambda row: before(row, profile.freeze_date),
        ),
    ]


# =============================================================================
# Platform lookups
# =============================================================================


def fetch_matching(
    ctx: StepContext,
    kind: EntityKind,
    field_name: str,
    values: Iterable[str | None],
    *,
    definition_id: int | None = None,
) -> list[MasterEntity]:
    """Entities whose ``field_name`` is one of ``values``."""
    wanted = sorted({v for v in values if not is_blank(v)})
    if not wanted:
        return []
    entities = fetch_all(
        ctx.gateway,
        ctx.tenant_id,
        kind,
        definition_id=definition_id,
        key_filter=KeyFilter.any_of(field_name, wanted),
        page_size=ctx.config.gateway.page_size,
        filter_budget=ctx.config.gateway.filter_budget,
    )
    selected = set(wanted)
    return [e for e in entities if getattr(e, field_name) in selected]


def ids_by_code(
    ctx: StepContext,
    kind: EntityKind,
    codes: Iterable[str | None],
    *,
    definition_id: int | None = None,
) -> dict[str, int]:
    return {
        e.code: e.id
        for e in fetch_matching(ctx, kind, "code", codes, definition_id=definition_id)
    }


def entry_type_ids(ctx: StepContext, concepts: Iterable[str | None]) -> dict[str, int]:
    return {
        e.concept: e.id
        for e in fetch_matching(ctx, EntityKind.ENTRY_TYPE, "concept", concepts)
        if e.concept
    }


def currency_codes(ctx: StepContext) -> frozenset[str]:
    """Every currency known to the platform."""
    entities = fetch_all(
        ctx.gateway,
        ctx.tenant_id,
        EntityKind.CURRENCY,
        page_size=ctx.config.gateway.page_size,
    )
    return frozenset(e.code for e in entities)


def lookup_ids(ctx: StepContext, definition_code, codes: Iterable[str | None]) -> dict[str, int]:
    definition_id = ctx.definition_id(EntityKind.LOOKUP_DEFINITION, definition_code)
    return ids_by_code(ctx, EntityKind.LOOKUP, codes, definition_id=definition_id)


# =============================================================================
# Building and submitting documents
# =============================================================================


def build_each(
    groups: Mapping[Any, Sequence[R]],
    build: Callable[[Sequence[R]], AccountingDocument],
    key_of: Callable[[Sequence[R]], str],
) -> tuple[list[AccountingDocument], int]:
    """Build one document per group; a ``DocumentError`` skips that group only.

    Returns:
        The built documents and the number of skipped groups.
    """
    documents: list[AccountingDocument] = []
    skipped = 0
    for rows in groups.values():
        key = key_of(rows)
        with LogContext.bind(worksheet_id=key):
            try:
                documents.append(build(rows))
            except DocumentError as exc:
                skipped += 1
                logger.error(
                    "document_skipped",
                    extra={"document_key": key, "error_code": exc.code, "error": str(exc)},
                )
    return documents, skipped


@dataclass(frozen=True)
class SubmitOutcome:
    saved: int = 0
    closed: int = 0
    imported: int = 0

    def __add__(self, other: SubmitOutcome) -> SubmitOutcome:
        return SubmitOutcome(
            self.saved + other.saved,
            self.closed + other.closed,
            self.imported + other.imported,
        )


def submit(
    ctx: StepContext,
    source: WorksheetSource,
    definition_id: int,
    documents: Sequence[AccountingDocument],
    *,
    batch_size: int = SUBMIT_BATCH_SIZE,
) -> SubmitOutcome:
    """Save, write back ids, close and mark imported, one batch at a time.

    Cancellation is checked before each batch, so a cancelled run leaves
    every batch either fully closed and marked or untouched.
    """
    saved = closed = imported = 0
    for batch in chunked(list(documents), batch_size):
        ctx.check_cancelled("document batch")
        results = ctx.documents.save(ctx.tenant_id, definition_id, batch)
        ids_by_serial = {r.serial_number: r.id for r in results}
        document_ids: dict[str, int] = {}
        for document in batch:
            for key in document.source_keys:
                document_ids[key] = ids_by_serial[document.serial_number]
        source.mark_document_ids(ctx.tenant_code, document_ids)
        closed += ctx.documents.close(ctx.tenant_id, definition_id, [r.id for r in results])
        source.mark_imported(ctx.tenant_code, list(document_ids))
        saved += len(results)
        imported += len(document_ids)
    return SubmitOutcome(saved, closed, imported)
