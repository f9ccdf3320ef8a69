"""
DocumentBuilder -- balanced accounting documents from mapped worksheets.

Responsibility:
    Turn validated, mapped worksheet rows into ``AccountingDocument``s:
    group rows into documents, derive entry directions and functional
    values, add a gain/loss entry when a pairing does not balance, apply
    platform field limits and canonical entry order.

Architecture position:
    Kernel > Domain -- pure functions.  Every platform id the builder
    needs is resolved beforehand and handed in through ``PostingContext``
    or ``PairingContext``; the builder never calls the gateway.

Invariants enforced:
    - Every produced line satisfies ``abs(sum(direction * value)) <= 0.01``;
      otherwise ``UnbalancedDocumentError`` is raised and the document is
      not returned.
    - Entry values are magnitudes.  A negative source amount flips the
      entry direction instead of being stored negative.
    - Entries whose monetary and functional values are both zero are
      dropped.
    - Within each entry group, when the first entry has a negative
      direction the group order is reversed.
    - Memo <= 255 characters; reference and noted agent name <= 50
      characters.  Truncation is logged as a warning.

Failure modes:
    - DocumentError subclasses (direction, balance, rate, missing id).
      They concern one document only; callers skip it and continue.

Non-goals:
    - Submission, closing and marking rows imported (DocumentService and
      the import steps).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from insurance_kernel.domain.direction import resolve, sign_of
from insurance_kernel.domain.exchange_rates import RateBook, convert, first_of_month
from insurance_kernel.domain.types import (
    BALANCE_TOLERANCE,
    MEMO_MAX_LENGTH,
    NAME_MAX_LENGTH,
    REFERENCE_MAX_LENGTH,
    AccountingDocument,
    DocumentLine,
    PostingEntry,
)
from insurance_kernel.domain.values import round_money, truncate
from insurance_kernel.domain.worksheets import (
    PairingWorksheet,
    RemittanceWorksheet,
    TechnicalWorksheet,
    serial_number_of,
    worksheet_prefix,
)
from insurance_kernel.exceptions import (
    DocumentError,
    MissingReferenceError,
    UnbalancedDocumentError,
)
from insurance_kernel.logging_config import get_logger

logger = get_logger("domain.document_builder")

ZERO = Decimal("0")

# Forex difference share of technical turnover above which a warning is logged.
FOREX_WARNING_THRESHOLD = Decimal("0.03")


# =============================================================================
# Contexts
# =============================================================================


@dataclass(frozen=True)
class PostingContext:
    """Platform ids resolved once per step.

    Mappings are keyed by business code: accounts by account code, entry
    types by purpose concept, agents by agent code, customer accounts by
    ``"{contract}-{class}-{agent}"`` and bank accounts by IBAN.
    """

    line_definition_id: int
    center_id: int
    inward_lookup_id: int | None = None
    outward_lookup_id: int | None = None
    vat_agent_id: int | None = None
    accounts: Mapping[str, int] = field(default_factory=dict)
    entry_types: Mapping[str, int] = field(default_factory=dict)
    agents: Mapping[str, int] = field(default_factory=dict)
    customer_accounts: Mapping[str, int] = field(default_factory=dict)
    bank_accounts: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class PairingContext:
    """Extra settings for pairing documents."""

    posting: PostingContext
    rates: RateBook
    remittance_account_id: int
    gain_account_id: int
    loss_account_id: int
    previous_transactions_date: date
    fx_entry_type_id: int | None = None

    @property
    def functional_currency(self) -> str:
        return self.rates.functional_currency


# =============================================================================
# Entry helpers
# =============================================================================


def oriented(direction: int, monetary: Decimal, value: Decimal) -> tuple[int, Decimal, Decimal]:
    """Move the sign of the amounts into ``direction``."""
    sign_source = value if value != 0 else monetary
    if sign_source < 0:
        direction = -direction
    return direction, abs(monetary), abs(value)


def canonical_order(entries: Sequence[PostingEntry]) -> list[PostingEntry]:
    """Reverse ``entries`` when the first one is a credit."""
    ordered = list(entries)
    if ordered and ordered[0].direction < 0:
        ordered.reverse()
    return ordered


def drop_zero_entries(entries: Iterable[PostingEntry]) -> list[PostingEntry]:
    return [e for e in entries if not e.is_zero]


def residual_of(entries: Iterable[PostingEntry]) -> Decimal:
    return sum((e.signed_value for e in entries), ZERO)


def limit_text(text: str | None, limit: int, field_name: str, document_key: str) -> str | None:
    shortened, was_cut = truncate(text, limit)
    if was_cut:
        logger.warning(
            "field_truncated",
            extra={"field": field_name, "limit": limit, "document_key": document_key},
        )
    return shortened


def ensure_balanced(
    document: AccountingDocument, tolerance: Decimal = BALANCE_TOLERANCE
) -> AccountingDocument:
    """Raise ``UnbalancedDocumentError`` for any line outside tolerance."""
    for line in document.lines:
        if not line.is_balanced(tolerance):
            raise UnbalancedDocumentError(document.serial_number, str(line.residual))
    return document


def _single_line_document(
    *,
    serial_number: int,
    posting_date: date,
    memo: str,
    entries: Sequence[PostingEntry],
    line_definition_id: int,
    external_id: int,
    lookup1_id: int | None,
    source_keys: tuple[str, ...],
) -> AccountingDocument:
    kept = drop_zero_entries(entries)
    if not kept:
        raise DocumentError(f"Document {serial_number} has no non-zero entries")
    document = AccountingDocument(
        serial_number=serial_number,
        posting_date=posting_date,
        memo=memo,
        lines=(DocumentLine(definition_id=line_definition_id, entries=tuple(kept)),),
        external_id=external_id or 0,
        lookup1_id=lookup1_id,
        source_keys=source_keys,
    )
    return ensure_balanced(document)


def _require(mapping: Mapping[str, int], code: str | None, kind: str, document_key: str) -> int:
    resolved = mapping.get(code) if code else None
    if resolved is None:
        raise MissingReferenceError(kind, str(code), document_key)
    return resolved


def balancing_entry(
    residual: Decimal,
    *,
    gain_account_id: int,
    loss_account_id: int,
    currency_id: str,
    rate: Decimal,
    center_id: int | None = None,
    entry_type_id: int | None = None,
    off_balance: Decimal = ZERO,
    tolerance: Decimal = BALANCE_TOLERANCE,
) -> PostingEntry | None:
    """Gain/loss entry that offsets ``residual``, or None when within tolerance.

    A positive residual (debits exceed credits) is a gain booked as a
    credit; a negative one is a loss booked as a debit.  The monetary value
    is the functional value converted back at ``rate``.
    """
    if abs(residual) <= tolerance:
        return None
    value = round_money(abs(residual) + off_balance)
    monetary = round_money(value / rate) if rate else value
    is_loss = residual < 0
    return PostingEntry(
        account_id=loss_account_id if is_loss else gain_account_id,
        currency_id=currency_id,
        direction=1 if is_loss else -1,
        monetary_value=abs(monetary),
        value=value,
        center_id=center_id,
        entry_type_id=entry_type_id,
    )


# =============================================================================
# Technical and claim worksheets
# =============================================================================


def group_technicals(
    rows: Iterable[TechnicalWorksheet],
) -> dict[tuple[str, int], list[TechnicalWorksheet]]:
    """Group rows by (worksheet prefix, serial number), keeping input order."""
    groups: dict[tuple[str, int], list[TechnicalWorksheet]] = {}
    for row in rows:
        key = (worksheet_prefix(row.worksheet_id), serial_number_of(row.worksheet_id))
        groups.setdefault(key, []).append(row)
    return groups


def build_technical_document(
    rows: Sequence[TechnicalWorksheet], ctx: PostingContext
) -> AccountingDocument:
    """One document per worksheet; every row contributes an A/B entry pair."""
    first = rows[0]
    key = first.worksheet_id
    notes = [r.technical_notes for r in rows if r.technical_notes is not None]
    memo = limit_text(max(notes) if notes else "-", MEMO_MAX_LENGTH, "memo", key)
    noted_dates = [r.noted_date for r in rows if r.noted_date is not None]
    max_noted_date = max(noted_dates) if noted_dates else None

    entries: list[PostingEntry] = []
    for row in rows:
        template = row.mapping
        if template is None:
            raise MissingReferenceError("mapping", repr(row.mapping_key), key)
        customer_id = _require(ctx.customer_accounts, row.customer_account_code, "customer account", key)
        account_a = _require(ctx.accounts, template.account_a, "account", key)
        account_b = _require(ctx.accounts, template.account_b, "account", key)

        base = 1 if row.direction > 0 else -1
        direction, monetary, value = oriented(base, row.contract_amount, row.value_fc2)

        def side(account_id: int, side_direction: int, is_tax: bool, concept, has_noted: bool) -> PostingEntry:
            return PostingEntry(
                account_id=account_id,
                currency_id=row.contract_currency_id,
                direction=side_direction,
                monetary_value=monetary,
                value=value,
                agent_id=ctx.vat_agent_id if is_tax else customer_id,
                noted_agent_id=customer_id if is_tax else None,
                center_id=ctx.center_id,
                entry_type_id=ctx.entry_types.get(concept) if concept else None,
                noted_date=max_noted_date if has_noted else None,
                time1=row.effective_date,
                time2=row.expiry_date,
            )

        pair = [
            side(account_a, direction, template.tax_account_a,
                 template.purpose_concept_a, template.has_noted_date_a),
            side(account_b, -direction, template.tax_account_b,
                 template.purpose_concept_b, template.has_noted_date_b),
        ]
        entries.extend(canonical_order(pair))

    return _single_line_document(
        serial_number=serial_number_of(first.worksheet_id),
        posting_date=first_of_month(first.posting_date),
        memo=memo or "-",
        entries=entries,
        line_definition_id=ctx.line_definition_id,
        external_id=first.external_document_id,
        lookup1_id=ctx.inward_lookup_id if first.is_inward else ctx.outward_lookup_id,
        source_keys=(first.worksheet_id,),
    )


# =============================================================================
# Remittance worksheets
# =============================================================================


def remittance_memo(row: RemittanceWorksheet) -> str:
    type_name = row.mapping.type_name if row.mapping else None
    return (
        f"{type_name or ''}, {row.remittance_type}, DIR = {row.direction}, "
        f"PK = {row.pk}, {row.remittance_notes or ''}"
    )


def build_remittance_document(row: RemittanceWorksheet, ctx: PostingContext) -> AccountingDocument:
    """One document with one A/B entry pair per remittance worksheet."""
    key = row.worksheet_id
    template = row.mapping
    if template is None:
        raise MissingReferenceError("mapping", repr(row.mapping_key), key)
    if template.direction_a is None or template.direction_b is None:
        raise DocumentError(f"Remittance mapping {template.key!r} has no entry directions")

    remittance_type = row.remittance_type.strip().lower()
    negate = -1 if remittance_type == "exdiff" else 1
    memo = limit_text(remittance_memo(row), MEMO_MAX_LENGTH, "memo", key)
    reference = limit_text(row.reference, REFERENCE_MAX_LENGTH, "reference", key)
    agent_name = limit_text(row.agent_name, NAME_MAX_LENGTH, "noted_agent_name", key)

    agent_id = _require(ctx.agents, row.agent_code, "insurance agent", key)
    account_a = _require(ctx.accounts, template.account_a, "account", key)
    account_b = _require(ctx.accounts, template.account_b, "account", key)
    bank_id = None
    if template.is_bank_account_a or template.is_bank_account_b:
        bank_id = _require(ctx.bank_accounts, row.bank_account_code, "bank account", key)

    def side(account_id, template_direction, is_bank, concept, has_noted, noted_agent_id,
             resource_id, noted_resource_id, quantity) -> PostingEntry:
        direction, monetary, value = oriented(
            template_direction * negate, row.transfer_amount, row.value_fc2
        )
        return PostingEntry(
            account_id=account_id,
            currency_id=(row.bank_account_currency_id if is_bank else row.transfer_currency_id) or "",
            direction=direction,
            monetary_value=monetary,
            value=value,
            agent_id=bank_id if is_bank else agent_id,
            center_id=ctx.center_id,
            entry_type_id=ctx.entry_types.get(concept) if concept else None,
            noted_agent_id=noted_agent_id,
            noted_agent_name=agent_name if is_bank else None,
            noted_date=row.posting_date if has_noted else None,
            resource_id=resource_id,
            noted_resource_id=noted_resource_id,
            quantity=quantity,
            external_reference=reference if is_bank else None,
        )

    entries = canonical_order([
        side(account_a, template.direction_a, template.is_bank_account_a,
             template.purpose_concept_a, template.has_noted_date_a, template.noted_agent_id_a,
             template.resource_id_a, template.noted_resource_id_a, template.quantity_a),
        side(account_b, template.direction_b, template.is_bank_account_b,
             template.purpose_concept_b, template.has_noted_date_b, template.noted_agent_id_b,
             template.resource_id_b, template.noted_resource_id_b, template.quantity_b),
    ])

    return _single_line_document(
        serial_number=serial_number_of(row.worksheet_id),
        posting_date=row.posting_date,
        memo=memo or "",
        entries=entries,
        line_definition_id=ctx.line_definition_id,
        external_id=row.external_document_id,
        lookup1_id=ctx.outward_lookup_id if remittance_type == "wire2" else ctx.inward_lookup_id,
        source_keys=(row.worksheet_id,),
    )


# =============================================================================
# Pairings
# =============================================================================


def group_pairings(rows: Iterable[PairingWorksheet]) -> dict[int, list[PairingWorksheet]]:
    groups: dict[int, list[PairingWorksheet]] = {}
    for row in rows:
        groups.setdefault(row.pk, []).append(row)
    return groups


def pairing_posting_date(first: PairingWorksheet, previous_transactions_date: date) -> date:
    """Pairing date, or the payment date for pairings older than the cutoff."""
    if first.pairing_date >= previous_transactions_date or first.remittance_payment_date is None:
        return first.pairing_date
    return first.remittance_payment_date


def pairing_memo(first: PairingWorksheet, remittance_amount: Decimal, is_normal: bool) -> str:
    return (
        f"Pairing {first.tech_worksheet} and {first.remit_worksheet}, "
        f"Remit original sign = {'Receipt' if remittance_amount > 0 else 'Reverse'}, "
        f"Pairing type = {'Normal' if is_normal else 'Reverse'}"
    )


def build_pairing_document(rows: Sequence[PairingWorksheet], ctx: PairingContext) -> AccountingDocument:
    """One document per pairing PK.

    Entry 1 moves the remittance side off the unallocated receivables
    account; one entry per technical line carries the paired share of the
    worksheet; a final gain/loss entry absorbs the exchange difference.
    """
    posting = ctx.posting
    first = rows[0]
    key = str(first.pk)

    is_normal = first.is_normal_pairing
    if not is_normal and not first.is_reverse_pairing:
        raise DocumentError(f"Pairing {key} has no remittance side")

    if is_normal:
        remittance_amount, remittance_currency, remittance_agent = (
            first.remit_amount, first.remit_currency, first.remit_agent_code)
        technical_in_pairing = first.tech_amount
    else:
        remittance_amount, remittance_currency, remittance_agent = (
            first.tech_amount, first.tech_currency, first.tech_agent_code)
        technical_in_pairing = first.remit_amount

    if first.remittance_payment_date is None:
        raise DocumentError(f"Pairing {key} has no payment date")
    rate = ctx.rates.rate_for(remittance_currency, first.remittance_payment_date)

    total_monetary = sum((r.sum_monetary_value for r in rows), ZERO)
    total_value = sum((r.sum_value for r in rows), ZERO)
    if total_monetary == 0 or total_value == 0:
        raise DocumentError(f"Pairing {key} has zero technical sums")
    original_sign = sign_of(total_value)

    scaling = Decimal("1")
    if abs(technical_in_pairing) != abs(total_monetary):
        scaling = abs(technical_in_pairing) / abs(total_monetary)
        logger.debug("pairing_scaled", extra={"pairing_pk": first.pk, "factor": str(scaling)})

    agent_id = _require(posting.agents, remittance_agent, "insurance agent", key)
    remittance_entry = PostingEntry(
        account_id=ctx.remittance_account_id,
        currency_id=remittance_currency,
        direction=-1 if remittance_amount > 0 else 1,
        monetary_value=abs(round_money(remittance_amount)),
        value=convert(remittance_amount, rate),
        agent_id=agent_id,
        center_id=posting.center_id,
        noted_date=first.remittance_payment_date,
    )
    entries = [remittance_entry]

    total_technical = ZERO
    for line in rows:
        line_amount = line.tech_amount if is_normal else line.remit_amount
        direction = resolve(sign_of(line_amount), original_sign, line.tech_direction)
        customer_id = _require(posting.customer_accounts, line.customer_account_code, "customer account", key)
        account_id = _require(posting.accounts, line.account_code, "account", key)
        value = abs(round_money(line.sum_value * scaling))
        entries.append(
            PostingEntry(
                account_id=account_id,
                currency_id=line.contract_currency_id or line.tech_currency,
                direction=direction,
                monetary_value=abs(round_money(line.sum_monetary_value * scaling)),
                value=value,
                agent_id=posting.vat_agent_id if line.tax_account_b else customer_id,
                noted_agent_id=customer_id if line.tax_account_b else None,
                center_id=posting.center_id,
                noted_date=line.tech_noted_date,
                time1=line.effective_date,
                time2=line.expiry_date,
            )
        )
        total_technical += value * direction

    difference = round_money(total_technical + remittance_entry.signed_value)
    off_balance = abs(residual_of(entries)) - abs(difference)
    if abs(difference) > BALANCE_TOLERANCE:
        fx_currency = (
            first.remit_currency
            if first.remit_currency != ctx.functional_currency
            else first.tech_currency
        )
        fx_rate = ctx.rates.rate_for(fx_currency, first.pairing_date)
        adjustment = balancing_entry(
            difference,
            gain_account_id=ctx.gain_account_id,
            loss_account_id=ctx.loss_account_id,
            currency_id=fx_currency,
            rate=fx_rate,
            center_id=posting.center_id,
            entry_type_id=ctx.fx_entry_type_id,
            off_balance=off_balance,
        )
        if adjustment is not None:
            if total_technical != 0:
                share = adjustment.value / abs(total_technical)
                if share > FOREX_WARNING_THRESHOLD:
                    logger.warning(
                        "high_forex_difference",
                        extra={"pairing_pk": first.pk, "share": str(round_money(share, 4))},
                    )
            entries.append(adjustment)

    return _single_line_document(
        serial_number=first.pk,
        posting_date=pairing_posting_date(first, ctx.previous_transactions_date),
        memo=limit_text(pairing_memo(first, remittance_amount, is_normal),
                        MEMO_MAX_LENGTH, "memo", key) or "",
        entries=canonical_order(entries),
        line_definition_id=posting.line_definition_id,
        external_id=first.external_document_id,
        lookup1_id=posting.inward_lookup_id if first.tech_is_inward else posting.outward_lookup_id,
        source_keys=(key,),
    )
