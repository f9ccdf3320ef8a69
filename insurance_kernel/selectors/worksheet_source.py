"""
Module: insurance_kernel.selectors.worksheet_source
Responsibility: SQL-backed worksheet sources over the legacy database.
    Reads pending rows, the mapping tables and the current-month exchange
    rates, and writes back platform document ids and the imported flag.
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/.

Invariants enforced:
    - Reads and writes are parameterized SQLAlchemy statements scoped to
      one tenant code.
    - Each call runs in its own ``session_scope``: commit on success,
      rollback on failure.
    - Pairings are returned only when both the technical and the
      remittance side are already imported; the rest are reported by
      ``fetch_blocked``.

Failure modes:
    - Any ``SQLAlchemyError`` is wrapped in ``SourceError`` naming the
      operation.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TypeVar

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from insurance_kernel.db.engine import session_scope
from insurance_kernel.domain.account_mapper import MappingTable
from insurance_kernel.domain.clock import Clock, SystemClock
from insurance_kernel.domain.values import to_decimal
from insurance_kernel.domain.worksheets import (
    AccountMapping,
    PairingWorksheet,
    RemittanceWorksheet,
    SourceExchangeRate,
    TechnicalWorksheet,
    remittance_mapping_key,
    technical_mapping_key,
)
from insurance_kernel.exceptions import SourceError
from insurance_kernel.logging_config import get_logger
from insurance_kernel.models.worksheets import (
    IMPORTED,
    PENDING,
    ExchangeRateModel,
    PairingModel,
    RemittanceMappingModel,
    RemittanceModel,
    TechnicalMappingModel,
    TechnicalModel,
)

logger = get_logger("selectors.worksheet_source")

T = TypeVar("T")

DEFAULT_PAIRING_ACCOUNT = "06001"


class _SqlSource:
    """Session handling and error wrapping shared by the SQL sources."""

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def _run(self, operation: str, fn: Callable[[Session], T]) -> T:
        try:
            with session_scope(self._session_factory) as session:
                return fn(session)
        except SQLAlchemyError as exc:
            logger.error("source_query_failed", extra={"operation": operation, "error": str(exc)})
            raise SourceError(operation, str(exc)) from exc


# =============================================================================
# Technical and claim worksheets
# =============================================================================


def technical_mapping_from_model(m: TechnicalMappingModel) -> AccountMapping:
    return AccountMapping(
        key=technical_mapping_key(m.sics_account, m.is_inward),
        account_a=m.a_account,
        account_b=m.b_account,
        purpose_concept_a=m.a_purpose_concept,
        purpose_concept_b=m.b_purpose_concept,
        tax_account_a=bool(m.a_tax_account),
        tax_account_b=bool(m.b_tax_account),
        has_noted_date_a=bool(m.a_has_noted_date),
        has_noted_date_b=bool(m.b_has_noted_date),
        can_be_pairing=bool(m.can_be_pairing),
    )


def technical_from_model(m: TechnicalModel) -> TechnicalWorksheet:
    return TechnicalWorksheet(
        pk=m.pk,
        worksheet_id=m.worksheet_id,
        tenant_code=m.tenant_code,
        posting_date=m.posting_date,
        account_code=m.account_code,
        is_inward=bool(m.is_inward),
        direction=int(m.direction or 0),
        contract_amount=to_decimal(m.contract_amount),
        contract_currency_id=m.contract_currency_id,
        value_fc2=to_decimal(m.value_fc2),
        description=m.description,
        closing_date=m.closing_date,
        contract_code=m.contract_code,
        contract_name=m.contract_name,
        business_type_code=m.business_type_code,
        main_class_code=m.main_class_code,
        main_class_name=m.main_class_name,
        agent_code=m.agent_code,
        agent_name=m.agent_name,
        broker_code=m.broker_code,
        broker_name=m.broker_name,
        cedant_code=m.cedant_code,
        cedant_name=m.cedant_name,
        reinsurer_code=m.reinsurer_code,
        reinsurer_name=m.reinsurer_name,
        insured_code=m.insured_code,
        insured_name=m.insured_name,
        channel_code=m.channel_code,
        channel_name=m.channel_name,
        risk_country=m.risk_country,
        effective_date=m.effective_date,
        expiry_date=m.expiry_date,
        noted_date=m.noted_date,
        technical_notes=m.technical_notes,
        external_document_id=m.tellma_document_id or 0,
    )


class SqlTechnicalSource(_SqlSource):
    """Pending rows of the ``Technicals`` table."""

    def fetch(self, tenant_code: str) -> list[TechnicalWorksheet]:
        def query(session: Session) -> list[TechnicalWorksheet]:
            rows = session.execute(
                select(TechnicalModel)
                .where(
                    TechnicalModel.tenant_code == tenant_code,
                    TechnicalModel.transfer_to_tellma == PENDING,
                    TechnicalModel.import_date.is_(None),
                )
                .order_by(TechnicalModel.worksheet_id, TechnicalModel.pk)
            ).scalars().all()
            return [technical_from_model(m) for m in rows]

        return self._run("fetch_technicals", query)

    def fetch_mapping_table(self) -> MappingTable:
        def query(session: Session) -> list[AccountMapping]:
            rows = session.execute(select(TechnicalMappingModel)).scalars().all()
            return [technical_mapping_from_model(m) for m in rows]

        return MappingTable.build(
            TechnicalMappingModel.__tablename__, self._run("fetch_technical_mapping", query)
        )

    def mark_document_ids(self, tenant_code: str, document_ids: Mapping[str, int]) -> None:
        def write(session: Session) -> None:
            for worksheet_id, document_id in document_ids.items():
                session.execute(
                    update(TechnicalModel)
                    .where(
                        TechnicalModel.tenant_code == tenant_code,
                        TechnicalModel.worksheet_id == worksheet_id,
                    )
                    .values(tellma_document_id=document_id)
                )

        self._run("mark_technical_document_ids", write)

    def mark_imported(self, tenant_code: str, keys: Iterable[str]) -> None:
        worksheet_ids = sorted(set(keys))
        if not worksheet_ids:
            return
        today = self._clock.today()

        def write(session: Session) -> None:
            session.execute(
                update(TechnicalModel)
                .where(
                    TechnicalModel.tenant_code == tenant_code,
                    TechnicalModel.worksheet_id.in_(worksheet_ids),
                )
                .values(transfer_to_tellma=IMPORTED, import_date=today)
            )

        self._run("mark_technicals_imported", write)


# =============================================================================
# Remittance worksheets
# =============================================================================


def remittance_mapping_from_model(m: RemittanceMappingModel) -> AccountMapping:
    return AccountMapping(
        key=remittance_mapping_key(m.remittance_type_code, m.direction),
        account_a=m.a_account,
        account_b=m.b_account,
        purpose_concept_a=m.a_purpose_concept,
        purpose_concept_b=m.b_purpose_concept,
        has_noted_date_a=bool(m.a_has_noted_date),
        has_noted_date_b=bool(m.b_has_noted_date),
        is_bank_account_a=bool(m.a_is_bank_account),
        is_bank_account_b=bool(m.b_is_bank_account),
        direction_a=m.a_direction,
        direction_b=m.b_direction,
        noted_agent_id_a=m.a_noted_agent_id,
        noted_agent_id_b=m.b_noted_agent_id,
        resource_id_a=m.a_resource_id,
        resource_id_b=m.b_resource_id,
        noted_resource_id_a=m.a_noted_resource_id,
        noted_resource_id_b=m.b_noted_resource_id,
        quantity_a=m.a_quantity,
        quantity_b=m.b_quantity,
        type_name=m.remittance_type_name,
    )


def remittance_from_model(m: RemittanceModel) -> RemittanceWorksheet:
    return RemittanceWorksheet(
        pk=m.pk,
        worksheet_id=m.worksheet_id,
        tenant_code=m.tenant_code,
        posting_date=m.payment_date,
        direction=int(m.direction or 0),
        remittance_type=m.remit_type or "",
        transfer_amount=to_decimal(m.transfer_amount),
        transfer_currency_id=m.transfer_currency_id,
        value_fc2=to_decimal(m.value_fc2),
        agent_code=m.agent_code,
        agent_name=m.agent_name,
        reference=m.reference if m.reference is not None else "-",
        bank_account_amount=to_decimal(m.bank_account_amount),
        bank_account_fee=to_decimal(m.bank_account_fee),
        bank_account_currency_id=m.bank_account_currency_id,
        bank_account_code=m.bank_account_code,
        bank_account_name=m.bank_account_name,
        remittance_notes=m.remittance_notes,
        external_document_id=m.tellma_document_id or 0,
    )


class SqlRemittanceSource(_SqlSource):
    """Pending rows of the ``Remittances`` table."""

    def fetch(self, tenant_code: str) -> list[RemittanceWorksheet]:
        def query(session: Session) -> list[RemittanceWorksheet]:
            rows = session.execute(
                select(RemittanceModel)
                .where(
                    RemittanceModel.tenant_code == tenant_code,
                    RemittanceModel.transfer_to_tellma == PENDING,
                    RemittanceModel.import_date.is_(None),
                )
                .order_by(RemittanceModel.worksheet_id, RemittanceModel.pk)
            ).scalars().all()
            return [remittance_from_model(m) for m in rows]

        return self._run("fetch_remittances", query)

    def fetch_mapping_table(self) -> MappingTable:
        def query(session: Session) -> list[AccountMapping]:
            rows = session.execute(select(RemittanceMappingModel)).scalars().all()
            return [remittance_mapping_from_model(m) for m in rows]

        return MappingTable.build(
            RemittanceMappingModel.__tablename__, self._run("fetch_remittance_mapping", query)
        )

    def mark_document_ids(self, tenant_code: str, document_ids: Mapping[str, int]) -> None:
        def write(session: Session) -> None:
            for worksheet_id, document_id in document_ids.items():
                session.execute(
                    update(RemittanceModel)
                    .where(
                        RemittanceModel.tenant_code == tenant_code,
                        RemittanceModel.worksheet_id == worksheet_id,
                    )
                    .values(tellma_document_id=document_id)
                )

        self._run("mark_remittance_document_ids", write)

    def mark_imported(self, tenant_code: str, keys: Iterable[str]) -> None:
        worksheet_ids = sorted(set(keys))
        if not worksheet_ids:
            return
        today = self._clock.today()

        def write(session: Session) -> None:
            session.execute(
                update(RemittanceModel)
                .where(
                    RemittanceModel.tenant_code == tenant_code,
                    RemittanceModel.worksheet_id.in_(worksheet_ids),
                )
                .values(transfer_to_tellma=IMPORTED, import_date=today)
            )

        self._run("mark_remittances_imported", write)


# =============================================================================
# Pairings
# =============================================================================


@dataclass(frozen=True)
class _PairingSides:
    pairing: PairingModel
    technicals: tuple[TechnicalModel, ...]
    remittance: RemittanceModel | None


def _on_pairing(ws_id: str, bal: str | None, p: PairingModel) -> bool:
    """Whether a worksheet row is one of the two sides of ``p``."""
    return (ws_id == p.tech_ws_id and bal == p.bal2_object_id) or (
        ws_id == p.remit_ws_id and bal == p.bal1_object_id
    )


def _pairing_lines(
    sides: _PairingSides, mappings: Mapping[tuple, TechnicalMappingModel]
) -> list[PairingWorksheet]:
    """One row per distinct technical line, with the line's signed sums."""
    p, r = sides.pairing, sides.remittance
    groups: dict[tuple, list[TechnicalModel]] = {}
    for t in sides.technicals:
        mapping = mappings.get(technical_mapping_key(t.account_code, t.is_inward))
        if mapping is not None and mapping.b_account is not None and not mapping.can_be_pairing:
            continue
        account_code = mapping.b_account if mapping is not None and mapping.b_account else DEFAULT_PAIRING_ACCOUNT
        tax_b = bool(mapping.b_tax_account) if mapping is not None else False
        has_noted_b = bool(mapping.b_has_noted_date) if mapping is not None else False
        key = (
            t.worksheet_id, t.contract_code, t.contract_currency_id, bool(t.is_inward),
            int(t.direction or 0), t.broker_code, t.main_class_code, t.agent_code,
            t.noted_date if has_noted_b else None, account_code, tax_b,
        )
        groups.setdefault(key, []).append(t)

    lines = []
    for key, rows in groups.items():
        (worksheet_id, contract_code, currency, is_inward, direction, broker, main_class,
         agent, noted_date, account_code, tax_b) = key
        effective = [t.effective_date for t in rows if t.effective_date is not None]
        expiry = [t.expiry_date for t in rows if t.expiry_date is not None]
        lines.append(
            PairingWorksheet(
                pk=p.pk,
                pairing_date=p.pairing_date,
                tech_ws_id=p.tech_ws_id or "",
                tech_amount=to_decimal(p.tech_amount),
                tech_currency=p.tech_currency or "",
                remit_ws_id=p.remit_ws_id or "",
                remit_amount=to_decimal(p.remit_amount),
                remit_currency=p.remit_currency or "",
                tenant_code1=p.tenant_code1 or "",
                tenant_code2=p.tenant_code2 or "",
                sum_monetary_value=sum(
                    (int(t.direction or 0) * to_decimal(t.contract_amount) for t in rows), Decimal("0")
                ),
                sum_value=sum(
                    (int(t.direction or 0) * to_decimal(t.value_fc2) for t in rows), Decimal("0")
                ),
                tech_direction=direction,
                contract_code=contract_code,
                contract_currency_id=currency,
                agent_code1=p.agent_code1,
                agent_code2=p.agent_code2,
                remit_agent_code=r.agent_code if r is not None else None,
                tech_agent_code=agent,
                remittance_payment_date=r.payment_date if r is not None else None,
                tech_is_inward=is_inward,
                main_class_code=main_class,
                broker_code=broker,
                tech_worksheet=worksheet_id,
                remit_worksheet=r.worksheet_id if r is not None else None,
                tech_noted_date=noted_date,
                effective_date=min(effective) if effective else None,
                expiry_date=max(expiry) if expiry else None,
                account_code=account_code,
                tax_account_b=tax_b,
                external_document_id=p.tellma_document_id or 0,
            )
        )
    return lines


class SqlPairingSource(_SqlSource):
    """Pending rows of the ``Pairing`` table joined to their two sides."""

    def _load(self, session: Session, tenant_code: str) -> list[_PairingSides]:
        pairings = session.execute(
            select(PairingModel)
            .where(
                PairingModel.import_date.is_(None),
                or_(PairingModel.tenant_code1 == tenant_code, PairingModel.tenant_code2 == tenant_code),
            )
            .order_by(PairingModel.pk)
        ).scalars().all()
        if not pairings:
            return []
        ws_ids = {i for p in pairings for i in (p.tech_ws_id, p.remit_ws_id) if i}
        technicals = session.execute(
            select(TechnicalModel).where(
                TechnicalModel.tenant_code == tenant_code,
                TechnicalModel.worksheet_id.in_(sorted(ws_ids)),
            ).order_by(TechnicalModel.pk)
        ).scalars().all()
        remittances = session.execute(
            select(RemittanceModel).where(
                RemittanceModel.tenant_code == tenant_code,
                RemittanceModel.worksheet_id.in_(sorted(ws_ids)),
            ).order_by(RemittanceModel.pk)
        ).scalars().all()

        result = []
        for p in pairings:
            tech_rows = tuple(
                t for t in technicals
                if _on_pairing(t.worksheet_id, t.bal_object_id, p)
            )
            remit = next(
                (
                    r for r in remittances
                    if _on_pairing(r.worksheet_id, r.bal_object_id, p)
                ),
                None,
            )
            result.append(_PairingSides(p, tech_rows, remit))
        return result

    def fetch(self, tenant_code: str) -> list[PairingWorksheet]:
        def query(session: Session) -> list[PairingWorksheet]:
            mappings = {
                technical_mapping_key(m.sics_account, m.is_inward): m
                for m in session.execute(select(TechnicalMappingModel)).scalars().all()
            }
            lines: list[PairingWorksheet] = []
            for sides in self._load(session, tenant_code):
                if not sides.technicals or sides.remittance is None:
                    continue
                if any(t.import_date is None for t in sides.technicals):
                    continue
                if sides.remittance.import_date is None:
                    continue
                lines.extend(_pairing_lines(sides, mappings))
            return lines

        return self._run("fetch_pairings", query)

    def fetch_blocked(self, tenant_code: str) -> list[str]:
        def query(session: Session) -> list[str]:
            blocked = []
            for sides in self._load(session, tenant_code):
                tech_pending = not sides.technicals or any(t.import_date is None for t in sides.technicals)
                remit_pending = sides.remittance is None or sides.remittance.import_date is None
                if tech_pending or remit_pending:
                    p = sides.pairing
                    blocked.append(
                        f"PK: {p.pk} has nonimported Remit: {p.remit_ws_id} or Tech: {p.tech_ws_id}"
                    )
            return blocked

        return self._run("fetch_blocked_pairings", query)

    def mark_document_ids(self, tenant_code: str, document_ids: Mapping[str, int]) -> None:
        def write(session: Session) -> None:
            for pk, document_id in document_ids.items():
                session.execute(
                    update(PairingModel)
                    .where(PairingModel.tenant_code1 == tenant_code, PairingModel.pk == int(pk))
                    .values(tellma_document_id=document_id)
                )

        self._run("mark_pairing_document_ids", write)

    def mark_imported(self, tenant_code: str, keys: Iterable[str]) -> None:
        pks = sorted({int(k) for k in keys})
        if not pks:
            return
        today = self._clock.today()

        def write(session: Session) -> None:
            session.execute(
                update(PairingModel)
                .where(PairingModel.tenant_code1 == tenant_code, PairingModel.pk.in_(pks))
                .values(transfer_to_tellma=IMPORTED, import_date=today)
            )

        self._run("mark_pairings_imported", write)


# =============================================================================
# Exchange rates
# =============================================================================


def _next_month(month_start: date) -> date:
    if month_start.month == 12:
        return date(month_start.year + 1, 1, 1)
    return date(month_start.year, month_start.month + 1, 1)


class SqlExchangeRateSource(_SqlSource):
    """Rates of the ``ExchangeRates`` table."""

    def fetch_month(self, month_start: date, functional_currency: str) -> list[SourceExchangeRate]:
        month_start = month_start.replace(day=1)

        def query(session: Session) -> list[SourceExchangeRate]:
            rows = session.execute(
                select(ExchangeRateModel)
                .where(
                    ExchangeRateModel.currency_id != functional_currency,
                    ExchangeRateModel.valid_as_of >= month_start,
                    ExchangeRateModel.valid_as_of < _next_month(month_start),
                )
                .order_by(ExchangeRateModel.valid_as_of.desc(), ExchangeRateModel.currency_id)
            ).scalars().all()
            return [
                SourceExchangeRate(
                    currency_id=m.currency_id,
                    valid_as_of=m.valid_as_of,
                    amount_in_functional=to_decimal(m.amount_in_functional),
                )
                for m in rows
            ]

        return self._run("fetch_exchange_rates", query)
