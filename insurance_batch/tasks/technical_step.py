"""
Technical step -- technical (TW) and claim (CW) worksheets.

Pipeline:
    1. Structural and archive/freeze rules.
    2. Account mapping by (account code, is_inward); unmapped rows and
       rows with unknown accounts or currencies are excluded.
    3. Business type and main class checks, risk country warning, then
       master data for the surviving rows only: insurance agents (agent,
       broker, channel, cedant, reinsurer, insured), contracts, business
       partners, trade receivable accounts.
    4. One document per worksheet, technical and claim worksheets posted
       to their own document definitions.

Failure modes:
    - ``MappingTableError`` from the mapping table aborts the tenant.
    - Gateway and source errors abort the step.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from insurance_config.schema import ImporterSettings
from insurance_kernel.domain.account_mapper import is_unmapped, map_rows
from insurance_kernel.domain.codes import UNASSIGNED_CODE, PartnershipType, PlatformCode
from insurance_kernel.domain.document_builder import (
    PostingContext,
    build_technical_document,
    group_technicals,
)
from insurance_kernel.domain.rule_filter import Rule, apply_rules, excluded_total
from insurance_kernel.domain.types import EntityKind, MasterEntity
from insurance_kernel.domain.values import is_blank
from insurance_kernel.domain.worksheets import TechnicalWorksheet
from insurance_kernel.logging_config import get_logger
from insurance_kernel.services.master_data_sync import SyncResult

from insurance_batch.domain.types import StepName, StepResult
from insurance_batch.tasks.base import StepContext
from insurance_batch.tasks.common import (
    SubmitOutcome,
    build_each,
    currency_codes,
    entry_type_ids,
    ids_by_code,
    lookup_ids,
    period_rules,
    required,
    submit,
    supported_prefix_rule,
)

logger = get_logger("batch.technicals")

DOCUMENT_DEFINITIONS = {
    "TW": PlatformCode.TECHNICAL_WORKSHEET,
    "CW": PlatformCode.CLAIM_WORKSHEET,
}

# (code attribute, name attribute, name required)
AGENT_ROLES = (
    ("agent_code", "agent_name", False),
    ("broker_code", "broker_name", False),
    ("channel_code", "channel_name", True),
    ("cedant_code", "cedant_name", True),
    ("reinsurer_code", "reinsurer_name", True),
    ("insured_code", "insured_name", True),
)

PARTNER_ROLES = (
    ("cedant_code", PartnershipType.CEDANT),
    ("channel_code", PartnershipType.BROKER_CHANNEL),
    ("insured_code", PartnershipType.INSURED),
    ("reinsurer_code", PartnershipType.REINSURER),
)

FAR_FUTURE_YEARS = 10


def structural_rules(settings: ImporterSettings) -> list[Rule]:
    return [
        required("agent_code", "Technical worksheet must have an insurance agent code"),
        required("agent_name", "Technical worksheet must have an insurance agent name"),
        required("contract_code", "Technical worksheet must have a contract code"),
        required("contract_name", "Technical worksheet must have a contract name"),
        required("business_type_code", "Technical worksheet must have a business type"),
        required("main_class_code", "Technical worksheet must have a main business class"),
        Rule(
            "Technical worksheet direction must be 1 or -1",
            lambda r: r.direction not in (1, -1) and r.contract_amount != 0 and r.value_fc2 != 0,
            describe=lambda r: r.direction,
        ),
        supported_prefix_rule(settings.technical_supported_prefixes),
    ]


def years_later(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return day.replace(year=day.year + years, day=28)


def latest_by(rows: Sequence[TechnicalWorksheet], attribute: str) -> dict[str, TechnicalWorksheet]:
    """Most recently posted row per value of ``attribute`` (first wins on ties)."""
    latest: dict[str, TechnicalWorksheet] = {}
    for row in rows:
        value = getattr(row, attribute)
        if is_blank(value):
            continue
        current = latest.get(value)
        if current is None or row.posting_date > current.posting_date:
            latest[value] = row
    return latest


# =============================================================================
# Desired master data
# =============================================================================


def desired_agents(rows: Sequence[TechnicalWorksheet]) -> list[MasterEntity]:
    agents = []
    for code_attr, name_attr, name_required in AGENT_ROLES:
        for row in rows:
            code, name = getattr(row, code_attr), getattr(row, name_attr)
            if is_blank(code) or (name_required and is_blank(name)):
                continue
            agents.append(MasterEntity(code=code, name=name))
    return agents


def desired_contracts(
    rows: Sequence[TechnicalWorksheet],
    agents: dict[str, int],
    business_types: dict[str, int],
    risk_countries: dict[str, int],
) -> list[MasterEntity]:
    contracts = []
    for code, latest in latest_by(rows, "contract_code").items():
        effective = [r.effective_date for r in rows if r.contract_code == code and r.effective_date]
        closing = latest.closing_date.isoformat() if latest.closing_date else ""
        contracts.append(
            MasterEntity(
                code=code,
                name=f"{code}: {latest.contract_name}",
                lookup1_id=business_types.get(latest.business_type_code),
                lookup3_id=risk_countries.get(latest.risk_country),
                agent2_id=agents.get(latest.broker_code),
                from_date=min(effective) if effective else None,
                to_date=latest.expiry_date,
                description=latest.description,
                description2=f"Max closing date = {closing}",
            )
        )
    return contracts


def desired_partners(
    rows: Sequence[TechnicalWorksheet],
    agents: dict[str, MasterEntity],
    contracts: dict[str, int],
    partnership_types: dict[str, int],
) -> list[MasterEntity]:
    partners = []
    for code_attr, partnership in PARTNER_ROLES:
        type_id = partnership_types.get(partnership.value)
        with_partner = [r for r in rows if not is_blank(getattr(r, code_attr))]
        for contract_code, latest in latest_by(with_partner, "contract_code").items():
            agent = agents.get(getattr(latest, code_attr))
            partner = MasterEntity(
                code=UNASSIGNED_CODE,
                name=agent.name if agent else None,
                agent1_id=contracts.get(contract_code),
                agent2_id=agent.id if agent else None,
                lookup1_id=type_id,
            )
            if None not in (partner.agent1_id, partner.agent2_id, partner.lookup1_id):
                partners.append(partner)
    return sorted(partners, key=lambda p: p.agent1_id)


def desired_customer_accounts(
    rows: Sequence[TechnicalWorksheet],
    agents: dict[str, int],
    contracts: dict[str, int],
    main_classes: dict[str, int],
) -> list[MasterEntity]:
    latest = latest_by(rows, "customer_account_code")
    return [
        MasterEntity(
            code=code,
            name=f"{code}: {row.contract_name}",
            agent1_id=agents.get(row.agent_code),
            agent2_id=contracts.get(row.contract_code),
            lookup2_id=main_classes.get(row.main_class_code),
        )
        for code, row in latest.items()
    ]


# =============================================================================
# Step
# =============================================================================


class TechnicalStep:

    @property
    def name(self) -> StepName:
        return StepName.TECHNICALS

    @property
    def description(self) -> str:
        return "Import technical and claim worksheets"

    def is_enabled(self, settings: ImporterSettings) -> bool:
        return settings.enable_technical

    def run(self, ctx: StepContext) -> StepResult:
        source = ctx.sources.technicals
        if source is None:
            return StepResult.skipped(self.name)

        rows = source.fetch(ctx.tenant_code)
        fetched = len({r.natural_key for r in rows})
        if not rows:
            logger.info("technicals_up_to_date")
            return StepResult(step=self.name)
        logger.info(
            "technicals_fetched",
            extra={"count": fetched, "rows": len(rows), "company": ctx.profile.company_name},
        )

        results = []
        rows, applied = apply_rules(
            rows,
            structural_rules(ctx.settings) + period_rules(ctx.profile, lambda r: r.posting_date),
        )
        results.extend(applied)

        table = source.fetch_mapping_table()
        rows = map_rows(rows, table)
        rows, applied = apply_rules(rows, [
            Rule(
                "Account not mapped",
                is_unmapped,
                describe=lambda r: f"{r.account_code} - {r.is_inward}",
            ),
        ])
        results.extend(applied)

        accounts = ids_by_code(
            ctx,
            EntityKind.ACCOUNT,
            [code for r in rows for code in (r.mapping.account_a, r.mapping.account_b)],
        )
        currencies = currency_codes(ctx)
        rows, applied = apply_rules(rows, [
            Rule(
                "Accounts not found on the platform",
                lambda r: r.mapping.account_a not in accounts or r.mapping.account_b not in accounts,
                describe=lambda r: ", ".join(
                    str(c) for c in (r.mapping.account_a, r.mapping.account_b) if c not in accounts
                ),
            ),
            Rule(
                "Currencies not found on the platform",
                lambda r: r.contract_currency_id not in currencies,
                describe=lambda r: (r.contract_currency_id or "").upper(),
            ),
        ])
        results.extend(applied)

        business_types = lookup_ids(ctx, PlatformCode.BUSINESS_TYPE, [r.business_type_code for r in rows])
        main_classes = lookup_ids(ctx, PlatformCode.MAIN_BUSINESS_CLASS, [r.main_class_code for r in rows])
        rows, applied = apply_rules(rows, [
            Rule(
                "Business types not found on the platform",
                lambda r: r.business_type_code not in business_types,
                describe=lambda r: r.business_type_code,
            ),
            Rule(
                "Main business classes not found on the platform",
                lambda r: r.main_class_code not in main_classes,
                describe=lambda r: f"{r.main_class_code} - {r.main_class_name}",
            ),
        ])
        results.extend(applied)

        risk_countries = lookup_ids(ctx, PlatformCode.CITIZENSHIP, [r.risk_country for r in rows])
        self._warn_missing_countries(rows, risk_countries)

        syncs: list[SyncResult] = []
        agents = ctx.synchronizer.sync(ctx.tenant_id, PlatformCode.INSURANCE_AGENT, desired_agents(rows))
        syncs.append(agents)
        agent_ids = agents.ids_by_code()

        contracts = ctx.synchronizer.sync(
            ctx.tenant_id,
            PlatformCode.INSURANCE_CONTRACT,
            desired_contracts(rows, agent_ids, business_types, risk_countries),
        )
        syncs.append(contracts)
        contract_ids = contracts.ids_by_code()

        partnership_types = lookup_ids(
            ctx, PlatformCode.PARTNERSHIP_TYPES, [p.value for p in PartnershipType]
        )
        syncs.append(
            ctx.synchronizer.sync(
                ctx.tenant_id,
                PlatformCode.BUSINESS_PARTNER,
                desired_partners(
                    rows, {a.code: a for a in agents.entities}, contract_ids, partnership_types
                ),
            )
        )
        customer_accounts = ctx.synchronizer.sync(
            ctx.tenant_id,
            PlatformCode.TRADE_RECEIVABLE_ACCOUNT,
            desired_customer_accounts(rows, agent_ids, contract_ids, main_classes),
        )
        syncs.append(customer_accounts)

        self._warn_far_future_noted_dates(rows, ctx.clock.today())
        excluded = excluded_total(results)
        entities_saved = sum(s.created + s.updated for s in syncs)

        if not rows:
            logger.info("technicals_up_to_date")
            return StepResult(
                step=self.name, fetched=fetched, excluded=excluded, entities_saved=entities_saved
            )

        posting = self._posting_context(ctx, rows, accounts, customer_accounts.ids_by_code())
        outcome = SubmitOutcome()
        skipped = 0
        groups = group_technicals(rows)
        for prefix, definition_code in DOCUMENT_DEFINITIONS.items():
            selected = {k: v for k, v in groups.items() if k[0] == prefix}
            if not selected:
                continue
            ctx.check_cancelled(f"{prefix} documents")
            documents, failed = build_each(
                selected,
                lambda group: build_technical_document(group, posting),
                lambda group: group[0].worksheet_id,
            )
            skipped += failed
            definition_id = ctx.definition_id(EntityKind.DOCUMENT_DEFINITION, definition_code)
            outcome += submit(ctx, source, definition_id, documents)

        return StepResult(
            step=self.name,
            fetched=fetched,
            excluded=excluded,
            documents_saved=outcome.saved,
            documents_closed=outcome.closed,
            documents_skipped=skipped,
            rows_imported=outcome.imported,
            entities_saved=entities_saved,
        )

    @staticmethod
    def _warn_missing_countries(
        rows: Sequence[TechnicalWorksheet], risk_countries: dict[str, int]
    ) -> None:
        missing = [r for r in rows if r.risk_country not in risk_countries]
        if not missing:
            return
        logger.warning(
            "risk_country_not_found",
            extra={
                "keys": sorted({r.worksheet_id for r in missing}),
                "contracts": sorted({r.contract_code for r in missing if r.contract_code}),
                "values": sorted({r.risk_country for r in missing if r.risk_country}),
            },
        )

    @staticmethod
    def _warn_far_future_noted_dates(rows: Sequence[TechnicalWorksheet], today: date) -> None:
        limit = years_later(today, FAR_FUTURE_YEARS)
        far = [
            r
            for r in rows
            if r.noted_date is not None
            and r.noted_date >= limit
            and (r.mapping.has_noted_date_a or r.mapping.has_noted_date_b)
        ]
        if far:
            logger.warning(
                "far_future_noted_date",
                extra={
                    "keys": sorted({r.worksheet_id for r in far}),
                    "values": sorted({r.noted_date.isoformat() for r in far}),
                    "limit": limit.isoformat(),
                },
            )

    @staticmethod
    def _posting_context(
        ctx: StepContext,
        rows: Sequence[TechnicalWorksheet],
        accounts: dict[str, int],
        customer_accounts: dict[str, int],
    ) -> PostingContext:
        in_out_definition = ctx.definition_id(
            EntityKind.LOOKUP_DEFINITION, PlatformCode.TECHNICAL_IN_OUTWARD
        )
        tax_definition = ctx.definition_id(EntityKind.AGENT_DEFINITION, PlatformCode.TAX_DEPARTMENT)
        return PostingContext(
            line_definition_id=ctx.definition_id(EntityKind.LINE_DEFINITION, PlatformCode.MANUAL_LINE),
            center_id=ctx.id_of(EntityKind.CENTER, ctx.config.operation_center_code),
            inward_lookup_id=ctx.id_of(EntityKind.LOOKUP, PlatformCode.INWARD.value, in_out_definition),
            outward_lookup_id=ctx.id_of(EntityKind.LOOKUP, PlatformCode.OUTWARD.value, in_out_definition),
            vat_agent_id=ctx.id_of(EntityKind.AGENT, PlatformCode.VALUE_ADDED_TAX.value, tax_definition),
            accounts=accounts,
            entry_types=entry_type_ids(
                ctx,
                [c for r in rows for c in (r.mapping.purpose_concept_a, r.mapping.purpose_concept_b)],
            ),
            customer_accounts=customer_accounts,
        )
