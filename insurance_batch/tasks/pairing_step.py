"""
Pairing step -- one settlement document per pairing PK.

Only pairings whose technical and remittance sides are already imported
are fetched; the others are reported once as a warning and wait for a
later run.  Every rule is keyed by the pairing PK, so one bad technical
line drops the whole pairing.

Archive and freeze comparisons include the limit date for pairings.
"""

from __future__ import annotations

from collections.abc import Sequence

from insurance_config.schema import ImporterConfig, ImporterSettings
from insurance_kernel.domain.codes import PlatformCode
from insurance_kernel.domain.document_builder import (
    PairingContext,
    PostingContext,
    build_pairing_document,
    group_pairings,
)
from insurance_kernel.domain.exchange_rates import RateBook, first_of_month
from insurance_kernel.domain.rule_filter import Rule, apply_rules, excluded_total
from insurance_kernel.domain.types import EntityKind, MasterEntity
from insurance_kernel.domain.values import is_blank
from insurance_kernel.domain.worksheets import PairingWorksheet, worksheet_prefix
from insurance_kernel.logging_config import get_logger

from insurance_batch.domain.types import StepName, StepResult
from insurance_batch.tasks.base import StepContext
from insurance_batch.tasks.common import (
    build_each,
    currency_codes,
    ids_by_code,
    period_rules,
    submit,
    supported_prefix_rule,
)

logger = get_logger("batch.pairings")

SAME_TYPE_PAIRS = frozenset({
    ("RW", "RW"),
    ("TW", "TW"),
    ("CW", "CW"),
    ("CW", "TW"),
    ("TW", "CW"),
})


def same_type(row: PairingWorksheet) -> bool:
    return (worksheet_prefix(row.remit_worksheet), worksheet_prefix(row.tech_worksheet)) in SAME_TYPE_PAIRS


def structural_rules(config: ImporterConfig) -> list[Rule]:
    prefixes = config.importer.pairing_supported_prefixes
    tenants = config.tenant_codes
    return [
        Rule("Tenant codes differ between the two sides", lambda r: r.tenant_code1 != r.tenant_code2),
        Rule(
            "Tenant code is not configured",
            lambda r: r.tenant_code1 not in tenants or r.tenant_code2 not in tenants,
            describe=lambda r: r.tenant_code1,
        ),
        Rule("Pairing must have a technical contract code", lambda r: is_blank(r.contract_code)),
        Rule(
            "Same worksheet type on both sides",
            same_type,
            describe=lambda r: f"{r.tech_worksheet} - {r.remit_worksheet}",
        ),
        Rule(
            "Pairing must have both worksheet ids",
            lambda r: is_blank(r.tech_ws_id) or is_blank(r.remit_ws_id),
        ),
        Rule(
            "Technical sums are zero",
            lambda r: r.sum_monetary_value == 0 or r.sum_value == 0,
        ),
        Rule(
            "Technical direction must be 1 or -1",
            lambda r: r.tech_direction not in (1, -1),
            describe=lambda r: r.tech_direction,
        ),
        supported_prefix_rule(prefixes, id_of=lambda r: r.remit_worksheet),
        supported_prefix_rule(prefixes, id_of=lambda r: r.tech_worksheet),
        Rule("Pairing must have a remittance payment date", lambda r: r.remittance_payment_date is None),
        Rule(
            "Same currency but amounts do not cancel",
            lambda r: r.tech_currency == r.remit_currency and r.tech_amount + r.remit_amount != 0,
            describe=lambda r: f"{r.tech_amount} + {r.remit_amount} {r.tech_currency}",
        ),
        Rule("Remittance amount is zero", lambda r: r.remit_amount == 0),
        Rule("Technical amount is zero", lambda r: r.tech_amount == 0),
    ]


def agent_codes(rows: Sequence[PairingWorksheet]) -> list[str]:
    codes = []
    for row in rows:
        for code in (row.agent_code1, row.agent_code2, row.remit_agent_code, row.tech_agent_code):
            if not is_blank(code) and code not in codes:
                codes.append(code)
    return codes


class PairingStep:

    @property
    def name(self) -> StepName:
        return StepName.PAIRINGS

    @property
    def description(self) -> str:
        return "Import technical/remittance pairings"

    def is_enabled(self, settings: ImporterSettings) -> bool:
        return settings.enable_pairing

    def run(self, ctx: StepContext) -> StepResult:
        source = ctx.sources.pairings
        if source is None:
            return StepResult.skipped(self.name)

        blocked = source.fetch_blocked(ctx.tenant_code)
        if blocked:
            logger.warning("pairings_blocked", extra={"count": len(blocked), "pairings": blocked})

        rows = source.fetch(ctx.tenant_code)
        fetched = len({r.natural_key for r in rows})
        if not rows:
            logger.info("pairings_up_to_date")
            return StepResult(step=self.name)
        logger.info(
            "pairings_fetched",
            extra={"count": fetched, "lines": len(rows), "company": ctx.profile.company_name},
        )

        results = []
        rows, applied = apply_rules(
            rows,
            structural_rules(ctx.config)
            + period_rules(ctx.profile, lambda r: r.pairing_date, inclusive=True),
        )
        results.extend(applied)

        currencies = currency_codes(ctx)
        contract_definition = ctx.definition_id(
            EntityKind.AGENT_DEFINITION, PlatformCode.INSURANCE_CONTRACT
        )
        contracts = ids_by_code(
            ctx, EntityKind.AGENT, [r.contract_code for r in rows], definition_id=contract_definition
        )
        customer_definition = ctx.definition_id(
            EntityKind.AGENT_DEFINITION, PlatformCode.TRADE_RECEIVABLE_ACCOUNT
        )
        customer_accounts = ids_by_code(
            ctx,
            EntityKind.AGENT,
            [r.customer_account_code for r in rows],
            definition_id=customer_definition,
        )
        accounts = ids_by_code(ctx, EntityKind.ACCOUNT, [r.account_code for r in rows])
        rows, applied = apply_rules(rows, [
            Rule(
                "Currencies not found on the platform",
                lambda r: r.tech_currency not in currencies or r.remit_currency not in currencies,
                describe=lambda r: ", ".join(
                    c for c in (r.tech_currency, r.remit_currency) if c not in currencies
                ),
            ),
            Rule(
                "Insurance contracts not found on the platform",
                lambda r: r.contract_code not in contracts,
                describe=lambda r: r.contract_code,
            ),
            Rule(
                "Trade receivable accounts not found on the platform",
                lambda r: r.customer_account_code not in customer_accounts,
                describe=lambda r: r.customer_account_code,
            ),
            Rule(
                "Accounts not found on the platform",
                lambda r: r.account_code not in accounts,
                describe=lambda r: r.account_code,
            ),
        ])
        results.extend(applied)
        excluded = excluded_total(results)

        if not rows:
            logger.info("pairings_up_to_date")
            return StepResult(step=self.name, fetched=fetched, excluded=excluded)

        agents, created = self._agents(ctx, rows)
        pairing = PairingContext(
            posting=self._posting_context(ctx, accounts, agents, customer_accounts),
            rates=self._rate_book(ctx, rows),
            remittance_account_id=ctx.id_of(EntityKind.ACCOUNT, ctx.config.accounts.remittance),
            gain_account_id=ctx.id_of(EntityKind.ACCOUNT, ctx.config.accounts.fx_gain),
            loss_account_id=ctx.id_of(EntityKind.ACCOUNT, ctx.config.accounts.fx_loss),
            previous_transactions_date=ctx.settings.previous_pairing_transactions_date,
            fx_entry_type_id=ctx.id_of(EntityKind.ENTRY_TYPE, PlatformCode.OTHER_GAINS_LOSSES.value),
        )
        definition_id = ctx.definition_id(
            EntityKind.DOCUMENT_DEFINITION, PlatformCode.PAIRING_WORKSHEET
        )
        documents, skipped = build_each(
            group_pairings(rows),
            lambda group: build_pairing_document(group, pairing),
            lambda group: str(group[0].pk),
        )
        outcome = submit(ctx, source, definition_id, documents)
        return StepResult(
            step=self.name,
            fetched=fetched,
            excluded=excluded,
            documents_saved=outcome.saved,
            documents_closed=outcome.closed,
            documents_skipped=skipped,
            rows_imported=outcome.imported,
            entities_saved=created,
        )

    @staticmethod
    def _agents(ctx: StepContext, rows: Sequence[PairingWorksheet]) -> tuple[dict[str, int], int]:
        """Insurance agent ids; agents missing on the platform are created under their code."""
        codes = agent_codes(rows)
        definition_id = ctx.synchronizer.definition_id(ctx.tenant_id, PlatformCode.INSURANCE_AGENT)
        existing = ids_by_code(ctx, EntityKind.AGENT, codes, definition_id=definition_id)
        missing = [MasterEntity(code=c, name=c) for c in codes if c not in existing]
        if not missing:
            return existing, 0
        synced = ctx.synchronizer.sync(ctx.tenant_id, PlatformCode.INSURANCE_AGENT, missing)
        return {**existing, **synced.ids_by_code()}, synced.created

    @staticmethod
    def _rate_book(ctx: StepContext, rows: Sequence[PairingWorksheet]) -> RateBook:
        earliest = min(
            min(r.remittance_payment_date for r in rows),
            min(r.pairing_date for r in rows),
        )
        rates = ctx.gateway.fetch_exchange_rates(ctx.tenant_id, first_of_month(earliest))
        return RateBook(rates, ctx.profile.functional_currency)

    @staticmethod
    def _posting_context(
        ctx: StepContext,
        accounts: dict[str, int],
        agents: dict[str, int],
        customer_accounts: dict[str, int],
    ) -> PostingContext:
        tax_definition = ctx.definition_id(EntityKind.AGENT_DEFINITION, PlatformCode.TAX_DEPARTMENT)
        in_out_definition = ctx.definition_id(
            EntityKind.LOOKUP_DEFINITION, PlatformCode.TECHNICAL_IN_OUTWARD
        )
        return PostingContext(
            line_definition_id=ctx.definition_id(EntityKind.LINE_DEFINITION, PlatformCode.MANUAL_LINE),
            center_id=ctx.id_of(EntityKind.CENTER, ctx.config.operation_center_code),
            inward_lookup_id=ctx.id_of(EntityKind.LOOKUP, PlatformCode.INWARD.value, in_out_definition),
            outward_lookup_id=ctx.id_of(EntityKind.LOOKUP, PlatformCode.OUTWARD.value, in_out_definition),
            vat_agent_id=ctx.id_of(EntityKind.AGENT, PlatformCode.VALUE_ADDED_TAX.value, tax_definition),
            accounts=accounts,
            agents=agents,
            customer_accounts=customer_accounts,
        )
