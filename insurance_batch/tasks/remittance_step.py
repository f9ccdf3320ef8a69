"""
Remittance step -- one document per cash remittance worksheet.

Pipeline: structural rules -> archive/freeze rules -> bank account checks
-> remittance type and mapping -> account and currency checks -> insurance
agent sync -> build -> submit.

Remittance types ``write_off`` and ``bcharge`` do not touch a bank
account; bank checks and the bank currency check skip them.
"""

from __future__ import annotations

from insurance_config.schema import ImporterSettings
from insurance_kernel.domain.account_mapper import is_unmapped, map_rows
from insurance_kernel.domain.codes import PlatformCode
from insurance_kernel.domain.document_builder import PostingContext, build_remittance_document
from insurance_kernel.domain.rule_filter import Rule, apply_rules, excluded_total
from insurance_kernel.domain.types import EntityKind, MasterEntity
from insurance_kernel.domain.worksheets import RemittanceWorksheet
from insurance_kernel.logging_config import get_logger

from insurance_batch.domain.types import StepName, StepResult
from insurance_batch.tasks.base import StepContext
from insurance_batch.tasks.common import (
    build_each,
    currency_codes,
    entry_type_ids,
    fetch_matching,
    ids_by_code,
    period_rules,
    required,
    submit,
    supported_prefix_rule,
)

logger = get_logger("batch.remittances")


def structural_rules(settings: ImporterSettings) -> list[Rule]:
    return [
        required("agent_code", "Remittance must have an insurance agent code"),
        Rule("Remittance must have a non-zero value", lambda r: r.value_fc2 == 0),
        Rule(
            "Remittance direction must be 1 or -1",
            lambda r: r.direction not in (1, -1),
            describe=lambda r: r.direction,
        ),
        supported_prefix_rule(settings.remittance_supported_prefixes),
    ]


class RemittanceStep:

    @property
    def name(self) -> StepName:
        return StepName.REMITTANCES

    @property
    def description(self) -> str:
        return "Import cash remittance worksheets"

    def is_enabled(self, settings: ImporterSettings) -> bool:
        return settings.enable_remittance

    def run(self, ctx: StepContext) -> StepResult:
        source = ctx.sources.remittances
        if source is None:
            return StepResult.skipped(self.name)

        rows = source.fetch(ctx.tenant_code)
        fetched = len({r.natural_key for r in rows})
        if not rows:
            logger.info("remittances_up_to_date")
            return StepResult(step=self.name)
        logger.info(
            "remittances_fetched",
            extra={"count": fetched, "company": ctx.profile.company_name},
        )

        results = []
        rows, applied = apply_rules(
            rows,
            structural_rules(ctx.settings) + period_rules(ctx.profile, lambda r: r.posting_date),
        )
        results.extend(applied)

        bank_definition_id = ctx.definition_id(EntityKind.AGENT_DEFINITION, PlatformCode.BANK_ACCOUNT)
        banks = fetch_matching(
            ctx,
            EntityKind.AGENT,
            "text3",
            [r.bank_account_code for r in rows if r.uses_bank_account],
            definition_id=bank_definition_id,
        )
        bank_currency = {b.text3: b.currency_id for b in banks}
        table = source.fetch_mapping_table()
        known_types = table.first_components()

        rows, applied = apply_rules(rows, [
            Rule(
                "Bank account not found on the platform",
                lambda r: r.uses_bank_account and r.bank_account_code not in bank_currency,
                describe=lambda r: r.bank_account_code,
            ),
            Rule(
                "Bank account currency does not match the platform",
                lambda r: r.uses_bank_account
                and bank_currency.get(r.bank_account_code) != r.bank_account_currency_id,
                describe=lambda r: f"{r.bank_account_code} - {r.bank_account_currency_id}",
            ),
            Rule(
                "Remittance type is not in the mapping table",
                lambda r: r.remittance_type.strip().lower() not in known_types,
                describe=lambda r: r.remittance_type,
            ),
        ])
        results.extend(applied)

        rows = map_rows(rows, table)
        rows, applied = apply_rules(rows, [
            Rule(
                "Remittance type and direction not mapped",
                is_unmapped,
                describe=lambda r: f"{r.remittance_type} - {r.direction}",
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
                    c for c in (r.mapping.account_a, r.mapping.account_b) if c not in accounts
                ),
            ),
            Rule(
                "Currencies not found on the platform",
                lambda r: r.uses_bank_account and (
                    r.bank_account_currency_id not in currencies
                    or r.transfer_currency_id not in currencies
                ),
                describe=lambda r: f"{r.bank_account_currency_id}, {r.transfer_currency_id}",
            ),
        ])
        results.extend(applied)
        excluded = excluded_total(results)

        if not rows:
            logger.info("remittances_up_to_date")
            return StepResult(step=self.name, fetched=fetched, excluded=excluded)

        agents = ctx.synchronizer.sync(
            ctx.tenant_id,
            PlatformCode.INSURANCE_AGENT,
            [MasterEntity(code=r.agent_code, name=r.agent_name) for r in rows],
        )

        posting = self._posting_context(ctx, rows, accounts, agents.ids_by_code(), banks)
        definition_id = ctx.definition_id(
            EntityKind.DOCUMENT_DEFINITION, PlatformCode.REMITTANCE_WORKSHEET
        )
        groups = {r.worksheet_id: [r] for r in rows}
        documents, skipped = build_each(
            groups,
            lambda group: build_remittance_document(group[0], posting),
            lambda group: group[0].worksheet_id,
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
            entities_saved=agents.created + agents.updated,
        )

    @staticmethod
    def _posting_context(
        ctx: StepContext,
        rows: tuple[RemittanceWorksheet, ...],
        accounts: dict[str, int],
        agents: dict[str, int],
        banks: list[MasterEntity],
    ) -> PostingContext:
        in_out_definition = ctx.definition_id(
            EntityKind.LOOKUP_DEFINITION, PlatformCode.TECHNICAL_IN_OUTWARD
        )
        return PostingContext(
            line_definition_id=ctx.definition_id(EntityKind.LINE_DEFINITION, PlatformCode.MANUAL_LINE),
            center_id=ctx.id_of(EntityKind.CENTER, ctx.config.operation_center_code),
            inward_lookup_id=ctx.id_of(EntityKind.LOOKUP, PlatformCode.INWARD.value, in_out_definition),
            outward_lookup_id=ctx.id_of(EntityKind.LOOKUP, PlatformCode.OUTWARD.value, in_out_definition),
            accounts=accounts,
            entry_types=entry_type_ids(
                ctx,
                [c for r in rows for c in (r.mapping.purpose_concept_a, r.mapping.purpose_concept_b)],
            ),
            agents=agents,
            bank_accounts={b.text3: b.id for b in banks if b.text3},
        )
