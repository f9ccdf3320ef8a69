"""
Exchange-rate step -- copy the current month's legacy rates to the platform.

Rates in the functional currency are never sent.  Platform rates are
expressed as ``round(1 / rate, 6)`` currency units per functional unit.
Unchanged rates are left alone, changed ones are updated in place, new
ones created; everything goes out in one save call.
"""

from __future__ import annotations

from insurance_config.schema import ImporterSettings
from insurance_kernel.domain.exchange_rates import first_of_month, plan_rate_updates, to_platform_rate
from insurance_kernel.logging_config import get_logger

from insurance_batch.domain.types import StepName, StepResult
from insurance_batch.tasks.base import StepContext

logger = get_logger("batch.exchange_rates")


class ExchangeRateStep:

    @property
    def name(self) -> StepName:
        return StepName.EXCHANGE_RATES

    @property
    def description(self) -> str:
        return "Import the current month's exchange rates"

    def is_enabled(self, settings: ImporterSettings) -> bool:
        return settings.enable_exchange_rate

    def run(self, ctx: StepContext) -> StepResult:
        source = ctx.sources.exchange_rates
        if source is None:
            return StepResult.skipped(self.name)

        month_start = first_of_month(ctx.clock.today())
        functional = ctx.profile.functional_currency
        source_rates = source.fetch_month(month_start, functional)
        desired = [to_platform_rate(r) for r in source_rates if r.currency_id != functional]
        existing = ctx.gateway.fetch_exchange_rates(ctx.tenant_id, month_start)
        changes = plan_rate_updates(desired, existing)

        if not changes:
            logger.info("exchange_rates_up_to_date", extra={"month": month_start.isoformat()})
            return StepResult(step=self.name, fetched=len(source_rates))

        created = sum(1 for r in changes if not r.id)
        ctx.gateway.save_exchange_rates(ctx.tenant_id, changes)
        logger.info(
            "exchange_rates_saved",
            extra={"rates_created": created, "rates_updated": len(changes) - created},
        )
        return StepResult(
            step=self.name,
            fetched=len(source_rates),
            entities_saved=len(changes),
        )
