#!/usr/bin/env python3
"""
Run the insurance worksheet importer, once or as a daily background job.

The accounting-platform transport is not part of this project; the host
supplies it as a factory ``module:callable`` that receives the loaded
``ImporterConfig`` and returns an ``AccountingGateway``.

Usage:
    python3 scripts/run_importer.py --gateway-factory <module:callable> [options]

Examples:
    # Import every tenant once and print the summary
    python3 scripts/run_importer.py --gateway-factory platform_client:make_gateway --once

    # Daemon mode: run at the configured time of day until interrupted
    python3 scripts/run_importer.py --gateway-factory platform_client:make_gateway \\
        --config /etc/importer/config.yaml
"""

from __future__ import annotations

import argparse
import importlib
import signal
import sys
import threading
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Import legacy insurance worksheets into the accounting platform.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration YAML (default: $INSURANCE_IMPORTER_CONFIG or bundled defaults).",
    )
    parser.add_argument(
        "--gateway-factory",
        required=True,
        help="Accounting gateway factory as module:callable, called with the configuration.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run the import once and exit instead of waiting for the daily schedule.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO).",
    )
    return parser.parse_args()


def _load_factory(target: str):
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected module:callable, got {target!r}")
    return getattr(importlib.import_module(module_name), attribute)


def _print_summary(summary) -> None:
    print(f"Run {summary.run_id}: {'cancelled' if summary.cancelled else 'finished'}")
    for tenant in summary.tenants:
        print(f"  {tenant.tenant_code}: {tenant.status.value}")
        for step in tenant.steps:
            print(
                f"    {step.step.value:<15} {step.status.value:<10} "
                f"fetched={step.fetched} excluded={step.excluded} "
                f"saved={step.documents_saved} skipped={step.documents_skipped} "
                f"imported={step.rows_imported}"
                + (f" error={step.error}" if step.error else "")
            )
        if tenant.error:
            print(f"    error: {tenant.error}")


def main() -> int:
    args = _parse_args()

    # Lazy imports so we fail fast on args first
    from insurance_batch.orchestrator import ImportOrchestrator
    from insurance_batch.services.scheduler import DailyScheduler
    from insurance_batch.tasks import WorksheetSources
    from insurance_config import ConfigSource
    from insurance_kernel.db.engine import get_session_factory, init_engine_from_url
    from insurance_kernel.exceptions import ConfigurationError
    from insurance_kernel.logging_config import configure_logging
    from insurance_kernel.selectors import (
        SqlExchangeRateSource,
        SqlPairingSource,
        SqlRemittanceSource,
        SqlTechnicalSource,
    )

    configure_logging(level=args.log_level)

    config_source = ConfigSource(args.config)
    try:
        config = config_source.snapshot()
    except ConfigurationError as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    try:
        factory = _load_factory(args.gateway_factory)
    except (ValueError, ImportError, AttributeError) as e:
        print(f"ERROR: Cannot load gateway factory: {e}", file=sys.stderr)
        return 1
    gateway = factory(config)

    init_engine_from_url(config.database.url, echo=config.database.echo)
    session_factory = get_session_factory()
    sources = WorksheetSources(
        technicals=SqlTechnicalSource(session_factory),
        remittances=SqlRemittanceSource(session_factory),
        pairings=SqlPairingSource(session_factory),
        exchange_rates=SqlExchangeRateSource(session_factory),
    )
    orchestrator = ImportOrchestrator(config_source, gateway, sources)

    if args.once:
        cancel_event = threading.Event()
        signal.signal(signal.SIGINT, lambda *_: cancel_event.set())
        summary = orchestrator.run_once(cancel_event)
        _print_summary(summary)
        return 0 if summary.succeeded else 2

    scheduler = DailyScheduler(orchestrator, config_source)
    stopped = threading.Event()

    def _shutdown(*_):
        stopped.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    scheduler.start()
    print(f"Importer scheduled daily at {config.schedule.hour:02}:{config.schedule.minute:02}"
          f":{config.schedule.second:02}; Ctrl+C to stop.")
    stopped.wait()
    scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
