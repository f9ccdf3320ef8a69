"""
insurance_batch -- Daily import of legacy insurance worksheets.

Runs the four import steps (exchange rates, remittances, technical and
claim worksheets, pairings) for each configured tenant, one tenant and one
step at a time, and triggers the run at a configured time of day.

Architecture:
    insurance_batch/ is a top-level package.  Nothing in insurance_kernel
    or insurance_config imports from insurance_batch.

    domain/        pure schedule evaluation and frozen run results
    tasks/         ImportStep protocol, registry and the four steps
    orchestrator   ImportOrchestrator.run_once
    services/      DailyScheduler
"""
