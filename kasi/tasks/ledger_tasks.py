from __future__ import annotations

import time
from datetime import datetime

from celery import shared_task

from kasi.extensions import db
from kasi.services.reconciliation_service import persist_report, recompute_wallet_balances
from kasi.tasks._logging import retry_countdown, task_log
from kasi.utils.job_runs import record_job_run


@shared_task(
    bind=True,
    name="kasi.tasks.ledger_tasks.reconcile_agent_wallets",
    max_retries=3,
)
def reconcile_agent_wallets(self, *, persist: bool = True, trace_id: str = ""):
    """Recompute every wallet from its ledger and record the outcome."""
    started = time.perf_counter()
    started_at = datetime.utcnow()
    try:
        summary = recompute_wallet_balances()
        if persist:
            row = persist_report(summary, created_by=None)
            summary["report_id"] = int(row.id)
    except Exception as exc:
        db.session.rollback()
        record_job_run(
            job_name="reconcile_agent_wallets", ok=False, started_at=started_at, trace_id=trace_id, error=str(exc)
        )
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            countdown = retry_countdown(int(self.request.retries or 0))
            task_log(
                "reconcile_agent_wallets",
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                detail=str(exc),
                countdown=countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)
        task_log("reconcile_agent_wallets", status="failed", started_at=started, trace_id=trace_id, detail=str(exc))
        raise

    drift = int(summary.get("drift_count") or 0)
    record_job_run(
        job_name="reconcile_agent_wallets",
        ok=drift == 0,
        started_at=started_at,
        items_processed=int(summary.get("wallet_count") or 0),
        issues_found=drift,
        trace_id=trace_id,
        error=f"drift_count={drift}" if drift else None,
    )
    task_log(
        "reconcile_agent_wallets",
        status="ok" if drift == 0 else "drift",
        started_at=started,
        trace_id=trace_id,
        wallets_checked=int(summary.get("wallet_count") or 0),
        drift_count=drift,
    )
    return summary
