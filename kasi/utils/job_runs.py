from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from kasi.extensions import db
from kasi.models import JobRun

logger = logging.getLogger(__name__)


def record_job_run(
    *,
    job_name: str,
    ok: bool,
    started_at: datetime,
    items_processed: int = 0,
    issues_found: int = 0,
    trace_id: str = "",
    error: str | None = None,
) -> JobRun | None:
    """Persist a run row. Failures are logged and never mask the job's own outcome."""
    duration_ms = max(0, int((datetime.utcnow() - started_at).total_seconds() * 1000))
    row = JobRun(
        job_name=(job_name or "unknown").strip()[:64],
        ran_at=datetime.utcnow(),
        ok=bool(ok),
        duration_ms=duration_ms,
        items_processed=max(0, int(items_processed or 0)),
        issues_found=max(0, int(issues_found or 0)),
        trace_id=(trace_id or "").strip()[:80] or None,
        error=(error or "")[:1000] or None,
    )
    try:
        db.session.add(row)
        db.session.commit()
        return row
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("job_run_record_failed job=%s err=%s", job_name, exc)
        return None


def last_run(job_name: str) -> JobRun | None:
    return JobRun.query.filter_by(job_name=job_name).order_by(JobRun.id.desc()).first()
