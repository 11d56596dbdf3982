from __future__ import annotations

import time

from celery import shared_task

from kasi.extensions import db
from kasi.services.payment_service import process_yoco_webhook
from kasi.tasks._logging import retry_countdown, task_log


@shared_task(
    bind=True,
    name="kasi.tasks.payment_tasks.process_yoco_webhook",
    max_retries=5,
)
def process_yoco_webhook_task(self, *, payload: dict, event_id: str | None = None, trace_id: str = ""):
    started = time.perf_counter()
    try:
        body, code = process_yoco_webhook(
            payload=payload if isinstance(payload, dict) else {},
            event_id=event_id,
            request_id=trace_id,
        )
    except Exception as exc:
        db.session.rollback()
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            countdown = retry_countdown(int(self.request.retries or 0))
            task_log(
                "process_yoco_webhook",
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                event_id=event_id or "",
                detail=str(exc),
                countdown=countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)
        task_log(
            "process_yoco_webhook",
            status="failed",
            started_at=started,
            trace_id=trace_id,
            event_id=event_id or "",
            detail=str(exc),
        )
        raise

    task_log(
        "process_yoco_webhook",
        status="ok" if int(code) < 400 else "rejected",
        started_at=started,
        trace_id=trace_id,
        event_id=event_id or "",
        status_code=int(code),
    )
    return {"ok": int(code) < 400, "status_code": int(code), "body": body}
