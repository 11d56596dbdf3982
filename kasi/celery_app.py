from __future__ import annotations

import json
import os
from datetime import datetime

from celery import Celery
from celery.signals import task_failure, task_retry


_SIGNALS_BOUND = False

PAYMENTS_QUEUE = "payments"
LEDGER_QUEUE = "ledger"
TASK_ROUTES = {
    "kasi.tasks.payment_tasks.*": {"queue": PAYMENTS_QUEUE},
    "kasi.tasks.ledger_tasks.*": {"queue": LEDGER_QUEUE},
}


def _env_url(*names: str, default: str = "") -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return default


def _reconcile_interval_seconds() -> int:
    raw = (os.getenv("RECONCILE_INTERVAL_SECONDS") or "3600").strip()
    try:
        value = int(raw)
    except ValueError:
        value = 3600
    return max(300, value)


def beat_schedule() -> dict:
    return {
        "agent-wallet-reconciliation": {
            "task": "kasi.tasks.ledger_tasks.reconcile_agent_wallets",
            "schedule": float(_reconcile_interval_seconds()),
            "kwargs": {"persist": True},
        },
    }


def _task_event(event: str, *, task_name: str, task_id, kwargs, **fields) -> str:
    trace_id = str(kwargs.get("trace_id") or "").strip() if isinstance(kwargs, dict) else ""
    payload = {
        "event": event,
        "task_name": task_name,
        "task_id": str(task_id or ""),
        "trace_id": trace_id,
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(fields)
    return json.dumps(payload, default=str)


def _bind_task_observers(flask_app) -> None:
    global _SIGNALS_BOUND
    if _SIGNALS_BOUND:
        return

    @task_failure.connect(weak=False)
    def _on_task_failure(sender=None, task_id=None, exception=None, args=None, kwargs=None, einfo=None, **extra):
        flask_app.logger.error(_task_event(
            "celery_task_failure",
            task_name=getattr(sender, "name", "") if sender is not None else "",
            task_id=task_id,
            kwargs=kwargs,
            exception=str(exception or ""),
            einfo=str(einfo) if einfo is not None else None,
        ))

    @task_retry.connect(weak=False)
    def _on_task_retry(request=None, reason=None, einfo=None, **extra):
        flask_app.logger.warning(_task_event(
            "celery_task_retry",
            task_name=str(getattr(request, "task", "") or ""),
            task_id=getattr(request, "id", ""),
            kwargs=getattr(request, "kwargs", None),
            reason=str(reason or ""),
            retry_count=int(getattr(request, "retries", 0) or 0),
        ))

    _SIGNALS_BOUND = True


def create_celery_app(flask_app) -> Celery:
    """Celery bound to ``flask_app``; every task body runs in its app context.

    Webhook processing and ledger reconciliation go to separate queues so a
    slow reconciliation run never delays payment confirmation.
    """
    broker = _env_url("CELERY_BROKER_URL", "REDIS_URL", default="redis://localhost:6379/0")
    backend = _env_url("CELERY_RESULT_BACKEND", "REDIS_URL", default=broker)
    celery = Celery(flask_app.import_name, broker=broker, backend=backend)
    celery.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        task_track_started=True,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        timezone="UTC",
        enable_utc=True,
        task_routes=TASK_ROUTES,
        task_default_queue="default",
        beat_schedule=beat_schedule(),
    )

    class FlaskContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = FlaskContextTask
    celery.set_default()
    celery.autodiscover_tasks(["kasi.tasks"], related_name="payment_tasks")
    celery.autodiscover_tasks(["kasi.tasks"], related_name="ledger_tasks")
    _bind_task_observers(flask_app)
    return celery
