from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from kasi.extensions import db
from kasi.models import PlatformEvent
from kasi.utils.observability import get_request_id

logger = logging.getLogger(__name__)


def _safe_value(value: Any):
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_value(v) for v in value]
    return str(value)


def _safe_json(data: Any) -> str:
    normalized = _safe_value(data if isinstance(data, dict) else {"value": data})
    return json.dumps(normalized, separators=(",", ":"), ensure_ascii=False)


def log_event(
    event_type: str,
    *,
    subject_type: str,
    subject_id: int | None = None,
    actor_type: str | None = None,
    actor_id: int | None = None,
    order=None,
    audience_agent_id: int | None = None,
    severity: str = "INFO",
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> PlatformEvent | None:
    """Append a change-log row inside the caller's transaction.

    The row is written in a savepoint so a failed insert (duplicate key)
    leaves the surrounding unit of work intact. Nothing is committed here.
    When ``order`` is given its customer, store and agent ids are copied
    onto the event so the change feed can filter without a join; wallet
    events pass ``audience_agent_id`` instead.
    """
    key = (idempotency_key or "").strip()[:180] or None
    if key:
        existing = PlatformEvent.query.filter_by(idempotency_key=key).first()
        if existing:
            return existing

    event = PlatformEvent(
        event_type=(event_type or "unknown").strip()[:80],
        actor_type=(actor_type or "").strip()[:16] or None,
        actor_id=int(actor_id) if actor_id is not None else None,
        subject_type=(subject_type or "").strip()[:40],
        subject_id=int(subject_id) if subject_id is not None else None,
        request_id=(get_request_id() or "").strip()[:80] or None,
        idempotency_key=key,
        severity=(severity or "INFO").strip().upper()[:16] or "INFO",
        metadata_json=_safe_json(metadata or {}),
    )
    if order is not None:
        event.audience_customer_id = order.customer_id
        event.audience_store_id = order.store_id
        event.audience_agent_id = order.agent_id
    if audience_agent_id is not None:
        event.audience_agent_id = int(audience_agent_id)

    try:
        with db.session.begin_nested():
            db.session.add(event)
        return event
    except SQLAlchemyError as exc:
        logger.warning("platform_event_write_failed type=%s err=%s", event_type, exc)
        return None
