from __future__ import annotations

import json
from datetime import datetime

from kasi.extensions import db
from kasi.models import Order, OrderTransition
from kasi.services.errors import InvalidTransition
from kasi.utils.events import log_event


class OrderStatus:
    PENDING = "pending"
    RECEIVED = "received"
    ASSIGNED = "assigned"
    CASH_REQUESTED = "cash_requested"
    CASH_APPROVED = "cash_approved"
    PURCHASED = "purchased"
    ON_THE_WAY = "on_the_way"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    ALLOWED = {
        PENDING: {RECEIVED, ASSIGNED, CANCELLED},
        RECEIVED: {ASSIGNED, PURCHASED, CANCELLED},
        ASSIGNED: {CASH_REQUESTED, CASH_APPROVED, PURCHASED, CANCELLED},
        CASH_REQUESTED: {CASH_APPROVED, CANCELLED},
        CASH_APPROVED: {PURCHASED, CANCELLED},
        PURCHASED: {ON_THE_WAY},
        ON_THE_WAY: {DELIVERED},
        DELIVERED: set(),
        CANCELLED: set(),
    }

    TERMINAL = (DELIVERED, CANCELLED)
    ACTIVE = (PENDING, RECEIVED, ASSIGNED, CASH_REQUESTED, CASH_APPROVED, PURCHASED, ON_THE_WAY)
    OPEN_FOR_AGENTS = (PENDING, RECEIVED)

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.ALLOWED.get(current, set())


def _parse_actor(actor) -> tuple[str, int | None]:
    if isinstance(actor, dict):
        actor_type = str(actor.get("type") or "system")
        actor_id_raw = actor.get("id")
        try:
            actor_id = int(actor_id_raw) if actor_id_raw is not None else None
        except (TypeError, ValueError):
            actor_id = None
        return actor_type, actor_id
    return "system", None


def find_transition(order: Order, idempotency_key: str) -> OrderTransition | None:
    key = (idempotency_key or "").strip()[:160]
    if not key:
        return None
    return OrderTransition.query.filter_by(order_id=int(order.id), idempotency_key=key).first()


def record_transition(
    order: Order,
    from_status: str,
    to_status: str,
    *,
    idempotency_key: str,
    actor=None,
    reason: str = "",
    metadata: dict | None = None,
) -> OrderTransition:
    """Write the audit row and change-log event for a status change already applied to ``order``."""
    actor_type, actor_id = _parse_actor(actor)
    row = OrderTransition(
        order_id=int(order.id),
        from_status=from_status,
        to_status=to_status,
        actor_type=actor_type[:32],
        actor_id=actor_id,
        idempotency_key=idempotency_key.strip()[:160],
        reason=(reason or "")[:240] or None,
        metadata_json=json.dumps(metadata or {}, default=str)[:4000],
        created_at=datetime.utcnow(),
    )
    db.session.add(row)
    log_event(
        "order.status_changed",
        subject_type="orders",
        subject_id=int(order.id),
        actor_type=actor_type,
        actor_id=actor_id,
        order=order,
        metadata={"from": from_status, "to": to_status, "reason": reason or ""},
    )
    db.session.flush()
    return row


def transition_order(
    order: Order,
    to_status: str,
    *,
    idempotency_key: str,
    actor=None,
    reason: str = "",
    metadata: dict | None = None,
) -> tuple[OrderTransition, bool]:
    """Move ``order`` to ``to_status`` within the current transaction.

    Returns ``(transition, applied)``. A key already recorded for this order
    returns the earlier row with ``applied=False`` and changes nothing.
    The caller commits.
    """
    if order is None:
        raise ValueError("order required")
    key = (idempotency_key or "").strip()
    if not key:
        raise ValueError("idempotency_key required")

    existing = find_transition(order, key)
    if existing:
        return existing, False

    current = (order.status or OrderStatus.PENDING).strip().lower()
    target = (to_status or "").strip().lower()
    if not OrderStatus.can_transition(current, target):
        raise InvalidTransition(
            f"Order cannot move from {current} to {target}",
            current_status=current,
            requested_status=target,
        )

    order.status = target
    order.updated_at = datetime.utcnow()
    row = record_transition(
        order,
        current,
        target,
        idempotency_key=key,
        actor=actor,
        reason=reason,
        metadata=metadata,
    )
    return row, True
