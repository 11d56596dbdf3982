from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from kasi.extensions import db
from kasi.integrations.payments.base import PaymentsProvider
from kasi.models import Order, PaymentIntent, User, WebhookEvent
from kasi.services.errors import NotFound, ValidationFailed
from kasi.services.order_status_service import OrderStatus
from kasi.utils.events import log_event

logger = logging.getLogger(__name__)

SUCCESS_EVENTS = ("payment.succeeded", "checkout.succeeded")
FAILURE_EVENTS = ("payment.failed", "checkout.failed")


def _return_urls() -> dict:
    base = (current_app.config.get("APP_URL") or "http://localhost:3000").rstrip("/")
    return {
        "success_url": f"{base}/customer/orders?success=true",
        "cancel_url": f"{base}/customer/checkout",
        "failure_url": f"{base}/customer/checkout?error=payment_failed",
    }


def create_checkout(customer: User, order_ids, provider: PaymentsProvider) -> PaymentIntent:
    """Start a hosted checkout for the customer's unpaid orders.

    The charged amount is always recomputed from the order rows.
    """
    try:
        ids = sorted({int(v) for v in (order_ids or [])})
    except (TypeError, ValueError):
        raise ValidationFailed("order_ids must be a list of integers")
    if not ids:
        raise ValidationFailed("order_ids is required")

    orders = Order.query.filter(Order.id.in_(ids), Order.customer_id == int(customer.id)).all()
    if len(orders) != len(ids):
        raise NotFound("One or more orders were not found")
    for order in orders:
        if order.payment_status == "paid":
            raise ValidationFailed(f"Order #{order.id} is already paid", order_id=int(order.id))
        if order.status == OrderStatus.CANCELLED:
            raise ValidationFailed(f"Order #{order.id} was cancelled", order_id=int(order.id))

    amount = round(sum(o.grand_total for o in orders), 2)
    if amount <= 0:
        raise ValidationFailed("Nothing to pay for these orders")

    result = provider.create_checkout(
        amount=amount,
        currency="ZAR",
        metadata={"orderIds": ids, "customerId": int(customer.id)},
        **_return_urls(),
    )
    intent = PaymentIntent(
        customer_id=int(customer.id),
        provider=provider.name,
        reference=result.checkout_id,
        amount=amount,
        amount_cents=int(round(amount * 100)),
        currency="ZAR",
        status="initialized",
        order_ids_json=json.dumps(ids),
        redirect_url=result.redirect_url,
    )
    db.session.add(intent)
    for order in orders:
        order.payment_method = "yoco"
    db.session.commit()
    logger.info("checkout_created reference=%s orders=%s amount=%.2f", intent.reference, ids, amount)
    return intent


def _event_id(payload: dict, header_id: str | None) -> str:
    event_id = str(payload.get("id") or header_id or "").strip()
    if event_id:
        return event_id[:128]
    raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:32]


def _target_orders(intent: PaymentIntent | None, metadata: dict) -> list[Order]:
    ids = intent.order_ids() if intent is not None else []
    if not ids:
        raw_ids = metadata.get("orderIds") or []
        for value in raw_ids if isinstance(raw_ids, list) else []:
            try:
                ids.append(int(value))
            except (TypeError, ValueError):
                continue
    if not ids:
        return []
    return Order.query.filter(Order.id.in_(ids)).all()


def process_yoco_webhook(*, payload: dict, event_id: str | None = None, request_id: str = "") -> tuple[dict, int]:
    """Apply a (signature-checked) Yoco event. Safe to call more than once."""
    if not isinstance(payload, dict):
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "payload must be an object"}, 400
    event_type = str(payload.get("type") or "").strip()
    if not event_type:
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "type is required"}, 400
    body = payload.get("payload") if isinstance(payload.get("payload"), dict) else {}
    metadata = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}
    checkout_id = str(metadata.get("checkoutId") or body.get("checkoutId") or "").strip()

    evt_id = _event_id(payload, event_id)
    if WebhookEvent.query.filter_by(event_id=evt_id).first():
        return {"ok": True, "received": True, "replayed": True}, 200

    raw = json.dumps(payload, sort_keys=True, default=str)
    event = WebhookEvent(
        provider="yoco",
        event_id=evt_id,
        event_type=event_type[:64],
        checkout_id=checkout_id or None,
        status="received",
        request_id=(request_id or "")[:64] or None,
        payload_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
        payload_json=raw[:20000],
    )
    db.session.add(event)

    processed = 0
    if event_type in SUCCESS_EVENTS or event_type in FAILURE_EVENTS:
        paid = event_type in SUCCESS_EVENTS
        intent = PaymentIntent.query.filter_by(reference=checkout_id).first() if checkout_id else None
        now = datetime.utcnow()
        for order in _target_orders(intent, metadata):
            if not paid and order.payment_status == "paid":
                continue
            order.payment_status = "paid" if paid else "failed"
            order.updated_at = now
            processed += 1
            log_event(
                "order.payment_status_changed",
                subject_type="orders",
                subject_id=int(order.id),
                actor_type="system",
                order=order,
                metadata={"payment_status": order.payment_status, "event_id": evt_id},
            )
        if intent is not None:
            intent.status = "paid" if paid else "failed"
            intent.updated_at = now
            if paid and not intent.paid_at:
                intent.paid_at = now
        event.status = "processed"
    else:
        event.status = "ignored"
    event.processed_at = datetime.utcnow()

    try:
        db.session.commit()
    except IntegrityError:
        # Another worker recorded the same event id first.
        db.session.rollback()
        return {"ok": True, "received": True, "replayed": True}, 200

    logger.info("yoco_webhook event=%s type=%s processed=%s", evt_id, event_type, processed)
    return {"ok": True, "received": True, "processed": processed}, 200
