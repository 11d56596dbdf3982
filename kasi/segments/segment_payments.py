from __future__ import annotations

import os

from flask import Blueprint, current_app, jsonify, request

from kasi.extensions import db
from kasi.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from kasi.integrations.payments.factory import build_payments_provider, payment_health
from kasi.integrations.payments.yoco_provider import verify_webhook_signature
from kasi.models import PaymentIntent
from kasi.services.payment_service import create_checkout, process_yoco_webhook
from kasi.utils.auth import current_user, forbidden, has_role, is_admin, unauthorized
from kasi.utils.idempotency import lookup_response, store_response
from kasi.utils.observability import get_request_id

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/payments")
webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")


def _queue_enabled() -> bool:
    raw = current_app.config.get("YOCO_WEBHOOK_QUEUE")
    if raw is None:
        raw = os.getenv("YOCO_WEBHOOK_QUEUE", "false")
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


@payments_bp.post("/checkout")
def checkout():
    u = current_user()
    if not u:
        return unauthorized()
    if not has_role(u, "customer"):
        return forbidden("Only customers can pay for orders")

    payload = request.get_json(silent=True) or {}
    cached = lookup_response("payments.checkout", payload, user_id=int(u.id))
    if cached is not None and cached[0] in ("hit", "conflict"):
        return jsonify(cached[1]), int(cached[2])

    try:
        provider = build_payments_provider(current_app.config)
    except IntegrationDisabledError:
        return jsonify({"ok": False, "error": "INTEGRATION_DISABLED", "message": "Payments are disabled"}), 503
    except IntegrationMisconfiguredError as exc:
        current_app.logger.error("payments_misconfigured err=%s", exc)
        return jsonify({"ok": False, "error": "INTEGRATION_MISCONFIGURED", "message": "Payments are not configured"}), 503

    try:
        intent = create_checkout(u, payload.get("order_ids"), provider)
    except RuntimeError as exc:
        db.session.rollback()
        current_app.logger.warning("checkout_failed user=%s err=%s", u.id, exc)
        return jsonify({"ok": False, "error": "PAYMENT_PROVIDER_ERROR", "message": "Could not start checkout"}), 502

    body = {"ok": True, "intent": intent.to_dict(), "redirect_url": intent.redirect_url}
    if cached is not None:
        store_response(cached[1], body, 201)
    return jsonify(body), 201


@payments_bp.get("/intents/<reference>")
def get_intent(reference: str):
    u = current_user()
    if not u:
        return unauthorized()
    intent = PaymentIntent.query.filter_by(reference=reference).first()
    if intent is None or (int(intent.customer_id) != int(u.id) and not is_admin(u)):
        return jsonify({"ok": False, "error": "NOT_FOUND", "message": "Payment not found"}), 404
    return jsonify({"ok": True, "intent": intent.to_dict()}), 200


@payments_bp.get("/health")
def health():
    if not is_admin(current_user()):
        return forbidden("Admin required")
    return jsonify({"ok": True, **payment_health(current_app.config)}), 200


@webhooks_bp.post("/yoco")
def yoco_webhook():
    raw = request.get_data() or b""
    webhook_id = request.headers.get("webhook-id") or ""
    secret = (current_app.config.get("YOCO_WEBHOOK_SECRET") or "").strip()
    if secret:
        ok = verify_webhook_signature(
            secret,
            webhook_id=webhook_id,
            timestamp=request.headers.get("webhook-timestamp") or "",
            body=raw,
            signature_header=request.headers.get("webhook-signature") or "",
        )
        if not ok:
            current_app.logger.warning("yoco_webhook_bad_signature webhook_id=%s", webhook_id)
            return jsonify({"ok": False, "error": "INVALID_SIGNATURE", "message": "Invalid webhook signature"}), 401

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"ok": False, "error": "INVALID_PAYLOAD", "message": "JSON object expected"}), 400

    if _queue_enabled():
        from kasi.tasks.payment_tasks import process_yoco_webhook_task

        process_yoco_webhook_task.delay(
            payload=payload,
            event_id=webhook_id or None,
            trace_id=get_request_id(),
        )
        return jsonify({"ok": True, "queued": True, "trace_id": get_request_id()}), 200

    body, status = process_yoco_webhook(payload=payload, event_id=webhook_id or None, request_id=get_request_id())
    return jsonify(body), int(status)
