from __future__ import annotations

from flask import Blueprint, jsonify, request

from kasi.extensions import db
from kasi.integrations.storage.factory import get_storage
from kasi.models import Order, Store
from kasi.services import agent_service, fulfillment_service, report_service, wallet_service
from kasi.utils.auth import current_user, forbidden, has_role, unauthorized
from kasi.utils.idempotency import get_idempotency_key
from kasi.utils.images import InvalidImageError, inspect_image, object_name, read_upload

agent_bp = Blueprint("agent_bp", __name__, url_prefix="/api/agent")


def _agent():
    u = current_user()
    if not u:
        return None, unauthorized()
    if not has_role(u, "agent"):
        return None, forbidden("Agent account required")
    return u, None


def _order_or_404(order_id: int):
    order = db.session.get(Order, order_id)
    if order is None:
        return None, (jsonify({"ok": False, "error": "NOT_FOUND", "message": "Order not found"}), 404)
    return order, None


def _job_dict(order: Order) -> dict:
    out = order.to_dict(include_items=True)
    store = db.session.get(Store, int(order.store_id))
    out["store"] = store.to_dict() if store else None
    return out


@agent_bp.get("/summary")
def summary():
    u, err = _agent()
    if err:
        return err
    profile = agent_service.get_profile(u.id)
    return jsonify({"ok": True, **report_service.agent_summary(u.id, is_online=bool(profile.is_online))}), 200


@agent_bp.post("/online")
def set_online():
    u, err = _agent()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    profile = agent_service.set_online(u, bool(data.get("online", True)))
    return jsonify({"ok": True, "profile": profile.to_dict()}), 200


@agent_bp.get("/jobs")
def available_jobs():
    u, err = _agent()
    if err:
        return err
    return jsonify({"ok": True, "items": [_job_dict(o) for o in agent_service.available_jobs()]}), 200


@agent_bp.post("/jobs/<int:order_id>/accept")
def accept_job(order_id: int):
    u, err = _agent()
    if err:
        return err
    order, err = _order_or_404(order_id)
    if err:
        return err
    order = fulfillment_service.accept_job(order, u, idempotency_key=get_idempotency_key())
    return jsonify({"ok": True, "order": _job_dict(order)}), 200


@agent_bp.get("/active-job")
def active_job():
    u, err = _agent()
    if err:
        return err
    order = fulfillment_service.active_job_for(u.id)
    return jsonify({"ok": True, "order": _job_dict(order) if order else None}), 200


@agent_bp.post("/orders/<int:order_id>/request-cash")
def request_cash(order_id: int):
    u, err = _agent()
    if err:
        return err
    order, err = _order_or_404(order_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    order = fulfillment_service.request_cash(order, u, data.get("amount"), idempotency_key=get_idempotency_key())
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@agent_bp.post("/orders/<int:order_id>/purchased")
def mark_purchased(order_id: int):
    u, err = _agent()
    if err:
        return err
    order, err = _order_or_404(order_id)
    if err:
        return err
    order = fulfillment_service.mark_purchased(
        order,
        u,
        actual_amount=request.form.get("actual_amount"),
        receipt=read_upload(request.files.get("receipt")),
        payment_method=request.form.get("payment_method"),
        idempotency_key=get_idempotency_key(),
    )
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@agent_bp.post("/orders/<int:order_id>/on-the-way")
def mark_on_the_way(order_id: int):
    u, err = _agent()
    if err:
        return err
    order, err = _order_or_404(order_id)
    if err:
        return err
    order = fulfillment_service.mark_on_the_way(order, agent=u, idempotency_key=get_idempotency_key())
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@agent_bp.post("/orders/<int:order_id>/delivered")
def mark_delivered(order_id: int):
    u, err = _agent()
    if err:
        return err
    order, err = _order_or_404(order_id)
    if err:
        return err
    photo = read_upload(request.files.get("photo")) or None
    order = fulfillment_service.mark_delivered(order, u, photo=photo, idempotency_key=get_idempotency_key())
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@agent_bp.get("/history")
def history():
    u, err = _agent()
    if err:
        return err
    rows = agent_service.history(u.id, request.args.get("filter") or "all")
    return jsonify({"ok": True, "items": [o.to_dict(include_items=True) for o in rows]}), 200


@agent_bp.get("/earnings")
def earnings():
    u, err = _agent()
    if err:
        return err
    return jsonify({"ok": True, **report_service.agent_earnings(u.id)}), 200


@agent_bp.get("/wallet")
def wallet():
    u, err = _agent()
    if err:
        return err
    w = wallet_service.ensure_wallet(u.id)
    db.session.commit()
    txns = wallet_service.recent_transactions(u.id, limit=50)
    return jsonify({"ok": True, "wallet": w.to_dict(), "transactions": [t.to_dict() for t in txns]}), 200


@agent_bp.get("/profile")
def get_profile():
    u, err = _agent()
    if err:
        return err
    profile = agent_service.get_profile(u.id)
    return jsonify({"ok": True, "user": u.to_dict(), "profile": profile.to_dict()}), 200


@agent_bp.patch("/profile")
def update_profile():
    u, err = _agent()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    data.pop("profile_photo_url", None)
    profile = agent_service.update_profile(u, data)
    return jsonify({"ok": True, "user": u.to_dict(), "profile": profile.to_dict()}), 200


@agent_bp.post("/profile/photo")
def upload_photo():
    u, err = _agent()
    if err:
        return err
    data = read_upload(request.files.get("photo"))
    try:
        ext, content_type = inspect_image(data)
    except InvalidImageError as exc:
        return jsonify({"ok": False, "error": "VALIDATION_FAILED", "message": str(exc)}), 400
    storage = get_storage()
    url = storage.upload("agent-photos", object_name(f"agent-{u.id}", ext), data, content_type)
    try:
        profile = agent_service.update_profile(u, {"profile_photo_url": url})
    except Exception:
        db.session.rollback()
        storage.delete("agent-photos", storage.key_from_url(url))
        raise
    return jsonify({"ok": True, "profile": profile.to_dict()}), 200
