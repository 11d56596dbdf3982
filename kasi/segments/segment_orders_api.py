from __future__ import annotations

from flask import Blueprint, jsonify, request

from kasi.extensions import db
from kasi.models import Order, OrderTransition
from kasi.services import checkout_service, fulfillment_service
from kasi.services.order_status_service import OrderStatus
from kasi.utils.auth import current_store, current_user, forbidden, has_role, is_admin, unauthorized
from kasi.utils.idempotency import get_idempotency_key, lookup_response, store_response

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api/orders")


def _customer():
    u = current_user()
    if not u:
        return None, unauthorized()
    if not has_role(u, "customer", "admin"):
        return None, forbidden("Customer account required")
    return u, None


def _idempotent(scope: str, user_id: int, payload, handler):
    """Run ``handler`` once per Idempotency-Key; replays return the stored response."""
    hit = lookup_response(scope, payload, user_id=user_id)
    if hit is not None:
        state, value, status = hit
        if state in ("hit", "conflict"):
            return jsonify(value), status
    body, status = handler()
    if hit is not None and hit[0] == "miss" and status < 500:
        store_response(hit[1], body, status)
    return jsonify(body), status


@orders_bp.post("/checkout")
def checkout():
    u, err = _customer()
    if err:
        return err
    payload = request.get_json(silent=True) or {}

    def _run():
        result = checkout_service.checkout(u, payload)
        return {"ok": True, **result}, 201

    return _idempotent(f"orders.checkout:{u.id}", int(u.id), payload, _run)


@orders_bp.post("/custom-request")
def custom_request():
    u, err = _customer()
    if err:
        return err
    payload = request.get_json(silent=True) or {}

    def _run():
        order = checkout_service.create_custom_request(u, payload)
        return {"ok": True, "order": order.to_dict()}, 201

    return _idempotent(f"orders.custom_request:{u.id}", int(u.id), payload, _run)


@orders_bp.get("/my")
def my_orders():
    u = current_user()
    if not u:
        return unauthorized()
    rows = Order.query.filter_by(customer_id=int(u.id)).order_by(Order.created_at.desc()).all()
    return jsonify({"ok": True, "items": [o.to_dict(include_items=True) for o in rows]}), 200


@orders_bp.get("/active-count")
def active_count():
    u = current_user()
    if not u:
        return unauthorized()
    count = Order.query.filter(
        Order.customer_id == int(u.id), Order.status.in_(OrderStatus.ACTIVE)
    ).count()
    return jsonify({"ok": True, "count": int(count)}), 200


def _can_view(order: Order) -> bool:
    store = current_store()
    if store is not None:
        return int(order.store_id) == int(store.id)
    u = current_user()
    if not u:
        return False
    if is_admin(u):
        return True
    if int(order.customer_id) == int(u.id):
        return True
    return order.agent_id is not None and int(order.agent_id) == int(u.id)


@orders_bp.get("/<int:order_id>")
def order_detail(order_id: int):
    if current_user() is None and current_store() is None:
        return unauthorized()
    order = db.session.get(Order, order_id)
    if order is None:
        return jsonify({"ok": False, "error": "NOT_FOUND", "message": "Order not found"}), 404
    if not _can_view(order):
        return forbidden("You cannot view this order")
    transitions = (
        OrderTransition.query.filter_by(order_id=int(order.id)).order_by(OrderTransition.id.asc()).all()
    )
    return jsonify({
        "ok": True,
        "order": order.to_dict(include_items=True),
        "transitions": [t.to_dict() for t in transitions],
    }), 200


@orders_bp.post("/<int:order_id>/cancel")
def cancel(order_id: int):
    u = current_user()
    if not u:
        return unauthorized()
    order = db.session.get(Order, order_id)
    if order is None:
        return jsonify({"ok": False, "error": "NOT_FOUND", "message": "Order not found"}), 404
    data = request.get_json(silent=True) or {}
    order = fulfillment_service.cancel_order(
        order, u, reason=(data.get("reason") or "").strip(), idempotency_key=get_idempotency_key()
    )
    return jsonify({"ok": True, "order": order.to_dict()}), 200
