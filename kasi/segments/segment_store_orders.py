from __future__ import annotations

import csv
import io

from flask import Blueprint, Response, jsonify, request

from kasi.extensions import db
from kasi.models import Order, Store
from kasi.services import fulfillment_service, report_service, store_service
from kasi.services.order_status_service import OrderStatus
from kasi.utils.auth import current_store, current_user, forbidden, is_admin, unauthorized
from kasi.utils.idempotency import get_idempotency_key

store_bp = Blueprint("store_bp", __name__, url_prefix="/api/store")

STORE_QUEUE_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.RECEIVED,
    OrderStatus.PURCHASED,
    OrderStatus.ON_THE_WAY,
)


def _store_session():
    store = current_store()
    if store is None:
        return None, unauthorized()
    if store.status == "inactive":
        return None, forbidden("This store is inactive")
    return store, None


def _profile_target():
    """Store sessions edit themselves; admins pass ``?store_id=``."""
    store = current_store()
    if store is not None:
        return store, "store", int(store.id), None
    u = current_user()
    if not u:
        return None, None, None, unauthorized()
    if not is_admin(u):
        return None, None, None, forbidden("Admin or store session required")
    try:
        store_id = int(request.args.get("store_id") or 0)
    except ValueError:
        store_id = 0
    store = db.session.get(Store, store_id) if store_id else None
    if store is None:
        return None, None, None, (jsonify({"ok": False, "error": "NOT_FOUND", "message": "Store not found"}), 404)
    return store, "admin", int(u.id), None


@store_bp.get("/profile")
def get_profile():
    store, _actor_type, _actor_id, err = _profile_target()
    if err:
        return err
    return jsonify({"ok": True, "store": store.to_dict(include_private=True)}), 200


@store_bp.patch("/profile")
def update_profile():
    store, actor_type, actor_id, err = _profile_target()
    if err:
        return err
    store = store_service.update_profile(
        store, request.get_json(silent=True) or {}, actor_type=actor_type, actor_id=actor_id
    )
    return jsonify({"ok": True, "store": store.to_dict(include_private=True)}), 200


@store_bp.get("/dashboard")
def dashboard():
    store, err = _store_session()
    if err:
        return err
    return jsonify({"ok": True, "store": store.to_dict(), **report_service.store_dashboard(store.id)}), 200


@store_bp.get("/orders")
def orders():
    store, err = _store_session()
    if err:
        return err
    rows = (
        Order.query.filter(Order.store_id == int(store.id), Order.status.in_(STORE_QUEUE_STATUSES))
        .order_by(Order.created_at.asc())
        .all()
    )
    return jsonify({"ok": True, "items": [o.to_dict(include_items=True) for o in rows]}), 200


@store_bp.post("/orders/<int:order_id>/advance")
def advance(order_id: int):
    store, err = _store_session()
    if err:
        return err
    order = db.session.get(Order, order_id)
    if order is None:
        return jsonify({"ok": False, "error": "NOT_FOUND", "message": "Order not found"}), 404
    data = request.get_json(silent=True) or {}
    if "store_notes" in data:
        if int(order.store_id) != int(store.id):
            return forbidden("This order belongs to another store")
        order.store_notes = (data.get("store_notes") or "").strip() or None
    order = fulfillment_service.store_advance(order, store, idempotency_key=get_idempotency_key())
    return jsonify({"ok": True, "order": order.to_dict()}), 200


def _delivered(store: Store) -> list[Order]:
    return (
        Order.query.filter(Order.store_id == int(store.id), Order.status == OrderStatus.DELIVERED)
        .order_by(Order.updated_at.desc())
        .all()
    )


@store_bp.get("/history")
def history():
    store, err = _store_session()
    if err:
        return err
    rows = _delivered(store)
    total = round(sum(float(o.total_amount or 0.0) for o in rows), 2)
    return jsonify({
        "ok": True,
        "items": [o.to_dict(include_items=True) for o in rows],
        "count": len(rows),
        "total_sales": total,
    }), 200


@store_bp.get("/history.csv")
def history_csv():
    store, err = _store_session()
    if err:
        return err
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["order_id", "delivered_at", "items", "total_amount", "delivery_fee", "payment_status"])
    for o in _delivered(store):
        items = "; ".join(f"{i.quantity}x {i.product_name}" for i in o.items)
        writer.writerow([
            o.id,
            o.updated_at.isoformat() if o.updated_at else "",
            items or (o.custom_request_text or ""),
            f"{float(o.total_amount or 0.0):.2f}",
            f"{float(o.delivery_fee or 0.0):.2f}",
            o.payment_status,
        ])
    return Response(
        output.getvalue(),
        mimetype="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="store-{store.id}-history.csv"',
            "Cache-Control": "no-store",
        },
    )
