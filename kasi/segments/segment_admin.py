from __future__ import annotations

import math

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from kasi.extensions import db
from kasi.models import AgentTransaction, AgentWallet, Order, OrderTransition, Product, Store, User
from kasi.services import agent_service, fulfillment_service, report_service, store_service, wallet_service
from kasi.services.order_status_service import OrderStatus
from kasi.utils.auth import current_user, forbidden, is_admin, unauthorized
from kasi.utils.idempotency import get_idempotency_key

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/admin")

HISTORY_PAGE_SIZE = 20


def _admin():
    u = current_user()
    if not u:
        return None, unauthorized()
    if not is_admin(u):
        return None, forbidden("Admin required")
    return u, None


def _not_found(what: str):
    return jsonify({"ok": False, "error": "NOT_FOUND", "message": f"{what} not found"}), 404


@admin_bp.get("/dashboard")
def dashboard():
    _u, err = _admin()
    if err:
        return err
    return jsonify({"ok": True, **report_service.admin_dashboard()}), 200


@admin_bp.get("/orders/stats")
def order_stats():
    _u, err = _admin()
    if err:
        return err
    return jsonify({"ok": True, **report_service.order_stats()}), 200


# Orders


@admin_bp.get("/orders/active")
def active_orders():
    _u, err = _admin()
    if err:
        return err
    rows = (
        Order.query.filter(Order.status.in_(OrderStatus.ACTIVE))
        .order_by(Order.created_at.desc())
        .limit(50)
        .all()
    )
    return jsonify({"ok": True, "items": [o.to_dict() for o in rows]}), 200


@admin_bp.get("/orders/history")
def order_history():
    _u, err = _admin()
    if err:
        return err
    try:
        page = max(1, int(request.args.get("page") or 1))
    except ValueError:
        page = 1
    query = Order.query.filter(Order.status == OrderStatus.DELIVERED)
    total = query.count()
    rows = (
        query.order_by(Order.updated_at.desc())
        .offset((page - 1) * HISTORY_PAGE_SIZE)
        .limit(HISTORY_PAGE_SIZE)
        .all()
    )
    return jsonify({
        "ok": True,
        "items": [o.to_dict() for o in rows],
        "page": page,
        "page_size": HISTORY_PAGE_SIZE,
        "total": int(total),
        "has_more": page * HISTORY_PAGE_SIZE < total,
    }), 200


@admin_bp.get("/orders/<int:order_id>")
def order_detail(order_id: int):
    _u, err = _admin()
    if err:
        return err
    order = db.session.get(Order, order_id)
    if order is None:
        return _not_found("Order")
    customer = db.session.get(User, int(order.customer_id))
    agent = db.session.get(User, int(order.agent_id)) if order.agent_id is not None else None
    store = db.session.get(Store, int(order.store_id))
    transitions = OrderTransition.query.filter_by(order_id=int(order.id)).order_by(OrderTransition.id.asc()).all()
    return jsonify({
        "ok": True,
        "order": order.to_dict(include_items=True),
        "customer": customer.to_dict() if customer else None,
        "agent": agent.to_dict() if agent else None,
        "store": store.to_dict() if store else None,
        "transitions": [t.to_dict() for t in transitions],
        "requested_cash": fulfillment_service.requested_cash_amount(order),
    }), 200


@admin_bp.post("/orders/<int:order_id>/purchase-type")
def set_purchase_type(order_id: int):
    u, err = _admin()
    if err:
        return err
    order = db.session.get(Order, order_id)
    if order is None:
        return _not_found("Order")
    data = request.get_json(silent=True) or {}
    order = fulfillment_service.set_purchase_type(order, data.get("purchase_type"), u)
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@admin_bp.post("/orders/<int:order_id>/approve-cash")
def approve_cash(order_id: int):
    u, err = _admin()
    if err:
        return err
    order = db.session.get(Order, order_id)
    if order is None:
        return _not_found("Order")
    data = request.get_json(silent=True) or {}
    order = fulfillment_service.approve_cash(
        order, u, data.get("amount"), idempotency_key=get_idempotency_key()
    )
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@admin_bp.post("/orders/<int:order_id>/cancel")
def cancel_order(order_id: int):
    u, err = _admin()
    if err:
        return err
    order = db.session.get(Order, order_id)
    if order is None:
        return _not_found("Order")
    data = request.get_json(silent=True) or {}
    order = fulfillment_service.cancel_order(
        order, u, reason=(data.get("reason") or "").strip(), idempotency_key=get_idempotency_key()
    )
    return jsonify({"ok": True, "order": order.to_dict()}), 200


# Stores


@admin_bp.get("/stores")
def list_stores():
    _u, err = _admin()
    if err:
        return err
    counts = dict(
        db.session.query(Product.store_id, func.count(Product.id)).group_by(Product.store_id).all()
    )
    query = Store.query
    status = (request.args.get("status") or "").strip().lower()
    if status:
        query = query.filter(Store.status == status)
    items = []
    for store in query.order_by(Store.created_at.desc()).all():
        row = store.to_dict(include_private=True)
        row["product_count"] = int(counts.get(store.id, 0))
        items.append(row)
    return jsonify({"ok": True, "items": items}), 200


@admin_bp.post("/stores")
def create_store():
    u, err = _admin()
    if err:
        return err
    store = store_service.create_store(request.get_json(silent=True) or {}, admin_id=int(u.id))
    return jsonify({"ok": True, "store": store.to_dict(include_private=True)}), 201


@admin_bp.patch("/stores/<int:store_id>")
def update_store(store_id: int):
    u, err = _admin()
    if err:
        return err
    store = db.session.get(Store, store_id)
    if store is None:
        return _not_found("Store")
    store = store_service.update_profile(
        store, request.get_json(silent=True) or {}, actor_type="admin", actor_id=int(u.id)
    )
    return jsonify({"ok": True, "store": store.to_dict(include_private=True)}), 200


@admin_bp.post("/stores/<int:store_id>/status")
def set_store_status(store_id: int):
    u, err = _admin()
    if err:
        return err
    store = db.session.get(Store, store_id)
    if store is None:
        return _not_found("Store")
    data = request.get_json(silent=True) or {}
    store = store_service.set_status(store, data.get("status"), admin_id=int(u.id))
    return jsonify({"ok": True, "store": store.to_dict(include_private=True)}), 200


@admin_bp.post("/stores/<int:store_id>/access-code")
def regenerate_access_code(store_id: int):
    u, err = _admin()
    if err:
        return err
    store = db.session.get(Store, store_id)
    if store is None:
        return _not_found("Store")
    code = store_service.regenerate_access_code(store, admin_id=int(u.id))
    return jsonify({"ok": True, "access_code": code}), 200


@admin_bp.delete("/stores/<int:store_id>")
def delete_store(store_id: int):
    u, err = _admin()
    if err:
        return err
    store = db.session.get(Store, store_id)
    if store is None:
        return _not_found("Store")
    store_service.delete_store(store, admin_id=int(u.id))
    return jsonify({"ok": True}), 200


# Agents and wallets


def _agent_user(agent_id: int):
    agent = db.session.get(User, agent_id)
    if agent is None or (agent.role or "") != "agent":
        return None, _not_found("Agent")
    return agent, None


@admin_bp.get("/agents")
def list_agents():
    _u, err = _admin()
    if err:
        return err
    status = (request.args.get("status") or "").strip().lower() or None
    return jsonify({"ok": True, "items": agent_service.list_agents(status)}), 200


@admin_bp.post("/agents/<int:agent_id>/status")
def set_agent_status(agent_id: int):
    u, err = _admin()
    if err:
        return err
    agent, err = _agent_user(agent_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    profile = agent_service.set_agent_status(agent, data.get("agent_status"), admin_id=int(u.id))
    return jsonify({"ok": True, "user": agent.to_dict(), "profile": profile.to_dict()}), 200


@admin_bp.post("/agents/<int:agent_id>/receipt-issues")
def receipt_issues(agent_id: int):
    _u, err = _admin()
    if err:
        return err
    agent, err = _agent_user(agent_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    try:
        delta = int(data.get("delta", 1))
    except (TypeError, ValueError):
        return jsonify({"ok": False, "error": "VALIDATION_FAILED", "message": "delta must be an integer"}), 400
    profile = agent_service.adjust_receipt_issues(agent, delta)
    return jsonify({"ok": True, "profile": profile.to_dict()}), 200


def _number(data: dict, field: str):
    try:
        value = float(data.get(field))
    except (TypeError, ValueError):
        value = None
    if value is None or not math.isfinite(value):
        return None, (jsonify({"ok": False, "error": "VALIDATION_FAILED", "message": f"{field} must be a number"}), 400)
    return value, None


def _wallet_for(agent_id: int):
    wallet = AgentWallet.query.filter_by(agent_id=int(agent_id)).first()
    if wallet is None:
        return None, _not_found("Wallet")
    return wallet, None


@admin_bp.get("/agents/<int:agent_id>/wallet")
def agent_wallet(agent_id: int):
    _u, err = _admin()
    if err:
        return err
    wallet, err = _wallet_for(agent_id)
    if err:
        return err
    rows = (
        AgentTransaction.query.filter_by(wallet_id=int(wallet.id))
        .order_by(AgentTransaction.id.desc())
        .limit(200)
        .all()
    )
    return jsonify({"ok": True, "wallet": wallet.to_dict(), "transactions": [t.to_dict() for t in rows]}), 200


@admin_bp.post("/agents/<int:agent_id>/wallet/adjust")
def adjust_wallet(agent_id: int):
    u, err = _admin()
    if err:
        return err
    wallet, err = _wallet_for(agent_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    amount, err = _number(data, "amount")
    if err:
        return err
    txn = wallet_service.adjust_balance(
        wallet,
        amount,
        reason=(data.get("reason") or ""),
        admin_id=int(u.id),
        idempotency_key=get_idempotency_key(),
    )
    return jsonify({"ok": True, "wallet": wallet.to_dict(), "transaction": txn.to_dict()}), 200


@admin_bp.post("/agents/<int:agent_id>/wallet/reconcile")
def reconcile_wallet(agent_id: int):
    u, err = _admin()
    if err:
        return err
    wallet, err = _wallet_for(agent_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    counted, err = _number(data, "counted_amount")
    if err:
        return err
    txn = wallet_service.reconcile_to(wallet, counted, admin_id=int(u.id), note=data.get("note") or "")
    return jsonify({
        "ok": True,
        "wallet": wallet.to_dict(),
        "transaction": txn.to_dict() if txn else None,
    }), 200


@admin_bp.post("/agents/<int:agent_id>/wallet/limit")
def set_wallet_limit(agent_id: int):
    u, err = _admin()
    if err:
        return err
    wallet, err = _wallet_for(agent_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    limit, err = _number(data, "max_cash_limit")
    if err:
        return err
    wallet = wallet_service.set_limit(wallet, limit, admin_id=int(u.id))
    return jsonify({"ok": True, "wallet": wallet.to_dict()}), 200


@admin_bp.post("/agents/<int:agent_id>/wallet/status")
def set_wallet_status(agent_id: int):
    u, err = _admin()
    if err:
        return err
    wallet, err = _wallet_for(agent_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    wallet = wallet_service.set_status(wallet, data.get("status"), admin_id=int(u.id))
    return jsonify({"ok": True, "wallet": wallet.to_dict()}), 200
