"""Order fulfillment operations for agents, stores, customers and admins.

Every operation validates the actor, moves the order along the status
table, posts wallet entries where money changes hands and commits once.
Any failure rolls the whole unit back; uploaded files are removed again.
"""
from __future__ import annotations

import json
import logging
import math
import uuid
from datetime import datetime

from flask import current_app

from kasi.extensions import db
from kasi.integrations.storage.factory import get_storage
from kasi.models import AgentProfile, Order, OrderTransition, Store, User
from kasi.services import wallet_service
from kasi.services.errors import (
    AgentBusy,
    AgentOffline,
    Forbidden,
    InvalidTransition,
    JobAlreadyTaken,
    ValidationFailed,
)
from kasi.services.order_status_service import (
    OrderStatus,
    find_transition,
    record_transition,
    transition_order,
)
from kasi.utils.events import log_event
from kasi.utils.images import InvalidImageError, inspect_image, object_name

logger = logging.getLogger(__name__)

APO_PAYMENT_METHODS = ("company_cash", "company_card")


def _key(idempotency_key: str | None) -> str:
    return (idempotency_key or "").strip()[:160] or uuid.uuid4().hex


def _actor(kind: str, actor_id) -> dict:
    return {"type": kind, "id": actor_id}


def _require_agent_on_order(order: Order, agent: User) -> None:
    if order.agent_id is None or int(order.agent_id) != int(agent.id):
        raise Forbidden("This order is not assigned to you")


def _profile_for(agent: User) -> AgentProfile:
    profile = AgentProfile.query.filter_by(agent_id=int(agent.id)).first()
    if profile is None:
        profile = AgentProfile(agent_id=int(agent.id))
        db.session.add(profile)
        db.session.flush()
    return profile


def _money(value, field: str) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be a number")
    if not math.isfinite(amount):
        raise ValidationFailed(f"{field} must be a finite number")
    amount = round(amount, 2)
    if amount <= 0:
        raise ValidationFailed(f"{field} must be greater than zero")
    return amount


def _upload_image(bucket: str, prefix: str, data: bytes) -> str:
    try:
        ext, content_type = inspect_image(data)
    except InvalidImageError as exc:
        raise ValidationFailed(str(exc))
    return get_storage().upload(bucket, object_name(prefix, ext), data, content_type)


def _discard_upload(bucket: str, url: str | None) -> None:
    if not url:
        return
    storage = get_storage()
    try:
        storage.delete(bucket, storage.key_from_url(url))
    except OSError as exc:
        logger.warning("upload_cleanup_failed bucket=%s url=%s err=%s", bucket, url, exc)


def _commit_or_discard(bucket: str, url: str | None) -> None:
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        _discard_upload(bucket, url)
        raise


def active_job_for(agent_id: int) -> Order | None:
    return (
        Order.query.filter(
            Order.agent_id == int(agent_id),
            Order.status.in_(OrderStatus.ACTIVE),
        )
        .order_by(Order.created_at.desc())
        .first()
    )


def accept_job(order: Order, agent: User, *, idempotency_key: str | None = None) -> Order:
    key = _key(idempotency_key)
    if find_transition(order, key):
        return order

    if (agent.status or "active") != "active":
        raise Forbidden("Your account is not active")
    profile = _profile_for(agent)
    if (profile.agent_status or "active") != "active":
        raise Forbidden(f"Agent is {profile.agent_status}")
    if not profile.is_online:
        raise AgentOffline("Go online before accepting jobs")
    current = active_job_for(agent.id)
    if current is not None and int(current.id) != int(order.id):
        raise AgentBusy("Finish your active job first", active_order_id=int(current.id))

    from_status = order.status
    now = datetime.utcnow()
    updated = (
        Order.query.filter(
            Order.id == int(order.id),
            Order.agent_id.is_(None),
            Order.status.in_(OrderStatus.OPEN_FOR_AGENTS),
        ).update(
            {"agent_id": int(agent.id), "status": OrderStatus.ASSIGNED, "updated_at": now},
            synchronize_session=False,
        )
    )
    if updated == 0:
        db.session.rollback()
        raise JobAlreadyTaken("This job was already taken by another agent")

    db.session.refresh(order)
    record_transition(
        order,
        from_status,
        OrderStatus.ASSIGNED,
        idempotency_key=key,
        actor=_actor("agent", agent.id),
        reason="job accepted",
    )
    profile.last_active_at = now
    db.session.commit()
    logger.info("job_accepted order=%s agent=%s", order.id, agent.id)
    return order


def request_cash(order: Order, agent: User, amount, *, idempotency_key: str | None = None) -> Order:
    key = _key(idempotency_key)
    if find_transition(order, key):
        return order

    _require_agent_on_order(order, agent)
    if not order.is_cpo:
        raise ValidationFailed("Cash can only be requested for CPO orders")
    if order.status != OrderStatus.ASSIGNED:
        raise InvalidTransition(
            f"Cash cannot be requested while the order is {order.status}",
            current_status=order.status,
            requested_status=OrderStatus.CASH_REQUESTED,
        )
    amount = _money(amount, "amount")
    wallet = wallet_service.ensure_wallet(agent.id)
    wallet_service.check_cash_release(wallet, amount)

    if current_app.config.get("CASH_APPROVAL_REQUIRED"):
        transition_order(
            order,
            OrderStatus.CASH_REQUESTED,
            idempotency_key=key,
            actor=_actor("agent", agent.id),
            reason="cash requested",
            metadata={"amount": amount},
        )
    else:
        _release_cash(order, wallet, amount, key=key, actor=_actor("agent", agent.id))
    db.session.commit()
    return order


def _release_cash(order: Order, wallet, amount: float, *, key: str, actor: dict) -> None:
    wallet_service.post_transaction(
        wallet,
        wallet_service.CASH_RELEASED,
        amount,
        order=order,
        description=f"Cash released for order #{order.id}",
        idempotency_key=f"cash_release:{order.id}",
        created_by=actor["id"] if actor["type"] == "admin" else None,
    )
    order.cash_released = amount
    transition_order(
        order,
        OrderStatus.CASH_APPROVED,
        idempotency_key=key,
        actor=actor,
        reason="cash released",
        metadata={"amount": amount},
    )


def requested_cash_amount(order: Order) -> float | None:
    row = (
        OrderTransition.query.filter_by(order_id=int(order.id), to_status=OrderStatus.CASH_REQUESTED)
        .order_by(OrderTransition.id.desc())
        .first()
    )
    if row is None:
        return None
    try:
        return float(json.loads(row.metadata_json or "{}").get("amount"))
    except (TypeError, ValueError):
        return None


def approve_cash(order: Order, admin: User, amount=None, *, idempotency_key: str | None = None) -> Order:
    key = _key(idempotency_key)
    if find_transition(order, key):
        return order

    if order.status != OrderStatus.CASH_REQUESTED:
        raise InvalidTransition(
            f"Order is {order.status}, not awaiting cash approval",
            current_status=order.status,
            requested_status=OrderStatus.CASH_APPROVED,
        )
    if amount is None:
        amount = requested_cash_amount(order)
    amount = _money(amount, "amount")
    wallet = wallet_service.ensure_wallet(order.agent_id)
    wallet_service.check_cash_release(wallet, amount)
    _release_cash(order, wallet, amount, key=key, actor=_actor("admin", admin.id))
    db.session.commit()
    return order


def mark_purchased(
    order: Order,
    agent: User,
    *,
    actual_amount,
    receipt: bytes,
    payment_method: str | None = None,
    idempotency_key: str | None = None,
) -> Order:
    key = _key(idempotency_key)
    if find_transition(order, key):
        return order

    _require_agent_on_order(order, agent)
    amount = _money(actual_amount, "actual_amount")
    if not receipt:
        raise ValidationFailed("A receipt photo is required")

    if order.is_cpo:
        if order.status != OrderStatus.CASH_APPROVED:
            raise InvalidTransition(
                "Cash must be approved before purchasing a CPO order",
                current_status=order.status,
                requested_status=OrderStatus.PURCHASED,
            )
        method = "company_cash"
    else:
        if order.status not in (OrderStatus.ASSIGNED, OrderStatus.RECEIVED):
            raise InvalidTransition(
                f"Order cannot be purchased while {order.status}",
                current_status=order.status,
                requested_status=OrderStatus.PURCHASED,
            )
        method = (payment_method or "").strip().lower()
        if method not in APO_PAYMENT_METHODS:
            raise ValidationFailed("payment_method must be company_cash or company_card")

    receipt_url = _upload_image("receipts", f"order-{order.id}", receipt)
    try:
        order.actual_amount = amount
        order.proof_of_purchase_url = receipt_url
        order.payment_method = method
        if method == "company_cash":
            wallet = wallet_service.ensure_wallet(agent.id)
            wallet_service.post_transaction(
                wallet,
                wallet_service.PURCHASE_MADE,
                -amount,
                order=order,
                description=f"Purchase for order #{order.id}",
                idempotency_key=f"purchase:{order.id}",
            )
        transition_order(
            order,
            OrderStatus.PURCHASED,
            idempotency_key=key,
            actor=_actor("agent", agent.id),
            reason="items purchased",
            metadata={"actual_amount": amount, "payment_method": method},
        )
    except Exception:
        db.session.rollback()
        _discard_upload("receipts", receipt_url)
        raise
    _commit_or_discard("receipts", receipt_url)
    return order


def mark_on_the_way(
    order: Order,
    *,
    agent: User | None = None,
    store: Store | None = None,
    idempotency_key: str | None = None,
) -> Order:
    key = _key(idempotency_key)
    if find_transition(order, key):
        return order

    if agent is not None:
        _require_agent_on_order(order, agent)
        actor = _actor("agent", agent.id)
    elif store is not None:
        if int(order.store_id) != int(store.id):
            raise Forbidden("This order belongs to another store")
        if order.agent_id is not None:
            raise Forbidden("An agent is handling this delivery")
        actor = _actor("store", store.id)
    else:
        raise Forbidden("Only the assigned agent or the store can dispatch an order")

    transition_order(order, OrderStatus.ON_THE_WAY, idempotency_key=key, actor=actor, reason="out for delivery")
    db.session.commit()
    return order


def mark_delivered(
    order: Order,
    agent: User,
    *,
    photo: bytes | None = None,
    idempotency_key: str | None = None,
) -> Order:
    key = _key(idempotency_key)
    if find_transition(order, key):
        return order

    _require_agent_on_order(order, agent)
    if order.status != OrderStatus.ON_THE_WAY:
        raise InvalidTransition(
            f"Order cannot be delivered while {order.status}",
            current_status=order.status,
            requested_status=OrderStatus.DELIVERED,
        )

    photo_url = _upload_image("delivery-photos", f"order-{order.id}", photo) if photo else None
    try:
        if photo_url:
            order.delivery_photo_url = photo_url
        order.payment_status = "paid"
        profile = _profile_for(agent)
        profile.orders_completed = int(profile.orders_completed or 0) + 1
        profile.last_active_at = datetime.utcnow()
        transition_order(
            order,
            OrderStatus.DELIVERED,
            idempotency_key=key,
            actor=_actor("agent", agent.id),
            reason="delivered",
        )
    except Exception:
        db.session.rollback()
        _discard_upload("delivery-photos", photo_url)
        raise
    _commit_or_discard("delivery-photos", photo_url)
    return order


def cancel_order(order: Order, user: User, *, reason: str = "", idempotency_key: str | None = None) -> Order:
    key = _key(idempotency_key)
    if find_transition(order, key):
        return order

    role = (user.role or "").strip().lower()
    if role == "admin":
        actor = _actor("admin", user.id)
        if order.status in OrderStatus.TERMINAL:
            raise InvalidTransition(
                f"Order is already {order.status}",
                current_status=order.status,
                requested_status=OrderStatus.CANCELLED,
            )
    elif role == "customer" and int(order.customer_id) == int(user.id):
        actor = _actor("customer", user.id)
        if order.status not in (OrderStatus.PENDING, OrderStatus.RECEIVED):
            raise InvalidTransition(
                "Orders can only be cancelled before an agent picks them up",
                current_status=order.status,
                requested_status=OrderStatus.CANCELLED,
            )
    else:
        raise Forbidden("You cannot cancel this order")

    metadata = {}
    if order.agent_id is not None:
        profile = AgentProfile.query.filter_by(agent_id=int(order.agent_id)).first()
        if profile is not None:
            profile.orders_cancelled = int(profile.orders_cancelled or 0) + 1
        if order.cash_released:
            # Released cash stays on the wallet until an admin reconciles it.
            metadata["cash_held_by_agent"] = round(float(order.cash_released), 2)

    transition_order(
        order,
        OrderStatus.CANCELLED,
        idempotency_key=key,
        actor=actor,
        reason=reason or "cancelled",
        metadata=metadata,
    )
    db.session.commit()
    logger.info("order_cancelled order=%s by=%s:%s", order.id, actor["type"], actor["id"])
    return order


_STORE_NEXT = {
    OrderStatus.PENDING: OrderStatus.RECEIVED,
    OrderStatus.RECEIVED: OrderStatus.PURCHASED,
    OrderStatus.PURCHASED: OrderStatus.ON_THE_WAY,
    # Only for orders the store delivers itself.
    OrderStatus.ON_THE_WAY: OrderStatus.DELIVERED,
}


def store_advance(order: Order, store: Store, *, idempotency_key: str | None = None) -> Order:
    key = _key(idempotency_key)
    if find_transition(order, key):
        return order

    if int(order.store_id) != int(store.id):
        raise Forbidden("This order belongs to another store")
    target = _STORE_NEXT.get(order.status)
    if target is None:
        raise InvalidTransition(
            f"Store cannot advance an order that is {order.status}",
            current_status=order.status,
        )
    if target in (OrderStatus.ON_THE_WAY, OrderStatus.DELIVERED) and order.agent_id is not None:
        raise InvalidTransition(
            "The assigned agent dispatches and delivers this order",
            current_status=order.status,
            requested_status=target,
        )
    if target == OrderStatus.DELIVERED:
        order.payment_status = "paid"
    transition_order(
        order,
        target,
        idempotency_key=key,
        actor=_actor("store", store.id),
        reason="store update",
    )
    db.session.commit()
    return order


def set_purchase_type(order: Order, purchase_type: str | None, admin: User) -> Order:
    value = (purchase_type or "").strip().upper() or None
    if value is not None and value not in Order.PURCHASE_TYPES:
        raise ValidationFailed("purchase_type must be CPO, APO or empty")
    if order.status not in (OrderStatus.PENDING, OrderStatus.RECEIVED, OrderStatus.ASSIGNED):
        raise InvalidTransition(
            "Purchase type can only change before cash or purchase",
            current_status=order.status,
        )
    order.purchase_type = value
    order.updated_at = datetime.utcnow()
    log_event(
        "order.purchase_type_set",
        subject_type="orders",
        subject_id=int(order.id),
        actor_type="admin",
        actor_id=admin.id,
        order=order,
        metadata={"purchase_type": value},
    )
    db.session.commit()
    return order
