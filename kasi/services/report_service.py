"""Read-side aggregates for the agent, store and admin dashboards."""
from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from kasi.extensions import db
from kasi.models import Order, Store, User
from kasi.services.order_status_service import OrderStatus


def _utc_offset() -> timedelta:
    return timedelta(hours=float(current_app.config.get("LOCAL_UTC_OFFSET_HOURS", 2)))


def local_day_start(now: datetime | None = None) -> datetime:
    """UTC instant of the most recent local midnight."""
    now = now or datetime.utcnow()
    local = now + _utc_offset()
    return local.replace(hour=0, minute=0, second=0, microsecond=0) - _utc_offset()


def local_week_start(now: datetime | None = None) -> datetime:
    """UTC instant of the most recent local Sunday midnight."""
    day_start = local_day_start(now)
    local_day = day_start + _utc_offset()
    # Python weekday(): Monday=0 .. Sunday=6
    days_since_sunday = (local_day.weekday() + 1) % 7
    return day_start - timedelta(days=days_since_sunday)


def _money(value) -> float:
    return round(float(value or 0.0), 2)


# Agent


def agent_earnings(agent_id: int, now: datetime | None = None) -> dict:
    base = Order.query.filter(Order.agent_id == int(agent_id), Order.status == OrderStatus.DELIVERED)
    today_start = local_day_start(now)
    week_start = local_week_start(now)

    def _sum(query):
        return _money(query.with_entities(func.coalesce(func.sum(Order.delivery_fee), 0.0)).scalar())

    return {
        "total": _sum(base),
        "today": _sum(base.filter(Order.updated_at >= today_start)),
        "this_week": _sum(base.filter(Order.updated_at >= week_start)),
        "deliveries": int(base.count()),
        "week_starts": week_start.isoformat(),
    }


def agent_summary(agent_id: int, *, is_online: bool) -> dict:
    active = Order.query.filter(
        Order.agent_id == int(agent_id), Order.status.in_(OrderStatus.ACTIVE)
    ).count()
    available = Order.query.filter(
        Order.agent_id.is_(None), Order.status.in_(OrderStatus.OPEN_FOR_AGENTS)
    ).count()
    return {
        "active_count": int(active),
        "available_count": int(available),
        "total_earnings": agent_earnings(agent_id)["total"],
        "is_online": bool(is_online),
    }


# Store


def store_dashboard(store_id: int) -> dict:
    base = Order.query.filter(Order.store_id == int(store_id))
    return {
        "new_orders": base.filter(Order.status.in_((OrderStatus.PENDING, OrderStatus.RECEIVED))).count(),
        "in_progress": base.filter(Order.status == OrderStatus.PURCHASED).count(),
        "completed_today": base.filter(
            Order.status == OrderStatus.DELIVERED, Order.updated_at >= local_day_start()
        ).count(),
    }


# Admin


def admin_dashboard() -> dict:
    today_revenue = (
        db.session.query(func.coalesce(func.sum(Order.total_amount + Order.delivery_fee), 0.0))
        .filter(Order.payment_status == "paid", Order.created_at >= local_day_start())
        .scalar()
    )
    return {
        "store_count": Store.query.count(),
        "active_orders": Order.query.filter(Order.status.in_(OrderStatus.ACTIVE)).count(),
        "agent_count": User.query.filter_by(role="agent").count(),
        "today_revenue": _money(today_revenue),
    }


def _bucket(since: datetime | None) -> dict:
    query = Order.query
    if since is not None:
        query = query.filter(Order.created_at >= since)
    orders = query.all()

    counts = {status: 0 for status in OrderStatus.ALLOWED if status != OrderStatus.RECEIVED}
    revenue = 0.0
    delivery_minutes = []
    for order in orders:
        status = order.status or OrderStatus.PENDING
        # Dashboards show received orders as assigned.
        if status == OrderStatus.RECEIVED:
            status = OrderStatus.ASSIGNED
        counts[status] = counts.get(status, 0) + 1
        if order.status == OrderStatus.DELIVERED:
            revenue += float(order.total_amount or 0.0) + float(order.delivery_fee or 0.0)
            if order.created_at and order.updated_at:
                delivery_minutes.append((order.updated_at - order.created_at).total_seconds() / 60.0)

    avg = round(sum(delivery_minutes) / len(delivery_minutes), 1) if delivery_minutes else None
    return {
        "total": len(orders),
        "by_status": counts,
        "delivered_revenue": _money(revenue),
        "avg_delivery_minutes": avg,
    }


def order_stats(now: datetime | None = None) -> dict:
    today = local_day_start(now)
    return {
        "today": _bucket(today),
        "last_7_days": _bucket(today - timedelta(days=6)),
        "all_time": _bucket(None),
    }
