from __future__ import annotations

import logging
import math
from collections import OrderedDict

from kasi.extensions import db
from kasi.models import Order, OrderItem, Product, Store, User
from kasi.services.delivery_pricing import delivery_fee, flat_fee
from kasi.services.errors import NotFound, ValidationFailed
from kasi.utils.events import log_event

logger = logging.getLogger(__name__)

MAX_QUANTITY = 99


def _coerce_float(value):
    if value in (None, ""):
        return None
    try:
        coord = float(value)
    except (TypeError, ValueError):
        raise ValidationFailed("GPS coordinates must be numbers")
    if not math.isfinite(coord):
        raise ValidationFailed("GPS coordinates must be finite numbers")
    return coord


def _delivery_fields(payload: dict) -> dict:
    address = (payload.get("delivery_address") or "").strip()
    if not address:
        raise ValidationFailed("delivery_address is required")
    return {
        "delivery_address": address[:255],
        "delivery_township": (payload.get("delivery_township") or "").strip()[:80],
        "delivery_gps_latitude": _coerce_float(payload.get("delivery_gps_latitude")),
        "delivery_gps_longitude": _coerce_float(payload.get("delivery_gps_longitude")),
    }


def _quantity(value) -> int:
    # A missing quantity means one; anything else must be a whole number.
    if value is None or value == "":
        return 1
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError("quantity must be a whole number")
    return int(value)


def _parse_items(raw_items) -> list[tuple[int, int]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationFailed("Cart is empty")
    merged: "OrderedDict[int, int]" = OrderedDict()
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationFailed("Each item needs product_id and quantity")
        try:
            product_id = int(raw.get("product_id"))
            quantity = _quantity(raw.get("quantity"))
        except (TypeError, ValueError, OverflowError):
            raise ValidationFailed("Each item needs a numeric product_id and a whole-number quantity")
        if quantity < 1 or quantity > MAX_QUANTITY:
            raise ValidationFailed(f"Quantity must be between 1 and {MAX_QUANTITY}")
        merged[product_id] = merged.get(product_id, 0) + quantity
    return list(merged.items())


def checkout(customer: User, payload: dict) -> dict:
    """Turn a client-side cart into one pending order per store.

    Prices come from the product rows; anything the client sends about
    prices or totals is ignored.
    """
    lines = _parse_items(payload.get("items"))
    delivery = _delivery_fields(payload)
    notes = (payload.get("notes") or "").strip() or None

    products = {p.id: p for p in Product.query.filter(Product.id.in_([pid for pid, _ in lines])).all()}
    by_store: "OrderedDict[int, list[tuple[Product, int]]]" = OrderedDict()
    for product_id, quantity in lines:
        product = products.get(product_id)
        if product is None:
            raise NotFound(f"Product {product_id} not found", product_id=product_id)
        if not product.available:
            raise ValidationFailed(f"{product.name} is not available", product_id=product_id)
        by_store.setdefault(int(product.store_id), []).append((product, quantity))

    stores = {s.id: s for s in Store.query.filter(Store.id.in_(list(by_store.keys()))).all()}
    orders = []
    for store_id, store_lines in by_store.items():
        store = stores.get(store_id)
        if store is None or store.status != "active":
            raise ValidationFailed("One of the stores in your cart is not accepting orders", store_id=store_id)

        fee, distance_km = delivery_fee(
            store.gps_latitude,
            store.gps_longitude,
            delivery["delivery_gps_latitude"],
            delivery["delivery_gps_longitude"],
        )
        order = Order(
            customer_id=int(customer.id),
            store_id=store_id,
            order_type="product_order",
            status="pending",
            payment_status="pending",
            payment_method="yoco",
            delivery_fee=fee,
            notes=notes,
            **delivery,
        )
        total = 0.0
        for product, quantity in store_lines:
            unit_price = round(float(product.price or 0.0), 2)
            subtotal = round(unit_price * quantity, 2)
            total += subtotal
            order.items.append(
                OrderItem(
                    product_id=int(product.id),
                    product_name=product.name,
                    quantity=quantity,
                    unit_price=unit_price,
                    subtotal=subtotal,
                )
            )
        order.total_amount = round(total, 2)
        db.session.add(order)
        db.session.flush()
        log_event(
            "order.created",
            subject_type="orders",
            subject_id=int(order.id),
            actor_type="customer",
            actor_id=int(customer.id),
            order=order,
            metadata={"total_amount": order.total_amount, "delivery_fee": fee, "distance_km": distance_km},
        )
        orders.append(order)

    db.session.commit()
    grand_total = round(sum(o.grand_total for o in orders), 2)
    logger.info("checkout_ok customer=%s orders=%s total=%.2f", customer.id, [o.id for o in orders], grand_total)
    return {
        "order_ids": [int(o.id) for o in orders],
        "orders": [o.to_dict(include_items=True) for o in orders],
        "grand_total": grand_total,
    }


def create_custom_request(customer: User, payload: dict) -> Order:
    try:
        store_id = int(payload.get("store_id"))
    except (TypeError, ValueError):
        raise ValidationFailed("store_id is required")
    text = (payload.get("custom_request_text") or payload.get("request_text") or "").strip()
    if not text:
        raise ValidationFailed("Describe what you need in custom_request_text")
    store = db.session.get(Store, store_id)
    if store is None or store.status != "active":
        raise NotFound("Store not found")

    estimated = payload.get("estimated_amount")
    if estimated not in (None, ""):
        try:
            estimated = round(float(estimated), 2)
        except (TypeError, ValueError):
            raise ValidationFailed("estimated_amount must be a number")
    else:
        estimated = None

    order = Order(
        customer_id=int(customer.id),
        store_id=store_id,
        order_type="custom_request",
        custom_request_text=text[:4000],
        estimated_amount=estimated,
        total_amount=0.0,
        delivery_fee=flat_fee(),
        status="pending",
        payment_status="pending",
        notes=(payload.get("notes") or "").strip() or None,
        **_delivery_fields(payload),
    )
    db.session.add(order)
    db.session.flush()
    log_event(
        "order.created",
        subject_type="orders",
        subject_id=int(order.id),
        actor_type="customer",
        actor_id=int(customer.id),
        order=order,
        metadata={"order_type": "custom_request"},
    )
    db.session.commit()
    return order
