from __future__ import annotations

import math
import secrets
import string
from datetime import datetime

from kasi.extensions import db
from kasi.models import Category, Order, OrderItem, Product, Store
from kasi.services.errors import ValidationFailed
from kasi.utils.events import log_event

ACCESS_CODE_ALPHABET = string.ascii_uppercase + string.digits
ACCESS_CODE_LENGTH = 6

PROFILE_FIELDS = (
    "name",
    "category",
    "phone_number",
    "description",
    "street_address",
    "township",
    "town",
    "gps_latitude",
    "gps_longitude",
    "open_time",
    "close_time",
    "operating_days",
    "logo_url",
    "custom_orders_only",
)
BANKING_FIELDS = ("bank_name", "account_holder_name", "account_number", "account_type", "branch_code")


def generate_access_code() -> str:
    for _ in range(20):
        code = "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(ACCESS_CODE_LENGTH))
        if not Store.query.filter_by(access_code=code).first():
            return code
    raise RuntimeError("ACCESS_CODE_EXHAUSTED")


def find_by_access_code(code: str) -> Store | None:
    normalized = (code or "").strip().upper()
    if not normalized:
        return None
    return Store.query.filter_by(access_code=normalized).first()


def _apply_fields(store: Store, payload: dict, fields) -> None:
    for field in fields:
        if field not in payload:
            continue
        value = payload.get(field)
        if field in ("gps_latitude", "gps_longitude"):
            if value in (None, ""):
                value = None
            else:
                try:
                    value = float(value)
                except (TypeError, ValueError):
                    raise ValidationFailed(f"{field} must be a number")
                if not math.isfinite(value):
                    raise ValidationFailed(f"{field} must be a finite number")
        elif field == "custom_orders_only":
            value = bool(value)
        elif isinstance(value, str):
            value = value.strip()
        setattr(store, field, value)

    if store.category not in Store.CATEGORIES:
        raise ValidationFailed(f"category must be one of {', '.join(Store.CATEGORIES)}")
    if store.town not in Store.TOWNS:
        raise ValidationFailed(f"town must be one of {', '.join(Store.TOWNS)}")
    if not (store.name or "").strip():
        raise ValidationFailed("name is required")


def create_store(payload: dict, *, admin_id: int) -> Store:
    store = Store(category="other", town="modimolle", status="active")
    _apply_fields(store, payload, PROFILE_FIELDS)
    status = (payload.get("status") or "active").strip().lower()
    if status not in Store.STATUSES:
        raise ValidationFailed(f"status must be one of {', '.join(Store.STATUSES)}")
    store.status = status
    store.access_code = generate_access_code()
    db.session.add(store)
    db.session.flush()
    log_event("store.created", subject_type="stores", subject_id=int(store.id), actor_type="admin", actor_id=admin_id)
    db.session.commit()
    return store


def update_profile(store: Store, payload: dict, *, actor_type: str, actor_id: int | None) -> Store:
    _apply_fields(store, payload, PROFILE_FIELDS)
    if any(field in payload for field in BANKING_FIELDS):
        _apply_fields(store, payload, BANKING_FIELDS)
        if store.account_type and store.account_type not in Store.ACCOUNT_TYPES:
            raise ValidationFailed(f"account_type must be one of {', '.join(Store.ACCOUNT_TYPES)}")
        store.banking_details_updated_at = datetime.utcnow()
        # Changed details need verifying again.
        store.banking_details_verified = False
    if actor_type == "admin" and "banking_details_verified" in payload:
        store.banking_details_verified = bool(payload.get("banking_details_verified"))
    log_event("store.updated", subject_type="stores", subject_id=int(store.id), actor_type=actor_type, actor_id=actor_id)
    db.session.commit()
    return store


def set_status(store: Store, status: str, *, admin_id: int) -> Store:
    status = (status or "").strip().lower()
    if status not in Store.STATUSES:
        raise ValidationFailed(f"status must be one of {', '.join(Store.STATUSES)}")
    store.status = status
    log_event(
        "store.status_changed",
        subject_type="stores",
        subject_id=int(store.id),
        actor_type="admin",
        actor_id=admin_id,
        metadata={"status": status},
    )
    db.session.commit()
    return store


def regenerate_access_code(store: Store, *, admin_id: int) -> str:
    store.access_code = generate_access_code()
    log_event("store.access_code_rotated", subject_type="stores", subject_id=int(store.id), actor_type="admin", actor_id=admin_id)
    db.session.commit()
    return store.access_code


def delete_store(store: Store, *, admin_id: int) -> None:
    if Order.query.filter_by(store_id=int(store.id)).first() is not None:
        raise ValidationFailed("Stores with orders cannot be deleted; set them inactive instead")
    Product.query.filter_by(store_id=int(store.id)).delete(synchronize_session=False)
    Category.query.filter_by(store_id=int(store.id)).delete(synchronize_session=False)
    log_event("store.deleted", subject_type="stores", subject_id=int(store.id), actor_type="admin", actor_id=admin_id)
    db.session.delete(store)
    db.session.commit()


# Categories


def list_categories(store_id: int) -> list[Category]:
    return (
        Category.query.filter_by(store_id=int(store_id))
        .order_by(Category.sort_order.asc(), Category.name.asc())
        .all()
    )


def create_category(store: Store, payload: dict) -> Category:
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValidationFailed("Category name is required")
    try:
        sort_order = int(payload.get("sort_order") or 0)
    except (TypeError, ValueError):
        raise ValidationFailed("sort_order must be an integer")
    row = Category(store_id=int(store.id), name=name[:120], sort_order=sort_order)
    db.session.add(row)
    db.session.commit()
    return row


def update_category(category: Category, payload: dict) -> Category:
    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            raise ValidationFailed("Category name is required")
        category.name = name[:120]
        Product.query.filter_by(category_id=int(category.id)).update(
            {"category": category.name}, synchronize_session=False
        )
    if "sort_order" in payload:
        try:
            category.sort_order = int(payload.get("sort_order") or 0)
        except (TypeError, ValueError):
            raise ValidationFailed("sort_order must be an integer")
    db.session.commit()
    return category


def delete_category(category: Category) -> int:
    """Delete a category; its products stay on the menu uncategorised."""
    unlinked = Product.query.filter_by(category_id=int(category.id)).update(
        {"category_id": None, "category": ""}, synchronize_session=False
    )
    db.session.delete(category)
    db.session.commit()
    return int(unlinked or 0)


# Products


def _price(value) -> float:
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValidationFailed("price must be a number")
    if not math.isfinite(price):
        raise ValidationFailed("price must be a finite number")
    price = round(price, 2)
    if price <= 0:
        raise ValidationFailed("price must be greater than zero")
    return price


def _resolve_category(store: Store, payload: dict, product: Product) -> None:
    category_id = payload.get("category_id")
    if category_id not in (None, ""):
        try:
            category_id = int(category_id)
        except (TypeError, ValueError):
            raise ValidationFailed("category_id must be an integer")
        category = Category.query.filter_by(id=category_id, store_id=int(store.id)).first()
        if category is None:
            raise ValidationFailed("Unknown category for this store")
        product.category_id = int(category.id)
        product.category = category.name
    elif "category" in payload:
        name = (payload.get("category") or "").strip()
        category = Category.query.filter_by(store_id=int(store.id), name=name).first() if name else None
        product.category = name
        product.category_id = int(category.id) if category else None


def create_product(store: Store, payload: dict, *, actor_type: str, actor_id: int | None) -> Product:
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValidationFailed("Product name is required")
    if not (payload.get("category") or payload.get("category_id")):
        raise ValidationFailed("Product category is required")
    product = Product(
        store_id=int(store.id),
        name=name[:160],
        description=(payload.get("description") or "").strip() or None,
        price=_price(payload.get("price")),
        image_url=(payload.get("image_url") or "").strip() or None,
        available=bool(payload.get("available", True)),
    )
    _resolve_category(store, payload, product)
    db.session.add(product)
    db.session.flush()
    log_event("product.created", subject_type="products", subject_id=int(product.id), actor_type=actor_type, actor_id=actor_id)
    db.session.commit()
    return product


def update_product(store: Store, product: Product, payload: dict, *, actor_type: str, actor_id: int | None) -> Product:
    if "name" in payload:
        name = (payload.get("name") or "").strip()
        if not name:
            raise ValidationFailed("Product name is required")
        product.name = name[:160]
    if "description" in payload:
        product.description = (payload.get("description") or "").strip() or None
    if "price" in payload:
        product.price = _price(payload.get("price"))
    if "image_url" in payload:
        product.image_url = (payload.get("image_url") or "").strip() or None
    if "available" in payload:
        product.available = bool(payload.get("available"))
    _resolve_category(store, payload, product)
    log_event("product.updated", subject_type="products", subject_id=int(product.id), actor_type=actor_type, actor_id=actor_id)
    db.session.commit()
    return product


def delete_product(product: Product, *, actor_type: str, actor_id: int | None) -> None:
    # Past order lines keep their name and price snapshot.
    OrderItem.query.filter_by(product_id=int(product.id)).update({"product_id": None}, synchronize_session=False)
    log_event("product.deleted", subject_type="products", subject_id=int(product.id), actor_type=actor_type, actor_id=actor_id)
    db.session.delete(product)
    db.session.commit()
