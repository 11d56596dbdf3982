from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from kasi.extensions import db
from kasi.integrations.storage.factory import get_storage
from kasi.models import Category, Product, Store
from kasi.services import store_service
from kasi.utils.auth import current_store, current_user, forbidden, is_admin, unauthorized
from kasi.utils.images import InvalidImageError, inspect_image, object_name, read_upload

stores_bp = Blueprint("stores_bp", __name__, url_prefix="/api/stores")


def _not_found(what: str = "Store"):
    return jsonify({"ok": False, "error": "NOT_FOUND", "message": f"{what} not found"}), 404


def _manager_for(store_id: int):
    """Resolve who may edit ``store_id``: its own store session or an admin.

    Returns ``(store, actor_type, actor_id, error_response)``.
    """
    store_session = current_store()
    if store_session is not None:
        if int(store_session.id) != int(store_id):
            return None, None, None, forbidden("You can only manage your own store")
        return store_session, "store", int(store_session.id), None
    u = current_user()
    if not u:
        return None, None, None, unauthorized()
    if not is_admin(u):
        return None, None, None, forbidden("Admin or store session required")
    store = db.session.get(Store, int(store_id))
    if store is None:
        return None, None, None, _not_found()
    return store, "admin", int(u.id), None


@stores_bp.get("")
def list_stores():
    query = Store.query.filter(Store.status == "active")
    category = (request.args.get("category") or "").strip().lower()
    town = (request.args.get("town") or "").strip().lower()
    q = (request.args.get("q") or "").strip()
    if category:
        query = query.filter(Store.category == category)
    if town:
        query = query.filter(Store.town == town)
    if q:
        query = query.filter(func.lower(Store.name).contains(q.lower()))
    rows = query.order_by(Store.name.asc()).all()
    return jsonify({"ok": True, "items": [s.to_dict() for s in rows]}), 200


@stores_bp.get("/<int:store_id>")
def store_detail(store_id: int):
    store = db.session.get(Store, store_id)
    if store is None or store.status != "active":
        return _not_found()
    products = (
        Product.query.filter_by(store_id=store_id, available=True)
        .order_by(Product.category.asc(), Product.name.asc())
        .all()
    )
    return jsonify({
        "ok": True,
        "store": store.to_dict(),
        "categories": [c.to_dict() for c in store_service.list_categories(store_id)],
        "products": [p.to_dict() for p in products],
    }), 200


# Categories


@stores_bp.get("/<int:store_id>/categories")
def list_categories(store_id: int):
    return jsonify({"ok": True, "items": [c.to_dict() for c in store_service.list_categories(store_id)]}), 200


@stores_bp.post("/<int:store_id>/categories")
def create_category(store_id: int):
    store, _actor_type, _actor_id, err = _manager_for(store_id)
    if err:
        return err
    row = store_service.create_category(store, request.get_json(silent=True) or {})
    return jsonify({"ok": True, "category": row.to_dict()}), 201


@stores_bp.patch("/<int:store_id>/categories/<int:category_id>")
def update_category(store_id: int, category_id: int):
    store, _actor_type, _actor_id, err = _manager_for(store_id)
    if err:
        return err
    row = Category.query.filter_by(id=category_id, store_id=int(store.id)).first()
    if row is None:
        return _not_found("Category")
    row = store_service.update_category(row, request.get_json(silent=True) or {})
    return jsonify({"ok": True, "category": row.to_dict()}), 200


@stores_bp.delete("/<int:store_id>/categories/<int:category_id>")
def delete_category(store_id: int, category_id: int):
    store, _actor_type, _actor_id, err = _manager_for(store_id)
    if err:
        return err
    row = Category.query.filter_by(id=category_id, store_id=int(store.id)).first()
    if row is None:
        return _not_found("Category")
    unlinked = store_service.delete_category(row)
    return jsonify({"ok": True, "unlinked_products": unlinked}), 200


# Products


@stores_bp.get("/<int:store_id>/products")
def list_products(store_id: int):
    query = Product.query.filter_by(store_id=store_id)
    store_session = current_store()
    manager = (store_session is not None and int(store_session.id) == store_id) or is_admin(current_user())
    if not manager:
        query = query.filter(Product.available.is_(True))
    rows = query.order_by(Product.category.asc(), Product.name.asc()).all()
    return jsonify({"ok": True, "items": [p.to_dict() for p in rows]}), 200


@stores_bp.post("/<int:store_id>/products")
def create_product(store_id: int):
    store, actor_type, actor_id, err = _manager_for(store_id)
    if err:
        return err
    product = store_service.create_product(
        store, request.get_json(silent=True) or {}, actor_type=actor_type, actor_id=actor_id
    )
    return jsonify({"ok": True, "product": product.to_dict()}), 201


def _product_for(store: Store, product_id: int) -> Product | None:
    return Product.query.filter_by(id=product_id, store_id=int(store.id)).first()


@stores_bp.patch("/<int:store_id>/products/<int:product_id>")
def update_product(store_id: int, product_id: int):
    store, actor_type, actor_id, err = _manager_for(store_id)
    if err:
        return err
    product = _product_for(store, product_id)
    if product is None:
        return _not_found("Product")
    product = store_service.update_product(
        store, product, request.get_json(silent=True) or {}, actor_type=actor_type, actor_id=actor_id
    )
    return jsonify({"ok": True, "product": product.to_dict()}), 200


@stores_bp.post("/<int:store_id>/products/<int:product_id>/availability")
def toggle_availability(store_id: int, product_id: int):
    store, actor_type, actor_id, err = _manager_for(store_id)
    if err:
        return err
    product = _product_for(store, product_id)
    if product is None:
        return _not_found("Product")
    data = request.get_json(silent=True) or {}
    available = bool(data["available"]) if "available" in data else not bool(product.available)
    product = store_service.update_product(
        store, product, {"available": available}, actor_type=actor_type, actor_id=actor_id
    )
    return jsonify({"ok": True, "product": product.to_dict()}), 200


@stores_bp.delete("/<int:store_id>/products/<int:product_id>")
def delete_product(store_id: int, product_id: int):
    store, actor_type, actor_id, err = _manager_for(store_id)
    if err:
        return err
    product = _product_for(store, product_id)
    if product is None:
        return _not_found("Product")
    store_service.delete_product(product, actor_type=actor_type, actor_id=actor_id)
    return jsonify({"ok": True}), 200


def _save_image(bucket: str, prefix: str):
    data = read_upload(request.files.get("image"))
    try:
        ext, content_type = inspect_image(data)
    except InvalidImageError as exc:
        return None, (jsonify({"ok": False, "error": "VALIDATION_FAILED", "message": str(exc)}), 400)
    url = get_storage().upload(bucket, object_name(prefix, ext), data, content_type)
    return url, None


@stores_bp.post("/<int:store_id>/products/<int:product_id>/image")
def upload_product_image(store_id: int, product_id: int):
    store, actor_type, actor_id, err = _manager_for(store_id)
    if err:
        return err
    product = _product_for(store, product_id)
    if product is None:
        return _not_found("Product")
    url, err = _save_image("product-images", f"product-{product.id}")
    if err:
        return err
    try:
        product = store_service.update_product(
            store, product, {"image_url": url}, actor_type=actor_type, actor_id=actor_id
        )
    except Exception:
        db.session.rollback()
        storage = get_storage()
        storage.delete("product-images", storage.key_from_url(url))
        raise
    return jsonify({"ok": True, "product": product.to_dict()}), 200


@stores_bp.post("/<int:store_id>/logo")
def upload_logo(store_id: int):
    store, actor_type, actor_id, err = _manager_for(store_id)
    if err:
        return err
    url, err = _save_image("store-logos", f"store-{store.id}")
    if err:
        return err
    try:
        store = store_service.update_profile(store, {"logo_url": url}, actor_type=actor_type, actor_id=actor_id)
    except Exception:
        db.session.rollback()
        storage = get_storage()
        storage.delete("store-logos", storage.key_from_url(url))
        raise
    return jsonify({"ok": True, "store": store.to_dict(include_private=True)}), 200
