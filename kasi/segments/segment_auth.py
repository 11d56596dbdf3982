from __future__ import annotations

import re

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from kasi.extensions import db
from kasi.models import User
from kasi.services import agent_service, store_service
from kasi.utils.auth import current_store, current_user, forbidden, is_admin, unauthorized
from kasi.utils.jwt_utils import create_store_token, create_token

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/auth")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6


def _session_payload(u: User) -> dict:
    return {"ok": True, "token": create_token(int(u.id)), "user": u.to_dict()}


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    full_name = (data.get("full_name") or data.get("name") or "").strip()
    phone = (data.get("phone_number") or data.get("phone") or "").strip() or None
    role = (data.get("role") or "customer").strip().lower()

    if not _EMAIL_RE.match(email):
        return jsonify({"ok": False, "error": "VALIDATION_FAILED", "message": "A valid email is required"}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({
            "ok": False,
            "error": "VALIDATION_FAILED",
            "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
        }), 400
    if role not in ("customer", "agent", "admin"):
        return jsonify({"ok": False, "error": "VALIDATION_FAILED", "message": "Unknown role"}), 400
    if role != "customer" and not is_admin(current_user()):
        return forbidden(f"Only admins can create {role} accounts")

    if User.query.filter_by(email=email).first():
        return jsonify({"ok": False, "error": "EMAIL_TAKEN", "message": "Email already in use"}), 409

    try:
        if role == "agent":
            u = agent_service.create_agent(email=email, password=password, full_name=full_name, phone_number=phone)
        else:
            u = User(email=email, full_name=full_name, phone_number=phone, role=role, status="active")
            u.set_password(password)
            db.session.add(u)
            db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"ok": False, "error": "EMAIL_TAKEN", "message": "Email already in use"}), 409

    current_app.logger.info("user_registered id=%s role=%s", u.id, u.role)
    return jsonify(_session_payload(u)), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return jsonify({"ok": False, "error": "VALIDATION_FAILED", "message": "Email and password are required"}), 400

    u = User.query.filter_by(email=email).first()
    if not u or not u.check_password(password):
        return jsonify({"ok": False, "error": "INVALID_CREDENTIALS", "message": "Invalid credentials"}), 401
    if not u.is_active:
        return forbidden(f"Account is {u.status}")
    return jsonify(_session_payload(u)), 200


@auth_bp.post("/store-login")
def store_login():
    data = request.get_json(silent=True) or {}
    store = store_service.find_by_access_code(data.get("access_code") or "")
    if store is None:
        return jsonify({"ok": False, "error": "INVALID_ACCESS_CODE", "message": "Invalid access code"}), 401
    if store.status == "inactive":
        return forbidden("This store is inactive")
    return jsonify({
        "ok": True,
        "token": create_store_token(int(store.id)),
        "store": store.to_dict(include_private=True),
    }), 200


@auth_bp.get("/me")
def me():
    store = current_store()
    if store is not None:
        return jsonify({"ok": True, "store": store.to_dict(include_private=True)}), 200
    u = current_user()
    if not u:
        return unauthorized()
    return jsonify({"ok": True, "user": u.to_dict()}), 200


@auth_bp.patch("/me")
def update_me():
    u = current_user()
    if not u:
        return unauthorized()
    data = request.get_json(silent=True) or {}
    if "full_name" in data:
        u.full_name = (data.get("full_name") or "").strip()
    if "phone_number" in data:
        u.phone_number = (data.get("phone_number") or "").strip() or None
    db.session.commit()
    return jsonify({"ok": True, "user": u.to_dict()}), 200
