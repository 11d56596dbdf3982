"""Request principal helpers.

``_capture_auth_context`` in the app factory decodes the bearer token once
per request and stores ``g.auth_user_id`` / ``g.auth_store_id``; segments
resolve the rows through these helpers.
"""
from __future__ import annotations

from flask import g, jsonify

from kasi.extensions import db
from kasi.models import Store, User


def current_user() -> User | None:
    uid = getattr(g, "auth_user_id", None)
    if uid is None:
        return None
    return db.session.get(User, int(uid))


def current_store() -> Store | None:
    sid = getattr(g, "auth_store_id", None)
    if sid is None:
        return None
    return db.session.get(Store, int(sid))


def is_admin(u: User | None) -> bool:
    if not u:
        return False
    return (u.role or "").strip().lower() == "admin"


def has_role(u: User | None, *roles: str) -> bool:
    if not u:
        return False
    return (u.role or "").strip().lower() in roles


def unauthorized():
    return jsonify({"ok": False, "error": "UNAUTHORIZED", "message": "Unauthorized"}), 401


def forbidden(message: str = "Forbidden"):
    return jsonify({"ok": False, "error": "FORBIDDEN", "message": message}), 403
