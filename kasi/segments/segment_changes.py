from __future__ import annotations

from flask import Blueprint, jsonify, request

from kasi.services.change_feed_service import list_changes
from kasi.utils.auth import current_store, current_user, unauthorized

changes_bp = Blueprint("changes_bp", __name__, url_prefix="/api/changes")


@changes_bp.get("")
def changes():
    user = current_user()
    store = current_store()
    table = (request.args.get("table") or "orders").strip().lower()
    if table in ("orders", "agent_wallets") and user is None and store is None:
        return unauthorized()
    try:
        after_id = int(request.args.get("after_id") or 0)
        limit = int(request.args.get("limit") or 100)
    except ValueError:
        return jsonify({"ok": False, "error": "VALIDATION_FAILED", "message": "after_id and limit must be integers"}), 400

    rows = list_changes(table=table, after_id=after_id, user=user, store=store, limit=limit)
    last_id = rows[-1].id if rows else after_id
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows], "last_id": int(last_id)}), 200
