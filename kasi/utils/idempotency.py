from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from flask import has_request_context, request
from sqlalchemy.exc import IntegrityError

from kasi.extensions import db
from kasi.models import IdempotencyKey

logger = logging.getLogger(__name__)


def _canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def _hash_request(*, method: str, scope: str, payload: Any) -> str:
    raw = f"{method.strip().upper()}|{scope.strip()}|{_canonical_json(payload)}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def get_idempotency_key() -> str | None:
    if not has_request_context():
        return None
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
    if not k:
        return None
    return k.strip()[:128] or None


def lookup_response(scope: str, payload: Any, *, user_id: int | None = None, idempotency_key: str | None = None):
    """Check a POST against previously stored responses.

    Returns ``None`` when the caller sent no key, otherwise a tuple:
    ``("hit", body, status)`` to replay, ``("conflict", body, 409)`` when the
    key was used with a different payload, or ``("miss", row, 0)`` with an
    unsaved row to hand to :func:`store_response` once the work committed.
    """
    k = (idempotency_key or get_idempotency_key() or "").strip()[:128]
    if not k:
        return None

    method = request.method if has_request_context() else "POST"
    req_hash = _hash_request(method=method, scope=scope, payload=payload)
    row = IdempotencyKey.query.filter_by(scope=scope, key=k).first()
    if row is None:
        return (
            "miss",
            IdempotencyKey(
                key=k,
                scope=scope[:160],
                user_id=int(user_id) if user_id is not None else None,
                request_hash=req_hash,
            ),
            0,
        )
    if (row.request_hash or "") != req_hash:
        return (
            "conflict",
            {
                "ok": False,
                "error": "IDEMPOTENCY_KEY_REUSE",
                "message": "This Idempotency-Key was already used with a different request payload.",
            },
            409,
        )
    try:
        body = json.loads(row.response_json or "")
    except ValueError:
        body = {"ok": True}
    return ("hit", body, int(row.status_code or 200))


def store_response(row: IdempotencyKey, response_json: Any, status_code: int) -> None:
    row.response_json = json.dumps(response_json, separators=(",", ":"), default=str)
    row.status_code = int(status_code or 200)
    try:
        db.session.add(row)
        db.session.commit()
    except IntegrityError:
        # A concurrent request with the same key stored its response first.
        db.session.rollback()
        logger.info("idempotency_store_race scope=%s key=%s", row.scope, row.key)
