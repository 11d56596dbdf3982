from __future__ import annotations

import hashlib
import json
import logging
import os
import time
import uuid
from datetime import datetime

from flask import g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-Id"
SCRUBBED_HEADERS = frozenset({
    "authorization",
    "cookie",
    "set-cookie",
    "webhook-signature",
    "idempotency-key",
})
# High-volume paths that only log at debug level.
QUIET_PREFIXES = ("/api/health", "/uploads/")


def _hash_ip(ip: str, salt: str) -> str:
    raw = f"{salt}:{ip or ''}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:16]


def get_request_id() -> str:
    if not has_request_context():
        return ""
    return getattr(g, "request_id", "")


def actor_fields() -> dict:
    """Who is calling: a store session, a signed-in user, or nobody."""
    store_id = getattr(g, "auth_store_id", None)
    if store_id is not None:
        return {"actor": f"store:{int(store_id)}", "role": "store"}
    user_id = getattr(g, "auth_user_id", None)
    if user_id is not None:
        return {"actor": f"user:{int(user_id)}", "role": getattr(g, "auth_role", None) or "customer"}
    return {"actor": "anonymous", "role": None}


def init_sentry(app) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        try:
            traces_rate = float((os.getenv("SENTRY_TRACES_SAMPLE_RATE") or "0.0").strip())
        except ValueError:
            traces_rate = 0.0

        sentry_sdk.init(
            dsn=dsn,
            environment=(os.getenv("SENTRY_ENVIRONMENT") or os.getenv("KASI_ENV") or "dev"),
            release=(os.getenv("GIT_SHA") or "unknown"),
            integrations=[FlaskIntegration()],
            send_default_pii=False,
            traces_sample_rate=max(0.0, min(traces_rate, 1.0)),
            before_send=_scrub_event,
        )
        app.logger.info("sentry_enabled")
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)


def _scrub_event(event, hint):
    req = event.get("request") or {}
    headers = req.get("headers") or {}
    for key in list(headers.keys()):
        if key.lower() in SCRUBBED_HEADERS:
            headers[key] = "[REDACTED]"
    req["headers"] = headers
    event["request"] = req
    if has_request_context():
        tags = event.setdefault("tags", {})
        tags["request_id"] = get_request_id()
        tags["actor_role"] = actor_fields()["role"] or "anonymous"
    return event


def install_request_observers(app) -> None:
    @app.before_request
    def _request_observer_begin():
        rid = (request.headers.get(REQUEST_ID_HEADER) or "").strip()[:80]
        g.request_id = rid or uuid.uuid4().hex
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _request_observer_end(response):
        rid = getattr(g, "request_id", "") or uuid.uuid4().hex
        response.headers[REQUEST_ID_HEADER] = rid
        started = getattr(g, "request_started_at", None)
        latency_ms = round((time.perf_counter() - started) * 1000.0, 2) if started is not None else None
        payload = {
            "ts": datetime.utcnow().isoformat(),
            "request_id": rid,
            "method": request.method,
            "path": request.path,
            "status": int(response.status_code),
            "latency_ms": latency_ms,
            **actor_fields(),
            "ip_hash": _hash_ip(
                request.headers.get("X-Forwarded-For", request.remote_addr or ""),
                app.config.get("SECRET_KEY", "kasi"),
            ),
        }
        if response.status_code >= 500:
            level = logging.ERROR
        elif request.path.startswith(QUIET_PREFIXES):
            level = logging.DEBUG
        else:
            level = logging.INFO
        app.logger.log(level, json.dumps(payload))
        return response
