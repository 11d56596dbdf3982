from __future__ import annotations

import os
import threading
import time

import redis


_LOCK = threading.Lock()
_WINDOWS: dict[str, list[float]] = {}
_CLIENT = None
_CLIENT_INIT = False


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def rate_limit_enabled(default: bool = True) -> bool:
    return _env_bool("RATE_LIMIT_ENABLED", default)


def trust_proxy_headers(default: bool = False) -> bool:
    return _env_bool("TRUST_PROXY_HEADERS", default)


def _redis_url() -> str:
    return (os.getenv("RATE_LIMIT_REDIS_URL") or os.getenv("REDIS_URL") or "").strip()


def _get_client():
    global _CLIENT, _CLIENT_INIT
    with _LOCK:
        if _CLIENT_INIT:
            return _CLIENT
        _CLIENT_INIT = True
    url = _redis_url()
    if not url:
        return None
    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=0.75,
            socket_timeout=0.75,
        )
        client.ping()
    except redis.RedisError:
        return None
    with _LOCK:
        _CLIENT = client
    return client


def check_limit(key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    """Fixed-window counter. Returns ``(allowed, retry_after_seconds)``."""
    safe_window = max(1, int(window_seconds))
    safe_limit = max(1, int(limit))
    client = _get_client()
    if client is not None:
        now_sec = int(time.time())
        counter_key = f"rl:v1:{key}:{now_sec // safe_window}"
        try:
            current = int(client.incr(counter_key))
            if current == 1:
                client.expire(counter_key, safe_window + 1)
            if current <= safe_limit:
                return True, 0
            return False, int(max(1, safe_window - (now_sec % safe_window)))
        except redis.RedisError:
            pass
    return _check_limit_memory(key, limit=safe_limit, window_seconds=safe_window)


def _check_limit_memory(key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    now = time.time()
    start = now - window_seconds
    with _LOCK:
        bucket = [ts for ts in _WINDOWS.get(key, []) if ts >= start]
        if len(bucket) >= limit:
            _WINDOWS[key] = bucket
            return False, int(max(1, window_seconds - (now - min(bucket))))
        bucket.append(now)
        _WINDOWS[key] = bucket
    return True, 0


def reset_memory_windows() -> None:
    with _LOCK:
        _WINDOWS.clear()


def resolve_client_ip(request, *, trusted_proxy: bool = False) -> str:
    if trusted_proxy:
        xff = (request.headers.get("X-Forwarded-For") or "").strip()
        if xff:
            first_hop = xff.split(",")[0].strip()
            if first_hop:
                return first_hop
    return (request.remote_addr or "").strip() or "unknown"


AUTH_PATHS = ("/api/auth/login", "/api/auth/store-login", "/api/auth/register")

# (tier, limit, window_seconds)
AUTH_TIERS = (("auth:minute", 10, 60), ("auth:hour", 30, 3600))
BROWSE_TIER = ("browse", 120, 60)
WRITE_TIER = ("write", 60, 60)


def build_rate_limit_subject(*, user_id: int | None, request_obj, store_id: int | None = None) -> str:
    if store_id is not None:
        return f"s:{int(store_id)}"
    if user_id is not None:
        return f"u:{int(user_id)}"
    return f"ip:{resolve_client_ip(request_obj, trusted_proxy=trust_proxy_headers(False))}"


def is_exempt(path: str, method: str) -> bool:
    if method == "OPTIONS" or not path.startswith("/api/"):
        return True
    return path.startswith("/api/webhooks/")


def check_request(request_obj, *, user_id: int | None = None, store_id: int | None = None) -> tuple[bool, int]:
    """Apply the API tiers to one request.

    Sign-in and registration are limited per client IP over a minute and an
    hour. Everything else is limited per caller and endpoint, with reads
    allowed more often than writes.
    """
    method = (request_obj.method or "GET").strip().upper()
    path = (request_obj.path or "").strip()
    if is_exempt(path, method):
        return True, 0

    if path.startswith(AUTH_PATHS):
        subject = build_rate_limit_subject(user_id=None, request_obj=request_obj)
        for tier, limit, window in AUTH_TIERS:
            ok, retry_after = check_limit(f"tier:{tier}:{subject}", limit=limit, window_seconds=window)
            if not ok:
                return False, retry_after
        return True, 0

    subject = build_rate_limit_subject(user_id=user_id, store_id=store_id, request_obj=request_obj)
    tier, limit, window = BROWSE_TIER if method == "GET" else WRITE_TIER
    return check_limit(f"tier:{tier}:{method}:{path}:{subject}", limit=limit, window_seconds=window)
