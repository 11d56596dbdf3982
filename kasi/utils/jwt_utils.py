import os
import time
import logging
from typing import Optional, Dict, Any

import jwt

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60 * 24 * 7


def _secret() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret-change-me"


def _encode(subject: int, token_type: str, ttl_seconds: int) -> str:
    now = int(time.time())
    payload = {
        "sub": str(subject),
        "iat": now,
        "exp": now + int(ttl_seconds),
        "type": token_type,
    }
    return jwt.encode(payload, _secret(), algorithm="HS256")


def create_token(user_id: int, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> str:
    return _encode(user_id, "access", ttl_seconds)


def create_store_token(store_id: int, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> str:
    """Store sessions carry the store id as subject, not a user id."""
    return _encode(store_id, "store", ttl_seconds)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, _secret(), algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        logger.info("token_expired")
        return None
    except jwt.InvalidTokenError:
        return None


def get_bearer_token(auth_header: str) -> Optional[str]:
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None
