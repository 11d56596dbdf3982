from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time

import requests

from kasi.integrations.payments.base import CheckoutResult, PaymentsProvider

logger = logging.getLogger(__name__)

YOCO_CHECKOUTS_URL = "https://payments.yoco.com/api/checkouts"
# Webhooks older than this are rejected to limit replay.
SIGNATURE_TOLERANCE_SECONDS = 300


class YocoPaymentsProvider(PaymentsProvider):
    name = "yoco"

    def __init__(self, secret_key: str, *, timeout: int = 25):
        self.secret_key = secret_key
        self.timeout = timeout

    def create_checkout(self, *, amount, currency, metadata, success_url, cancel_url, failure_url) -> CheckoutResult:
        payload = {
            "amount": int(round(float(amount) * 100)),
            "currency": currency or "ZAR",
            "metadata": metadata or {},
            "successUrl": success_url,
            "cancelUrl": cancel_url,
            "failureUrl": failure_url,
        }
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }
        try:
            r = requests.post(YOCO_CHECKOUTS_URL, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("yoco_checkout_unreachable err=%s", exc)
            raise RuntimeError(f"YOCO_CHECKOUT_FAILED:{exc.__class__.__name__}") from exc
        try:
            j = r.json() if r.content else {}
        except ValueError:
            j = {}
        if r.status_code < 200 or r.status_code >= 300:
            msg = (j.get("message") or f"HTTP {r.status_code}") if isinstance(j, dict) else f"HTTP {r.status_code}"
            logger.warning("yoco_checkout_failed status=%s msg=%s", r.status_code, msg)
            raise RuntimeError(f"YOCO_CHECKOUT_FAILED:{msg}")
        checkout_id = str(j.get("id") or "").strip() if isinstance(j, dict) else ""
        redirect_url = str(j.get("redirectUrl") or "").strip() if isinstance(j, dict) else ""
        if not checkout_id or not redirect_url:
            raise RuntimeError("YOCO_CHECKOUT_FAILED:missing checkout id")
        return CheckoutResult(
            checkout_id=checkout_id,
            redirect_url=redirect_url,
            provider=self.name,
            raw=j if isinstance(j, dict) else {"payload": j},
        )


def verify_webhook_signature(
    secret: str,
    *,
    webhook_id: str,
    timestamp: str,
    body: bytes,
    signature_header: str,
    now: float | None = None,
) -> bool:
    """Check a Yoco (standard-webhooks) signature.

    The signed content is ``"{id}.{timestamp}.{body}"`` keyed with the
    base64 part of ``whsec_...``. The header holds space separated
    ``v1,<base64>`` entries; any match is accepted.
    """
    if not (secret and webhook_id and timestamp and signature_header):
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    current = time.time() if now is None else now
    if abs(current - ts) > SIGNATURE_TOLERANCE_SECONDS:
        return False

    raw_secret = secret.split("_", 1)[1] if secret.startswith("whsec_") else secret
    try:
        key = base64.b64decode(raw_secret)
    except ValueError:
        return False
    signed = f"{webhook_id}.{timestamp}.".encode("utf-8") + (body or b"")
    expected = base64.b64encode(hmac.new(key, signed, hashlib.sha256).digest()).decode("ascii")

    for part in signature_header.split():
        version, _, value = part.partition(",")
        if version == "v1" and hmac.compare_digest(value, expected):
            return True
    return False
