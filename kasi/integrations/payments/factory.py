from __future__ import annotations

from kasi.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from kasi.integrations.payments.base import PaymentsProvider
from kasi.integrations.payments.mock_provider import MockPaymentsProvider
from kasi.integrations.payments.yoco_provider import YocoPaymentsProvider


def build_payments_provider(config) -> PaymentsProvider:
    provider = (config.get("PAYMENTS_PROVIDER") or "mock").strip().lower()

    if provider in ("", "disabled", "none"):
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payments")

    if provider == "mock":
        return MockPaymentsProvider()

    if provider != "yoco":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    secret_key = (config.get("YOCO_SECRET_KEY") or "").strip()
    if not secret_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing YOCO_SECRET_KEY")

    return YocoPaymentsProvider(secret_key=secret_key)


def payment_health(config) -> dict:
    provider = (config.get("PAYMENTS_PROVIDER") or "mock").strip().lower()
    missing = []
    if provider == "yoco":
        if not (config.get("YOCO_SECRET_KEY") or "").strip():
            missing.append("YOCO_SECRET_KEY")
        if not (config.get("YOCO_WEBHOOK_SECRET") or "").strip():
            missing.append("YOCO_WEBHOOK_SECRET")
    if provider in ("", "disabled", "none"):
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "provider": provider, "missing": missing}
