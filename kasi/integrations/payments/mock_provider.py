from __future__ import annotations

import uuid

from kasi.integrations.payments.base import CheckoutResult, PaymentsProvider


class MockPaymentsProvider(PaymentsProvider):
    name = "mock"

    def create_checkout(self, *, amount, currency, metadata, success_url, cancel_url, failure_url) -> CheckoutResult:
        checkout_id = f"ch_mock_{uuid.uuid4().hex[:16]}"
        return CheckoutResult(
            checkout_id=checkout_id,
            redirect_url=f"https://example.com/mock/checkout/{checkout_id}",
            provider=self.name,
            raw={
                "amount": int(round(float(amount) * 100)),
                "currency": currency,
                "metadata": metadata or {},
                "successUrl": success_url,
            },
        )
