from __future__ import annotations

from dataclasses import dataclass


@dataclass
class CheckoutResult:
    checkout_id: str
    redirect_url: str
    provider: str
    raw: dict | None = None


class PaymentsProvider:
    name = "unknown"

    def create_checkout(
        self,
        *,
        amount: float,
        currency: str,
        metadata: dict,
        success_url: str,
        cancel_url: str,
        failure_url: str,
    ) -> CheckoutResult:
        raise NotImplementedError
