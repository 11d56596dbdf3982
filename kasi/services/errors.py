"""Domain errors raised by the service layer.

Each carries a stable ``code`` and the HTTP status the API answers with;
the app factory turns them into the JSON error shape and rolls back.
"""
from __future__ import annotations


class DomainError(Exception):
    code = "DOMAIN_ERROR"
    http_status = 400

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        out = {"ok": False, "error": self.code, "message": self.message}
        out.update(self.details)
        return out


class FulfillmentError(DomainError):
    code = "FULFILLMENT_ERROR"


class InvalidTransition(FulfillmentError):
    code = "INVALID_TRANSITION"
    http_status = 409


class JobAlreadyTaken(FulfillmentError):
    code = "JOB_ALREADY_TAKEN"
    http_status = 409


class AgentOffline(FulfillmentError):
    code = "AGENT_OFFLINE"
    http_status = 409


class AgentBusy(FulfillmentError):
    code = "AGENT_HAS_ACTIVE_JOB"
    http_status = 409


class Forbidden(FulfillmentError):
    code = "FORBIDDEN"
    http_status = 403


class ValidationFailed(FulfillmentError):
    code = "VALIDATION_FAILED"
    http_status = 400


class NotFound(FulfillmentError):
    code = "NOT_FOUND"
    http_status = 404


class WalletError(DomainError):
    code = "WALLET_ERROR"


class CashLimitExceeded(WalletError):
    code = "CASH_LIMIT_EXCEEDED"
    http_status = 422


class WalletNotActive(WalletError):
    code = "WALLET_NOT_ACTIVE"
    http_status = 423
