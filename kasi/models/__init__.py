from kasi.models.user import User
from kasi.models.store import Store
from kasi.models.category import Category
from kasi.models.product import Product
from kasi.models.order import Order, OrderItem
from kasi.models.order_transition import OrderTransition
from kasi.models.agent import AgentProfile, AgentWallet, AgentTransaction
from kasi.models.payment_intent import PaymentIntent
from kasi.models.webhook_event import WebhookEvent
from kasi.models.idempotency_key import IdempotencyKey
from kasi.models.platform_event import PlatformEvent
from kasi.models.reconciliation_report import ReconciliationReport
from kasi.models.job_run import JobRun

__all__ = [
    "User",
    "Store",
    "Category",
    "Product",
    "Order",
    "OrderItem",
    "OrderTransition",
    "AgentProfile",
    "AgentWallet",
    "AgentTransaction",
    "PaymentIntent",
    "WebhookEvent",
    "IdempotencyKey",
    "PlatformEvent",
    "ReconciliationReport",
    "JobRun",
]
