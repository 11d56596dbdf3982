from __future__ import annotations

import logging
import math

from flask import current_app

from kasi.extensions import db
from kasi.models import AgentTransaction, AgentWallet
from kasi.services.errors import CashLimitExceeded, ValidationFailed, WalletNotActive
from kasi.utils.events import log_event

logger = logging.getLogger(__name__)

CASH_RELEASED = "cash_released"
PURCHASE_MADE = "purchase_made"
BALANCE_ADJUSTMENT = "balance_adjustment"
RECONCILIATION = "reconciliation"


def _money(value) -> float:
    try:
        amount = float(value or 0.0)
    except (TypeError, ValueError):
        raise ValidationFailed("Amount must be a number")
    if not math.isfinite(amount):
        raise ValidationFailed("Amount must be a finite number")
    return round(amount, 2)


def default_cash_limit() -> float:
    return _money(current_app.config.get("DEFAULT_CASH_LIMIT", 500.0))


def ensure_wallet(agent_id: int) -> AgentWallet:
    wallet = AgentWallet.query.filter_by(agent_id=int(agent_id)).first()
    if wallet is None:
        wallet = AgentWallet(
            agent_id=int(agent_id),
            company_cash_balance=0.0,
            max_cash_limit=default_cash_limit(),
            status="active",
        )
        db.session.add(wallet)
        db.session.flush()
    return wallet


def _lock_wallet(wallet_id: int) -> AgentWallet:
    # FOR UPDATE is dropped by dialects without row locks (SQLite).
    return (
        db.session.query(AgentWallet)
        .filter(AgentWallet.id == int(wallet_id))
        .populate_existing()
        .with_for_update()
        .one()
    )


def check_cash_release(wallet: AgentWallet, amount: float) -> None:
    amount = _money(amount)
    if amount <= 0:
        raise ValidationFailed("Cash amount must be greater than zero")
    if (wallet.status or "active") != "active":
        raise WalletNotActive(f"Wallet is {wallet.status}", wallet_status=wallet.status)
    current = _money(wallet.company_cash_balance)
    limit = _money(wallet.max_cash_limit)
    if round(current + amount, 2) > limit:
        raise CashLimitExceeded(
            "Cash request exceeds the wallet limit",
            current=current,
            limit=limit,
            requested=amount,
        )


def post_transaction(
    wallet: AgentWallet,
    transaction_type: str,
    amount: float,
    *,
    order=None,
    description: str = "",
    idempotency_key: str | None = None,
    created_by: int | None = None,
) -> AgentTransaction:
    """Append a ledger row and move the balance by ``amount``.

    The wallet row is locked first so concurrent posts serialise. Balance
    and ledger row are flushed together; the caller commits.
    """
    key = (idempotency_key or "").strip()[:160] or None
    if key:
        existing = AgentTransaction.query.filter_by(idempotency_key=key).first()
        if existing:
            return existing

    locked = _lock_wallet(wallet.id)
    before = _money(locked.company_cash_balance)
    signed = _money(amount)
    after = round(before + signed, 2)

    txn = AgentTransaction(
        agent_id=int(locked.agent_id),
        wallet_id=int(locked.id),
        order_id=int(order.id) if order is not None else None,
        transaction_type=transaction_type,
        amount=signed,
        balance_before=before,
        balance_after=after,
        description=(description or transaction_type)[:255],
        created_by=int(created_by) if created_by is not None else None,
        idempotency_key=key,
    )
    locked.company_cash_balance = after
    db.session.add(txn)
    db.session.flush()
    log_event(
        "agent_wallet.transaction",
        subject_type="agent_wallets",
        subject_id=int(locked.id),
        actor_type="admin" if created_by is not None else "system",
        actor_id=created_by,
        audience_agent_id=int(locked.agent_id),
        metadata={
            "transaction_id": int(txn.id),
            "transaction_type": transaction_type,
            "amount": signed,
            "balance_after": after,
            "order_id": txn.order_id,
        },
    )
    logger.info(
        "wallet_posted wallet=%s type=%s amount=%.2f before=%.2f after=%.2f",
        locked.id,
        transaction_type,
        signed,
        before,
        after,
    )
    return txn


def adjust_balance(
    wallet: AgentWallet,
    amount: float,
    *,
    reason: str,
    admin_id: int,
    idempotency_key: str | None = None,
) -> AgentTransaction:
    amount = _money(amount)
    if amount == 0:
        raise ValidationFailed("Adjustment amount must not be zero")
    if not (reason or "").strip():
        raise ValidationFailed("A reason is required for balance adjustments")
    txn = post_transaction(
        wallet,
        BALANCE_ADJUSTMENT,
        amount,
        description=f"Admin adjustment: {reason.strip()}",
        idempotency_key=idempotency_key,
        created_by=admin_id,
    )
    db.session.commit()
    return txn


def reconcile_to(
    wallet: AgentWallet,
    counted_amount: float,
    *,
    admin_id: int,
    note: str = "",
) -> AgentTransaction | None:
    """Post the difference between the counted cash and the stored balance."""
    counted = _money(counted_amount)
    if counted < 0:
        raise ValidationFailed("Counted amount cannot be negative")
    diff = round(counted - _money(wallet.company_cash_balance), 2)
    if diff == 0:
        return None
    description = f"Reconciled to R{counted:.2f}"
    if (note or "").strip():
        description = f"{description}: {note.strip()}"
    txn = post_transaction(
        wallet,
        RECONCILIATION,
        diff,
        description=description,
        created_by=admin_id,
    )
    db.session.commit()
    return txn


def set_limit(wallet: AgentWallet, limit: float, *, admin_id: int) -> AgentWallet:
    limit = _money(limit)
    if limit < 0:
        raise ValidationFailed("Cash limit cannot be negative")
    wallet.max_cash_limit = limit
    log_event(
        "agent_wallet.limit_changed",
        subject_type="agent_wallets",
        subject_id=int(wallet.id),
        actor_type="admin",
        actor_id=admin_id,
        audience_agent_id=int(wallet.agent_id),
        metadata={"max_cash_limit": limit},
    )
    db.session.commit()
    return wallet


def set_status(wallet: AgentWallet, status: str, *, admin_id: int) -> AgentWallet:
    status = (status or "").strip().lower()
    if status not in AgentWallet.STATUSES:
        raise ValidationFailed(f"Wallet status must be one of {', '.join(AgentWallet.STATUSES)}")
    previous = wallet.status
    wallet.status = status
    log_event(
        "agent_wallet.status_changed",
        subject_type="agent_wallets",
        subject_id=int(wallet.id),
        actor_type="admin",
        actor_id=admin_id,
        audience_agent_id=int(wallet.agent_id),
        metadata={"from": previous, "to": status},
    )
    db.session.commit()
    return wallet


def recent_transactions(agent_id: int, limit: int = 50) -> list[AgentTransaction]:
    return (
        AgentTransaction.query.filter_by(agent_id=int(agent_id))
        .order_by(AgentTransaction.id.desc())
        .limit(int(limit))
        .all()
    )
