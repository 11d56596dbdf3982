from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import func

from kasi.extensions import db
from kasi.models import AgentTransaction, AgentWallet, ReconciliationReport


def recompute_wallet_balances(*, tolerance: float = 0.01) -> dict:
    """Compare each stored wallet balance with the sum of its ledger."""
    sums = dict(
        db.session.query(AgentTransaction.wallet_id, func.coalesce(func.sum(AgentTransaction.amount), 0.0))
        .group_by(AgentTransaction.wallet_id)
        .all()
    )
    wallets = AgentWallet.query.order_by(AgentWallet.agent_id.asc()).all()
    drift_items = []
    chain_breaks = []

    for wallet in wallets:
        computed = round(float(sums.get(wallet.id, 0.0) or 0.0), 2)
        current = round(float(wallet.company_cash_balance or 0.0), 2)
        drift = round(current - computed, 2)
        if abs(drift) > float(tolerance):
            drift_items.append(
                {
                    "wallet_id": int(wallet.id),
                    "agent_id": int(wallet.agent_id),
                    "stored_balance": current,
                    "computed_balance": computed,
                    "drift": drift,
                }
            )

    bad_rows = AgentTransaction.query.filter(
        func.abs(AgentTransaction.balance_before + AgentTransaction.amount - AgentTransaction.balance_after)
        > float(tolerance)
    ).all()
    for txn in bad_rows:
        chain_breaks.append(
            {
                "transaction_id": int(txn.id),
                "wallet_id": int(txn.wallet_id),
                "balance_before": float(txn.balance_before),
                "amount": float(txn.amount),
                "balance_after": float(txn.balance_after),
            }
        )

    return {
        "ok": not drift_items and not chain_breaks,
        "scope": "agent_wallets",
        "wallet_count": len(wallets),
        "drift_count": len(drift_items) + len(chain_breaks),
        "drift_items": drift_items,
        "chain_breaks": chain_breaks,
        "generated_at": datetime.utcnow().isoformat(),
    }


def persist_report(summary: dict, *, created_by: int | None = None) -> ReconciliationReport:
    report = ReconciliationReport(
        scope=(summary.get("scope") or "agent_wallets")[:64],
        wallets_checked=int(summary.get("wallet_count") or 0),
        drift_count=int(summary.get("drift_count") or 0),
        summary_json=json.dumps(summary)[:200000],
        created_by=int(created_by) if created_by is not None else None,
    )
    db.session.add(report)
    db.session.commit()
    return report
