from datetime import datetime

import sqlalchemy as sa

from kasi.extensions import db


class AgentProfile(db.Model):
    __tablename__ = "agent_profiles"

    STATUSES = ("active", "temporarily_suspended", "blacklisted")

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    id_number = db.Column(db.String(32), nullable=True)
    profile_photo_url = db.Column(db.String(1024), nullable=True)
    home_area = db.Column(db.String(120), nullable=True)
    township = db.Column(db.String(80), nullable=True)

    agent_status = db.Column(db.String(32), nullable=False, default="active")
    is_online = db.Column(db.Boolean, nullable=False, default=False, server_default=sa.text("false"))

    orders_completed = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    orders_cancelled = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    receipt_issues = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    last_active_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "agent_id": int(self.agent_id),
            "id_number": self.id_number or None,
            "profile_photo_url": self.profile_photo_url or None,
            "home_area": self.home_area or None,
            "township": self.township or None,
            "agent_status": self.agent_status or "active",
            "is_online": bool(self.is_online),
            "orders_completed": int(self.orders_completed or 0),
            "orders_cancelled": int(self.orders_cancelled or 0),
            "receipt_issues": int(self.receipt_issues or 0),
            "last_active_at": self.last_active_at.isoformat() if self.last_active_at else None,
        }


class AgentWallet(db.Model):
    __tablename__ = "agent_wallets"

    STATUSES = ("active", "frozen", "suspended")

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)
    company_cash_balance = db.Column(db.Float, nullable=False, default=0.0)
    max_cash_limit = db.Column(db.Float, nullable=False, default=500.0)
    status = db.Column(db.String(16), nullable=False, default="active")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        balance = round(float(self.company_cash_balance or 0.0), 2)
        limit = round(float(self.max_cash_limit or 0.0), 2)
        return {
            "id": int(self.id),
            "agent_id": int(self.agent_id),
            "company_cash_balance": balance,
            "max_cash_limit": limit,
            "available_to_draw": round(max(0.0, limit - balance), 2),
            "status": self.status or "active",
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class AgentTransaction(db.Model):
    __tablename__ = "agent_transactions"

    TYPES = ("cash_released", "purchase_made", "balance_adjustment", "reconciliation")

    id = db.Column(db.Integer, primary_key=True)
    agent_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("agent_wallets.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    transaction_type = db.Column(db.String(32), nullable=False)
    # Signed: cash released to the agent is positive, spend is negative.
    amount = db.Column(db.Float, nullable=False)
    balance_before = db.Column(db.Float, nullable=False)
    balance_after = db.Column(db.Float, nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")

    created_by = db.Column(db.Integer, nullable=True)
    idempotency_key = db.Column(db.String(160), nullable=True, unique=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "agent_id": int(self.agent_id),
            "order_id": int(self.order_id) if self.order_id is not None else None,
            "transaction_type": self.transaction_type or "",
            "amount": round(float(self.amount or 0.0), 2),
            "balance_before": round(float(self.balance_before or 0.0), 2),
            "balance_after": round(float(self.balance_after or 0.0), 2),
            "description": self.description or "",
            "created_by": int(self.created_by) if self.created_by is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
