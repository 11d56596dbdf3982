import json
from datetime import datetime

from kasi.extensions import db


class PaymentIntent(db.Model):
    __tablename__ = "payment_intents"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    provider = db.Column(db.String(32), nullable=False, default="mock")
    reference = db.Column(db.String(128), nullable=False, unique=True, index=True)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="ZAR")
    status = db.Column(db.String(24), nullable=False, default="initialized", index=True)
    order_ids_json = db.Column(db.Text, nullable=False, default="[]")
    redirect_url = db.Column(db.String(1024), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def order_ids(self) -> list[int]:
        try:
            raw = json.loads(self.order_ids_json or "[]")
        except Exception:
            return []
        out = []
        for value in raw if isinstance(raw, list) else []:
            try:
                out.append(int(value))
            except (TypeError, ValueError):
                continue
        return out

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "customer_id": int(self.customer_id),
            "provider": self.provider or "",
            "reference": self.reference or "",
            "amount": round(float(self.amount or 0.0), 2),
            "amount_cents": int(self.amount_cents or 0),
            "currency": self.currency or "ZAR",
            "status": self.status or "",
            "order_ids": self.order_ids(),
            "redirect_url": self.redirect_url or None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
