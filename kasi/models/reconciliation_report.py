from datetime import datetime
import json

from kasi.extensions import db


class ReconciliationReport(db.Model):
    __tablename__ = "reconciliation_reports"

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(64), nullable=False, default="agent_wallets")
    wallets_checked = db.Column(db.Integer, nullable=False, default=0)
    drift_count = db.Column(db.Integer, nullable=False, default=0)
    summary_json = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def summary(self) -> dict:
        try:
            parsed = json.loads(self.summary_json or "{}")
        except Exception:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self):
        return {
            "id": int(self.id),
            "scope": self.scope or "",
            "wallets_checked": int(self.wallets_checked or 0),
            "drift_count": int(self.drift_count or 0),
            "summary": self.summary(),
            "created_by": int(self.created_by) if self.created_by is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
