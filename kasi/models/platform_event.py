from datetime import datetime
import json

from kasi.extensions import db


class PlatformEvent(db.Model):
    """Append-only change log row; clients poll these instead of a push feed."""

    __tablename__ = "platform_events"

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    event_type = db.Column(db.String(80), nullable=False, index=True)
    actor_type = db.Column(db.String(16), nullable=True)
    actor_id = db.Column(db.Integer, nullable=True, index=True)

    # Table name of the changed row: orders, agent_wallets, products, stores.
    subject_type = db.Column(db.String(40), nullable=False, index=True)
    subject_id = db.Column(db.Integer, nullable=True, index=True)

    # Who may see the row in the change feed; copied from the order or wallet.
    audience_customer_id = db.Column(db.Integer, nullable=True, index=True)
    audience_store_id = db.Column(db.Integer, nullable=True, index=True)
    audience_agent_id = db.Column(db.Integer, nullable=True, index=True)

    request_id = db.Column(db.String(80), nullable=True)
    idempotency_key = db.Column(db.String(180), nullable=True, unique=True)
    severity = db.Column(db.String(16), nullable=False, default="INFO")
    metadata_json = db.Column(db.Text, nullable=True)

    def metadata_dict(self) -> dict:
        raw = self.metadata_json
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, dict):
                return parsed
        except Exception:
            pass
        return {"raw": str(raw)}

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "event_type": self.event_type or "",
            "actor_type": self.actor_type or "",
            "actor_id": int(self.actor_id) if self.actor_id is not None else None,
            "table": self.subject_type or "",
            "row_id": int(self.subject_id) if self.subject_id is not None else None,
            "request_id": self.request_id or "",
            "severity": self.severity or "INFO",
            "metadata": self.metadata_dict(),
        }
