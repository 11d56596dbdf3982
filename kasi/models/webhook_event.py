from datetime import datetime

from kasi.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False, default="yoco")
    event_id = db.Column(db.String(128), nullable=False, unique=True)
    event_type = db.Column(db.String(64), nullable=True)
    checkout_id = db.Column(db.String(128), nullable=True, index=True)
    status = db.Column(db.String(32), nullable=False, default="received")
    request_id = db.Column(db.String(64), nullable=True)
    payload_hash = db.Column(db.String(64), nullable=True)
    payload_json = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)
    processed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "provider": self.provider,
            "event_id": self.event_id,
            "event_type": self.event_type or "",
            "checkout_id": self.checkout_id or "",
            "status": self.status or "",
            "request_id": self.request_id or "",
            "error": self.error or "",
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
