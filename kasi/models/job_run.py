from datetime import datetime

from kasi.extensions import db


class JobRun(db.Model):
    """One execution of a scheduled job such as wallet reconciliation."""

    __tablename__ = "job_runs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(64), nullable=False, index=True)
    ran_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    ok = db.Column(db.Boolean, nullable=False, default=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    # Wallets checked and wallets drifted for reconciliation runs.
    items_processed = db.Column(db.Integer, nullable=False, default=0)
    issues_found = db.Column(db.Integer, nullable=False, default=0)
    trace_id = db.Column(db.String(80), nullable=True)
    error = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "job_name": self.job_name or "",
            "ran_at": self.ran_at.isoformat() if self.ran_at else None,
            "ok": bool(self.ok),
            "duration_ms": int(self.duration_ms) if self.duration_ms is not None else None,
            "items_processed": int(self.items_processed or 0),
            "issues_found": int(self.issues_found or 0),
            "trace_id": self.trace_id or "",
            "error": self.error or "",
        }
