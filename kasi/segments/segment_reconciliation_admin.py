from __future__ import annotations

from flask import Blueprint, jsonify, request

from kasi.models import ReconciliationReport
from kasi.services.reconciliation_service import persist_report, recompute_wallet_balances
from kasi.utils.auth import current_user, forbidden, is_admin
from kasi.utils.job_runs import last_run

recon_bp = Blueprint("recon_bp", __name__, url_prefix="/api/admin/reconcile")


@recon_bp.post("")
def run_recon():
    u = current_user()
    if not is_admin(u):
        return forbidden("Admin required")
    data = request.get_json(silent=True) or {}
    summary = recompute_wallet_balances()
    report_id = None
    if bool(data.get("persist", True)):
        report = persist_report(summary, created_by=int(u.id))
        report_id = int(report.id)
    return jsonify({"ok": True, "report_id": report_id, "summary": summary}), 200


@recon_bp.get("/latest")
def latest_report():
    if not is_admin(current_user()):
        return forbidden("Admin required")
    row = ReconciliationReport.query.order_by(ReconciliationReport.id.desc()).first()
    run = last_run("reconcile_agent_wallets")
    return jsonify({
        "ok": True,
        "report": row.to_dict() if row else None,
        "last_scheduled_run": run.to_dict() if run else None,
    }), 200
