from __future__ import annotations

import unittest

from kasi.extensions import db
from kasi.models import AgentTransaction, AgentWallet, JobRun, ReconciliationReport
from kasi.services import wallet_service
from kasi.services.errors import CashLimitExceeded, ValidationFailed, WalletNotActive
from kasi.services.reconciliation_service import recompute_wallet_balances
from kasi.tasks.ledger_tasks import reconcile_agent_wallets
from tests import support


class WalletLedgerTestCase(support.ApiTestCase):
    def setUp(self):
        self.agent_id = self.seed_user("agent")
        self.admin_id = self.seed_user("admin")

    def _wallet(self):
        return AgentWallet.query.filter_by(agent_id=self.agent_id).one()

    def test_post_transaction_moves_balance_and_chains(self):
        with self.app.app_context():
            wallet = self._wallet()
            first = wallet_service.post_transaction(wallet, wallet_service.CASH_RELEASED, 150)
            second = wallet_service.post_transaction(wallet, wallet_service.PURCHASE_MADE, -120.5)
            db.session.commit()
            self.assertEqual(first.balance_before, 0.0)
            self.assertEqual(first.balance_after, 150.0)
            self.assertEqual(second.balance_before, 150.0)
            self.assertEqual(second.balance_after, 29.5)
            self.assertEqual(self._wallet().company_cash_balance, 29.5)

    def test_post_transaction_with_key_is_applied_once(self):
        with self.app.app_context():
            wallet = self._wallet()
            a = wallet_service.post_transaction(wallet, wallet_service.CASH_RELEASED, 50, idempotency_key=f"k-{self.agent_id}")
            b = wallet_service.post_transaction(wallet, wallet_service.CASH_RELEASED, 50, idempotency_key=f"k-{self.agent_id}")
            db.session.commit()
            self.assertEqual(a.id, b.id)
            self.assertEqual(self._wallet().company_cash_balance, 50.0)

    def test_cash_release_checks_limit_and_status(self):
        with self.app.app_context():
            wallet = self._wallet()
            wallet_service.check_cash_release(wallet, 500)
            with self.assertRaises(CashLimitExceeded):
                wallet_service.check_cash_release(wallet, 500.01)
            wallet.status = "frozen"
            with self.assertRaises(WalletNotActive):
                wallet_service.check_cash_release(wallet, 10)
            db.session.rollback()

    def test_agent_sees_own_wallet(self):
        res = self.client.get("/api/agent/wallet", headers=self.auth(self.agent_id))
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["wallet"]["max_cash_limit"], 500.0)
        self.assertEqual(body["wallet"]["available_to_draw"], 500.0)
        self.assertEqual(body["transactions"], [])

    def test_admin_adjustment_requires_reason_and_is_idempotent(self):
        url = f"/api/admin/agents/{self.agent_id}/wallet/adjust"
        res = self.client.post(url, headers=self.auth(self.admin_id), json={"amount": 40})
        self.assertEqual(res.status_code, 400)

        headers = self.auth(self.admin_id, **{"Idempotency-Key": f"adj-{self.agent_id}"})
        first = self.client.post(url, headers=headers, json={"amount": 40, "reason": "float top-up"})
        second = self.client.post(url, headers=headers, json={"amount": 40, "reason": "float top-up"})
        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(first.get_json()["transaction"]["id"], second.get_json()["transaction"]["id"])
        self.assertEqual(self.wallet_row(self.agent_id)["company_cash_balance"], 40.0)
        self.assertEqual(first.get_json()["transaction"]["created_by"], self.admin_id)

    def test_admin_reconcile_posts_difference(self):
        base = f"/api/admin/agents/{self.agent_id}/wallet"
        self.client.post(f"{base}/adjust", headers=self.auth(self.admin_id), json={"amount": 200, "reason": "float"})
        res = self.client.post(
            f"{base}/reconcile", headers=self.auth(self.admin_id), json={"counted_amount": 185, "note": "short"}
        )
        self.assertEqual(res.status_code, 200)
        txn = res.get_json()["transaction"]
        self.assertEqual(txn["transaction_type"], "reconciliation")
        self.assertEqual(txn["amount"], -15.0)
        self.assertEqual(res.get_json()["wallet"]["company_cash_balance"], 185.0)

        again = self.client.post(f"{base}/reconcile", headers=self.auth(self.admin_id), json={"counted_amount": 185})
        self.assertIsNone(again.get_json()["transaction"])

    def test_admin_limit_and_status(self):
        base = f"/api/admin/agents/{self.agent_id}/wallet"
        res = self.client.post(f"{base}/limit", headers=self.auth(self.admin_id), json={"max_cash_limit": 1000})
        self.assertEqual(res.get_json()["wallet"]["max_cash_limit"], 1000.0)
        self.assertEqual(
            self.client.post(f"{base}/limit", headers=self.auth(self.admin_id), json={"max_cash_limit": -1}).status_code,
            400,
        )
        res = self.client.post(f"{base}/status", headers=self.auth(self.admin_id), json={"status": "frozen"})
        self.assertEqual(res.get_json()["wallet"]["status"], "frozen")
        self.assertEqual(
            self.client.post(f"{base}/status", headers=self.auth(self.admin_id), json={"status": "gone"}).status_code,
            400,
        )

    def test_admin_wallet_endpoints_reject_non_finite_numbers(self):
        base = f"/api/admin/agents/{self.agent_id}/wallet"
        cases = (
            ("adjust", {"amount": "nan", "reason": "float"}),
            ("adjust", {"amount": "inf", "reason": "float"}),
            ("reconcile", {"counted_amount": "inf"}),
            ("reconcile", {"counted_amount": "nan"}),
            ("limit", {"max_cash_limit": "inf"}),
            ("limit", {"max_cash_limit": "-Infinity"}),
        )
        for action, payload in cases:
            res = self.client.post(f"{base}/{action}", headers=self.auth(self.admin_id), json=payload)
            self.assertEqual(res.status_code, 400, (action, payload))
            self.assertEqual(res.get_json()["error"], "VALIDATION_FAILED")
        wallet = self.wallet_row(self.agent_id)
        self.assertEqual(wallet["company_cash_balance"], 0.0)
        self.assertEqual(wallet["max_cash_limit"], 500.0)
        with self.app.app_context():
            self.assertEqual(AgentTransaction.query.filter_by(agent_id=self.agent_id).count(), 0)

    def test_wallet_service_rejects_non_finite_amounts(self):
        with self.app.app_context():
            wallet = self._wallet()
            with self.assertRaises(ValidationFailed):
                wallet_service.post_transaction(wallet, wallet_service.PURCHASE_MADE, float("-inf"))
            with self.assertRaises(ValidationFailed):
                wallet_service.adjust_balance(wallet, float("nan"), reason="x", admin_id=self.admin_id)
            db.session.rollback()
            self.assertEqual(AgentTransaction.query.filter_by(wallet_id=wallet.id).count(), 0)

    def test_frozen_wallet_blocks_cash_request(self):
        customer_id = self.seed_user("customer")
        store_id = self.seed_store()
        order_id = self.seed_order(customer_id, store_id, purchase_type="CPO")
        self.client.post(
            f"/api/admin/agents/{self.agent_id}/wallet/status", headers=self.auth(self.admin_id), json={"status": "frozen"}
        )
        self.client.post(f"/api/agent/jobs/{order_id}/accept", headers=self.auth(self.agent_id))
        res = self.client.post(
            f"/api/agent/orders/{order_id}/request-cash", headers=self.auth(self.agent_id), json={"amount": 30}
        )
        self.assertEqual(res.status_code, 423)
        self.assertEqual(res.get_json()["error"], "WALLET_NOT_ACTIVE")

    def test_cancel_after_cash_release_keeps_cash_on_wallet(self):
        customer_id = self.seed_user("customer")
        store_id = self.seed_store()
        order_id = self.seed_order(customer_id, store_id, purchase_type="CPO")
        self.client.post(f"/api/agent/jobs/{order_id}/accept", headers=self.auth(self.agent_id))
        self.client.post(
            f"/api/agent/orders/{order_id}/request-cash", headers=self.auth(self.agent_id), json={"amount": 60}
        )
        res = self.client.post(
            f"/api/admin/orders/{order_id}/cancel", headers=self.auth(self.admin_id), json={"reason": "store closed"}
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["order"]["status"], "cancelled")
        self.assertEqual(self.wallet_row(self.agent_id)["company_cash_balance"], 60.0)


class ReconciliationTestCase(support.ApiTestCase):
    def setUp(self):
        self.admin_id = self.seed_user("admin")
        self.agent_id = self.seed_user("agent")

    def _tamper(self, amount: float) -> int:
        with self.app.app_context():
            wallet = AgentWallet.query.filter_by(agent_id=self.agent_id).one()
            wallet.company_cash_balance = amount
            db.session.commit()
            return int(wallet.id)

    def test_clean_ledger_has_no_drift_for_wallet(self):
        self.client.post(
            f"/api/admin/agents/{self.agent_id}/wallet/adjust",
            headers=self.auth(self.admin_id),
            json={"amount": 75, "reason": "float"},
        )
        with self.app.app_context():
            wallet_id = AgentWallet.query.filter_by(agent_id=self.agent_id).one().id
            summary = recompute_wallet_balances()
        self.assertNotIn(wallet_id, [d["wallet_id"] for d in summary["drift_items"]])
        self.assertGreaterEqual(summary["wallet_count"], 1)

    def test_tampered_balance_is_reported(self):
        wallet_id = self._tamper(99.0)
        res = self.client.post("/api/admin/reconcile", headers=self.auth(self.admin_id), json={})
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertIsNotNone(body["report_id"])
        drift = {d["wallet_id"]: d for d in body["summary"]["drift_items"]}
        self.assertIn(wallet_id, drift)
        self.assertEqual(drift[wallet_id]["stored_balance"], 99.0)
        self.assertEqual(drift[wallet_id]["computed_balance"], 0.0)
        self.assertFalse(body["summary"]["ok"])

        latest = self.client.get("/api/admin/reconcile/latest", headers=self.auth(self.admin_id)).get_json()
        self.assertEqual(latest["report"]["id"], body["report_id"])
        self.assertGreaterEqual(latest["report"]["drift_count"], 1)

    def test_reconcile_without_persist(self):
        with self.app.app_context():
            before = ReconciliationReport.query.count()
        res = self.client.post("/api/admin/reconcile", headers=self.auth(self.admin_id), json={"persist": False})
        self.assertIsNone(res.get_json()["report_id"])
        with self.app.app_context():
            self.assertEqual(ReconciliationReport.query.count(), before)

    def test_reconcile_requires_admin(self):
        res = self.client.post("/api/admin/reconcile", headers=self.auth(self.agent_id), json={})
        self.assertEqual(res.status_code, 403)

    def test_scheduled_task_records_job_run(self):
        with self.app.app_context():
            summary = reconcile_agent_wallets.apply(kwargs={"persist": True}).get()
            self.assertIn("report_id", summary)
            run = JobRun.query.filter_by(job_name="reconcile_agent_wallets").order_by(JobRun.id.desc()).first()
            self.assertIsNotNone(run)
            self.assertEqual(run.ok, summary["drift_count"] == 0)
            self.assertEqual(run.items_processed, summary["wallet_count"])
            self.assertEqual(run.issues_found, summary["drift_count"])
            run_id = int(run.id)
        latest = self.client.get("/api/admin/reconcile/latest", headers=self.auth(self.admin_id)).get_json()
        self.assertEqual(latest["last_scheduled_run"]["id"], run_id)
        self.assertEqual(latest["report"]["id"], summary["report_id"])

    def test_ledger_rows_never_change_after_posting(self):
        self.client.post(
            f"/api/admin/agents/{self.agent_id}/wallet/adjust",
            headers=self.auth(self.admin_id),
            json={"amount": 20, "reason": "float"},
        )
        with self.app.app_context():
            rows = AgentTransaction.query.filter_by(agent_id=self.agent_id).all()
            for row in rows:
                self.assertAlmostEqual(row.balance_before + row.amount, row.balance_after, places=2)


if __name__ == "__main__":
    unittest.main()
