from __future__ import annotations

import unittest

from kasi.extensions import db
from kasi.models import Store, User
from tests import support


class AdminEndpointsTestCase(support.ApiTestCase):
    def setUp(self):
        self.admin_id = self.seed_user("admin")
        self.customer_id = self.seed_user("customer")
        self.store_id = self.seed_store()

    def _get(self, path):
        return self.client.get(path, headers=self.auth(self.admin_id))

    def _post(self, path, payload=None):
        return self.client.post(path, headers=self.auth(self.admin_id), json=payload or {})

    def test_admin_routes_require_admin(self):
        self.assertEqual(self.client.get("/api/admin/dashboard").status_code, 401)
        res = self.client.get("/api/admin/dashboard", headers=self.auth(self.customer_id))
        self.assertEqual(res.status_code, 403)

    def test_dashboard_and_stats(self):
        self.seed_order(self.customer_id, self.store_id)
        dash = self._get("/api/admin/dashboard").get_json()
        for key in ("store_count", "active_orders", "agent_count", "today_revenue"):
            self.assertIn(key, dash)
        stats = self._get("/api/admin/orders/stats").get_json()
        self.assertIn("by_status", stats["all_time"])
        self.assertNotIn("received", stats["all_time"]["by_status"])

    def test_active_orders_and_history_paging(self):
        active = self.seed_order(self.customer_id, self.store_id)
        for _ in range(3):
            self.seed_order(self.customer_id, self.store_id, status="delivered")
        items = self._get("/api/admin/orders/active").get_json()["items"]
        self.assertIn(active, [o["id"] for o in items])
        history = self._get("/api/admin/orders/history?page=1").get_json()
        self.assertGreaterEqual(history["total"], 3)
        self.assertEqual(history["page_size"], 20)
        self.assertTrue(all(o["status"] == "delivered" for o in history["items"]))

    def test_order_detail_includes_people(self):
        order_id = self.seed_order(self.customer_id, self.store_id)
        body = self._get(f"/api/admin/orders/{order_id}").get_json()
        self.assertEqual(body["order"]["id"], order_id)
        self.assertEqual(body["customer"]["id"], self.customer_id)
        self.assertEqual(body["store"]["id"], self.store_id)
        self.assertIsNone(body["agent"])
        self.assertIsNone(body["requested_cash"])
        self.assertEqual(self._get("/api/admin/orders/999999").status_code, 404)

    def test_set_purchase_type(self):
        order_id = self.seed_order(self.customer_id, self.store_id)
        res = self._post(f"/api/admin/orders/{order_id}/purchase-type", {"purchase_type": "cpo"})
        self.assertEqual(res.get_json()["order"]["purchase_type"], "CPO")
        res = self._post(f"/api/admin/orders/{order_id}/purchase-type", {"purchase_type": "XYZ"})
        self.assertEqual(res.status_code, 400)
        delivered = self.seed_order(self.customer_id, self.store_id, status="delivered")
        res = self._post(f"/api/admin/orders/{delivered}/purchase-type", {"purchase_type": "APO"})
        self.assertEqual(res.status_code, 409)

    def test_admin_cancel_terminal_order_conflicts(self):
        order_id = self.seed_order(self.customer_id, self.store_id, status="delivered")
        res = self._post(f"/api/admin/orders/{order_id}/cancel", {"reason": "late"})
        self.assertEqual(res.status_code, 409)

    def test_store_lifecycle(self):
        res = self._post("/api/admin/stores", {"name": "Shisa Nyama Corner", "category": "takeaways"})
        self.assertEqual(res.status_code, 201)
        store = res.get_json()["store"]
        self.assertEqual(len(store["access_code"]), 6)

        res = self.client.patch(
            f"/api/admin/stores/{store['id']}", headers=self.auth(self.admin_id), json={"phone_number": "0831112222"}
        )
        self.assertEqual(res.get_json()["store"]["phone_number"], "0831112222")

        res = self._post(f"/api/admin/stores/{store['id']}/access-code")
        new_code = res.get_json()["access_code"]
        self.assertNotEqual(new_code, store["access_code"])
        login = self.client.post("/api/auth/store-login", json={"access_code": new_code})
        self.assertEqual(login.status_code, 200)

        res = self._post(f"/api/admin/stores/{store['id']}/status", {"status": "inactive"})
        self.assertEqual(res.get_json()["store"]["status"], "inactive")

        listed = self._get("/api/admin/stores?status=inactive").get_json()["items"]
        self.assertIn(store["id"], [s["id"] for s in listed])
        self.assertIn("product_count", listed[0])

        res = self.client.delete(f"/api/admin/stores/{store['id']}", headers=self.auth(self.admin_id))
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            self.assertIsNone(db.session.get(Store, store["id"]))

    def test_store_with_orders_cannot_be_deleted(self):
        self.seed_order(self.customer_id, self.store_id)
        res = self.client.delete(f"/api/admin/stores/{self.store_id}", headers=self.auth(self.admin_id))
        self.assertEqual(res.status_code, 400)

    def test_create_store_validates_category(self):
        res = self._post("/api/admin/stores", {"name": "X", "category": "casino"})
        self.assertEqual(res.status_code, 400)

    def test_agent_status_changes_user_status(self):
        agent_id = self.seed_user("agent")
        res = self._post(f"/api/admin/agents/{agent_id}/status", {"agent_status": "blacklisted"})
        self.assertEqual(res.status_code, 200)
        body = res.get_json()
        self.assertEqual(body["profile"]["agent_status"], "blacklisted")
        self.assertFalse(body["profile"]["is_online"])
        self.assertEqual(body["user"]["status"], "suspended")

        blocked = self.client.get("/api/agent/jobs", headers=self.auth(agent_id))
        self.assertEqual(blocked.status_code, 403)

        self._post(f"/api/admin/agents/{agent_id}/status", {"agent_status": "active"})
        with self.app.app_context():
            self.assertEqual(db.session.get(User, agent_id).status, "active")

    def test_agent_list_and_receipt_issues(self):
        agent_id = self.seed_user("agent")
        items = self._get("/api/admin/agents").get_json()["items"]
        row = next(i for i in items if i["user"]["id"] == agent_id)
        self.assertIsNotNone(row["wallet"])

        res = self._post(f"/api/admin/agents/{agent_id}/receipt-issues", {})
        self.assertEqual(res.get_json()["profile"]["receipt_issues"], 1)
        res = self._post(f"/api/admin/agents/{agent_id}/receipt-issues", {"delta": -5})
        self.assertEqual(res.get_json()["profile"]["receipt_issues"], 0)

        self.assertEqual(self._post(f"/api/admin/agents/{self.customer_id}/status", {"agent_status": "active"}).status_code, 404)

    def test_agent_wallet_view(self):
        agent_id = self.seed_user("agent")
        body = self._get(f"/api/admin/agents/{agent_id}/wallet").get_json()
        self.assertEqual(body["wallet"]["agent_id"], agent_id)
        self.assertEqual(body["transactions"], [])


if __name__ == "__main__":
    unittest.main()
