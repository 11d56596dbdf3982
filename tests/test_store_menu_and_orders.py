from __future__ import annotations

import csv
import io
import unittest

from kasi.extensions import db
from kasi.models import OrderItem, PlatformEvent, Product
from tests import support


class StoreMenuTestCase(support.ApiTestCase):
    def setUp(self):
        self.store_id = self.seed_store(name="Kota King")
        self.admin_id = self.seed_user("admin")

    def test_public_list_hides_inactive_stores(self):
        hidden = self.seed_store(status="inactive", name="Closed Spaza")
        body = self.client.get("/api/stores").get_json()
        ids = [row["id"] for row in body["items"]]
        self.assertIn(self.store_id, ids)
        self.assertNotIn(hidden, ids)
        self.assertNotIn("access_code", body["items"][0])
        self.assertEqual(self.client.get(f"/api/stores/{hidden}").status_code, 404)

    def test_search_by_name(self):
        body = self.client.get("/api/stores?q=kota").get_json()
        self.assertIn(self.store_id, [row["id"] for row in body["items"]])

    def test_store_session_manages_its_menu(self):
        headers = self.store_auth(self.store_id)
        res = self.client.post(f"/api/stores/{self.store_id}/categories", headers=headers, json={"name": "Kotas"})
        self.assertEqual(res.status_code, 201)
        category_id = res.get_json()["category"]["id"]

        res = self.client.post(
            f"/api/stores/{self.store_id}/products",
            headers=headers,
            json={"name": "Full house kota", "price": "45.5", "category_id": category_id},
        )
        self.assertEqual(res.status_code, 201)
        product = res.get_json()["product"]
        self.assertEqual(product["price"], 45.5)
        self.assertEqual(product["category"], "Kotas")

        res = self.client.post(
            f"/api/stores/{self.store_id}/products/{product['id']}/availability", headers=headers, json={}
        )
        self.assertFalse(res.get_json()["product"]["available"])

        public = self.client.get(f"/api/stores/{self.store_id}/products").get_json()["items"]
        self.assertNotIn(product["id"], [p["id"] for p in public])
        own = self.client.get(f"/api/stores/{self.store_id}/products", headers=headers).get_json()["items"]
        self.assertIn(product["id"], [p["id"] for p in own])

        with self.app.app_context():
            self.assertIsNotNone(
                PlatformEvent.query.filter_by(event_type="product.created", subject_id=product["id"]).first()
            )

    def test_other_store_cannot_edit_menu(self):
        other = self.seed_store(name="Other")
        res = self.client.post(
            f"/api/stores/{self.store_id}/products",
            headers=self.store_auth(other),
            json={"name": "Chips", "price": 10, "category": "Snacks"},
        )
        self.assertEqual(res.status_code, 403)

    def test_customers_cannot_edit_menu(self):
        customer_id = self.seed_user("customer")
        res = self.client.post(
            f"/api/stores/{self.store_id}/categories", headers=self.auth(customer_id), json={"name": "Drinks"}
        )
        self.assertEqual(res.status_code, 403)

    def test_product_validation(self):
        headers = self.auth(self.admin_id)
        res = self.client.post(
            f"/api/stores/{self.store_id}/products", headers=headers, json={"name": "Free lunch", "price": 0, "category": "x"}
        )
        self.assertEqual(res.status_code, 400)
        res = self.client.post(f"/api/stores/{self.store_id}/products", headers=headers, json={"price": 5, "category": "x"})
        self.assertEqual(res.status_code, 400)

    def test_product_price_must_be_finite(self):
        url = f"/api/stores/{self.store_id}/products"
        headers = self.store_auth(self.store_id)
        for price in ("inf", "nan", "-inf"):
            res = self.client.post(url, headers=headers, json={"name": "Mystery box", "price": price, "category": "Snacks"})
            self.assertEqual(res.status_code, 400, price)
            self.assertIn("finite", res.get_json()["message"])
        product_id = self.seed_product(self.store_id, name="Amagwinya", price=4.0)
        res = self.client.patch(f"{url}/{product_id}", headers=headers, json={"price": "Infinity"})
        self.assertEqual(res.status_code, 400)
        with self.app.app_context():
            self.assertEqual(db.session.get(Product, product_id).price, 4.0)

    def test_product_category_id_must_be_an_integer(self):
        url = f"/api/stores/{self.store_id}/products"
        headers = self.store_auth(self.store_id)
        res = self.client.post(url, headers=headers, json={"name": "Polony", "price": 12, "category_id": "abc"})
        self.assertEqual(res.status_code, 400)
        self.assertIn("category_id", res.get_json()["message"])
        product_id = self.seed_product(self.store_id, name="Russian", price=9.0)
        res = self.client.patch(f"{url}/{product_id}", headers=headers, json={"category_id": "1.5x"})
        self.assertEqual(res.status_code, 400)

    def test_store_gps_must_be_finite(self):
        res = self.client.patch(
            "/api/store/profile", headers=self.store_auth(self.store_id), json={"gps_latitude": "nan"}
        )
        self.assertEqual(res.status_code, 400)

    def test_deleting_category_unlinks_products(self):
        product_id = self.seed_product(self.store_id, name="Vetkoek")
        with self.app.app_context():
            category_id = db.session.get(Product, product_id).category_id
        res = self.client.delete(
            f"/api/stores/{self.store_id}/categories/{category_id}", headers=self.store_auth(self.store_id)
        )
        self.assertEqual(res.status_code, 200)
        self.assertGreaterEqual(res.get_json()["unlinked_products"], 1)
        with self.app.app_context():
            product = db.session.get(Product, product_id)
            self.assertIsNone(product.category_id)

    def test_deleting_product_keeps_order_snapshot(self):
        customer_id = self.seed_user("customer")
        product_id = self.seed_product(self.store_id, name="Russian", price=12.0)
        res = self.client.post(
            "/api/orders/checkout",
            headers=self.auth(customer_id),
            json={"items": [{"product_id": product_id, "quantity": 2}], "delivery_address": "7 Main"},
        )
        order_id = res.get_json()["order_ids"][0]
        res = self.client.delete(
            f"/api/stores/{self.store_id}/products/{product_id}", headers=self.store_auth(self.store_id)
        )
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            line = OrderItem.query.filter_by(order_id=order_id).one()
            self.assertIsNone(line.product_id)
            self.assertEqual(line.product_name, "Russian")
            self.assertEqual(line.subtotal, 24.0)

    def test_product_image_upload(self):
        product_id = self.seed_product(self.store_id, name="Pie")
        res = self.client.post(
            f"/api/stores/{self.store_id}/products/{product_id}/image",
            headers=self.store_auth(self.store_id),
            data={"image": (io.BytesIO(support.png_bytes()), "pie.png")},
            content_type="multipart/form-data",
        )
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["product"]["image_url"])

    def test_banking_change_resets_verification(self):
        res = self.client.patch(
            f"/api/store/profile?store_id={self.store_id}",
            headers=self.auth(self.admin_id),
            json={"banking_details_verified": True},
        )
        self.assertTrue(res.get_json()["store"]["banking_details_verified"])
        res = self.client.patch(
            "/api/store/profile",
            headers=self.store_auth(self.store_id),
            json={"bank_name": "Capitec", "account_number": "123456789", "account_type": "savings"},
        )
        self.assertEqual(res.status_code, 200)
        store = res.get_json()["store"]
        self.assertFalse(store["banking_details_verified"])
        self.assertEqual(store["bank_name"], "Capitec")

    def test_profile_rejects_unknown_category(self):
        res = self.client.patch(
            "/api/store/profile", headers=self.store_auth(self.store_id), json={"category": "casino"}
        )
        self.assertEqual(res.status_code, 400)


class StoreOrderQueueTestCase(support.ApiTestCase):
    def setUp(self):
        self.store_id = self.seed_store()
        self.customer_id = self.seed_user("customer")

    def _advance(self, order_id, store_id=None, **payload):
        return self.client.post(
            f"/api/store/orders/{order_id}/advance",
            headers=self.store_auth(store_id or self.store_id),
            json=payload,
        )

    def test_store_walks_own_delivery_to_done(self):
        order_id = self.seed_order(self.customer_id, self.store_id)
        queue = self.client.get("/api/store/orders", headers=self.store_auth(self.store_id)).get_json()["items"]
        self.assertIn(order_id, [o["id"] for o in queue])

        self.assertEqual(self._advance(order_id, store_notes="Packed").get_json()["order"]["status"], "received")
        self.assertEqual(self._advance(order_id).get_json()["order"]["status"], "purchased")
        self.assertEqual(self._advance(order_id).get_json()["order"]["status"], "on_the_way")
        self.assertEqual(self.order_row(order_id)["store_notes"], "Packed")

        delivered = self._advance(order_id).get_json()["order"]
        self.assertEqual(delivered["status"], "delivered")
        self.assertEqual(delivered["payment_status"], "paid")

        res = self._advance(order_id)
        self.assertEqual(res.status_code, 409)

    def test_store_cannot_dispatch_agent_order(self):
        agent_id = self.seed_user("agent")
        order_id = self.seed_order(self.customer_id, self.store_id, status="purchased", agent_id=agent_id)
        res = self._advance(order_id)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(self.order_row(order_id)["status"], "purchased")

    def test_store_cannot_deliver_agent_order(self):
        agent_id = self.seed_user("agent")
        order_id = self.seed_order(self.customer_id, self.store_id, status="on_the_way", agent_id=agent_id)
        res = self._advance(order_id)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(self.order_row(order_id)["status"], "on_the_way")

    def test_store_cannot_touch_other_store_orders(self):
        other = self.seed_store(name="Elsewhere")
        order_id = self.seed_order(self.customer_id, self.store_id)
        self.assertEqual(self._advance(order_id, store_id=other).status_code, 403)

    def test_user_token_cannot_use_store_queue(self):
        res = self.client.get("/api/store/orders", headers=self.auth(self.customer_id))
        self.assertEqual(res.status_code, 401)

    def test_dashboard_and_history_csv(self):
        self.seed_order(self.customer_id, self.store_id)
        self.seed_order(self.customer_id, self.store_id, status="delivered", total=80.0)
        dash = self.client.get("/api/store/dashboard", headers=self.store_auth(self.store_id)).get_json()
        self.assertGreaterEqual(dash["new_orders"], 1)

        history = self.client.get("/api/store/history", headers=self.store_auth(self.store_id)).get_json()
        self.assertGreaterEqual(history["count"], 1)

        res = self.client.get("/api/store/history.csv", headers=self.store_auth(self.store_id))
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.mimetype.startswith("text/csv"))
        rows = list(csv.reader(io.StringIO(res.get_data(as_text=True))))
        self.assertEqual(rows[0][0], "order_id")
        self.assertIn("80.00", [r[3] for r in rows[1:]])


if __name__ == "__main__":
    unittest.main()
