from __future__ import annotations

import unittest

from kasi.extensions import db
from kasi.models import AgentProfile, AgentWallet, Store
from tests import support


class AuthFlowTestCase(support.ApiTestCase):
    def test_register_login_and_me(self):
        res = self.client.post(
            "/api/auth/register",
            json={"email": "Thandi@Example.com", "password": "secret123", "full_name": "Thandi M"},
        )
        self.assertEqual(res.status_code, 201)
        body = res.get_json()
        self.assertEqual(body["user"]["role"], "customer")
        self.assertEqual(body["user"]["email"], "thandi@example.com")

        login = self.client.post("/api/auth/login", json={"email": "thandi@example.com", "password": "secret123"})
        self.assertEqual(login.status_code, 200)
        token = login.get_json()["token"]

        me = self.client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.get_json()["user"]["full_name"], "Thandi M")

    def test_duplicate_email_conflicts(self):
        payload = {"email": "dup@example.com", "password": "secret123"}
        self.assertEqual(self.client.post("/api/auth/register", json=payload).status_code, 201)
        res = self.client.post("/api/auth/register", json=payload)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.get_json()["error"], "EMAIL_TAKEN")

    def test_wrong_password_is_unauthorized(self):
        self.client.post("/api/auth/register", json={"email": "pw@example.com", "password": "secret123"})
        res = self.client.post("/api/auth/login", json={"email": "pw@example.com", "password": "nope-nope"})
        self.assertEqual(res.status_code, 401)

    def test_short_password_rejected(self):
        res = self.client.post("/api/auth/register", json={"email": "short@example.com", "password": "123"})
        self.assertEqual(res.status_code, 400)

    def test_only_admin_can_create_agents(self):
        res = self.client.post(
            "/api/auth/register",
            json={"email": "agent-self@example.com", "password": "secret123", "role": "agent"},
        )
        self.assertEqual(res.status_code, 403)

        admin_id = self.seed_user("admin")
        res = self.client.post(
            "/api/auth/register",
            headers=self.auth(admin_id),
            json={"email": "agent-new@example.com", "password": "secret123", "role": "agent"},
        )
        self.assertEqual(res.status_code, 201)
        agent_id = res.get_json()["user"]["id"]
        with self.app.app_context():
            self.assertIsNotNone(AgentProfile.query.filter_by(agent_id=agent_id).first())
            wallet = AgentWallet.query.filter_by(agent_id=agent_id).first()
            self.assertIsNotNone(wallet)
            self.assertEqual(wallet.max_cash_limit, 500.0)

    def test_store_login_with_access_code(self):
        store_id = self.seed_store()
        with self.app.app_context():
            code = db.session.get(Store, store_id).access_code
        res = self.client.post("/api/auth/store-login", json={"access_code": code.lower()})
        self.assertEqual(res.status_code, 200)
        token = res.get_json()["token"]
        me = self.client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(me.get_json()["store"]["id"], store_id)

    def test_store_login_rejects_unknown_and_inactive(self):
        self.assertEqual(self.client.post("/api/auth/store-login", json={"access_code": "ZZZZZZ"}).status_code, 401)
        store_id = self.seed_store(status="inactive")
        with self.app.app_context():
            code = db.session.get(Store, store_id).access_code
        self.assertEqual(self.client.post("/api/auth/store-login", json={"access_code": code}).status_code, 403)

    def test_me_requires_token(self):
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)


if __name__ == "__main__":
    unittest.main()
