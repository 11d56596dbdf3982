from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import unittest
from unittest import mock

import requests

from kasi.integrations.payments.yoco_provider import YocoPaymentsProvider, verify_webhook_signature
from kasi.models import WebhookEvent
from tests import support

SECRET_BYTES = b"kasi-webhook-test-secret"
SECRET = "whsec_" + base64.b64encode(SECRET_BYTES).decode("ascii")


def _sign(webhook_id: str, timestamp: str, body: bytes) -> str:
    signed = f"{webhook_id}.{timestamp}.".encode("utf-8") + body
    return "v1," + base64.b64encode(hmac.new(SECRET_BYTES, signed, hashlib.sha256).digest()).decode("ascii")


class SignatureTestCase(unittest.TestCase):
    def test_valid_signature(self):
        ts = str(int(time.time()))
        body = b'{"id":"evt_1"}'
        header = "v1,bogus " + _sign("msg_1", ts, body)
        self.assertTrue(
            verify_webhook_signature(SECRET, webhook_id="msg_1", timestamp=ts, body=body, signature_header=header)
        )

    def test_tampered_body_fails(self):
        ts = str(int(time.time()))
        header = _sign("msg_1", ts, b'{"id":"evt_1"}')
        self.assertFalse(
            verify_webhook_signature(SECRET, webhook_id="msg_1", timestamp=ts, body=b'{"id":"evt_2"}', signature_header=header)
        )

    def test_stale_timestamp_fails(self):
        ts = "1000"
        body = b"{}"
        self.assertFalse(
            verify_webhook_signature(
                SECRET, webhook_id="msg_1", timestamp=ts, body=body, signature_header=_sign("msg_1", ts, body)
            )
        )

    def test_missing_parts_fail(self):
        self.assertFalse(verify_webhook_signature(SECRET, webhook_id="", timestamp="1", body=b"", signature_header="v1,x"))


class YocoCheckoutTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = YocoPaymentsProvider("sk_test_kasi", timeout=5)

    def _create(self):
        return self.provider.create_checkout(
            amount=45.5,
            currency="ZAR",
            metadata={"orderIds": [1]},
            success_url="https://kasi.test/ok",
            cancel_url="https://kasi.test/cancel",
            failure_url="https://kasi.test/fail",
        )

    @mock.patch("kasi.integrations.payments.yoco_provider.requests.post")
    def test_success_returns_checkout(self, post):
        post.return_value = mock.Mock(
            status_code=200,
            content=b"{}",
            json=mock.Mock(return_value={"id": "ch_1", "redirectUrl": "https://pay.yoco.test/ch_1"}),
        )
        result = self._create()
        self.assertEqual(result.checkout_id, "ch_1")
        self.assertEqual(post.call_args.kwargs["json"]["amount"], 4550)
        self.assertEqual(post.call_args.kwargs["headers"]["Authorization"], "Bearer sk_test_kasi")

    @mock.patch("kasi.integrations.payments.yoco_provider.requests.post")
    def test_non_json_error_body_is_a_checkout_failure(self, post):
        post.return_value = mock.Mock(
            status_code=502,
            content=b"<html>Bad gateway</html>",
            json=mock.Mock(side_effect=ValueError("not json")),
        )
        with self.assertRaises(RuntimeError) as ctx:
            self._create()
        self.assertIn("YOCO_CHECKOUT_FAILED", str(ctx.exception))
        self.assertIn("HTTP 502", str(ctx.exception))

    @mock.patch("kasi.integrations.payments.yoco_provider.requests.post")
    def test_network_error_is_a_checkout_failure(self, post):
        post.side_effect = requests.ConnectionError("connection refused")
        with self.assertRaises(RuntimeError) as ctx:
            self._create()
        self.assertIn("YOCO_CHECKOUT_FAILED", str(ctx.exception))

    @mock.patch("kasi.integrations.payments.yoco_provider.requests.post")
    def test_success_without_checkout_id_is_a_failure(self, post):
        post.return_value = mock.Mock(status_code=200, content=b"ok", json=mock.Mock(side_effect=ValueError("not json")))
        with self.assertRaises(RuntimeError):
            self._create()


class PaymentsWebhookTestCase(support.ApiTestCase):
    def setUp(self):
        self.customer_id = self.seed_user("customer")
        self.store_id = self.seed_store()
        self.app.config["YOCO_WEBHOOK_SECRET"] = ""
        self.app.config["YOCO_WEBHOOK_QUEUE"] = False

    def _checkout(self, order_ids, **headers):
        return self.client.post(
            "/api/payments/checkout",
            headers=self.auth(self.customer_id, **headers),
            json={"order_ids": order_ids},
        )

    def _event(self, event_id, event_type, checkout_id, order_ids=None):
        metadata = {"checkoutId": checkout_id}
        if order_ids is not None:
            metadata["orderIds"] = order_ids
        return {"id": event_id, "type": event_type, "payload": {"metadata": metadata}}

    def test_checkout_amount_comes_from_orders(self):
        a = self.seed_order(self.customer_id, self.store_id, total=100.0, delivery_fee=15.0)
        b = self.seed_order(self.customer_id, self.store_id, total=40.0, delivery_fee=25.0)
        res = self._checkout([a, b])
        self.assertEqual(res.status_code, 201)
        body = res.get_json()
        self.assertEqual(body["intent"]["amount"], 180.0)
        self.assertEqual(body["intent"]["amount_cents"], 18000)
        self.assertEqual(body["intent"]["provider"], "mock")
        self.assertEqual(sorted(body["intent"]["order_ids"]), sorted([a, b]))
        self.assertTrue(body["redirect_url"])

        ref = body["intent"]["reference"]
        own = self.client.get(f"/api/payments/intents/{ref}", headers=self.auth(self.customer_id))
        self.assertEqual(own.status_code, 200)
        stranger = self.seed_user("customer")
        self.assertEqual(self.client.get(f"/api/payments/intents/{ref}", headers=self.auth(stranger)).status_code, 404)

    def test_checkout_rejects_foreign_and_paid_orders(self):
        other = self.seed_user("customer")
        foreign = self.seed_order(other, self.store_id)
        self.assertEqual(self._checkout([foreign]).status_code, 404)
        self.assertEqual(self._checkout([]).status_code, 400)

    def test_checkout_replays_with_idempotency_key(self):
        order_id = self.seed_order(self.customer_id, self.store_id)
        first = self._checkout([order_id], **{"Idempotency-Key": "pay-1"})
        second = self._checkout([order_id], **{"Idempotency-Key": "pay-1"})
        self.assertEqual(first.get_json()["intent"]["reference"], second.get_json()["intent"]["reference"])

    def test_checkout_when_payments_disabled(self):
        order_id = self.seed_order(self.customer_id, self.store_id)
        self.app.config["PAYMENTS_PROVIDER"] = "disabled"
        try:
            res = self._checkout([order_id])
        finally:
            self.app.config["PAYMENTS_PROVIDER"] = "mock"
        self.assertEqual(res.status_code, 503)

    def test_checkout_maps_yoco_outage_to_bad_gateway(self):
        order_id = self.seed_order(self.customer_id, self.store_id)
        self.app.config["PAYMENTS_PROVIDER"] = "yoco"
        self.app.config["YOCO_SECRET_KEY"] = "sk_test_kasi"
        try:
            with mock.patch(
                "kasi.integrations.payments.yoco_provider.requests.post",
                side_effect=requests.Timeout("read timed out"),
            ):
                timed_out = self._checkout([order_id])
            with mock.patch(
                "kasi.integrations.payments.yoco_provider.requests.post",
                return_value=mock.Mock(status_code=503, content=b"down", json=mock.Mock(side_effect=ValueError("x"))),
            ):
                html_error = self._checkout([order_id])
        finally:
            self.app.config["PAYMENTS_PROVIDER"] = "mock"
            self.app.config["YOCO_SECRET_KEY"] = ""
        for res in (timed_out, html_error):
            self.assertEqual(res.status_code, 502)
            self.assertEqual(res.get_json()["error"], "PAYMENT_PROVIDER_ERROR")
        self.assertEqual(self.order_row(order_id)["payment_status"], "pending")
        self.assertEqual(res.get_json()["error"], "INTEGRATION_DISABLED")

    def test_success_webhook_marks_orders_paid_once(self):
        order_id = self.seed_order(self.customer_id, self.store_id)
        ref = self._checkout([order_id]).get_json()["intent"]["reference"]
        event = self._event(f"evt-ok-{order_id}", "payment.succeeded", ref)

        res = self.client.post("/api/webhooks/yoco", json=event)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()["processed"], 1)
        self.assertEqual(self.order_row(order_id)["payment_status"], "paid")

        replay = self.client.post("/api/webhooks/yoco", json=event)
        self.assertTrue(replay.get_json()["replayed"])
        with self.app.app_context():
            self.assertEqual(WebhookEvent.query.filter_by(event_id=f"evt-ok-{order_id}").count(), 1)

        intent = self.client.get(f"/api/payments/intents/{ref}", headers=self.auth(self.customer_id)).get_json()
        self.assertEqual(intent["intent"]["status"], "paid")
        self.assertTrue(intent["intent"]["paid_at"])

    def test_failure_does_not_downgrade_paid_order(self):
        order_id = self.seed_order(self.customer_id, self.store_id)
        ref = self._checkout([order_id]).get_json()["intent"]["reference"]
        self.client.post("/api/webhooks/yoco", json=self._event(f"evt-a-{order_id}", "checkout.succeeded", ref))
        self.client.post("/api/webhooks/yoco", json=self._event(f"evt-b-{order_id}", "payment.failed", ref))
        self.assertEqual(self.order_row(order_id)["payment_status"], "paid")

    def test_webhook_falls_back_to_metadata_order_ids(self):
        order_id = self.seed_order(self.customer_id, self.store_id)
        res = self.client.post(
            "/api/webhooks/yoco",
            json=self._event(f"evt-meta-{order_id}", "payment.failed", "ch_unknown", order_ids=[order_id]),
        )
        self.assertEqual(res.get_json()["processed"], 1)
        self.assertEqual(self.order_row(order_id)["payment_status"], "failed")

    def test_unknown_event_type_is_ignored(self):
        res = self.client.post("/api/webhooks/yoco", json={"id": "evt-refund-1", "type": "refund.created"})
        self.assertEqual(res.status_code, 200)
        with self.app.app_context():
            self.assertEqual(WebhookEvent.query.filter_by(event_id="evt-refund-1").one().status, "ignored")

    def test_invalid_payload(self):
        res = self.client.post("/api/webhooks/yoco", data="[1,2]", content_type="application/json")
        self.assertEqual(res.status_code, 400)
        res = self.client.post("/api/webhooks/yoco", json={"id": "evt-no-type"})
        self.assertEqual(res.status_code, 400)

    def test_signature_enforced_when_secret_configured(self):
        self.app.config["YOCO_WEBHOOK_SECRET"] = SECRET
        body = json.dumps({"id": "evt-signed-1", "type": "refund.created"}).encode("utf-8")
        ts = str(int(time.time()))

        bad = self.client.post(
            "/api/webhooks/yoco",
            data=body,
            content_type="application/json",
            headers={"webhook-id": "msg-1", "webhook-timestamp": ts, "webhook-signature": "v1,nope"},
        )
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(bad.get_json()["error"], "INVALID_SIGNATURE")

        good = self.client.post(
            "/api/webhooks/yoco",
            data=body,
            content_type="application/json",
            headers={"webhook-id": "msg-1", "webhook-timestamp": ts, "webhook-signature": _sign("msg-1", ts, body)},
        )
        self.assertEqual(good.status_code, 200)

    def test_queue_mode_enqueues_task(self):
        from kasi.tasks import payment_tasks

        self.app.config["YOCO_WEBHOOK_QUEUE"] = True
        with mock.patch.object(payment_tasks.process_yoco_webhook_task, "delay") as delay:
            res = self.client.post(
                "/api/webhooks/yoco",
                json={"id": "evt-q-1", "type": "payment.succeeded"},
                headers={"webhook-id": "msg-q-1"},
            )
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.get_json()["queued"])
        delay.assert_called_once()
        self.assertEqual(delay.call_args.kwargs["event_id"], "msg-q-1")

    def test_task_processes_payload(self):
        from kasi.tasks.payment_tasks import process_yoco_webhook_task

        order_id = self.seed_order(self.customer_id, self.store_id)
        with self.app.app_context():
            result = process_yoco_webhook_task.apply(
                kwargs={"payload": self._event(f"evt-task-{order_id}", "payment.succeeded", "", order_ids=[order_id])}
            ).get()
        self.assertTrue(result["ok"])
        self.assertEqual(self.order_row(order_id)["payment_status"], "paid")

    def test_payment_health_is_admin_only(self):
        self.assertEqual(self.client.get("/api/payments/health", headers=self.auth(self.customer_id)).status_code, 403)
        admin_id = self.seed_user("admin")
        body = self.client.get("/api/payments/health", headers=self.auth(admin_id)).get_json()
        self.assertEqual(body["status"], "configured")


if __name__ == "__main__":
    unittest.main()
