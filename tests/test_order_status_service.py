from __future__ import annotations

import json
import unittest

from kasi.extensions import db
from kasi.models import Order, OrderTransition, PlatformEvent
from kasi.services.errors import InvalidTransition
from kasi.services.order_status_service import OrderStatus, transition_order
from tests import support


class AllowedTransitionsTestCase(unittest.TestCase):
    def test_happy_paths(self):
        apo = ["pending", "received", "assigned", "purchased", "on_the_way", "delivered"]
        cpo = ["pending", "assigned", "cash_requested", "cash_approved", "purchased", "on_the_way", "delivered"]
        for path in (apo, cpo):
            for current, target in zip(path, path[1:]):
                self.assertTrue(OrderStatus.can_transition(current, target), (current, target))

    def test_terminal_states_are_final(self):
        for target in OrderStatus.ALLOWED:
            self.assertFalse(OrderStatus.can_transition("delivered", target))
            self.assertFalse(OrderStatus.can_transition("cancelled", target))

    def test_no_cancel_after_purchase(self):
        self.assertFalse(OrderStatus.can_transition("purchased", "cancelled"))
        self.assertFalse(OrderStatus.can_transition("on_the_way", "cancelled"))

    def test_no_skipping_back(self):
        self.assertFalse(OrderStatus.can_transition("on_the_way", "purchased"))
        self.assertFalse(OrderStatus.can_transition("pending", "delivered"))


class TransitionOrderTestCase(support.ApiTestCase):
    def setUp(self):
        self.order_id = self.seed_order(self.seed_user("customer"), self.seed_store())

    def test_transition_writes_audit_and_event(self):
        with self.app.app_context():
            order = db.session.get(Order, self.order_id)
            row, applied = transition_order(
                order, "received", idempotency_key="t-1", actor={"type": "store", "id": 3}, reason="seen"
            )
            db.session.commit()
            self.assertTrue(applied)
            self.assertEqual(row.from_status, "pending")
            self.assertEqual(row.actor_type, "store")
            self.assertEqual(row.actor_id, 3)
            event = (
                PlatformEvent.query.filter_by(subject_id=self.order_id, event_type="order.status_changed")
                .order_by(PlatformEvent.id.desc())
                .first()
            )
            self.assertEqual(json.loads(event.metadata_json)["to"], "received")

    def test_same_key_is_a_no_op(self):
        with self.app.app_context():
            order = db.session.get(Order, self.order_id)
            first, _ = transition_order(order, "received", idempotency_key="t-2")
            db.session.commit()
            again, applied = transition_order(order, "assigned", idempotency_key="t-2")
            self.assertFalse(applied)
            self.assertEqual(again.id, first.id)
            self.assertEqual(order.status, "received")
            self.assertEqual(OrderTransition.query.filter_by(order_id=self.order_id).count(), 1)

    def test_illegal_move_raises(self):
        with self.app.app_context():
            order = db.session.get(Order, self.order_id)
            with self.assertRaises(InvalidTransition) as ctx:
                transition_order(order, "delivered", idempotency_key="t-3")
            self.assertEqual(ctx.exception.details["current_status"], "pending")
            self.assertEqual(ctx.exception.http_status, 409)
            self.assertEqual(order.status, "pending")

    def test_key_is_required(self):
        with self.app.app_context():
            order = db.session.get(Order, self.order_id)
            with self.assertRaises(ValueError):
                transition_order(order, "received", idempotency_key="  ")


if __name__ == "__main__":
    unittest.main()
