from __future__ import annotations

import unittest
from datetime import datetime, timedelta

from escrow_test_support import make_app, reload, reset_tables, seed_order, set_hold_status
from payhold.errors import OrderNotFoundError
from payhold.extensions import db
from payhold.integrations.email.mock_provider import MockEmailProvider
from payhold.models import EscrowTransition, Notification, PaymentHoldStatus, ShipmentStatus
from payhold.services.notification_service import NotificationGateway
from payhold.services.shipment_ingest_service import (
    apply_carrier_event,
    find_order_by_tracking,
    map_carrier_status,
    parse_event_time,
)


class CarrierStatusMappingTestCase(unittest.TestCase):
    def test_easypost_words(self):
        self.assertEqual(map_carrier_status("pre_transit"), ShipmentStatus.PRE_TRANSIT)
        self.assertEqual(map_carrier_status("out_for_delivery"), ShipmentStatus.OUT_FOR_DELIVERY)
        self.assertEqual(map_carrier_status("delivered", carrier="easypost"), ShipmentStatus.DELIVERED)
        self.assertEqual(map_carrier_status("failure"), ShipmentStatus.FAILED)
        self.assertEqual(map_carrier_status("return_to_sender"), ShipmentStatus.IN_TRANSIT)
        self.assertEqual(map_carrier_status("available_for_pickup"), ShipmentStatus.IN_TRANSIT)

    def test_shipengine_codes(self):
        self.assertEqual(map_carrier_status("AC", carrier="shipengine"), ShipmentStatus.PRE_TRANSIT)
        self.assertEqual(map_carrier_status("AT"), ShipmentStatus.IN_TRANSIT)
        self.assertEqual(map_carrier_status("de", carrier="shipengine"), ShipmentStatus.DELIVERED)
        self.assertEqual(map_carrier_status("EX"), ShipmentStatus.FAILED)
        self.assertEqual(map_carrier_status("NY"), ShipmentStatus.PENDING)

    def test_canonical_names_pass_through(self):
        for status in ShipmentStatus.ALL:
            self.assertEqual(map_carrier_status(status), status)

    def test_unknown_status_defaults_to_in_transit(self):
        self.assertEqual(map_carrier_status("unknown"), ShipmentStatus.IN_TRANSIT)
        self.assertEqual(map_carrier_status("ZZ", carrier="shipengine"), ShipmentStatus.IN_TRANSIT)
        self.assertEqual(map_carrier_status(""), ShipmentStatus.IN_TRANSIT)
        self.assertEqual(map_carrier_status(None), ShipmentStatus.IN_TRANSIT)

    def test_parse_event_time_normalizes_to_naive_utc(self):
        self.assertEqual(parse_event_time("2026-03-01T10:00:00Z"), datetime(2026, 3, 1, 10, 0))
        self.assertEqual(parse_event_time("2026-03-01T12:00:00+02:00"), datetime(2026, 3, 1, 10, 0))
        self.assertEqual(parse_event_time(datetime(2026, 3, 1, 9)), datetime(2026, 3, 1, 9))
        self.assertIsNone(parse_event_time("yesterday"))
        self.assertIsNone(parse_event_time(None))


class ShipmentIngestTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = make_app()

    def setUp(self):
        self.ctx = self.app.app_context()
        self.ctx.push()
        reset_tables()
        self.email = MockEmailProvider()
        self.notifier = NotificationGateway(self.email)

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def test_first_in_transit_sets_shipped_at_once(self):
        order = seed_order(tracking_code="TRK-SHIP-1")
        first = apply_carrier_event(
            order.id, "in_transit", {"shipped_at": "2026-03-01T08:00:00Z"}, notifier=self.notifier
        )
        self.assertIn("shipped_at", first.updated_fields)
        apply_carrier_event(order.id, "in_transit", {"shipped_at": "2026-03-02T08:00:00Z"}, notifier=self.notifier)
        fresh = reload(order.id)
        self.assertEqual(fresh.shipment_status, ShipmentStatus.IN_TRANSIT)
        self.assertEqual(fresh.shipped_at, datetime(2026, 3, 1, 8, 0))

    def test_delivery_sets_deadline_fourteen_days_after_carrier_time(self):
        order = seed_order(tracking_code="TRK-DEL-1")
        result = apply_carrier_event(
            order.id, "delivered", {"delivered_at": "2026-03-01T10:00:00Z"}, carrier="easypost", notifier=self.notifier
        )
        self.assertTrue(result.first_delivery)
        fresh = reload(order.id)
        self.assertEqual(fresh.shipment_status, ShipmentStatus.DELIVERED)
        self.assertEqual(fresh.delivered_at, datetime(2026, 3, 1, 10, 0))
        self.assertEqual(fresh.auto_release_at, fresh.delivered_at + timedelta(days=14))
        self.assertEqual(fresh.carrier, "easypost")
        self.assertEqual(len(self.email.outbox), 1)
        self.assertEqual(self.email.outbox[0]["to"], "buyer@example.test")

    def test_delivery_without_carrier_time_uses_ingest_time(self):
        order = seed_order()
        now = datetime(2026, 4, 2, 15, 0)
        apply_carrier_event(order.id, "DE", carrier="shipengine", now=now, notifier=self.notifier)
        fresh = reload(order.id)
        self.assertEqual(fresh.delivered_at, now)
        self.assertEqual(fresh.auto_release_at, now + timedelta(days=14))

    def test_duplicate_delivered_event_is_idempotent(self):
        order = seed_order()
        apply_carrier_event(order.id, "delivered", {"delivered_at": "2026-03-01T10:00:00Z"}, notifier=self.notifier)
        snapshot = reload(order.id)
        deadline = snapshot.auto_release_at
        delivered = snapshot.delivered_at

        again = apply_carrier_event(
            order.id, "delivered", {"delivered_at": "2026-03-05T10:00:00Z"}, notifier=self.notifier
        )
        self.assertFalse(again.first_delivery)
        fresh = reload(order.id)
        self.assertEqual(fresh.delivered_at, delivered)
        self.assertEqual(fresh.auto_release_at, deadline)
        self.assertEqual(Notification.query.filter_by(order_id=order.id, kind="payment_on_hold").count(), 1)

    def test_late_progress_event_does_not_undo_delivery(self):
        order = seed_order()
        apply_carrier_event(order.id, "delivered", notifier=self.notifier)
        late = apply_carrier_event(order.id, "in_transit", notifier=self.notifier)
        self.assertEqual(late.shipment_status, ShipmentStatus.DELIVERED)
        self.assertNotIn("shipment_status", late.updated_fields)

    def test_released_order_ignores_redelivered_webhook(self):
        order = seed_order()
        set_hold_status(order.id, PaymentHoldStatus.RELEASED)
        result = apply_carrier_event(order.id, "delivered", notifier=self.notifier)
        self.assertTrue(result.ignored)
        fresh = reload(order.id)
        self.assertEqual(fresh.payment_hold_status, PaymentHoldStatus.RELEASED)
        self.assertIsNone(fresh.auto_release_at)
        self.assertEqual(EscrowTransition.query.count(), 0)
        self.assertEqual(self.email.outbox, [])

    def test_unknown_status_is_stored_as_in_transit(self):
        order = seed_order()
        result = apply_carrier_event(order.id, "held_at_customs_wtf", notifier=self.notifier)
        self.assertEqual(result.shipment_status, ShipmentStatus.IN_TRANSIT)

    def test_estimated_delivery_is_overwritten(self):
        order = seed_order()
        apply_carrier_event(order.id, "in_transit", {"estimated_delivery_at": "2026-03-04"}, notifier=self.notifier)
        apply_carrier_event(order.id, "in_transit", {"estimated_delivery_at": "2026-03-06"}, notifier=self.notifier)
        self.assertEqual(reload(order.id).estimated_delivery_at, datetime(2026, 3, 6))

    def test_missing_order_raises(self):
        with self.assertRaises(OrderNotFoundError):
            apply_carrier_event(999999, "delivered", notifier=self.notifier)

    def test_find_order_by_tracking(self):
        order = seed_order(tracking_code="TRK-FIND-1")
        self.assertEqual(find_order_by_tracking("TRK-FIND-1").id, order.id)
        self.assertIsNone(find_order_by_tracking("TRK-NOPE"))
        self.assertIsNone(find_order_by_tracking(""))


if __name__ == "__main__":
    unittest.main()
