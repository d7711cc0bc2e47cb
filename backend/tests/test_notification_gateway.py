from __future__ import annotations

import unittest
from datetime import datetime

from escrow_test_support import make_app, reset_tables, seed_users
from payhold.extensions import db
from payhold.integrations.email.base import EmailProvider
from payhold.integrations.email.mock_provider import MockEmailProvider
from payhold.models import Notification
from payhold.services.notification_service import Contact, NotificationGateway, get_notification_gateway
from payhold.utils.feature_flags import update_flags
from payhold.utils.settings import get_settings


class ExplodingProvider(EmailProvider):
    name = "exploding"

    def send_email(self, **kwargs):
        raise ConnectionError("smtp relay gone")


class NotificationGatewayTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = make_app()

    def setUp(self):
        self.ctx = self.app.app_context()
        self.ctx.push()
        reset_tables()
        self.buyer, self.seller = seed_users()

    def tearDown(self):
        db.session.remove()
        self.ctx.pop()

    def test_payment_on_hold_mentions_deadline_and_is_recorded(self):
        provider = MockEmailProvider()
        result = NotificationGateway(provider).send_payment_on_hold(
            Contact.from_user(self.buyer), 42, datetime(2026, 3, 19, 14, 0)
        )
        self.assertTrue(result.ok)
        message = provider.outbox[0]
        self.assertEqual(message["to"], "buyer@example.test")
        self.assertIn("order #42", message["subject"])
        self.assertIn("19 March 2026", message["text"])
        self.assertIn("Hi Bea Buyer,", message["text"])
        self.assertEqual(message["reference"], "order:42:payment_on_hold")

        row = Notification.query.one()
        self.assertEqual(row.kind, "payment_on_hold")
        self.assertEqual(row.status, "sent")
        self.assertEqual(row.user_id, self.buyer.id)
        self.assertEqual(row.provider_ref, "mock-1")

    def test_payment_released_wording_follows_trigger(self):
        provider = MockEmailProvider()
        gateway = NotificationGateway(provider)
        seller = Contact.from_user(self.seller)
        gateway.send_payment_released(seller, 7, 10500, "buyer_confirmed")
        gateway.send_payment_released(seller, 8, 10500, "auto_release_14_days")
        self.assertIn("£105.00", provider.outbox[0]["subject"])
        self.assertIn("buyer confirmed receipt", provider.outbox[0]["text"])
        self.assertIn("automatically released after 14 days", provider.outbox[1]["text"])

    def test_missing_email_is_skipped(self):
        provider = MockEmailProvider()
        result = NotificationGateway(provider).send_auto_release_reminder(Contact(email=""), 3, 1, None)
        self.assertFalse(result.ok)
        self.assertEqual(result.code, "NO_RECIPIENT")
        self.assertEqual(provider.outbox, [])
        self.assertEqual(Notification.query.one().status, "skipped")

    def test_provider_exception_becomes_failed_result(self):
        result = NotificationGateway(ExplodingProvider()).send_payment_on_hold(Contact.from_user(self.buyer), 1, None)
        self.assertFalse(result.ok)
        self.assertEqual(result.code, "EMAIL_PROVIDER_DOWN")
        row = Notification.query.one()
        self.assertEqual(row.status, "failed")
        self.assertEqual(row.provider, "exploding")

    def test_forced_failure_marker(self):
        provider = MockEmailProvider()
        result = provider.send_email(to="a@example.test", subject="[fail] test", html="<p>x</p>")
        self.assertFalse(result.ok)
        self.assertEqual(provider.outbox, [])

    def test_disabled_integrations_give_recording_gateway(self):
        settings = get_settings()
        settings.integrations_mode = "disabled"
        db.session.commit()
        gateway = get_notification_gateway(settings)
        self.assertIsNone(gateway.provider)
        result = gateway.send_payment_on_hold(Contact.from_user(self.buyer), 5, None)
        self.assertFalse(result.ok)
        self.assertEqual(result.code, "INTEGRATION_DISABLED")
        self.assertEqual(Notification.query.one().error_code, "INTEGRATION_DISABLED")

    def test_email_flag_off_disables_gateway(self):
        settings = get_settings()
        settings.integrations_mode = "sandbox"
        db.session.commit()
        self.assertIsInstance(get_notification_gateway(settings).provider, MockEmailProvider)
        update_flags({"notifications.email_enabled": False}, settings=settings)
        gateway = get_notification_gateway(settings)
        self.assertIsNone(gateway.provider)
        self.assertEqual(gateway.disabled_reason, "NOTIFICATIONS_DISABLED")


if __name__ == "__main__":
    unittest.main()
