from __future__ import annotations

import os
import unittest
from datetime import datetime, timedelta
from unittest.mock import patch

from escrow_test_support import make_app, reset_tables, seed_order, set_hold_status
from payhold.extensions import db
from payhold.integrations.email.mock_provider import MockEmailProvider
from payhold.jobs.reminder_runner import run_release_reminders
from payhold.models import JobRun, Notification, PaymentHoldStatus
from payhold.services.notification_service import NotificationGateway
from payhold.services.reminder_service import find_orders_due_for_reminder, send_release_reminders
from payhold.utils.feature_flags import update_flags


NOW = datetime(2026, 4, 1, 10, 0, 0)


def releasing_at(deadline: datetime, **kwargs):
    return seed_order(delivered_at=deadline - timedelta(days=14), **kwargs)


class ReleaseReminderTestCase(unittest.TestCase):
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

    def test_orders_are_grouped_by_calendar_day_offset(self):
        seven = releasing_at(datetime(2026, 4, 8, 23, 30))
        three = releasing_at(datetime(2026, 4, 4, 0, 5))
        one = releasing_at(datetime(2026, 4, 2, 8, 0))
        releasing_at(datetime(2026, 4, 6, 12, 0))
        released = releasing_at(datetime(2026, 4, 4, 9, 0))
        set_hold_status(released.id, PaymentHoldStatus.RELEASED)

        due = find_orders_due_for_reminder((7, 3, 1), NOW)
        self.assertEqual([o.id for o in due[7]], [seven.id])
        self.assertEqual([o.id for o in due[3]], [three.id])
        self.assertEqual([o.id for o in due[1]], [one.id])

    def test_reminder_email_names_days_left(self):
        order = releasing_at(datetime(2026, 4, 4, 12, 0))
        report = send_release_reminders((7, 3, 1), NOW, notifier=self.notifier)

        self.assertEqual(report["sent"], 1)
        self.assertEqual(report["results"], [{"order_id": order.id, "days_until_release": 3, "status": "sent"}])
        message = self.email.outbox[0]
        self.assertEqual(message["to"], "buyer@example.test")
        self.assertIn("3 days left", message["subject"])
        self.assertIn("04 April 2026", message["text"])
        self.assertEqual(message["reference"], f"order:{order.id}:reminder:3")

    def test_single_day_is_singular(self):
        releasing_at(datetime(2026, 4, 2, 12, 0))
        send_release_reminders((1,), NOW, notifier=self.notifier)
        self.assertIn("1 day left", self.email.outbox[0]["subject"])

    def test_buyer_without_email_is_skipped(self):
        releasing_at(datetime(2026, 4, 8, 12, 0), buyer_email=None)
        report = send_release_reminders((7,), NOW, notifier=self.notifier)
        self.assertEqual(report["skipped"], 1)
        self.assertEqual(report["results"][0]["error"], "Buyer missing email")
        self.assertEqual(self.email.outbox, [])

    def test_provider_failure_is_counted_and_recorded(self):
        releasing_at(datetime(2026, 4, 8, 12, 0))
        with patch.dict(os.environ, {"MOCK_NOTIFY_FORCE_FAIL": "1"}):
            report = send_release_reminders((7,), NOW, notifier=self.notifier)
        self.assertEqual(report["failed"], 1)
        self.assertEqual(report["results"][0]["error"], "EMAIL_PROVIDER_DOWN")
        row = Notification.query.filter_by(kind="auto_release_reminder").one()
        self.assertEqual(row.status, "failed")
        self.assertEqual(row.error_code, "EMAIL_PROVIDER_DOWN")

    def test_runner_records_job_run(self):
        releasing_at(datetime(2026, 4, 2, 12, 0))
        result = run_release_reminders(NOW, notifier=self.notifier)
        self.assertTrue(result["ok"])
        self.assertEqual(result["sent"], 1)
        run = JobRun.query.filter_by(job_name="release_reminders").one()
        self.assertTrue(run.ok)
        self.assertEqual(run.processed, 1)

    def test_runner_respects_flag(self):
        releasing_at(datetime(2026, 4, 2, 12, 0))
        update_flags({"jobs.release_reminders_enabled": False})
        result = run_release_reminders(NOW, notifier=self.notifier)
        self.assertFalse(result["ok"])
        self.assertEqual(self.email.outbox, [])


if __name__ == "__main__":
    unittest.main()
