from __future__ import annotations

import os
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import requests

from payhold.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError, ProviderCallError
from payhold.integrations.email.factory import build_email_provider, email_health
from payhold.integrations.email.mock_provider import MockEmailProvider
from payhold.integrations.email.resend_provider import ResendEmailProvider
from payhold.integrations.payments.factory import build_payments_provider, payment_health
from payhold.integrations.payments.mock_provider import MockPaymentsProvider
from payhold.integrations.payments.stripe_provider import StripePaymentsProvider


def settings(mode="sandbox", payments="mock", email="mock"):
    return SimpleNamespace(integrations_mode=mode, payments_provider=payments, email_provider=email)


def response(status: int, body: dict):
    r = MagicMock()
    r.status_code = status
    r.content = b"x"
    r.json.return_value = body
    return r


class PaymentsFactoryTestCase(unittest.TestCase):
    def test_disabled_mode_raises(self):
        with self.assertRaises(IntegrationDisabledError):
            build_payments_provider(settings(mode="disabled"))

    def test_mock_in_sandbox(self):
        self.assertIsInstance(build_payments_provider(settings()), MockPaymentsProvider)

    def test_mock_refused_in_live(self):
        with self.assertRaises(IntegrationMisconfiguredError):
            build_payments_provider(settings(mode="live"))

    def test_stripe_requires_secret(self):
        with patch.dict(os.environ, {"STRIPE_SECRET_KEY": ""}):
            with self.assertRaises(IntegrationMisconfiguredError):
                build_payments_provider(settings(mode="live", payments="stripe"))
            self.assertEqual(
                payment_health(settings(mode="live", payments="stripe"))["missing"], ["STRIPE_SECRET_KEY"]
            )
        with patch.dict(os.environ, {"STRIPE_SECRET_KEY": "sk_test_123"}):
            provider = build_payments_provider(settings(mode="live", payments="stripe"))
        self.assertIsInstance(provider, StripePaymentsProvider)


class StripeProviderTestCase(unittest.TestCase):
    def setUp(self):
        self.provider = StripePaymentsProvider("sk_test_123", timeout=5)

    def test_transfer_sends_idempotency_key(self):
        ok = response(200, {"id": "tr_123", "amount": 10500, "currency": "gbp", "destination": "acct_1"})
        with patch("payhold.integrations.payments.stripe_provider.requests.post", return_value=ok) as post:
            result = self.provider.create_transfer(
                destination="acct_1",
                amount_minor=10500,
                currency="GBP",
                idempotency_key="order:9:release",
                transfer_group="9",
                metadata={"order_id": 9},
            )
        self.assertEqual(result.reference, "tr_123")
        kwargs = post.call_args.kwargs
        self.assertEqual(kwargs["headers"]["Idempotency-Key"], "order:9:release")
        self.assertEqual(kwargs["data"]["amount"], 10500)
        self.assertEqual(kwargs["data"]["currency"], "gbp")
        self.assertEqual(kwargs["data"]["transfer_group"], "9")
        self.assertEqual(kwargs["data"]["metadata[order_id]"], "9")
        self.assertEqual(kwargs["timeout"], 5)

    def test_transfer_error_and_timeout(self):
        declined = response(400, {"error": {"message": "Insufficient funds"}})
        with patch("payhold.integrations.payments.stripe_provider.requests.post", return_value=declined):
            with self.assertRaises(ProviderCallError) as ctx:
                self.provider.create_transfer(destination="a", amount_minor=1, currency="gbp", idempotency_key="k")
        self.assertEqual(ctx.exception.code, "STRIPE_TRANSFER_FAILED")
        self.assertIn("Insufficient funds", str(ctx.exception))

        with patch(
            "payhold.integrations.payments.stripe_provider.requests.post", side_effect=requests.Timeout("slow")
        ):
            with self.assertRaises(ProviderCallError) as ctx:
                self.provider.create_transfer(destination="a", amount_minor=1, currency="gbp", idempotency_key="k")
        self.assertEqual(ctx.exception.code, "STRIPE_TIMEOUT")

    def test_charge_refund_detection(self):
        partial = response(200, {"id": "ch_1", "refunded": False, "amount_refunded": 200})
        with patch("payhold.integrations.payments.stripe_provider.requests.get", return_value=partial):
            charge = self.provider.get_charge("ch_1")
        self.assertTrue(charge.refunded)
        self.assertEqual(charge.amount_refunded_minor, 200)

        clean = response(200, {"id": "ch_2", "refunded": False, "amount_refunded": 0})
        with patch("payhold.integrations.payments.stripe_provider.requests.get", return_value=clean):
            self.assertFalse(self.provider.get_charge("ch_2").refunded)

    def test_non_json_success_body_is_a_provider_error(self):
        garbled = response(200, {})
        garbled.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
        with patch("payhold.integrations.payments.stripe_provider.requests.get", return_value=garbled):
            with self.assertRaises(ProviderCallError) as ctx:
                self.provider.get_charge("ch_1")
        self.assertEqual(ctx.exception.code, "STRIPE_CHARGE_LOOKUP_FAILED")

        with patch("payhold.integrations.payments.stripe_provider.requests.post", return_value=garbled):
            with self.assertRaises(ProviderCallError) as ctx:
                self.provider.create_transfer(destination="a", amount_minor=1, currency="gbp", idempotency_key="k")
        self.assertEqual(ctx.exception.code, "STRIPE_TRANSFER_FAILED")

    def test_mock_refunded_charges(self):
        provider = MockPaymentsProvider(refunded_charges={"ch_gone"})
        self.assertTrue(provider.get_charge("ch_gone").refunded)
        self.assertFalse(provider.get_charge("ch_live").refunded)


class EmailFactoryTestCase(unittest.TestCase):
    def test_disabled_mode_raises(self):
        with self.assertRaises(IntegrationDisabledError):
            build_email_provider(settings(mode="disabled"))

    def test_mock_provider(self):
        self.assertIsInstance(build_email_provider(settings(mode="live")), MockEmailProvider)

    def test_resend_requires_key_and_sender(self):
        with patch.dict(os.environ, {"RESEND_API_KEY": "", "EMAIL_FROM": ""}):
            with self.assertRaises(IntegrationMisconfiguredError):
                build_email_provider(settings(email="resend"))
            self.assertEqual(email_health(settings(email="resend"))["status"], "misconfigured")
        with patch.dict(os.environ, {"RESEND_API_KEY": "re_123", "EMAIL_FROM": "Payhold <hold@example.test>"}):
            self.assertIsInstance(build_email_provider(settings(email="resend")), ResendEmailProvider)

    def test_resend_error_mapping(self):
        provider = ResendEmailProvider(api_key="re_123", sender="hold@example.test", timeout=3)
        with patch(
            "payhold.integrations.email.resend_provider.requests.post",
            return_value=response(422, {"message": "Invalid `from` field"}),
        ):
            result = provider.send_email(to="a@example.test", subject="s", html="<p>h</p>")
        self.assertFalse(result.ok)
        self.assertEqual(result.code, "EMAIL_INVALID_SENDER")

        with patch(
            "payhold.integrations.email.resend_provider.requests.post",
            return_value=response(200, {"id": "em_1"}),
        ) as post:
            sent = provider.send_email(to="a@example.test", subject="s", html="<p>h</p>", reference="order:1:reminder:3")
        self.assertTrue(sent.ok)
        self.assertEqual(sent.provider_ref, "em_1")
        self.assertEqual(post.call_args.kwargs["headers"]["Idempotency-Key"], "order:1:reminder:3")


if __name__ == "__main__":
    unittest.main()
