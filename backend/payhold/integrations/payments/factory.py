from __future__ import annotations

import os

from payhold.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from payhold.integrations.payments.base import PaymentsProvider
from payhold.integrations.payments.mock_provider import MockPaymentsProvider
from payhold.integrations.payments.stripe_provider import StripePaymentsProvider


def build_payments_provider(settings) -> PaymentsProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "payments_provider", "mock") or "mock").strip().lower()

    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payments")

    if provider == "mock":
        if mode == "live":
            raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:mock payments in live mode")
        return MockPaymentsProvider()

    if provider != "stripe":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    secret_key = (os.getenv("STRIPE_SECRET_KEY") or "").strip()
    if not secret_key:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing STRIPE_SECRET_KEY")

    return StripePaymentsProvider(secret_key=secret_key)


def payment_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "payments_provider", "mock") or "mock").strip().lower()
    missing = []
    if mode != "disabled" and provider == "stripe" and not (os.getenv("STRIPE_SECRET_KEY") or "").strip():
        missing.append("STRIPE_SECRET_KEY")
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
