from __future__ import annotations

import os

from payhold.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from payhold.integrations.email.base import EmailProvider
from payhold.integrations.email.mock_provider import MockEmailProvider
from payhold.integrations.email.resend_provider import ResendEmailProvider, resend_health


def build_email_provider(settings) -> EmailProvider:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    if mode == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:email")

    provider = (getattr(settings, "email_provider", "mock") or "mock").strip().lower()
    # Sandbox with the mock provider keeps smoke runs deterministic.
    if provider == "mock":
        return MockEmailProvider()
    if provider != "resend":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:email_provider={provider}")

    missing = resend_health().get("missing", [])
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    return ResendEmailProvider(
        api_key=(os.getenv("RESEND_API_KEY") or "").strip(),
        sender=(os.getenv("EMAIL_FROM") or "").strip(),
    )


def email_health(settings) -> dict:
    mode = (getattr(settings, "integrations_mode", "disabled") or "disabled").strip().lower()
    provider = (getattr(settings, "email_provider", "mock") or "mock").strip().lower()
    missing = resend_health().get("missing", []) if provider == "resend" else []
    if mode == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "mode": mode, "provider": provider, "missing": missing}
