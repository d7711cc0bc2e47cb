from __future__ import annotations

import os

from payhold.extensions import db
from payhold.models import IntegrationSettings


def _env_choice(name: str, default: str, allowed: tuple[str, ...]) -> str:
    value = (os.getenv(name) or "").strip().lower()
    return value if value in allowed else default


def get_settings() -> IntegrationSettings:
    """Return the integration settings row, creating it from env defaults."""
    row = IntegrationSettings.query.order_by(IntegrationSettings.id.asc()).first()
    if row is not None:
        return row
    row = IntegrationSettings(
        integrations_mode=_env_choice("INTEGRATIONS_MODE", "disabled", ("disabled", "sandbox", "live")),
        payments_provider=_env_choice("PAYMENTS_PROVIDER", "mock", ("mock", "stripe")),
        email_provider=_env_choice("EMAIL_PROVIDER", "mock", ("mock", "resend")),
        feature_flags_json="{}",
    )
    try:
        db.session.add(row)
        db.session.commit()
    except Exception:
        db.session.rollback()
        existing = IntegrationSettings.query.order_by(IntegrationSettings.id.asc()).first()
        if existing is None:
            raise
        return existing
    return row
