from datetime import datetime

from payhold.extensions import db


class IntegrationSettings(db.Model):
    """Single-row switchboard for external integrations (secrets stay env-only)."""

    __tablename__ = "integration_settings"

    id = db.Column(db.Integer, primary_key=True)

    integrations_mode = db.Column(db.String(24), nullable=False, default="disabled", server_default="disabled")  # disabled | sandbox | live
    payments_provider = db.Column(db.String(24), nullable=False, default="mock", server_default="mock")  # mock | stripe
    email_provider = db.Column(db.String(24), nullable=False, default="mock", server_default="mock")  # mock | resend
    feature_flags_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "integrations_mode": self.integrations_mode or "disabled",
            "payments_provider": self.payments_provider or "mock",
            "email_provider": self.email_provider or "mock",
            "feature_flags_json": self.feature_flags_json or "{}",
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
