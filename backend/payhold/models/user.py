from datetime import datetime

from payhold.extensions import db


class User(db.Model):
    """Buyer/seller record as far as the payment hold needs it.

    Accounts are owned by the auth service; this table mirrors the contact
    address and the seller's payout destination.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), index=True, nullable=True)
    role = db.Column(db.String(32), nullable=False, default="buyer")

    # Connected payout account at the processor (e.g. Stripe "acct_...").
    payout_account_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def has_payout_destination(self) -> bool:
        return bool((self.payout_account_id or "").strip())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name or "",
            "email": self.email or "",
            "role": self.role or "buyer",
            "has_payout_destination": self.has_payout_destination,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
