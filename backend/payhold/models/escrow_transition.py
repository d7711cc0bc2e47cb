import json
from datetime import datetime

from payhold.extensions import db


class EscrowTransition(db.Model):
    """Audit row for one step of a release attempt (claim, rollback, commit)."""

    __tablename__ = "escrow_transitions"
    __table_args__ = (
        db.UniqueConstraint("order_id", "idempotency_key", name="uq_escrow_transition_order_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, nullable=False, index=True)
    step = db.Column(db.String(24), nullable=False)
    from_status = db.Column(db.String(16), nullable=False, default="")
    to_status = db.Column(db.String(16), nullable=False)
    trigger = db.Column(db.String(32), nullable=True)
    claim_id = db.Column(db.String(32), nullable=True, index=True)
    actor_type = db.Column(db.String(32), nullable=False, default="system")
    actor_id = db.Column(db.Integer, nullable=True)
    idempotency_key = db.Column(db.String(160), nullable=False)
    reason = db.Column(db.String(240), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def metadata_dict(self) -> dict:
        try:
            parsed = json.loads(self.metadata_json or "{}")
        except Exception:
            return {}
        return parsed if isinstance(parsed, dict) else {}

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "step": self.step or "",
            "from_status": self.from_status or "",
            "to_status": self.to_status or "",
            "trigger": self.trigger or "",
            "claim_id": self.claim_id or "",
            "actor_type": self.actor_type or "",
            "actor_id": int(self.actor_id) if self.actor_id is not None else None,
            "reason": self.reason or "",
            "metadata": self.metadata_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
