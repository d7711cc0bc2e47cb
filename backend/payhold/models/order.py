from datetime import datetime

from payhold.extensions import db


class PaymentHoldStatus:
    HELD = "HELD"
    RELEASED = "RELEASED"
    DISPUTED = "DISPUTED"
    REFUNDED = "REFUNDED"

    ALL = (HELD, RELEASED, DISPUTED, REFUNDED)


class ShipmentStatus:
    PENDING = "PENDING"
    PRE_TRANSIT = "PRE_TRANSIT"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    ALL = (
        PENDING,
        PRE_TRANSIT,
        IN_TRANSIT,
        OUT_FOR_DELIVERY,
        DELIVERED,
        RETURNED,
        FAILED,
        CANCELLED,
    )
    SHIPPED = {PRE_TRANSIT, IN_TRANSIT}
    # Progress states a late webhook must not move a delivered parcel back to.
    BEFORE_DELIVERY = {PENDING, PRE_TRANSIT, IN_TRANSIT, OUT_FOR_DELIVERY}


class PayoutExecutionStatus:
    PENDING = "pending"
    COMPLETED = "completed"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_hold_release_due", "payment_hold_status", "shipment_status", "auto_release_at"),
    )

    id = db.Column(db.Integer, primary_key=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    payment_hold_status = db.Column(
        db.String(16), nullable=False, default=PaymentHoldStatus.HELD, server_default=PaymentHoldStatus.HELD
    )
    shipment_status = db.Column(
        db.String(24), nullable=False, default=ShipmentStatus.PENDING, server_default=ShipmentStatus.PENDING
    )

    carrier = db.Column(db.String(32), nullable=True)
    tracking_code = db.Column(db.String(64), nullable=True, index=True)

    shipped_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    estimated_delivery_at = db.Column(db.DateTime, nullable=True)
    auto_release_at = db.Column(db.DateTime, nullable=True)
    buyer_confirmed_at = db.Column(db.DateTime, nullable=True)

    # Money is stored in minor units (pence).
    currency = db.Column(db.String(3), nullable=False, default="gbp", server_default="gbp")
    product_price_minor = db.Column(db.Integer, nullable=False, default=0)
    shipping_cost_minor = db.Column(db.Integer, nullable=False, default=0)
    protection_fee_minor = db.Column(db.Integer, nullable=False, default=0)
    amount_total_minor = db.Column(db.Integer, nullable=False, default=0)
    seller_payout_minor = db.Column(db.Integer, nullable=False, default=0)

    charge_reference = db.Column(db.String(128), nullable=True)
    transfer_reference = db.Column(db.String(128), nullable=True, unique=True)
    payout_execution_status = db.Column(
        db.String(16), nullable=False, default=PayoutExecutionStatus.PENDING, server_default=PayoutExecutionStatus.PENDING
    )
    payment_released_at = db.Column(db.DateTime, nullable=True)
    release_reason = db.Column(db.String(32), nullable=True)

    # Owner of the current release claim; cleared when a claim is rolled back.
    release_claim_id = db.Column(db.String(32), nullable=True)
    release_claimed_at = db.Column(db.DateTime, nullable=True)
    release_trigger = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    buyer = db.relationship("User", foreign_keys=[buyer_id], lazy="joined")
    seller = db.relationship("User", foreign_keys=[seller_id], lazy="joined")

    @property
    def is_held(self) -> bool:
        return (self.payment_hold_status or "") == PaymentHoldStatus.HELD

    def days_until_auto_release(self, now: datetime | None = None) -> int | None:
        if not self.auto_release_at:
            return None
        remaining = self.auto_release_at - (now or datetime.utcnow())
        return max(0, remaining.days)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "payment_hold_status": self.payment_hold_status or PaymentHoldStatus.HELD,
            "shipment_status": self.shipment_status or ShipmentStatus.PENDING,
            "carrier": self.carrier or "",
            "tracking_code": self.tracking_code or "",
            "shipped_at": _iso(self.shipped_at),
            "delivered_at": _iso(self.delivered_at),
            "estimated_delivery_at": _iso(self.estimated_delivery_at),
            "auto_release_at": _iso(self.auto_release_at),
            "buyer_confirmed_at": _iso(self.buyer_confirmed_at),
            "currency": self.currency or "gbp",
            "product_price_minor": int(self.product_price_minor or 0),
            "shipping_cost_minor": int(self.shipping_cost_minor or 0),
            "protection_fee_minor": int(self.protection_fee_minor or 0),
            "amount_total_minor": int(self.amount_total_minor or 0),
            "seller_payout_minor": int(self.seller_payout_minor or 0),
            "transfer_reference": self.transfer_reference or None,
            "payout_execution_status": self.payout_execution_status or PayoutExecutionStatus.PENDING,
            "payment_released_at": _iso(self.payment_released_at),
            "release_reason": self.release_reason or None,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
