from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator

from payhold.errors import (
    AlreadyClaimedError,
    ConflictError,
    ForbiddenError,
    InvalidHoldStateError,
    OrderNotFoundError,
    PreconditionFailedError,
)
from payhold.extensions import db
from payhold.models import Order, PaymentHoldStatus, ShipmentStatus
from payhold.services.release_executor import ReleaseExecutor, ReleaseResult, ReleaseTrigger
from payhold.utils.fees import compute_breakdown

logger = logging.getLogger(__name__)


INVALID_STATE_MESSAGES = {
    PaymentHoldStatus.RELEASED: "Payment has already been released to the seller",
    PaymentHoldStatus.DISPUTED: "This order is currently under dispute",
    PaymentHoldStatus.REFUNDED: "This order has been refunded",
}


@dataclass
class ReleaseOutcome:
    order_id: int
    status: str  # released | already_processed
    transfer_reference: str | None = None
    release: ReleaseResult | None = None

    def to_dict(self) -> dict:
        payload = {
            "ok": True,
            "order_id": int(self.order_id),
            "status": self.status,
            "transfer_reference": self.transfer_reference,
        }
        if self.status == "released":
            payload["message"] = "Payment released to the seller"
        else:
            payload["message"] = "Payment has already been processed"
        return payload


def create_order_hold(
    *,
    buyer_id: int,
    seller_id: int,
    product_price_minor: int,
    shipping_cost_minor: int = 0,
    currency: str | None = None,
    charge_reference: str | None = None,
    tracking_code: str | None = None,
    carrier: str | None = None,
) -> Order:
    """Persist a paid order in HELD with its fee breakdown fixed."""
    breakdown = compute_breakdown(product_price_minor, shipping_cost_minor)
    order = Order(
        buyer_id=int(buyer_id),
        seller_id=int(seller_id),
        payment_hold_status=PaymentHoldStatus.HELD,
        shipment_status=ShipmentStatus.PENDING,
        currency=(currency or os.getenv("PAYOUT_CURRENCY") or "gbp").strip().lower(),
        product_price_minor=breakdown["product_price_minor"],
        shipping_cost_minor=breakdown["shipping_cost_minor"],
        protection_fee_minor=breakdown["protection_fee_minor"],
        amount_total_minor=breakdown["total_buyer_pays_minor"],
        seller_payout_minor=breakdown["seller_receives_minor"],
        charge_reference=(charge_reference or "").strip() or None,
        tracking_code=(tracking_code or "").strip() or None,
        carrier=(carrier or "").strip().lower() or None,
    )
    db.session.add(order)
    db.session.commit()
    logger.info(
        "order_hold_created order_id=%s total_minor=%s payout_minor=%s",
        order.id,
        order.amount_total_minor,
        order.seller_payout_minor,
    )
    return order


def get_order(order_id: int) -> Order:
    try:
        oid = int(order_id)
    except (TypeError, ValueError):
        raise OrderNotFoundError()
    order = db.session.get(Order, oid)
    if order is None:
        raise OrderNotFoundError(order_id=oid)
    return order


def _default_payments():
    from payhold.integrations.payments.factory import build_payments_provider
    from payhold.utils.settings import get_settings

    return build_payments_provider(get_settings())


def _default_notifier():
    from payhold.services.notification_service import get_notification_gateway

    return get_notification_gateway()


def request_manual_release(
    order_id: int,
    requesting_buyer_id: int,
    *,
    payments=None,
    notifier=None,
    now: datetime | None = None,
) -> ReleaseOutcome:
    """Buyer confirms receipt: release the held payment to the seller."""
    now = now or datetime.utcnow()
    order = get_order(order_id)
    oid = int(order.id)

    if requesting_buyer_id is None or int(order.buyer_id) != int(requesting_buyer_id):
        raise ForbiddenError(order_id=oid)

    status = order.payment_hold_status or PaymentHoldStatus.HELD
    if status != PaymentHoldStatus.HELD:
        raise InvalidHoldStateError(INVALID_STATE_MESSAGES.get(status), order_id=oid, status=status)

    if order.transfer_reference:
        raise ConflictError(order_id=oid)

    seller = order.seller
    if seller is None or not seller.has_payout_destination:
        raise PreconditionFailedError(
            "Seller has not set up a payout account yet. Please try again later.", order_id=oid
        )

    executor = ReleaseExecutor(
        payments if payments is not None else _default_payments(),
        notifier if notifier is not None else _default_notifier(),
        actor_id=int(requesting_buyer_id),
    )
    try:
        release = executor.execute(oid, ReleaseTrigger.BUYER_CONFIRMED, now=now)
    except AlreadyClaimedError:
        logger.info("manual_release_already_processed order_id=%s", oid)
        current = db.session.get(Order, oid)
        return ReleaseOutcome(
            order_id=oid,
            status="already_processed",
            transfer_reference=current.transfer_reference if current else None,
        )

    Order.query.filter(Order.id == oid, Order.buyer_confirmed_at.is_(None)).update(
        {Order.buyer_confirmed_at: now}, synchronize_session=False
    )
    db.session.commit()
    return ReleaseOutcome(
        order_id=oid,
        status="released",
        transfer_reference=release.transfer_reference,
        release=release,
    )


def _eligible_filter(now: datetime):
    return (
        Order.payment_hold_status == PaymentHoldStatus.HELD,
        Order.shipment_status == ShipmentStatus.DELIVERED,
        Order.auto_release_at.isnot(None),
        Order.auto_release_at <= now,
    )


def sweep_eligible_for_auto_release(now: datetime | None = None, *, batch_size: int = 100) -> Iterator[int]:
    """Yield ids of held, delivered orders whose auto-release time has passed.

    Keyset-paginated by id and capped at the highest id eligible when the
    sweep starts, so it always terminates and can be restarted safely.
    """
    now = now or datetime.utcnow()
    batch_size = max(1, int(batch_size))
    max_id = db.session.query(db.func.max(Order.id)).filter(*_eligible_filter(now)).scalar()
    if max_id is None:
        return
    last_id = 0
    while True:
        ids = [
            row[0]
            for row in db.session.query(Order.id)
            .filter(*_eligible_filter(now), Order.id > last_id, Order.id <= max_id)
            .order_by(Order.id.asc())
            .limit(batch_size)
            .all()
        ]
        if not ids:
            return
        for order_id in ids:
            yield int(order_id)
        last_id = ids[-1]


def find_dangling_release_claims(*, older_than: timedelta = timedelta(minutes=15), now: datetime | None = None) -> list[Order]:
    """Orders stuck in RELEASED without a transfer reference.

    A crash between claim and commit leaves this shape; each one needs a
    look at the processor before it is put back to HELD or completed.
    """
    cutoff = (now or datetime.utcnow()) - older_than
    return (
        Order.query.filter(
            Order.payment_hold_status == PaymentHoldStatus.RELEASED,
            Order.transfer_reference.is_(None),
            db.or_(Order.release_claimed_at.is_(None), Order.release_claimed_at <= cutoff),
        )
        .order_by(Order.id.asc())
        .all()
    )


def payment_hold_summary(order: Order, *, now: datetime | None = None) -> dict:
    return {
        "order_id": int(order.id),
        "payment_hold_status": order.payment_hold_status,
        "shipment_status": order.shipment_status,
        "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
        "auto_release_at": order.auto_release_at.isoformat() if order.auto_release_at else None,
        "days_until_auto_release": order.days_until_auto_release(now),
        "buyer_confirmed_at": order.buyer_confirmed_at.isoformat() if order.buyer_confirmed_at else None,
        "seller_payout_minor": int(order.seller_payout_minor or 0),
        "currency": order.currency or "gbp",
        "payout_execution_status": order.payout_execution_status,
        "transfer_reference": order.transfer_reference,
        "release_reason": order.release_reason,
        "can_confirm": order.is_held and not order.transfer_reference,
    }

