from __future__ import annotations

import os
from datetime import datetime, timedelta
from types import SimpleNamespace

from payhold import create_app
from payhold.extensions import db
from payhold.integrations.payments.base import ChargeStatus, PaymentsProvider, TransferResult
from payhold.models import Order, PaymentHoldStatus, ShipmentStatus, User
from payhold.services.escrow_service import create_order_hold


def make_app():
    os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config.update(TESTING=True)
    with app.app_context():
        db.create_all()
    return app


def reset_tables():
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()


class FakePayments(PaymentsProvider):
    """In-test processor with switchable failures and a hook inside the transfer call."""

    name = "fake"

    def __init__(self, *, fail_with: Exception | None = None, refunded: bool = False, charge_error=None, on_transfer=None):
        self.fail_with = fail_with
        self.refunded = refunded
        self.charge_error = charge_error
        self.on_transfer = on_transfer
        self.transfers: list[dict] = []
        self.charge_lookups: list[str] = []

    def create_transfer(self, *, destination, amount_minor, currency, idempotency_key, transfer_group="", metadata=None):
        call = {
            "destination": destination,
            "amount_minor": amount_minor,
            "currency": currency,
            "idempotency_key": idempotency_key,
            "transfer_group": transfer_group,
            "metadata": metadata or {},
        }
        if self.on_transfer is not None:
            self.on_transfer(call)
        if self.fail_with is not None:
            raise self.fail_with
        self.transfers.append(call)
        return TransferResult(
            reference=f"tr_fake_{len(self.transfers)}",
            amount_minor=amount_minor,
            currency=currency,
            destination=destination,
            provider=self.name,
        )

    def get_charge(self, charge_reference):
        self.charge_lookups.append(charge_reference)
        if self.charge_error is not None:
            raise self.charge_error
        return ChargeStatus(reference=charge_reference, refunded=self.refunded)


def seed_users(*, payout_account: str | None = "acct_seller_1", buyer_email: str | None = "buyer@example.test"):
    buyer = User(name="Bea Buyer", email=buyer_email, role="buyer")
    seller = User(name="Sam Seller", email="seller@example.test", role="seller", payout_account_id=payout_account)
    db.session.add_all([buyer, seller])
    db.session.commit()
    return buyer, seller


def seed_order(
    *,
    payout_account: str | None = "acct_seller_1",
    buyer_email: str | None = "buyer@example.test",
    price_minor: int = 10000,
    shipping_minor: int = 500,
    tracking_code: str | None = None,
    charge_reference: str | None = "ch_test_1",
    delivered_at: datetime | None = None,
) -> Order:
    buyer, seller = seed_users(payout_account=payout_account, buyer_email=buyer_email)
    order = create_order_hold(
        buyer_id=buyer.id,
        seller_id=seller.id,
        product_price_minor=price_minor,
        shipping_cost_minor=shipping_minor,
        charge_reference=charge_reference,
        tracking_code=tracking_code,
    )
    if delivered_at is not None:
        order.shipment_status = ShipmentStatus.DELIVERED
        order.delivered_at = delivered_at
        order.auto_release_at = delivered_at + timedelta(days=14)
        db.session.commit()
    return order


def seed_order_ids(**kwargs) -> SimpleNamespace:
    """Seed an order and keep only its keys.

    Test-client requests tear down the scoped session, which detaches any
    instance loaded before the request.
    """
    order = seed_order(**kwargs)
    return SimpleNamespace(id=int(order.id), buyer_id=int(order.buyer_id), seller_id=int(order.seller_id))


def reload(order_id: int) -> Order:
    db.session.expire_all()
    return db.session.get(Order, int(order_id))


def set_hold_status(order_id: int, status: str) -> None:
    Order.query.filter(Order.id == int(order_id)).update(
        {Order.payment_hold_status: status}, synchronize_session=False
    )
    db.session.commit()


__all__ = [
    "FakePayments",
    "PaymentHoldStatus",
    "make_app",
    "reload",
    "reset_tables",
    "seed_order",
    "seed_order_ids",
    "seed_users",
    "set_hold_status",
]
