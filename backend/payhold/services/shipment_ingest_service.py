from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from payhold.errors import OrderNotFoundError
from payhold.extensions import db
from payhold.models import Order, PaymentHoldStatus, ShipmentStatus
from payhold.utils.events import log_event
from payhold.utils.fees import calculate_auto_release_at

logger = logging.getLogger(__name__)


EASYPOST_STATUS_MAP = {
    "pre_transit": ShipmentStatus.PRE_TRANSIT,
    "in_transit": ShipmentStatus.IN_TRANSIT,
    "out_for_delivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "returned": ShipmentStatus.RETURNED,
    "failure": ShipmentStatus.FAILED,
    "cancelled": ShipmentStatus.CANCELLED,
    "available_for_pickup": ShipmentStatus.IN_TRANSIT,
    "return_to_sender": ShipmentStatus.IN_TRANSIT,
}

SHIPENGINE_STATUS_MAP = {
    "UN": ShipmentStatus.PRE_TRANSIT,
    "AC": ShipmentStatus.PRE_TRANSIT,
    "PU": ShipmentStatus.PRE_TRANSIT,
    "IT": ShipmentStatus.IN_TRANSIT,
    "AT": ShipmentStatus.IN_TRANSIT,
    "DE": ShipmentStatus.DELIVERED,
    "EX": ShipmentStatus.FAILED,
    "CA": ShipmentStatus.FAILED,
    "NY": ShipmentStatus.PENDING,
}

CARRIER_STATUS_MAPS = {
    "easypost": EASYPOST_STATUS_MAP,
    "shipengine": SHIPENGINE_STATUS_MAP,
}

# A carrier status we cannot classify still means the parcel is moving.
DEFAULT_SHIPMENT_STATUS = ShipmentStatus.IN_TRANSIT


def map_carrier_status(raw_status: str | None, *, carrier: str | None = None) -> str:
    value = (raw_status or "").strip()
    if not value:
        return DEFAULT_SHIPMENT_STATUS
    if value.upper() in ShipmentStatus.ALL:
        return value.upper()
    table = CARRIER_STATUS_MAPS.get((carrier or "").strip().lower())
    if table is SHIPENGINE_STATUS_MAP:
        return SHIPENGINE_STATUS_MAP.get(value.upper(), DEFAULT_SHIPMENT_STATUS)
    if table is EASYPOST_STATUS_MAP:
        return EASYPOST_STATUS_MAP.get(value.lower(), DEFAULT_SHIPMENT_STATUS)
    if value.lower() in EASYPOST_STATUS_MAP:
        return EASYPOST_STATUS_MAP[value.lower()]
    return SHIPENGINE_STATUS_MAP.get(value.upper(), DEFAULT_SHIPMENT_STATUS)


def parse_event_time(value) -> datetime | None:
    """Carrier timestamps (datetime or ISO-8601 text) as naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.warning("carrier_timestamp_unparseable value=%s", str(value)[:64])
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass
class IngestResult:
    order_id: int
    previous_status: str
    shipment_status: str
    ignored: bool = False
    first_delivery: bool = False
    updated_fields: list[str] = field(default_factory=list)
    auto_release_at: datetime | None = None
    notified: bool = False

    def to_dict(self) -> dict:
        return {
            "order_id": int(self.order_id),
            "previous_status": self.previous_status,
            "shipment_status": self.shipment_status,
            "ignored": bool(self.ignored),
            "first_delivery": bool(self.first_delivery),
            "updated_fields": list(self.updated_fields),
            "auto_release_at": self.auto_release_at.isoformat() if self.auto_release_at else None,
            "notified": bool(self.notified),
        }


def find_order_by_tracking(tracking_code: str | None) -> Order | None:
    code = (tracking_code or "").strip()
    if not code:
        return None
    return Order.query.filter_by(tracking_code=code).order_by(Order.id.desc()).first()


def _resolve_order(order_ref) -> Order:
    if isinstance(order_ref, Order):
        return order_ref
    try:
        order_id = int(order_ref)
    except (TypeError, ValueError):
        raise OrderNotFoundError()
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFoundError(order_id=order_id)
    return order


def apply_carrier_event(
    order_ref,
    raw_status: str | None,
    event_timestamps: dict | None = None,
    *,
    carrier: str | None = None,
    now: datetime | None = None,
    notifier=None,
) -> IngestResult:
    """Apply one carrier tracking event to an order.

    Status follows the carrier; shipped_at, delivered_at and auto_release_at
    are written once each, with conditional updates so replays and concurrent
    deliveries of the same event cannot move the deadline.
    """
    now = now or datetime.utcnow()
    order = _resolve_order(order_ref)
    order_id = int(order.id)
    previous = order.shipment_status or ShipmentStatus.PENDING
    mapped = map_carrier_status(raw_status, carrier=carrier)
    result = IngestResult(order_id=order_id, previous_status=previous, shipment_status=previous)

    if order.payment_hold_status != PaymentHoldStatus.HELD:
        logger.info(
            "shipment_event_ignored order_id=%s hold=%s raw=%s",
            order_id,
            order.payment_hold_status,
            raw_status,
        )
        result.ignored = True
        return result

    stamps = {key: parse_event_time(val) for key, val in (event_timestamps or {}).items()}
    occurred_at = stamps.get("occurred_at")

    new_status = mapped
    if previous == ShipmentStatus.DELIVERED and mapped in ShipmentStatus.BEFORE_DELIVERY:
        # Late progress events arrive out of order; delivery stands.
        new_status = previous

    held = (Order.id == order_id, Order.payment_hold_status == PaymentHoldStatus.HELD)
    values = {}
    if new_status != previous:
        values[Order.shipment_status] = new_status
        result.updated_fields.append("shipment_status")
    estimated = stamps.get("estimated_delivery_at")
    if estimated is not None and estimated != order.estimated_delivery_at:
        values[Order.estimated_delivery_at] = estimated
        result.updated_fields.append("estimated_delivery_at")
    carrier_name = (carrier or "").strip().lower()
    if carrier_name and carrier_name != (order.carrier or ""):
        values[Order.carrier] = carrier_name
        result.updated_fields.append("carrier")
    if values:
        values[Order.updated_at] = now
        Order.query.filter(*held).update(values, synchronize_session=False)

    if new_status in ShipmentStatus.SHIPPED:
        shipped_at = stamps.get("shipped_at") or occurred_at or now
        rows = Order.query.filter(*held, Order.shipped_at.is_(None)).update(
            {Order.shipped_at: shipped_at}, synchronize_session=False
        )
        if rows:
            result.updated_fields.append("shipped_at")

    if new_status == ShipmentStatus.DELIVERED:
        delivered_at = order.delivered_at or stamps.get("delivered_at") or occurred_at or now
        auto_release_at = calculate_auto_release_at(delivered_at)
        rows = Order.query.filter(*held, Order.auto_release_at.is_(None)).update(
            {Order.delivered_at: delivered_at, Order.auto_release_at: auto_release_at},
            synchronize_session=False,
        )
        if rows:
            result.first_delivery = True
            result.updated_fields.extend(["delivered_at", "auto_release_at"])

    db.session.commit()

    order = db.session.get(Order, order_id)
    result.shipment_status = order.shipment_status
    result.auto_release_at = order.auto_release_at
    logger.info(
        "shipment_event_applied order_id=%s raw=%s status=%s->%s fields=%s",
        order_id,
        raw_status,
        previous,
        result.shipment_status,
        ",".join(result.updated_fields) or "-",
    )

    if result.first_delivery:
        log_event(
            "auto_release_scheduled",
            subject_type="order",
            subject_id=order_id,
            idempotency_key=f"auto_release_scheduled:{order_id}",
            metadata={"delivered_at": order.delivered_at, "auto_release_at": order.auto_release_at},
        )
        result.notified = _notify_buyer_on_hold(order, notifier)
    return result


def _notify_buyer_on_hold(order: Order, notifier) -> bool:
    from payhold.services.notification_service import Contact, get_notification_gateway

    try:
        gateway = notifier or get_notification_gateway()
        message = gateway.send_payment_on_hold(Contact.from_user(order.buyer), int(order.id), order.auto_release_at)
    except Exception:
        logger.warning("payment_on_hold_notify_failed order_id=%s", order.id, exc_info=True)
        return False
    return bool(message.ok)
