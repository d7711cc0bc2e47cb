from __future__ import annotations

import logging
from datetime import datetime, time, timedelta

from payhold.models import Order, PaymentHoldStatus, ShipmentStatus
from payhold.services.notification_service import Contact

logger = logging.getLogger(__name__)


DEFAULT_REMINDER_OFFSETS = (7, 3, 1)


def _day_bounds(day: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(day.date(), time.min)
    return start, start + timedelta(days=1)


def find_orders_due_for_reminder(
    offsets_in_days=DEFAULT_REMINDER_OFFSETS,
    now: datetime | None = None,
) -> dict[int, list[Order]]:
    """Held, delivered orders whose auto-release lands on the UTC calendar day
    ``offset`` days from now, grouped by offset."""
    now = now or datetime.utcnow()
    due: dict[int, list[Order]] = {}
    for offset in offsets_in_days:
        start, end = _day_bounds(now + timedelta(days=int(offset)))
        due[int(offset)] = (
            Order.query.filter(
                Order.payment_hold_status == PaymentHoldStatus.HELD,
                Order.shipment_status == ShipmentStatus.DELIVERED,
                Order.auto_release_at >= start,
                Order.auto_release_at < end,
            )
            .order_by(Order.id.asc())
            .all()
        )
    return due


def send_release_reminders(
    offsets_in_days=DEFAULT_REMINDER_OFFSETS,
    now: datetime | None = None,
    *,
    notifier=None,
) -> dict:
    if notifier is None:
        from payhold.services.notification_service import get_notification_gateway

        notifier = get_notification_gateway()

    sent = 0
    failed = 0
    skipped = 0
    results = []
    for offset, orders in find_orders_due_for_reminder(offsets_in_days, now).items():
        for order in orders:
            entry = {"order_id": int(order.id), "days_until_release": offset}
            contact = Contact.from_user(order.buyer)
            if not contact.email:
                logger.warning("release_reminder_skipped order_id=%s reason=no_buyer_email", order.id)
                skipped += 1
                results.append({**entry, "status": "skipped", "error": "Buyer missing email"})
                continue
            try:
                message = notifier.send_auto_release_reminder(contact, int(order.id), offset, order.auto_release_at)
            except Exception as e:
                logger.warning("release_reminder_failed order_id=%s err=%s", order.id, e)
                failed += 1
                results.append({**entry, "status": "failed", "error": str(e)[:200]})
                continue
            if message.ok:
                sent += 1
                results.append({**entry, "status": "sent"})
            else:
                failed += 1
                results.append({**entry, "status": "failed", "error": message.code or message.message})

    logger.info("release_reminders_done sent=%s failed=%s skipped=%s", sent, failed, skipped)
    return {"sent": sent, "failed": failed, "skipped": skipped, "results": results}
