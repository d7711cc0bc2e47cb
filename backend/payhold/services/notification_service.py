from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from payhold.extensions import db
from payhold.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from payhold.integrations.email.base import EmailProvider, MessageResult
from payhold.integrations.email.factory import build_email_provider
from payhold.models import Notification
from payhold.utils.fees import AUTO_RELEASE_DAYS, format_money

logger = logging.getLogger(__name__)


@dataclass
class Contact:
    email: str
    name: str = ""
    user_id: int | None = None

    @classmethod
    def from_user(cls, user) -> "Contact":
        if user is None:
            return cls(email="")
        return cls(
            email=(getattr(user, "email", "") or "").strip(),
            name=(getattr(user, "name", "") or "").strip(),
            user_id=int(user.id) if getattr(user, "id", None) is not None else None,
        )


def _date_label(value: datetime | None) -> str:
    return value.strftime("%d %B %Y") if value else "soon"


def _greeting(contact: Contact) -> str:
    return f"Hi {contact.name or 'there'},"


class NotificationGateway:
    """Sends the three payment-hold emails and records each attempt.

    Every send returns a MessageResult; nothing here raises, so a mail outage
    can never undo a release or a delivery update.
    """

    def __init__(self, provider: EmailProvider | None, *, disabled_reason: str = ""):
        self.provider = provider
        self.disabled_reason = disabled_reason or "INTEGRATION_DISABLED"

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "name", "") or "none"

    def send_payment_on_hold(self, buyer: Contact, order_id: int, deadline: datetime | None) -> MessageResult:
        subject = f"Your payment is protected: order #{int(order_id)}"
        text = (
            f"{_greeting(buyer)}\n\n"
            f"Your order #{int(order_id)} has been delivered. The payment is held securely and the seller "
            "does not receive it until you confirm receipt.\n"
            f"If everything is fine, confirm receipt now. Otherwise the payment is released automatically "
            f"on {_date_label(deadline)} ({AUTO_RELEASE_DAYS} days after delivery)."
        )
        return self._deliver(
            contact=buyer,
            order_id=order_id,
            kind="payment_on_hold",
            subject=subject,
            text=text,
            reference=f"order:{int(order_id)}:payment_on_hold",
            meta={"deadline": deadline.isoformat() if deadline else None},
        )

    def send_payment_released(
        self,
        seller: Contact,
        order_id: int,
        amount_minor: int,
        reason: str,
        *,
        currency: str = "gbp",
    ) -> MessageResult:
        amount = format_money(amount_minor, currency)
        if reason == "buyer_confirmed":
            why = "The buyer confirmed receipt of the item."
        else:
            why = f"The payment was automatically released after {AUTO_RELEASE_DAYS} days."
        subject = f"Payment released! {amount} for order #{int(order_id)}"
        text = (
            f"{_greeting(seller)}\n\n"
            f"{why}\n"
            f"{amount} is on its way to your payout account. Funds usually arrive within 2-7 business days."
        )
        return self._deliver(
            contact=seller,
            order_id=order_id,
            kind="payment_released",
            subject=subject,
            text=text,
            reference=f"order:{int(order_id)}:payment_released",
            meta={"amount_minor": int(amount_minor or 0), "currency": currency, "reason": reason},
        )

    def send_auto_release_reminder(
        self,
        buyer: Contact,
        order_id: int,
        days_remaining: int,
        deadline: datetime | None,
    ) -> MessageResult:
        days = int(days_remaining)
        unit = "day" if days == 1 else "days"
        subject = f"{days} {unit} left to confirm receipt: order #{int(order_id)}"
        text = (
            f"{_greeting(buyer)}\n\n"
            f"The payment for order #{int(order_id)} will be released to the seller automatically on "
            f"{_date_label(deadline)}.\n"
            "If you received the item, confirm receipt now. If something is wrong, contact us before then."
        )
        return self._deliver(
            contact=buyer,
            order_id=order_id,
            kind="auto_release_reminder",
            subject=subject,
            text=text,
            reference=f"order:{int(order_id)}:reminder:{days}",
            meta={"days_remaining": days, "deadline": deadline.isoformat() if deadline else None},
        )

    def _deliver(
        self,
        *,
        contact: Contact,
        order_id: int,
        kind: str,
        subject: str,
        text: str,
        reference: str,
        meta: dict,
    ) -> MessageResult:
        if not contact or not (contact.email or "").strip():
            result = MessageResult(ok=False, code="NO_RECIPIENT", message="recipient has no email address")
            self._record(contact, order_id, kind, subject, text, result, status="skipped", meta=meta)
            return result

        if self.provider is None:
            result = MessageResult(ok=False, code=self.disabled_reason, message="email integration unavailable")
        else:
            html = "".join(f"<p>{line}</p>" for line in text.split("\n") if line.strip())
            try:
                result = self.provider.send_email(
                    to=contact.email, subject=subject, html=html, text=text, reference=reference
                )
            except Exception as e:
                result = MessageResult(ok=False, code="EMAIL_PROVIDER_DOWN", message=str(e)[:200])

        status = "sent" if result.ok else "failed"
        if not result.ok:
            logger.warning(
                "notification_send_failed kind=%s order_id=%s code=%s", kind, int(order_id), result.code
            )
        self._record(contact, order_id, kind, subject, text, result, status=status, meta=meta)
        return result

    def _record(self, contact, order_id, kind, subject, text, result: MessageResult, *, status: str, meta: dict):
        try:
            row = Notification(
                user_id=getattr(contact, "user_id", None),
                order_id=int(order_id),
                channel="email",
                kind=kind,
                recipient=(getattr(contact, "email", "") or "")[:255] or None,
                title=subject[:160],
                message=text,
                status=status,
                provider=self.provider_name,
                provider_ref=(result.provider_ref or "")[:120] or None,
                error_code=None if result.ok else (result.code or "")[:64],
                sent_at=datetime.utcnow() if result.ok else None,
                meta=json.dumps(meta or {}, default=str),
            )
            db.session.add(row)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("notification_record_failed kind=%s order_id=%s", kind, order_id, exc_info=True)


def get_notification_gateway(settings=None) -> NotificationGateway:
    from payhold.utils.feature_flags import is_enabled
    from payhold.utils.settings import get_settings

    settings = settings or get_settings()
    if not is_enabled("notifications.email_enabled", default=True, settings=settings):
        return NotificationGateway(None, disabled_reason="NOTIFICATIONS_DISABLED")
    try:
        return NotificationGateway(build_email_provider(settings))
    except IntegrationDisabledError:
        return NotificationGateway(None, disabled_reason="INTEGRATION_DISABLED")
    except IntegrationMisconfiguredError as e:
        logger.warning("email_provider_misconfigured err=%s", e)
        return NotificationGateway(None, disabled_reason="INTEGRATION_MISCONFIGURED")
