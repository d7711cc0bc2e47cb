from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from payhold.errors import (
    AlreadyClaimedError,
    ExternalServiceFailure,
    PreconditionFailedError,
    ReleaseNotRecordedError,
)
from payhold.extensions import db
from payhold.integrations.common import ProviderCallError
from payhold.integrations.payments.base import PaymentsProvider
from payhold.models import EscrowTransition, Order, PaymentHoldStatus, PayoutExecutionStatus
from payhold.utils.events import log_event

logger = logging.getLogger(__name__)


class ReleaseTrigger:
    BUYER_CONFIRMED = "buyer_confirmed"
    AUTO_RELEASE = "auto_release_14_days"

    ALL = (BUYER_CONFIRMED, AUTO_RELEASE)


@dataclass
class ReleaseResult:
    order_id: int
    transfer_reference: str
    amount_minor: int
    currency: str
    trigger: str
    claim_id: str
    released_at: datetime
    notified: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["released_at"] = self.released_at.isoformat()
        return data


def transfer_idempotency_key(order_id: int) -> str:
    return f"order:{int(order_id)}:release"


def record_transition(
    order_id: int,
    *,
    step: str,
    from_status: str,
    to_status: str,
    claim_id: str,
    trigger: str = "",
    reason: str = "",
    actor_type: str = "system",
    actor_id: int | None = None,
    metadata: dict | None = None,
) -> EscrowTransition | None:
    """Append one audit row for a release attempt step.

    The conditional updates decide outcomes; a failed audit write is logged
    and otherwise ignored.
    """
    key = f"{claim_id}:{step}"[:160]
    row = EscrowTransition(
        order_id=int(order_id),
        step=step[:24],
        from_status=from_status or "",
        to_status=to_status,
        trigger=(trigger or "")[:32] or None,
        claim_id=claim_id,
        actor_type=(actor_type or "system")[:32],
        actor_id=actor_id,
        idempotency_key=key,
        reason=(reason or "")[:240] or None,
        metadata_json=json.dumps(metadata or {}, default=str)[:4000],
    )
    try:
        db.session.add(row)
        db.session.commit()
        return row
    except IntegrityError:
        db.session.rollback()
        return EscrowTransition.query.filter_by(order_id=int(order_id), idempotency_key=key).first()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("escrow_transition_write_failed order_id=%s step=%s", order_id, step, exc_info=True)
        return None


class ReleaseExecutor:
    """Moves held funds to the seller exactly once.

    claim -> validate -> transfer -> commit, with a conditional rollback to
    HELD when validation or the transfer fails. The claim is a single
    conditional UPDATE, so two concurrent attempts cannot both transfer.
    """

    def __init__(self, payments: PaymentsProvider, notifier=None, *, actor_id: int | None = None):
        self.payments = payments
        self.notifier = notifier
        self.actor_id = actor_id

    def execute(self, order_id: int, trigger: str, *, now: datetime | None = None) -> ReleaseResult:
        if trigger not in ReleaseTrigger.ALL:
            raise ValueError(f"unknown release trigger: {trigger}")
        now = now or datetime.utcnow()
        order_id = int(order_id)
        claim_id = uuid.uuid4().hex

        if not self._claim(order_id, claim_id, trigger, now):
            logger.info("release_claim_lost order_id=%s trigger=%s", order_id, trigger)
            raise AlreadyClaimedError(order_id=order_id)

        logger.info("release_claimed order_id=%s trigger=%s claim_id=%s", order_id, trigger, claim_id)
        self._audit(order_id, "claim", PaymentHoldStatus.HELD, PaymentHoldStatus.RELEASED, claim_id, trigger)
        log_event(
            "payment_hold_claimed",
            subject_type="order",
            subject_id=order_id,
            idempotency_key=f"payment_hold_claimed:{claim_id}",
            metadata={"trigger": trigger, "claim_id": claim_id},
        )

        try:
            order = db.session.get(Order, order_id)
            destination = self._validate(order)
        except PreconditionFailedError as e:
            self._rollback_claim(order_id, claim_id, trigger, reason=e.message)
            raise
        except ProviderCallError as e:
            logger.error("release_charge_lookup_failed order_id=%s code=%s", order_id, e.code)
            self._rollback_claim(order_id, claim_id, trigger, reason=f"charge_lookup:{e.code}")
            raise ExternalServiceFailure(order_id=order_id) from e
        except Exception as e:
            logger.error(
                "release_validate_failed order_id=%s claim_id=%s err=%s", order_id, claim_id, e, exc_info=True
            )
            db.session.rollback()
            self._rollback_claim(order_id, claim_id, trigger, reason=f"validate:{type(e).__name__}")
            raise ExternalServiceFailure(order_id=order_id) from e

        amount_minor = int(order.seller_payout_minor or 0)
        currency = (order.currency or "gbp").lower()
        try:
            transfer = self.payments.create_transfer(
                destination=destination,
                amount_minor=amount_minor,
                currency=currency,
                idempotency_key=transfer_idempotency_key(order_id),
                transfer_group=str(order_id),
                metadata={"order_id": order_id, "trigger": trigger, "buyer_id": int(order.buyer_id)},
            )
        except Exception as e:
            logger.error(
                "release_transfer_failed order_id=%s trigger=%s claim_id=%s err=%s",
                order_id,
                trigger,
                claim_id,
                e,
            )
            self._rollback_claim(order_id, claim_id, trigger, reason=f"transfer:{type(e).__name__}")
            raise ExternalServiceFailure(order_id=order_id) from e

        self._commit(order_id, claim_id, trigger, transfer.reference, now)
        logger.info(
            "payment_released order_id=%s trigger=%s transfer=%s amount_minor=%s",
            order_id,
            trigger,
            transfer.reference,
            amount_minor,
        )
        self._audit(
            order_id,
            "commit",
            PaymentHoldStatus.RELEASED,
            PaymentHoldStatus.RELEASED,
            claim_id,
            trigger,
            metadata={"transfer_reference": transfer.reference, "amount_minor": amount_minor},
        )
        log_event(
            "payment_released",
            subject_type="order",
            subject_id=order_id,
            idempotency_key=f"payment_released:{order_id}",
            metadata={"trigger": trigger, "transfer_reference": transfer.reference, "amount_minor": amount_minor},
        )

        result = ReleaseResult(
            order_id=order_id,
            transfer_reference=transfer.reference,
            amount_minor=amount_minor,
            currency=currency,
            trigger=trigger,
            claim_id=claim_id,
            released_at=now,
        )
        result.notified = self._notify_seller(order_id, amount_minor, currency, trigger)
        return result

    def _claim(self, order_id: int, claim_id: str, trigger: str, now: datetime) -> bool:
        rows = Order.query.filter(
            Order.id == order_id,
            Order.payment_hold_status == PaymentHoldStatus.HELD,
            Order.transfer_reference.is_(None),
        ).update(
            {
                Order.payment_hold_status: PaymentHoldStatus.RELEASED,
                Order.release_claim_id: claim_id,
                Order.release_claimed_at: now,
                Order.release_trigger: trigger,
                Order.updated_at: now,
            },
            synchronize_session=False,
        )
        db.session.commit()
        return rows == 1

    def _validate(self, order: Order) -> str:
        seller = order.seller
        destination = (getattr(seller, "payout_account_id", "") or "").strip()
        if not destination:
            raise PreconditionFailedError(
                "Seller has not set up a payout account yet", order_id=int(order.id)
            )
        if int(order.seller_payout_minor or 0) <= 0:
            raise PreconditionFailedError("Order has no payout amount to release", order_id=int(order.id))
        charge_ref = (order.charge_reference or "").strip()
        if charge_ref:
            charge = self.payments.get_charge(charge_ref)
            if charge.refunded:
                raise PreconditionFailedError(
                    "The payment for this order has been refunded", order_id=int(order.id)
                )
        return destination

    def _commit(self, order_id: int, claim_id: str, trigger: str, reference: str, now: datetime) -> None:
        try:
            rows = Order.query.filter(
                Order.id == order_id,
                Order.release_claim_id == claim_id,
                Order.transfer_reference.is_(None),
            ).update(
                {
                    Order.transfer_reference: reference,
                    Order.payout_execution_status: PayoutExecutionStatus.COMPLETED,
                    Order.payment_released_at: now,
                    Order.release_reason: trigger,
                    Order.updated_at: now,
                },
                synchronize_session=False,
            )
            db.session.commit()
        except SQLAlchemyError as e:
            # Money has moved; the order stays RELEASED without a reference
            # until the dangling-claim report picks it up.
            db.session.rollback()
            logger.critical(
                "release_commit_failed order_id=%s claim_id=%s transfer=%s", order_id, claim_id, reference
            )
            raise ReleaseNotRecordedError(order_id=order_id, transfer_reference=reference) from e
        if rows != 1:
            logger.critical(
                "release_commit_claim_missing order_id=%s claim_id=%s transfer=%s", order_id, claim_id, reference
            )
            raise ReleaseNotRecordedError(order_id=order_id, transfer_reference=reference)

    def _rollback_claim(self, order_id: int, claim_id: str, trigger: str, *, reason: str) -> bool:
        try:
            rows = Order.query.filter(
                Order.id == order_id,
                Order.payment_hold_status == PaymentHoldStatus.RELEASED,
                Order.release_claim_id == claim_id,
                Order.transfer_reference.is_(None),
            ).update(
                {
                    Order.payment_hold_status: PaymentHoldStatus.HELD,
                    Order.release_claim_id: None,
                    Order.release_claimed_at: None,
                    Order.release_trigger: None,
                    Order.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.critical("release_rollback_failed order_id=%s claim_id=%s", order_id, claim_id, exc_info=True)
            return False

        if rows != 1:
            # Someone else moved the order on (e.g. a dispute); leave it alone.
            logger.warning("release_rollback_skipped order_id=%s claim_id=%s", order_id, claim_id)
            return False

        logger.info("release_rolled_back order_id=%s claim_id=%s reason=%s", order_id, claim_id, reason)
        self._audit(
            order_id, "rollback", PaymentHoldStatus.RELEASED, PaymentHoldStatus.HELD, claim_id, trigger, reason=reason
        )
        log_event(
            "payment_release_rolled_back",
            subject_type="order",
            subject_id=order_id,
            severity="WARN",
            idempotency_key=f"payment_release_rolled_back:{claim_id}",
            metadata={"trigger": trigger, "claim_id": claim_id, "reason": reason},
        )
        return True

    def _audit(self, order_id, step, from_status, to_status, claim_id, trigger, *, reason="", metadata=None):
        actor_type = "buyer" if trigger == ReleaseTrigger.BUYER_CONFIRMED and self.actor_id else "system"
        record_transition(
            order_id,
            step=step,
            from_status=from_status,
            to_status=to_status,
            claim_id=claim_id,
            trigger=trigger,
            reason=reason,
            actor_type=actor_type,
            actor_id=self.actor_id,
            metadata=metadata,
        )

    def _notify_seller(self, order_id: int, amount_minor: int, currency: str, trigger: str) -> bool:
        if self.notifier is None:
            return False
        from payhold.services.notification_service import Contact

        try:
            order = db.session.get(Order, order_id)
            result = self.notifier.send_payment_released(
                Contact.from_user(order.seller if order else None),
                order_id,
                amount_minor,
                trigger,
                currency=currency,
            )
        except Exception:
            logger.warning("payment_released_notify_failed order_id=%s", order_id, exc_info=True)
            return False
        return bool(result.ok)
