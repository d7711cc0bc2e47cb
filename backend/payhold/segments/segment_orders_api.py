from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from payhold.errors import ForbiddenError
from payhold.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from payhold.models import ShipmentStatus
from payhold.services.escrow_service import get_order, payment_hold_summary, request_manual_release
from payhold.services.shipment_ingest_service import apply_carrier_event
from payhold.utils.jwt_utils import user_id_from_header
from payhold.utils.observability import error_payload

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api/orders")


def _current_user_id() -> int | None:
    uid = user_id_from_header(request.headers.get("Authorization", ""))
    if uid is not None:
        g.auth_user_id = uid
    return uid


def _unauthorized():
    return jsonify(error_payload("UNAUTHORIZED", "Unauthorized", 401)), 401


def _payments_unavailable(e: Exception):
    current_app.logger.error("payments_unavailable err=%s", e)
    message = "Payments are temporarily unavailable. Please try again later."
    return jsonify(error_payload("PAYMENTS_UNAVAILABLE", message, 503)), 503


@orders_bp.post("/<int:order_id>/confirm-receipt")
def confirm_receipt(order_id: int):
    uid = _current_user_id()
    if uid is None:
        return _unauthorized()
    try:
        outcome = request_manual_release(order_id, uid)
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
        return _payments_unavailable(e)
    current_app.logger.info(
        "confirm_receipt order_id=%s buyer_id=%s status=%s", order_id, uid, outcome.status
    )
    return jsonify(outcome.to_dict()), 200


@orders_bp.get("/<int:order_id>/payment-hold")
def payment_hold_status(order_id: int):
    uid = _current_user_id()
    if uid is None:
        return _unauthorized()
    order = get_order(order_id)
    if uid not in (int(order.buyer_id), int(order.seller_id)):
        raise ForbiddenError("You can only view payment status for your own orders", order_id=order_id)
    return jsonify({"ok": True, "payment_hold": payment_hold_summary(order)}), 200


@orders_bp.route("/<int:order_id>/shipment-status", methods=["POST", "PATCH"])
def update_shipment_status(order_id: int):
    """Manual status update by the seller, for parcels without carrier webhooks."""
    uid = _current_user_id()
    if uid is None:
        return _unauthorized()
    payload = request.get_json(silent=True) or {}
    status = str(payload.get("status") or "").strip().upper()
    if status not in ShipmentStatus.ALL:
        return jsonify(error_payload("INVALID_SHIPMENT_STATUS", "Valid shipment status is required", 400)), 400
    order = get_order(order_id)
    if int(order.seller_id) != uid:
        raise ForbiddenError("Only the seller can update shipment status", order_id=order_id)

    result = apply_carrier_event(order, status, {"occurred_at": payload.get("occurred_at")})
    return jsonify({"ok": True, "result": result.to_dict()}), 200
