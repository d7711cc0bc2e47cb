from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from payhold.extensions import db
from payhold.models import WebhookEvent
from payhold.services.shipment_ingest_service import apply_carrier_event, find_order_by_tracking
from payhold.utils.observability import get_request_id

carrier_webhooks_bp = Blueprint("carrier_webhooks_bp", __name__, url_prefix="/api/webhooks")

EASYPOST_TRACKER_EVENTS = ("tracker.created", "tracker.updated")


def _hex_signature(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()


def _b64_signature(raw: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_easypost_signature(raw: bytes, signature: str, secret: str) -> bool:
    sig = (signature or "").strip()
    if sig.lower().startswith("hmac-sha256-hex="):
        sig = sig.split("=", 1)[1]
    return hmac.compare_digest(sig.lower().encode("utf-8"), _hex_signature(raw, secret).encode("utf-8"))


def verify_shipengine_signature(raw: bytes, signature: str, secret: str) -> bool:
    return hmac.compare_digest((signature or "").strip().encode("utf-8"), _b64_signature(raw, secret).encode("utf-8"))


def _reject(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


def _check_signature(raw: bytes, secret_env: str, headers: tuple[str, ...], verify) -> tuple | None:
    secret = (os.getenv(secret_env) or "").strip()
    if not secret:
        return None
    signature = ""
    for name in headers:
        signature = (request.headers.get(name) or "").strip()
        if signature:
            break
    if not signature:
        return _reject("Missing signature", 401)
    if not verify(raw, signature, secret):
        current_app.logger.warning("carrier_webhook_bad_signature path=%s", request.path)
        return _reject("Invalid signature", 401)
    return None


def _parse_json(raw: bytes) -> dict | None:
    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def _begin_event(provider: str, event_id: str, tracking_code: str, raw: bytes) -> WebhookEvent | None:
    """Record the delivery; None when this event was already processed."""
    existing = WebhookEvent.query.filter_by(provider=provider, event_id=event_id).first()
    if existing is not None:
        if existing.status == "processed":
            return None
        return existing
    row = WebhookEvent(
        provider=provider,
        event_id=event_id,
        tracking_code=tracking_code[:64],
        status="received",
        request_id=get_request_id()[:64] or None,
        payload_hash=hashlib.sha256(raw).hexdigest(),
    )
    try:
        db.session.add(row)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None
    return row


def _finish_event(row: WebhookEvent, *, status: str, order_id: int | None = None, error: str | None = None):
    row.status = status
    row.order_id = order_id
    row.error = (error or "")[:1000] or None
    row.processed_at = datetime.utcnow()
    db.session.add(row)
    db.session.commit()


def _ingest(provider: str, event_id: str, tracking_code: str, raw_status: str, stamps: dict, raw: bytes):
    event = _begin_event(provider, event_id, tracking_code, raw)
    if event is None:
        current_app.logger.info("carrier_webhook_duplicate provider=%s event_id=%s", provider, event_id)
        return jsonify({"received": True, "duplicate": True}), 200

    order = find_order_by_tracking(tracking_code)
    if order is None:
        # Carriers retry on non-2xx; an unknown parcel will never match.
        current_app.logger.info("carrier_webhook_no_order provider=%s tracking=%s", provider, tracking_code)
        _finish_event(event, status="processed", error="order_not_found")
        return jsonify({"received": True}), 200

    try:
        result = apply_carrier_event(order, raw_status, stamps, carrier=provider)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("carrier_webhook_failed provider=%s event_id=%s", provider, event_id)
        _finish_event(event, status="failed", order_id=int(order.id), error=str(e))
        return jsonify({"error": "Webhook processing failed"}), 500

    _finish_event(event, status="processed", order_id=result.order_id)
    return jsonify({"received": True, "order_id": result.order_id, "status": result.shipment_status}), 200


def _first_detail_time(details, status: str, *, earliest: bool) -> str | None:
    times = [
        d.get("datetime")
        for d in details or []
        if isinstance(d, dict) and str(d.get("status") or "").lower() == status and d.get("datetime")
    ]
    if not times:
        return None
    return sorted(times)[0] if earliest else times[0]


@carrier_webhooks_bp.post("/easypost")
def easypost_webhook():
    raw = request.get_data() or b""
    rejected = _check_signature(
        raw,
        "EASYPOST_WEBHOOK_SECRET",
        ("X-Hmac-Signature", "X-EasyPost-Webhook-Signature"),
        verify_easypost_signature,
    )
    if rejected is not None:
        return rejected
    payload = _parse_json(raw)
    if payload is None:
        return _reject("Invalid JSON", 400)

    if payload.get("description") not in EASYPOST_TRACKER_EVENTS:
        return jsonify({"received": True}), 200

    tracker = payload.get("result") or {}
    tracking_code = str(tracker.get("tracking_code") or "").strip()
    if not tracking_code:
        return _reject("Missing tracking code", 400)

    details = tracker.get("tracking_details") or []
    stamps = {
        "shipped_at": _first_detail_time(details, "in_transit", earliest=True),
        "delivered_at": _first_detail_time(details, "delivered", earliest=False),
        "estimated_delivery_at": tracker.get("est_delivery_date"),
    }
    event_id = str(payload.get("id") or "").strip() or hashlib.sha256(raw).hexdigest()
    return _ingest("easypost", event_id, tracking_code, str(tracker.get("status") or ""), stamps, raw)


@carrier_webhooks_bp.post("/shipengine")
def shipengine_webhook():
    raw = request.get_data() or b""
    rejected = _check_signature(
        raw,
        "SHIPENGINE_WEBHOOK_SECRET",
        ("X-ShipEngine-Signature",),
        verify_shipengine_signature,
    )
    if rejected is not None:
        return rejected
    payload = _parse_json(raw)
    if payload is None:
        return _reject("Invalid JSON", 400)

    data = payload.get("data")
    if payload.get("resource_type") != "API_TRACK" or not isinstance(data, dict):
        return jsonify({"received": True}), 200

    tracking_code = str(data.get("tracking_number") or "").strip()
    if not tracking_code:
        return _reject("Missing tracking code", 400)

    stamps = {
        "shipped_at": data.get("ship_date"),
        "delivered_at": data.get("actual_delivery_date"),
        "estimated_delivery_at": data.get("estimated_delivery_date"),
    }
    # ShipEngine deliveries carry no event id; the body itself identifies the event.
    event_id = hashlib.sha256(raw).hexdigest()
    return _ingest("shipengine", event_id, tracking_code, str(data.get("status_code") or ""), stamps, raw)
