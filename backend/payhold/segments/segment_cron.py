from __future__ import annotations

import hmac
import os

from flask import Blueprint, current_app, jsonify, request

from payhold.jobs.escrow_runner import run_auto_release
from payhold.jobs.reminder_runner import run_release_reminders

cron_bp = Blueprint("cron_bp", __name__, url_prefix="/api/cron")


def _cron_guard():
    """Both cron endpoints move money or mail users; refuse unless the shared secret matches."""
    secret = (os.getenv("CRON_SECRET") or "").strip()
    if not secret:
        current_app.logger.error("cron_secret_not_configured path=%s", request.path)
        return jsonify({"ok": False, "error": "Server misconfiguration"}), 500
    header = (request.headers.get("Authorization") or "").strip()
    if not hmac.compare_digest(header.encode("utf-8"), f"Bearer {secret}".encode("utf-8")):
        current_app.logger.warning("cron_unauthorized path=%s", request.path)
        return jsonify({"ok": False, "error": "Unauthorized"}), 401
    return None


@cron_bp.route("/release-payments", methods=["GET", "POST"])
def release_payments():
    denied = _cron_guard()
    if denied is not None:
        return denied
    result = run_auto_release()
    return jsonify(result), 200


@cron_bp.route("/payment-reminders", methods=["GET", "POST"])
def payment_reminders():
    denied = _cron_guard()
    if denied is not None:
        return denied
    result = run_release_reminders()
    return jsonify(result), 200
