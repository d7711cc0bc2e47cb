from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from payhold.extensions import db
from payhold.models import PlatformEvent
from payhold.utils.observability import get_request_id

logger = logging.getLogger(__name__)


def _safe_value(value: Any):
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _safe_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_safe_value(v) for v in value]
    return str(value)


def log_event(
    event_type: str,
    *,
    actor_user_id: int | None = None,
    subject_type: str | None = None,
    subject_id: int | str | None = None,
    severity: str = "INFO",
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> PlatformEvent | None:
    """Best-effort event logger.

    Call it at a transaction boundary: it commits its own row and rolls the
    session back if that fails. Never raises to the caller.
    """
    key = (idempotency_key or "").strip()[:180] or None
    try:
        if key:
            existing = PlatformEvent.query.filter_by(idempotency_key=key).first()
            if existing is not None:
                return existing
        event = PlatformEvent(
            event_type=(event_type or "unknown").strip()[:80],
            actor_user_id=int(actor_user_id) if actor_user_id is not None else None,
            subject_type=(subject_type or "").strip()[:40] or None,
            subject_id=str(subject_id)[:64] if subject_id is not None else None,
            request_id=get_request_id()[:80] or None,
            idempotency_key=key,
            severity=(severity or "INFO").strip().upper()[:16],
            metadata_json=json.dumps(_safe_value(metadata or {}), separators=(",", ":")),
        )
        db.session.add(event)
        db.session.commit()
        return event
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("platform_event_write_failed event=%s key=%s", event_type, key)
        return None
