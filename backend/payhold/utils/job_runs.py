from __future__ import annotations

import json
import logging
from datetime import datetime

from payhold.extensions import db
from payhold.models import JobRun

logger = logging.getLogger(__name__)


def record_job_run(
    *,
    job_name: str,
    ok: bool,
    started_at: datetime,
    processed: int = 0,
    failed: int = 0,
    summary: dict | None = None,
    error: str | None = None,
) -> JobRun | None:
    duration_ms: int | None = None
    try:
        duration_ms = max(0, int((datetime.utcnow() - started_at).total_seconds() * 1000))
    except Exception:
        duration_ms = None
    try:
        row = JobRun(
            job_name=(job_name or "unknown").strip()[:64],
            ran_at=datetime.utcnow(),
            ok=bool(ok),
            duration_ms=duration_ms,
            processed=int(processed or 0),
            failed=int(failed or 0),
            summary_json=json.dumps(summary or {}, default=str)[:8000],
            error=(error or "")[:1000] or None,
        )
        db.session.add(row)
        db.session.commit()
        return row
    except Exception:
        logger.warning("job_run_record_failed job=%s", job_name, exc_info=True)
        try:
            db.session.rollback()
        except Exception:
            pass
        return None
