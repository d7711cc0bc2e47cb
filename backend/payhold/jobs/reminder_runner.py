from __future__ import annotations

import logging
from datetime import datetime

from payhold.services.reminder_service import DEFAULT_REMINDER_OFFSETS, send_release_reminders
from payhold.utils.feature_flags import is_enabled
from payhold.utils.job_runs import record_job_run
from payhold.utils.settings import get_settings

logger = logging.getLogger(__name__)

JOB_NAME = "release_reminders"


def run_release_reminders(
    now: datetime | None = None,
    *,
    offsets_in_days=DEFAULT_REMINDER_OFFSETS,
    notifier=None,
) -> dict:
    started_at = datetime.utcnow()
    settings = get_settings()
    if not is_enabled("jobs.release_reminders_enabled", default=True, settings=settings):
        record_job_run(job_name=JOB_NAME, ok=False, started_at=started_at, error="disabled_by_flag")
        return {"ok": False, "disabled": True, "sent": 0, "failed": 0, "skipped": 0, "results": []}

    if notifier is None:
        from payhold.services.notification_service import get_notification_gateway

        notifier = get_notification_gateway(settings)

    report = send_release_reminders(offsets_in_days, now, notifier=notifier)
    record_job_run(
        job_name=JOB_NAME,
        ok=report["failed"] == 0,
        started_at=started_at,
        processed=report["sent"] + report["failed"] + report["skipped"],
        failed=report["failed"],
        summary={key: report[key] for key in ("sent", "failed", "skipped")},
        error=None if report["failed"] == 0 else f"failed={report['failed']}",
    )
    return {"ok": True, **report}
