from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from payhold.jobs.escrow_runner import run_auto_release as _run_auto_release
from payhold.jobs.reminder_runner import run_release_reminders as _run_release_reminders


def _task_log(task_name: str, *, status: str, started_at: float, **extra):
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": int(max(0.0, time.perf_counter() - float(started_at)) * 1000.0),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra)
    current_app.logger.info(json.dumps(payload, default=str))


@shared_task(name="payhold.tasks.escrow_tasks.run_auto_release")
def run_auto_release(limit: int | None = None) -> dict:
    started = time.perf_counter()
    result = _run_auto_release(limit=limit)
    _task_log(
        "run_auto_release",
        status="ok" if result.get("ok") else "skipped",
        started_at=started,
        processed=result.get("processed", 0),
        released=result.get("released", 0),
        already_processed=result.get("already_processed", 0),
        failed=result.get("failed", 0),
    )
    return {key: value for key, value in result.items() if key != "results"}


@shared_task(name="payhold.tasks.escrow_tasks.send_release_reminders")
def send_release_reminders() -> dict:
    started = time.perf_counter()
    result = _run_release_reminders()
    _task_log(
        "send_release_reminders",
        status="ok" if result.get("ok") else "skipped",
        started_at=started,
        sent=result.get("sent", 0),
        failed=result.get("failed", 0),
        skipped=result.get("skipped", 0),
    )
    return {key: value for key, value in result.items() if key != "results"}
