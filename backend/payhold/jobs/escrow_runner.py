from __future__ import annotations

import logging
from datetime import datetime

from payhold.errors import AlreadyClaimedError, EscrowError
from payhold.extensions import db
from payhold.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from payhold.services.escrow_service import sweep_eligible_for_auto_release
from payhold.services.release_executor import ReleaseExecutor, ReleaseTrigger
from payhold.utils.feature_flags import is_enabled
from payhold.utils.job_runs import record_job_run
from payhold.utils.settings import get_settings

logger = logging.getLogger(__name__)

JOB_NAME = "auto_release"


def _now():
    return datetime.utcnow()


def run_auto_release(
    now: datetime | None = None,
    *,
    payments=None,
    notifier=None,
    limit: int | None = None,
    batch_size: int = 100,
) -> dict:
    """Release every held, delivered order past its auto-release time.

    Each order runs through its own claim, so one failure never stops the
    batch and a concurrent buyer confirmation simply shows up as
    already_processed.
    """
    started_at = _now()
    now = now or started_at
    settings = get_settings()
    if not is_enabled("jobs.auto_release_enabled", default=True, settings=settings):
        record_job_run(job_name=JOB_NAME, ok=False, started_at=started_at, error="disabled_by_flag")
        return {
            "ok": False,
            "disabled": True,
            "processed": 0,
            "released": 0,
            "already_processed": 0,
            "failed": 0,
            "results": [],
            "ts": _now().isoformat(),
        }

    if payments is None:
        from payhold.integrations.payments.factory import build_payments_provider

        try:
            payments = build_payments_provider(settings)
        except (IntegrationDisabledError, IntegrationMisconfiguredError) as e:
            logger.error("auto_release_payments_unavailable err=%s", e)
            record_job_run(job_name=JOB_NAME, ok=False, started_at=started_at, error=str(e)[:200])
            return {
                "ok": False,
                "error": str(e),
                "processed": 0,
                "released": 0,
                "already_processed": 0,
                "failed": 0,
                "results": [],
                "ts": _now().isoformat(),
            }
    if notifier is None:
        from payhold.services.notification_service import get_notification_gateway

        notifier = get_notification_gateway(settings)

    executor = ReleaseExecutor(payments, notifier)
    processed = 0
    released = 0
    already_processed = 0
    failed = 0
    results = []

    for order_id in sweep_eligible_for_auto_release(now, batch_size=batch_size):
        if limit is not None and processed >= int(limit):
            break
        processed += 1
        try:
            release = executor.execute(order_id, ReleaseTrigger.AUTO_RELEASE, now=now)
        except AlreadyClaimedError:
            already_processed += 1
            results.append({"order_id": order_id, "status": "already_processed"})
            continue
        except EscrowError as e:
            failed += 1
            logger.warning("auto_release_order_failed order_id=%s code=%s msg=%s", order_id, e.code, e.message)
            results.append({"order_id": order_id, "status": "failed", "error": e.code, "message": e.message})
            continue
        except Exception as e:
            failed += 1
            logger.exception("auto_release_order_crashed order_id=%s", order_id)
            db.session.rollback()
            results.append(
                {"order_id": order_id, "status": "failed", "error": type(e).__name__, "message": str(e)[:200]}
            )
            continue
        released += 1
        results.append(
            {"order_id": order_id, "status": "released", "transfer_reference": release.transfer_reference}
        )

    summary = {
        "processed": processed,
        "released": released,
        "already_processed": already_processed,
        "failed": failed,
    }
    logger.info(
        "auto_release_done processed=%s released=%s already_processed=%s failed=%s",
        processed,
        released,
        already_processed,
        failed,
    )
    record_job_run(
        job_name=JOB_NAME,
        ok=failed == 0,
        started_at=started_at,
        processed=processed,
        failed=failed,
        summary=summary,
        error=None if failed == 0 else f"failed={failed}",
    )
    return {"ok": True, **summary, "results": results, "ts": _now().isoformat()}


def run_once(*, limit: int | None = None) -> dict:
    """Standalone entry for smoke scripts."""
    from payhold import create_app

    app = create_app()
    with app.app_context():
        return run_auto_release(limit=limit)
