from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import timedelta
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _bootstrap_app():
    from payhold import create_app

    app = create_app()
    app.app_context().push()
    return app


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="List orders claimed for release that never recorded a transfer reference."
    )
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=15,
        help="Ignore claims younger than this; they may still be in flight.",
    )
    args = parser.parse_args(argv)

    _bootstrap_app()
    from payhold.services.escrow_service import find_dangling_release_claims

    rows = find_dangling_release_claims(older_than=timedelta(minutes=max(0, args.older_than_minutes)))
    summary = {
        "older_than_minutes": args.older_than_minutes,
        "dangling_count": len(rows),
        "orders": [
            {
                "order_id": int(o.id),
                "release_claim_id": o.release_claim_id,
                "release_claimed_at": o.release_claimed_at.isoformat() if o.release_claimed_at else None,
                "release_trigger": o.release_trigger,
                "seller_payout_minor": int(o.seller_payout_minor or 0),
            }
            for o in rows
        ],
    }
    print(json.dumps(summary, indent=2))
    return 0 if not rows else 2


if __name__ == "__main__":
    os.environ.setdefault("FLASK_APP", "main.py")
    sys.exit(main())
