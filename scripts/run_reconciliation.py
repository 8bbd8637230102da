#!/usr/bin/env python3
"""Reconciliation — nightly cron wrapper that closes out a day.

Recomputes every active attendance user's record for the target date with
closed-day semantics (absent / week_off / holiday materialized), after
re-attributing orphan machine punches and flagging overdue requests.

Usage:
    python scripts/run_reconciliation.py                      # all orgs, yesterday
    python scripts/run_reconciliation.py --org <uuid>         # single organization
    python scripts/run_reconciliation.py --date 2026-03-01    # explicit date
    python scripts/run_reconciliation.py --concurrency 4

Cron (02:00 local):
    0 2 * * *
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import date
from pathlib import Path

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

load_dotenv(PROJECT_ROOT / ".env")

from attendance_engine.common.exceptions import ValidationException  # noqa: E402
from attendance_engine.config import settings  # noqa: E402
from attendance_engine.database import engine  # noqa: E402
from attendance_engine.reconciliation.service import ReconciliationService  # noqa: E402

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("run_reconciliation")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the attendance reconciliation batch.")
    parser.add_argument(
        "--org", type=uuid.UUID, default=None,
        help="Organization id (default: every organization with active users)",
    )
    parser.add_argument(
        "--date", type=date.fromisoformat, default=None,
        help="Target date YYYY-MM-DD (default: yesterday in DEFAULT_TIMEZONE)",
    )
    parser.add_argument(
        "--concurrency", type=int, default=settings.RECONCILIATION_CONCURRENCY,
        help="Users reconciled in parallel",
    )
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> int:
    try:
        if args.org is not None:
            runs = [
                await ReconciliationService.run(
                    args.org, args.date, concurrency=args.concurrency, triggered_by="cli",
                )
            ]
        else:
            runs = await ReconciliationService.run_all(
                args.date, concurrency=args.concurrency, triggered_by="cli",
            )
    except ValidationException as exc:
        logger.error("Refusing to run: %s", exc.errors)
        return 2
    finally:
        await engine.dispose()

    failed = sum(run.failed_count for run in runs)
    for run in runs:
        logger.info(
            "org=%s date=%s status=%s users=%d failed=%d",
            run.organization_id, run.target_date, run.status.value,
            run.users_total, run.failed_count,
        )
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(parse_args())))
