"""Reconciliation batch — close out a day for every attendance user.

Each user is recomputed in its own session and transaction with
``day_closed=True``, bounded by a semaphore. A failing user is logged and
recorded on the run row; the sweep carries on.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendance_engine.approvals.service import ApprovalService
from attendance_engine.attendance.service import AttendanceService
from attendance_engine.common.constants import ReconciliationStatus
from attendance_engine.common.exceptions import ValidationException
from attendance_engine.common.timeutils import get_zone, local_today, utcnow
from attendance_engine.config import settings
from attendance_engine.database import async_session_factory, session_scope
from attendance_engine.directory.service import DirectoryService
from attendance_engine.punches.service import PunchService
from attendance_engine.reconciliation.models import ReconciliationRun

logger = logging.getLogger(__name__)

FAILED = "failed"


def default_target_date(tz_name: Optional[str] = None) -> date:
    """Yesterday in the organization's default timezone."""
    return local_today(tz_name) - timedelta(days=1)


def seconds_until_next_run(now: datetime, hour: int, tz_name: Optional[str] = None) -> float:
    local_now = now.astimezone(get_zone(tz_name))
    next_run = local_now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if next_run <= local_now:
        next_run += timedelta(days=1)
    return (next_run - local_now).total_seconds()


class ReconciliationService:

    @staticmethod
    async def _reconcile_user(
        session_factory: async_sessionmaker,
        semaphore: asyncio.Semaphore,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        target_date: date,
    ) -> str:
        async with semaphore:
            try:
                async with session_scope(session_factory) as session:
                    result = await AttendanceService.recompute(
                        session, organization_id, user_id, target_date, day_closed=True,
                    )
                return result.outcome
            except Exception:
                logger.exception(
                    "Reconciliation failed for user %s on %s", user_id, target_date,
                )
                return FAILED

    @staticmethod
    async def run(
        organization_id: uuid.UUID,
        target_date: Optional[date] = None,
        *,
        session_factory: async_sessionmaker = async_session_factory,
        concurrency: Optional[int] = None,
        triggered_by: str = "api",
        actor_id: Optional[uuid.UUID] = None,
    ) -> ReconciliationRun:
        """Reconcile every active attendance user of an organization for *target_date*."""
        target_date = target_date or default_target_date()
        if target_date >= local_today():
            raise ValidationException(
                {"target_date": ["Only a day that has already ended can be reconciled."]}
            )
        concurrency = max(1, concurrency or settings.RECONCILIATION_CONCURRENCY)

        async with session_factory() as session:
            run = ReconciliationRun(
                organization_id=organization_id,
                target_date=target_date,
                status=ReconciliationStatus.running,
                triggered_by=triggered_by,
                actor_id=actor_id,
                failed_user_ids=[],
            )
            session.add(run)
            await session.commit()
            run_id = run.id

        orphans = 0
        try:
            async with session_scope(session_factory) as session:
                reattributed = await PunchService.reattribute_orphans(session, organization_id)
            orphans = reattributed.reattributed
        except Exception:
            logger.exception("Orphan re-attribution failed for %s", organization_id)

        async with session_factory() as session:
            users = await DirectoryService.list_attendance_users(session, organization_id)
            user_ids = [u.id for u in users]

        semaphore = asyncio.Semaphore(concurrency)
        outcomes = await asyncio.gather(*(
            ReconciliationService._reconcile_user(
                session_factory, semaphore, organization_id, user_id, target_date,
            )
            for user_id in user_ids
        ))
        counts = Counter(outcomes)
        failed_ids = [str(uid) for uid, outcome in zip(user_ids, outcomes) if outcome == FAILED]

        overdue = 0
        try:
            async with session_scope(session_factory) as session:
                overdue = await ApprovalService.flag_overdue(session, organization_id)
        except Exception:
            logger.exception("Overdue sweep failed for %s", organization_id)

        async with session_factory() as session:
            run = await session.get(ReconciliationRun, run_id)
            run.users_total = len(user_ids)
            run.created_count = counts["created"]
            run.updated_count = counts["updated"]
            run.unchanged_count = counts["unchanged"]
            run.skipped_count = counts["skipped"]
            run.failed_count = counts[FAILED]
            run.failed_user_ids = failed_ids
            run.orphans_reattributed = orphans
            run.overdue_flagged = overdue
            run.status = (
                ReconciliationStatus.completed_with_errors if failed_ids
                else ReconciliationStatus.completed
            )
            run.finished_at = utcnow()
            await session.commit()

        logger.info(
            "Reconciliation %s for %s on %s: %d users, %d created, %d updated, "
            "%d unchanged, %d failed",
            run.id, organization_id, target_date, len(user_ids),
            counts["created"], counts["updated"], counts["unchanged"], counts[FAILED],
        )
        return run

    @staticmethod
    async def run_all(
        target_date: Optional[date] = None,
        *,
        session_factory: async_sessionmaker = async_session_factory,
        concurrency: Optional[int] = None,
        triggered_by: str = "scheduler",
    ) -> list[ReconciliationRun]:
        async with session_factory() as session:
            organization_ids = await DirectoryService.list_organization_ids(session)

        runs = []
        for organization_id in organization_ids:
            runs.append(
                await ReconciliationService.run(
                    organization_id,
                    target_date,
                    session_factory=session_factory,
                    concurrency=concurrency,
                    triggered_by=triggered_by,
                )
            )
        return runs

    @staticmethod
    async def list_runs(
        db: AsyncSession,
        organization_id: uuid.UUID,
        *,
        limit: int = 30,
    ) -> Sequence[ReconciliationRun]:
        result = await db.execute(
            select(ReconciliationRun)
            .where(ReconciliationRun.organization_id == organization_id)
            .order_by(ReconciliationRun.started_at.desc())
            .limit(limit)
        )
        return result.scalars().all()


async def scheduler_loop(stop: asyncio.Event) -> None:
    """Sweep every organization daily at ``RECONCILIATION_HOUR`` local time."""
    while not stop.is_set():
        delay = seconds_until_next_run(utcnow(), settings.RECONCILIATION_HOUR)
        logger.info("Next reconciliation sweep in %.0fs", delay)
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
            return
        except asyncio.TimeoutError:
            pass
        try:
            await ReconciliationService.run_all()
        except Exception:
            logger.exception("Scheduled reconciliation sweep failed")
