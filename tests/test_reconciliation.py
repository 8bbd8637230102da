"""Reconciliation batch tests — day close-out, isolation, orphans, scheduling."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timedelta, timezone

import pytest

from attendance_engine.approvals.models import AttendanceRequest
from attendance_engine.approvals.schemas import RequestCreate
from attendance_engine.approvals.service import ApprovalService
from attendance_engine.attendance.service import AttendanceService
from attendance_engine.common.constants import (
    AttendanceStatus,
    ProcessingState,
    PunchSource,
    PunchType,
    ReconciliationStatus,
    RequestType,
)
from attendance_engine.common.exceptions import ValidationException
from attendance_engine.common.timeutils import local_today, utcnow
from attendance_engine.config import settings
from attendance_engine.punches.models import PunchEvent
from attendance_engine.reconciliation.service import (
    ReconciliationService,
    default_target_date,
    scheduler_loop,
    seconds_until_next_run,
)
from tests.conftest import (
    auth_headers,
    make_employee,
    make_punch,
)

TUESDAY = date(2026, 3, 3)


async def _run(session_factory, org_id, day=TUESDAY):
    return await ReconciliationService.run(
        org_id, day, session_factory=session_factory, concurrency=1, triggered_by="test",
    )


async def test_run_closes_out_the_day(
    db, session_factory, org_id, hr_admin, manager, employee,
):
    await make_punch(db, employee, PunchType.in_, TUESDAY, time(9, 0))
    await make_punch(db, employee, PunchType.out, TUESDAY, time(18, 0))
    await db.commit()

    run = await _run(session_factory, org_id)
    assert run.status == ReconciliationStatus.completed
    assert run.users_total == 3
    assert run.created_count == 3
    assert run.failed_count == 0
    assert run.finished_at is not None

    async with session_factory() as session:
        worked = await AttendanceService.get_record(session, org_id, employee.id, TUESDAY)
        idle = await AttendanceService.get_record(session, org_id, manager.id, TUESDAY)
    assert worked.status == AttendanceStatus.present
    assert idle.status == AttendanceStatus.absent


async def test_rerun_is_unchanged(
    db, session_factory, org_id, hr_admin, manager, employee,
):
    await db.commit()
    await _run(session_factory, org_id)
    again = await _run(session_factory, org_id)
    assert again.created_count == 0
    assert again.updated_count == 0
    assert again.unchanged_count == 3


async def test_open_day_punch_becomes_missed_punch(
    db, session_factory, org_id, hr_admin, manager, employee,
):
    await make_punch(db, employee, PunchType.in_, TUESDAY, time(9, 0))
    await AttendanceService.recompute(db, org_id, employee.id, TUESDAY, day_closed=False)
    await db.commit()

    run = await _run(session_factory, org_id)
    assert run.updated_count == 1

    async with session_factory() as session:
        record = await AttendanceService.get_record(session, org_id, employee.id, TUESDAY)
    assert record.status == AttendanceStatus.missed_punch


async def test_failing_user_does_not_stop_the_sweep(
    db, session_factory, org_id, hr_admin, manager, employee, monkeypatch,
):
    await db.commit()
    original = AttendanceService.recompute

    async def flaky(session, organization_id, user_id, day, **kwargs):
        if user_id == manager.id:
            raise RuntimeError("shift lookup exploded")
        return await original(session, organization_id, user_id, day, **kwargs)

    monkeypatch.setattr(AttendanceService, "recompute", staticmethod(flaky))

    run = await _run(session_factory, org_id)
    assert run.status == ReconciliationStatus.completed_with_errors
    assert run.failed_count == 1
    assert run.failed_user_ids == [str(manager.id)]
    assert run.created_count == 2

    async with session_factory() as session:
        assert await AttendanceService.get_record(session, org_id, manager.id, TUESDAY) is None
        assert await AttendanceService.get_record(session, org_id, employee.id, TUESDAY)


async def test_run_reattributes_orphans(
    db, session_factory, org_id, branch, shift, hr_admin, employee,
):
    db.add(
        PunchEvent(
            organization_id=org_id,
            branch_id=branch.id,
            raw_user_id="7777",
            source=PunchSource.machine,
            punch_type=PunchType.in_,
            timestamp=datetime.combine(TUESDAY, time(9, 0), tzinfo=timezone.utc),
            processing_state=ProcessingState.orphan,
        )
    )
    late_joiner = await make_employee(
        db, org_id, first_name="Lata", branch=branch, shift=shift, machine_user_id="7777",
    )
    await db.commit()

    run = await _run(session_factory, org_id)
    assert run.orphans_reattributed == 1
    assert run.users_total == 4

    async with session_factory() as session:
        record = await AttendanceService.get_record(session, org_id, late_joiner.id, TUESDAY)
    assert record.status == AttendanceStatus.missed_punch


async def test_run_flags_overdue_requests(
    db, session_factory, org_id, hr_admin, manager, employee,
):
    submitted = await ApprovalService.submit(
        db, org_id, employee,
        RequestCreate(
            request_type=RequestType.work_from_home,
            target_date=TUESDAY,
            reason="Working from the client site",
        ),
    )
    request = await db.get(AttendanceRequest, submitted.id)
    request.sla_due_at = utcnow() - timedelta(hours=1)
    await db.commit()

    run = await _run(session_factory, org_id)
    assert run.overdue_flagged == 1

    async with session_factory() as session:
        stored = await session.get(AttendanceRequest, submitted.id)
    assert stored.is_overdue is True


async def test_unfinished_day_is_not_reconciled(
    db, session_factory, org_id, hr_admin, manager, employee,
):
    await db.commit()
    today = local_today()

    for day in (today, today + timedelta(days=1)):
        with pytest.raises(ValidationException) as exc_info:
            await _run(session_factory, org_id, day)
        assert "target_date" in exc_info.value.errors

    async with session_factory() as session:
        assert await AttendanceService.get_record(session, org_id, employee.id, today) is None
        assert list(await ReconciliationService.list_runs(session, org_id)) == []


# ═════════════════════════════════════════════════════════════════════
# HTTP surface
# ═════════════════════════════════════════════════════════════════════


async def test_run_endpoint(client, db, hr_admin, manager, employee, monkeypatch):
    monkeypatch.setattr(settings, "RECONCILIATION_CONCURRENCY", 1)
    await db.commit()

    resp = await client.post(
        "/api/v1/reconciliation/run",
        json={"target_date": "2026-03-03"},
        headers=auth_headers(hr_admin),
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "completed"
    assert body["users_total"] == 3
    assert body["triggered_by"] == "api"

    runs = await client.get("/api/v1/reconciliation/runs", headers=auth_headers(hr_admin))
    assert runs.status_code == 200
    assert [r["id"] for r in runs.json()] == [body["id"]]


async def test_run_endpoint_rejects_today(client, db, hr_admin):
    await db.commit()
    resp = await client.post(
        "/api/v1/reconciliation/run",
        json={"target_date": local_today().isoformat()},
        headers=auth_headers(hr_admin),
    )
    assert resp.status_code == 422
    assert "target_date" in resp.json()["errors"]


async def test_run_endpoint_requires_hr(client, db, manager):
    await db.commit()
    resp = await client.post(
        "/api/v1/reconciliation/run",
        json={"target_date": "2026-03-03"},
        headers=auth_headers(manager),
    )
    assert resp.status_code == 403


# ═════════════════════════════════════════════════════════════════════
# Scheduling helpers
# ═════════════════════════════════════════════════════════════════════


def test_seconds_until_next_run_same_day():
    now = datetime(2026, 3, 3, 1, 0, tzinfo=timezone.utc)
    assert seconds_until_next_run(now, 2, "UTC") == 3600


def test_seconds_until_next_run_rolls_to_tomorrow():
    now = datetime(2026, 3, 3, 3, 0, tzinfo=timezone.utc)
    assert seconds_until_next_run(now, 2, "UTC") == 23 * 3600


def test_seconds_until_next_run_uses_local_zone():
    # 20:00 UTC is 01:30 the next morning in India
    now = datetime(2026, 3, 3, 20, 0, tzinfo=timezone.utc)
    assert seconds_until_next_run(now, 2, "Asia/Kolkata") == 1800


def test_default_target_date_is_yesterday():
    expected = datetime.now(timezone.utc).date() - timedelta(days=1)
    assert default_target_date("UTC") == expected


async def test_scheduler_loop_stops_on_event():
    stop = asyncio.Event()
    task = asyncio.create_task(scheduler_loop(stop))
    await asyncio.sleep(0)
    stop.set()
    await asyncio.wait_for(task, timeout=1)
    assert task.done()
