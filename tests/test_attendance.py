"""Daily attendance tests — recompute idempotence, day facts and read endpoints."""

from __future__ import annotations

from datetime import date, time

from attendance_engine.attendance.service import AttendanceService
from attendance_engine.common.constants import AttendanceStatus, PunchType
from attendance_engine.common.timeutils import as_utc
from tests.conftest import (
    auth_headers,
    make_employee,
    make_holiday,
    make_punch,
)

TUESDAY = date(2026, 3, 3)
SATURDAY = date(2026, 3, 7)


async def _full_day(db, employee, day=TUESDAY):
    await make_punch(db, employee, PunchType.in_, day, time(9, 5))
    await make_punch(db, employee, PunchType.out, day, time(18, 10))


# ═════════════════════════════════════════════════════════════════════
# Recompute
# ═════════════════════════════════════════════════════════════════════


async def test_recompute_creates_then_is_idempotent(db, org_id, employee):
    await _full_day(db, employee)

    first = await AttendanceService.recompute(db, org_id, employee.id, TUESDAY)
    assert first.outcome == "created"
    assert first.record.status == AttendanceStatus.present
    assert first.record.net_work_minutes == 485
    stamped = as_utc(first.record.updated_at)

    second = await AttendanceService.recompute(db, org_id, employee.id, TUESDAY)
    assert second.outcome == "unchanged"
    assert second.record.id == first.record.id
    assert as_utc(second.record.updated_at) == stamped


async def test_recompute_updates_when_punches_change(db, org_id, employee):
    await _full_day(db, employee)
    await AttendanceService.recompute(db, org_id, employee.id, TUESDAY)

    await make_punch(db, employee, PunchType.break_start, TUESDAY, time(13, 0))
    await make_punch(db, employee, PunchType.break_end, TUESDAY, time(13, 30))
    result = await AttendanceService.recompute(db, org_id, employee.id, TUESDAY)

    assert result.outcome == "updated"
    assert result.record.break_minutes == 30
    assert len(result.record.punch_ids) == 4


async def test_closed_day_without_punches_is_absent(db, org_id, employee):
    result = await AttendanceService.recompute(
        db, org_id, employee.id, TUESDAY, day_closed=True,
    )
    assert result.outcome == "created"
    assert result.record.status == AttendanceStatus.absent
    assert result.record.payout_multiplier == 0.0


async def test_open_day_without_punches_is_skipped(db, org_id, employee):
    result = await AttendanceService.recompute(
        db, org_id, employee.id, TUESDAY, day_closed=False,
    )
    assert result.outcome == "skipped"
    assert result.record is None
    assert await AttendanceService.get_record(db, org_id, employee.id, TUESDAY) is None


async def test_open_day_with_single_in_is_present(db, org_id, employee):
    await make_punch(db, employee, PunchType.in_, TUESDAY, time(9, 0))
    open_day = await AttendanceService.recompute(
        db, org_id, employee.id, TUESDAY, day_closed=False,
    )
    assert open_day.record.status == AttendanceStatus.present

    closed = await AttendanceService.recompute(
        db, org_id, employee.id, TUESDAY, day_closed=True,
    )
    assert closed.outcome == "updated"
    assert closed.record.status == AttendanceStatus.missed_punch


async def test_holiday_and_weekly_off(db, org_id, branch, employee):
    await make_holiday(db, org_id, TUESDAY, name="Holi", branch=branch)

    holiday = await AttendanceService.recompute(db, org_id, employee.id, TUESDAY)
    assert holiday.record.status == AttendanceStatus.holiday
    assert holiday.record.holiday_name == "Holi"

    weekend = await AttendanceService.recompute(db, org_id, employee.id, SATURDAY)
    assert weekend.record.status == AttendanceStatus.week_off


async def test_worked_weekly_off(db, org_id, employee):
    await _full_day(db, employee, SATURDAY)
    result = await AttendanceService.recompute(db, org_id, employee.id, SATURDAY)
    assert result.record.status == AttendanceStatus.week_off_worked
    assert result.record.payout_multiplier == 1.5


async def test_late_arrival_recorded(db, org_id, employee):
    await make_punch(db, employee, PunchType.in_, TUESDAY, time(9, 40))
    await make_punch(db, employee, PunchType.out, TUESDAY, time(18, 0))
    result = await AttendanceService.recompute(db, org_id, employee.id, TUESDAY)
    assert result.record.status == AttendanceStatus.late
    assert result.record.late_by_minutes == 40


async def test_build_summary_counts_statuses(db, org_id, employee):
    await _full_day(db, employee)
    present = await AttendanceService.recompute(db, org_id, employee.id, TUESDAY)
    absent = await AttendanceService.recompute(
        db, org_id, employee.id, date(2026, 3, 4), day_closed=True,
    )
    summary = AttendanceService.build_summary([present.record, absent.record])
    assert summary.days == 2
    assert summary.present == 1
    assert summary.absent == 1
    assert summary.payable_days == 1.0


# ═════════════════════════════════════════════════════════════════════
# Read endpoints
# ═════════════════════════════════════════════════════════════════════


async def test_my_attendance_with_summary(client, db, org_id, employee):
    await _full_day(db, employee)
    await AttendanceService.recompute(db, org_id, employee.id, TUESDAY)
    await db.commit()

    resp = await client.get(
        "/api/v1/attendance/me",
        params={"from_date": "2026-03-01", "to_date": "2026-03-31"},
        headers=auth_headers(employee),
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["meta"]["total"] == 1
    assert body["data"][0]["status"] == "present"
    assert body["data"][0]["net_work_hours"] == round(485 / 60, 2)
    assert body["data"][0]["shift"]["name"] == "General"
    assert body["summary"]["present"] == 1


async def test_my_attendance_rejects_inverted_range(client, db, employee):
    await db.commit()
    resp = await client.get(
        "/api/v1/attendance/me",
        params={"from_date": "2026-03-31", "to_date": "2026-03-01"},
        headers=auth_headers(employee),
    )
    assert resp.status_code == 422
    assert "date_range" in resp.json()["errors"]


async def test_team_view_for_manager(client, db, org_id, branch, shift, manager, employee):
    outsider = await make_employee(db, org_id, first_name="Omar", branch=branch, shift=shift)
    for person in (employee, outsider):
        await AttendanceService.recompute(db, org_id, person.id, TUESDAY, day_closed=True)
    await db.commit()

    resp = await client.get(
        "/api/v1/attendance/team",
        params={"from_date": "2026-03-03", "to_date": "2026-03-03"},
        headers=auth_headers(manager),
    )
    assert resp.status_code == 200
    assert [row["user_id"] for row in resp.json()["data"]] == [str(employee.id)]
    assert resp.json()["data"][0]["employee"]["display_name"]


async def test_team_view_for_hr_sees_everyone(client, db, org_id, hr_admin, manager, employee):
    for person in (employee, manager):
        await AttendanceService.recompute(db, org_id, person.id, TUESDAY, day_closed=True)
    await db.commit()

    resp = await client.get(
        "/api/v1/attendance/team",
        params={"from_date": "2026-03-03", "to_date": "2026-03-03"},
        headers=auth_headers(hr_admin),
    )
    assert resp.status_code == 200
    assert resp.json()["meta"]["total"] == 2


async def test_team_view_forbidden_for_employee(client, db, employee):
    await db.commit()
    resp = await client.get(
        "/api/v1/attendance/team",
        params={"from_date": "2026-03-03", "to_date": "2026-03-03"},
        headers=auth_headers(employee),
    )
    assert resp.status_code == 403


async def test_manual_recompute_endpoint(client, db, hr_admin, employee):
    await _full_day(db, employee)
    await db.commit()

    resp = await client.post(
        "/api/v1/attendance/recompute",
        json={"user_id": str(employee.id), "date": "2026-03-03"},
        headers=auth_headers(hr_admin),
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["outcome"] == "created"
    assert resp.json()["record"]["status"] == "present"

    again = await client.post(
        "/api/v1/attendance/recompute",
        json={"user_id": str(employee.id), "date": "2026-03-03"},
        headers=auth_headers(hr_admin),
    )
    assert again.json()["outcome"] == "unchanged"


async def test_manual_recompute_requires_hr(client, db, manager, employee):
    await db.commit()
    resp = await client.post(
        "/api/v1/attendance/recompute",
        json={"user_id": str(employee.id), "date": "2026-03-03"},
        headers=auth_headers(manager),
    )
    assert resp.status_code == 403


async def test_day_record_scoped_to_reports(client, db, org_id, hr_admin, manager, employee):
    for person in (employee, hr_admin):
        await AttendanceService.recompute(db, org_id, person.id, TUESDAY, day_closed=True)
    await db.commit()

    own_report = await client.get(
        f"/api/v1/attendance/{employee.id}/2026-03-03", headers=auth_headers(manager),
    )
    assert own_report.status_code == 200
    assert own_report.json()["status"] == "absent"

    not_a_report = await client.get(
        f"/api/v1/attendance/{hr_admin.id}/2026-03-03", headers=auth_headers(manager),
    )
    assert not_a_report.status_code == 403

    missing = await client.get(
        f"/api/v1/attendance/{employee.id}/2026-03-04", headers=auth_headers(manager),
    )
    assert missing.status_code == 404


async def test_records_readable_in_fresh_session(db, session_factory, org_id, employee):
    await _full_day(db, employee)
    await AttendanceService.recompute(db, org_id, employee.id, TUESDAY)
    await db.commit()

    async with session_factory() as session:
        record = await AttendanceService.get_record(session, org_id, employee.id, TUESDAY)
    assert record.first_in is not None
    assert as_utc(record.first_in).hour == 9
