"""Tests for common utilities — filters, pagination, rate limiting, errors and auth.

Exercises apply_filters, apply_sorting, paginate, the punch throttle and the
problem-detail error envelope shared by every router.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timedelta, timezone

import pytest
from jose import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.dependencies import decode_access_token, effective_roles
from attendance_engine.common.audit import AuditTrail, create_audit_entry
from attendance_engine.common.constants import RequestStatus, UserRole
from attendance_engine.common.exceptions import RateLimitedException
from attendance_engine.common.filters import _get_column, apply_filters, apply_sorting
from attendance_engine.common.pagination import PaginationParams, build_meta, paginate
from attendance_engine.common.rate_limit import PunchRateLimiter
from attendance_engine.common.timeutils import as_utc, date_range, local_datetime
from attendance_engine.config import settings
from attendance_engine.directory.models import Employee
from tests.conftest import auth_headers, create_access_token, make_employee


def _params(page: int = 1, page_size: int = 50, sort=None) -> PaginationParams:
    return PaginationParams(page=page, page_size=page_size, sort=sort)


async def _seed_people(db: AsyncSession, org_id, names) -> list[Employee]:
    return [await make_employee(db, org_id, first_name=name) for name in names]


# ═════════════════════════════════════════════════════════════════════
# FILTER TESTS
# ═════════════════════════════════════════════════════════════════════


class TestApplyFilters:
    """Tests for apply_filters utility."""

    async def test_filter_by_equality(self, db: AsyncSession, org_id):
        await _seed_people(db, org_id, ["Alice", "Bob"])

        query = apply_filters(select(Employee), Employee, {"first_name": "Alice"})
        employees = (await db.execute(query)).scalars().all()
        assert [e.first_name for e in employees] == ["Alice"]

    async def test_filter_none_values_skipped(self, db: AsyncSession, org_id):
        await _seed_people(db, org_id, ["Alice"])

        query = apply_filters(
            select(Employee), Employee, {"first_name": None, "is_active": True},
        )
        assert len((await db.execute(query)).scalars().all()) == 1

    async def test_filter_by_in(self, db: AsyncSession, org_id):
        await _seed_people(db, org_id, ["Alice", "Bob", "Charlie"])

        query = apply_filters(
            select(Employee), Employee, {"first_name__in": ["Alice", "Charlie"]},
        )
        names = {e.first_name for e in (await db.execute(query)).scalars().all()}
        assert names == {"Alice", "Charlie"}

    async def test_filter_not_equal(self, db: AsyncSession, org_id):
        await _seed_people(db, org_id, ["Alice", "Bob"])

        query = apply_filters(select(Employee), Employee, {"first_name__not": "Alice"})
        assert [e.first_name for e in (await db.execute(query)).scalars().all()] == ["Bob"]

    async def test_filter_nonexistent_column_ignored(self, db: AsyncSession, org_id):
        await _seed_people(db, org_id, ["Alice"])

        query = apply_filters(select(Employee), Employee, {"nonexistent_field": "value"})
        assert len((await db.execute(query)).scalars().all()) == 1

    def test_get_column_rejects_non_columns(self):
        assert _get_column(Employee, "first_name") is not None
        assert _get_column(Employee, "display_name") is None
        assert _get_column(Employee, "missing") is None


class TestApplySorting:
    """Tests for apply_sorting utility."""

    async def test_sort_ascending_and_descending(self, db: AsyncSession, org_id):
        await _seed_people(db, org_id, ["Charlie", "Alice", "Bob"])

        ascending = (
            await db.execute(apply_sorting(select(Employee), Employee, "first_name"))
        ).scalars().all()
        assert [e.first_name for e in ascending] == ["Alice", "Bob", "Charlie"]

        descending = (
            await db.execute(apply_sorting(select(Employee), Employee, "-first_name"))
        ).scalars().all()
        assert [e.first_name for e in descending] == ["Charlie", "Bob", "Alice"]

    async def test_sort_by_several_keys(self, db: AsyncSession, org_id):
        await make_employee(db, org_id, first_name="Bob", role=UserRole.manager)
        await _seed_people(db, org_id, ["Cara", "Alice"])

        query = apply_sorting(select(Employee), Employee, "-role, first_name")
        names = [e.first_name for e in (await db.execute(query)).scalars().all()]
        assert names == ["Bob", "Alice", "Cara"]

    def test_sort_none_no_op(self):
        query = select(Employee)
        assert apply_sorting(query, Employee, None) is query

    def test_sort_unknown_column_no_op(self):
        query = select(Employee)
        assert apply_sorting(query, Employee, "-shoe_size") is query


# ═════════════════════════════════════════════════════════════════════
# PAGINATION TESTS
# ═════════════════════════════════════════════════════════════════════


class TestPagination:

    def test_build_meta(self):
        meta = build_meta(page=2, page_size=10, total=25)
        assert meta.total_pages == 3
        assert meta.has_next is True
        assert meta.has_prev is True

    def test_build_meta_empty(self):
        meta = build_meta(page=1, page_size=10, total=0)
        assert meta.total_pages == 0
        assert meta.has_next is False
        assert meta.has_prev is False

    def test_offset(self):
        assert _params(page=3, page_size=20).offset == 40

    async def test_paginate_pages_and_sorts(self, db: AsyncSession, org_id):
        await _seed_people(db, org_id, ["Dee", "Alice", "Charlie", "Bob", "Eve"])

        page = await paginate(
            db, select(Employee), _params(page=2, page_size=2, sort="first_name"),
            model=Employee,
        )
        assert [e.first_name for e in page.data] == ["Charlie", "Dee"]
        assert page.meta.total == 5
        assert page.meta.total_pages == 3

    async def test_paginate_transform(self, db: AsyncSession, org_id):
        await _seed_people(db, org_id, ["Alice"])

        page = await paginate(
            db, select(Employee), _params(), transform=lambda e: e.first_name.upper(),
        )
        assert page.data == ["ALICE"]


# ═════════════════════════════════════════════════════════════════════
# PUNCH THROTTLE
# ═════════════════════════════════════════════════════════════════════


class TestPunchRateLimiter:

    def test_limit_per_subject(self):
        throttle = PunchRateLimiter("2/minute", "memory://")
        org, user, other = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()

        throttle.hit(org, user)
        throttle.hit(org, user)
        assert throttle.remaining(org, user) == 0
        with pytest.raises(RateLimitedException):
            throttle.hit(org, user)

        # A different subject has its own window
        throttle.hit(org, other)
        assert throttle.remaining(org, other) == 1

    def test_reset_clears_windows(self):
        throttle = PunchRateLimiter("1/minute", "memory://")
        org, user = uuid.uuid4(), uuid.uuid4()
        throttle.hit(org, user)
        throttle.reset()
        throttle.hit(org, user)


# ═════════════════════════════════════════════════════════════════════
# TIME HELPERS
# ═════════════════════════════════════════════════════════════════════


class TestTimeUtils:

    def test_as_utc_assumes_naive_is_utc(self):
        naive = datetime(2026, 3, 3, 9, 0)
        assert as_utc(naive) == datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)
        assert as_utc(None) is None

    def test_local_datetime_converts_zone(self):
        local = local_datetime(date(2026, 3, 3), time(9, 0), "Asia/Kolkata")
        assert as_utc(local) == datetime(2026, 3, 3, 3, 30, tzinfo=timezone.utc)

    def test_date_range_inclusive(self):
        start = date(2026, 3, 1)
        days = date_range(start, start + timedelta(days=2))
        assert len(days) == 3
        assert days[0] == start


class TestAuditTrail:

    async def test_values_are_stored_as_json_primitives(self, db: AsyncSession, org_id):
        entity_id, actor_id = uuid.uuid4(), uuid.uuid4()
        await create_audit_entry(
            db,
            action="approve",
            entity_type="attendance_request",
            entity_id=entity_id,
            organization_id=org_id,
            actor_id=actor_id,
            old_values={"status": RequestStatus.pending},
            new_values={"status": RequestStatus.approved, "target_date": date(2026, 3, 3)},
        )

        entry = (
            await db.execute(select(AuditTrail).where(AuditTrail.entity_id == entity_id))
        ).scalar_one()
        assert entry.old_values == {"status": "pending"}
        assert entry.new_values == {"status": "approved", "target_date": "2026-03-03"}
        assert entry.actor_id == actor_id


# ═════════════════════════════════════════════════════════════════════
# HTTP ENVELOPE AND AUTH
# ═════════════════════════════════════════════════════════════════════


class TestHealthAndErrors:

    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_not_found_is_problem_detail(self, client, db, employee):
        await db.commit()
        missing = uuid.uuid4()
        resp = await client.get(f"/api/v1/requests/{missing}", headers=auth_headers(employee))
        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["status"] == 404
        assert body["type"].endswith("/not-found")
        assert body["instance"] == f"/api/v1/requests/{missing}"

    async def test_request_validation_lists_fields(self, client, db, employee):
        await db.commit()
        resp = await client.post(
            "/api/v1/punches", json={"punch_type": "teleport"}, headers=auth_headers(employee),
        )
        assert resp.status_code == 422
        assert "punch_type" in resp.json()["errors"]


class TestAuthentication:

    async def test_missing_token(self, client):
        resp = await client.get("/api/v1/attendance/me")
        assert resp.status_code == 401

    async def test_expired_token(self, client, db, employee):
        await db.commit()
        token = create_access_token(employee.id, employee.organization_id, expired=True)
        resp = await client.get(
            "/api/v1/attendance/me", headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401

    async def test_wrong_token_type(self, client, db, employee):
        await db.commit()
        token = jwt.encode(
            {
                "sub": str(employee.id),
                "org": str(employee.organization_id),
                "type": "refresh",
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
            },
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
        )
        resp = await client.get(
            "/api/v1/attendance/me", headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401

    async def test_cross_organization_token_forbidden(self, client, db, employee):
        await db.commit()
        token = create_access_token(employee.id, uuid.uuid4())
        resp = await client.get(
            "/api/v1/attendance/me", headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 403
        assert resp.json()["type"].endswith("/forbidden")

    async def test_role_claim_controls_access(self, client, db, employee):
        await db.commit()
        resp = await client.get(
            "/api/v1/punches/orphans", headers=auth_headers(employee, UserRole.hr_admin),
        )
        assert resp.status_code == 200

    def test_decode_unknown_role_falls_back_to_employee(self):
        employee_id, organization_id = uuid.uuid4(), uuid.uuid4()
        token = jwt.encode(
            {
                "sub": str(employee_id),
                "org": str(organization_id),
                "role": "superuser",
                "type": "access",
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
            },
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
        )
        claims = decode_access_token(token)
        assert claims.employee_id == employee_id
        assert claims.organization_id == organization_id
        assert claims.role == UserRole.employee
        assert effective_roles(UserRole.hr_admin) == {
            UserRole.hr_admin, UserRole.manager, UserRole.employee,
        }
