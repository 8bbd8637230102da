"""Shared test fixtures — async DB, client, auth helpers, factories.

Reusable across all test modules (punches, attendance, approvals, etc.).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from attendance_engine.common.constants import (
    MachineAuthMode,
    ProcessingState,
    ProviderType,
    PunchSource,
    PunchType,
    UserRole,
)
from attendance_engine.config import settings
from attendance_engine.database import Base, get_db, get_session_factory, session_scope
from attendance_engine.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
# (e.g. Employee → Shift, PunchEvent → AttendanceRequest)
import attendance_engine.common.audit  # noqa: F401
import attendance_engine.directory.models  # noqa: F401
import attendance_engine.shifts.models  # noqa: F401
import attendance_engine.punches.models  # noqa: F401
import attendance_engine.attendance.models  # noqa: F401
import attendance_engine.approvals.models  # noqa: F401
import attendance_engine.holidays.models  # noqa: F401
import attendance_engine.leave.models  # noqa: F401
import attendance_engine.notifications.models  # noqa: F401
import attendance_engine.reconciliation.models  # noqa: F401

from attendance_engine.directory.models import Branch, Employee
from attendance_engine.holidays.models import Holiday
from attendance_engine.leave.models import LeaveBalance
from attendance_engine.punches.models import AttendanceMachine, PunchEvent
from attendance_engine.shifts.models import Shift

# ── SQLite compat: compile PG-specific types to TEXT/BLOB ───────────

from sqlalchemy.dialects.postgresql import INET, JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(INET, "sqlite")
def _inet_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f"),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )
    dbapi_conn.create_function(
        "gen_random_uuid", 0, lambda: str(uuid.uuid4()),
    )

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from attendance_engine.common.rate_limit import limiter, punch_rate_limiter

    punch_rate_limiter.reset()
    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with session_scope(TestSessionFactory) as session:
        yield session


def _override_get_session_factory() -> async_sessionmaker:
    return TestSessionFactory


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = _override_get_session_factory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


@pytest.fixture
def session_factory() -> async_sessionmaker:
    """Factory bound to the test engine, for code that opens its own sessions."""
    return TestSessionFactory


# ── Model factories ─────────────────────────────────────────────────

async def make_branch(
    db: AsyncSession,
    organization_id: uuid.UUID,
    *,
    name: str = "Head Office",
    tz: str = "UTC",
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: float = 200.0,
) -> Branch:
    branch = Branch(
        organization_id=organization_id,
        name=name,
        timezone=tz,
        latitude=latitude,
        longitude=longitude,
        geofence_radius_meters=radius,
        is_active=True,
    )
    db.add(branch)
    await db.flush()
    return branch


async def make_shift(
    db: AsyncSession,
    organization_id: uuid.UUID,
    *,
    name: str = "General",
    start: time = time(9, 0),
    end: time = time(18, 0),
    grace: int = 15,
    break_minutes: int = 60,
    half_day: int = 240,
    full_day: int = 480,
    night: bool = False,
    weekly_offs: Optional[list] = None,
    overtime_enabled: bool = True,
) -> Shift:
    shift = Shift(
        organization_id=organization_id,
        name=name,
        start_time=start,
        end_time=end,
        grace_minutes=grace,
        break_minutes=break_minutes,
        early_departure_minutes=30,
        half_day_minutes=half_day,
        full_day_minutes=full_day,
        is_night_shift=night,
        weekly_offs=weekly_offs if weekly_offs is not None else [5, 6],
        overtime_enabled=overtime_enabled,
        overtime_multiplier=1.5,
        night_overtime_multiplier=2.0,
        is_active=True,
    )
    db.add(shift)
    await db.flush()
    return shift


async def make_employee(
    db: AsyncSession,
    organization_id: uuid.UUID,
    *,
    first_name: str = "Test",
    role: UserRole = UserRole.employee,
    branch: Optional[Branch] = None,
    shift: Optional[Shift] = None,
    manager: Optional[Employee] = None,
    machine_user_id: Optional[str] = None,
    geofence_required: bool = False,
    attendance_enabled: bool = True,
) -> Employee:
    """Insert an active employee with branch and shift populated in memory."""
    employee = Employee(
        organization_id=organization_id,
        employee_code=f"EMP-{uuid.uuid4().hex[:6].upper()}",
        first_name=first_name,
        last_name="User",
        email=f"{first_name.lower()}.{uuid.uuid4().hex[:6]}@example.com",
        role=role,
        branch=branch,
        shift=shift,
        reporting_manager_id=manager.id if manager is not None else None,
        machine_user_id=machine_user_id,
        is_active=True,
        attendance_enabled=attendance_enabled,
        geofence_required=geofence_required,
    )
    db.add(employee)
    await db.flush()
    return employee


async def make_machine(
    db: AsyncSession,
    organization_id: uuid.UUID,
    *,
    branch: Optional[Branch] = None,
    provider: ProviderType = ProviderType.generic,
    auth_mode: MachineAuthMode = MachineAuthMode.key,
) -> AttendanceMachine:
    machine = AttendanceMachine(
        organization_id=organization_id,
        branch_id=branch.id if branch is not None else None,
        name="Lobby Terminal",
        provider_type=provider,
        auth_mode=auth_mode,
        api_key=f"mch_{uuid.uuid4().hex}",
        api_secret=uuid.uuid4().hex,
        sync_count=0,
    )
    db.add(machine)
    await db.flush()
    return machine


async def make_leave_balance(
    db: AsyncSession,
    employee: Employee,
    *,
    leave_type: str = "casual",
    year: Optional[int] = None,
    allotted: str = "10",
) -> LeaveBalance:
    balance = LeaveBalance(
        organization_id=employee.organization_id,
        user_id=employee.id,
        leave_type=leave_type,
        year=year or date.today().year,
        allotted=Decimal(allotted),
        used=Decimal("0"),
    )
    db.add(balance)
    await db.flush()
    return balance


async def make_holiday(
    db: AsyncSession,
    organization_id: uuid.UUID,
    day: date,
    *,
    name: str = "Founders Day",
    branch: Optional[Branch] = None,
) -> Holiday:
    holiday = Holiday(
        organization_id=organization_id,
        branch_id=branch.id if branch is not None else None,
        name=name,
        date=day,
        is_optional=False,
    )
    db.add(holiday)
    await db.flush()
    return holiday


async def make_punch(
    db: AsyncSession,
    employee: Employee,
    punch_type: PunchType,
    day: date,
    at: time,
    *,
    state: ProcessingState = ProcessingState.processed,
    source: PunchSource = PunchSource.web,
) -> PunchEvent:
    """Stored punch at *at* UTC on *day*, already attributed to *day*."""
    punch = PunchEvent(
        organization_id=employee.organization_id,
        branch_id=employee.branch_id,
        user_id=employee.id,
        source=source,
        punch_type=punch_type,
        timestamp=datetime.combine(day, at, tzinfo=timezone.utc),
        attributed_date=day,
        processing_state=state,
    )
    db.add(punch)
    await db.flush()
    return punch


def weekday_on_or_after(day: date) -> date:
    """First Monday–Friday date at or after *day*."""
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day


def weekday_on_or_before(day: date) -> date:
    while day.weekday() >= 5:
        day -= timedelta(days=1)
    return day


@pytest.fixture
def org_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
async def branch(db, org_id) -> Branch:
    return await make_branch(db, org_id)


@pytest.fixture
async def shift(db, org_id) -> Shift:
    return await make_shift(db, org_id)


@pytest.fixture
async def hr_admin(db, org_id, branch, shift) -> Employee:
    return await make_employee(
        db, org_id, first_name="Hannah", role=UserRole.hr_admin, branch=branch, shift=shift,
    )


@pytest.fixture
async def manager(db, org_id, branch, shift) -> Employee:
    return await make_employee(
        db, org_id, first_name="Manoj", role=UserRole.manager, branch=branch, shift=shift,
    )


@pytest.fixture
async def employee(db, org_id, branch, shift, manager, hr_admin) -> Employee:
    """Attendance subject reporting to ``manager``, with HR in the org."""
    return await make_employee(
        db, org_id, first_name="Esha", branch=branch, shift=shift,
        manager=manager, machine_user_id="1001",
    )


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(
    employee_id: uuid.UUID,
    organization_id: uuid.UUID,
    role: UserRole = UserRole.employee,
    expired: bool = False,
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {
        "sub": str(employee_id),
        "org": str(organization_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(employee: Employee, role: Optional[UserRole] = None) -> dict[str, str]:
    """Bearer headers for *employee*; the role claim defaults to the stored role."""
    token = create_access_token(
        employee.id, employee.organization_id, role or employee.role,
    )
    return {"Authorization": f"Bearer {token}"}
