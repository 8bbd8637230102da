"""Enums and constants for the attendance engine — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr_admin = "hr_admin"
    system_admin = "system_admin"


# ── Punches ─────────────────────────────────────────────────────────

class PunchType(str, enum.Enum):
    in_ = "in"
    out = "out"
    break_start = "break_start"
    break_end = "break_end"
    remote_in = "remote_in"
    remote_out = "remote_out"


class PunchSource(str, enum.Enum):
    machine = "machine"
    web = "web"
    mobile = "mobile"
    admin_manual = "admin_manual"
    api = "api"


class ProcessingState(str, enum.Enum):
    pending = "pending"
    processed = "processed"
    flagged = "flagged"
    rejected = "rejected"
    corrected = "corrected"
    orphan = "orphan"


class VerificationState(str, enum.Enum):
    unverified = "unverified"
    verified = "verified"
    failed = "failed"


class ProviderType(str, enum.Enum):
    zkteco = "zkteco"
    hikvision = "hikvision"
    essl = "essl"
    generic = "generic"


class MachineAuthMode(str, enum.Enum):
    key = "key"
    hmac = "hmac"


class MachineStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    maintenance = "maintenance"


# ── Daily attendance ────────────────────────────────────────────────

class AttendanceStatus(str, enum.Enum):
    present = "present"
    late = "late"
    absent = "absent"
    half_day = "half_day"
    on_leave = "on_leave"
    week_off = "week_off"
    holiday = "holiday"
    work_from_home = "work_from_home"
    on_duty = "on_duty"
    missed_punch = "missed_punch"
    holiday_worked = "holiday_worked"
    week_off_worked = "week_off_worked"


# ── Approval workflow ───────────────────────────────────────────────

class RequestType(str, enum.Enum):
    missed_punch = "missed_punch"
    correction = "correction"
    work_from_home = "work_from_home"
    on_duty = "on_duty"
    leave_reversal = "leave_reversal"
    leave = "leave"
    others = "others"


class RequestSubType(str, enum.Enum):
    in_missed = "in_missed"
    out_missed = "out_missed"
    both_missed = "both_missed"
    time_correction = "time_correction"


class RequestStatus(str, enum.Enum):
    draft = "draft"
    pending = "pending"
    under_review = "under_review"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class ApproverStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    forwarded = "forwarded"


class DecisionAction(str, enum.Enum):
    approve = "approve"
    reject = "reject"
    forward = "forward"


class RequestPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


# ── Reconciliation ──────────────────────────────────────────────────

class ReconciliationStatus(str, enum.Enum):
    running = "running"
    completed = "completed"
    completed_with_errors = "completed_with_errors"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    alert = "alert"


# ── Payout policy ───────────────────────────────────────────────────

PAYOUT_MULTIPLIERS: dict[AttendanceStatus, float] = {
    AttendanceStatus.present: 1.0,
    AttendanceStatus.late: 1.0,
    AttendanceStatus.half_day: 0.5,
    AttendanceStatus.absent: 0.0,
    AttendanceStatus.missed_punch: 0.0,
    AttendanceStatus.on_leave: 1.0,
    AttendanceStatus.week_off: 1.0,
    AttendanceStatus.holiday: 1.0,
    AttendanceStatus.work_from_home: 1.0,
    AttendanceStatus.on_duty: 1.0,
    AttendanceStatus.holiday_worked: 2.0,
    AttendanceStatus.week_off_worked: 1.5,
}

UNPAID_LEAVE_TYPES = frozenset({"unpaid", "lwp"})

TERMINAL_REQUEST_STATUSES = frozenset({
    RequestStatus.approved,
    RequestStatus.rejected,
    RequestStatus.cancelled,
})
OPEN_REQUEST_STATUSES = frozenset({
    RequestStatus.pending,
    RequestStatus.under_review,
})

# ── Misc constants ──────────────────────────────────────────────────

MACHINE_API_KEY_PREFIX = "mch_"
DEFAULT_WEEKLY_OFFS = frozenset({5, 6})   # Saturday, Sunday
DEFAULT_HALF_DAY_MINUTES = 240
DEFAULT_FULL_DAY_MINUTES = 480
DEFAULT_OVERTIME_MULTIPLIER = 1.5
DEFAULT_PAGE_SIZE = 50
MAX_DATE_RANGE_DAYS = 93
