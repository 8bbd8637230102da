"""Common module — shared utilities for the attendance engine."""

from attendance_engine.common.audit import AuditTrail, create_audit_entry
from attendance_engine.common.constants import (
    DEFAULT_PAGE_SIZE,
    AttendanceStatus,
    ProcessingState,
    PunchSource,
    PunchType,
    RequestStatus,
    RequestType,
    UserRole,
)
from attendance_engine.common.exceptions import (
    AppException,
    ConflictError,
    ForbiddenException,
    NotFoundException,
    ValidationException,
    register_exception_handlers,
)
from attendance_engine.common.filters import apply_filters, apply_sorting
from attendance_engine.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "AttendanceStatus",
    "ProcessingState",
    "PunchSource",
    "PunchType",
    "RequestStatus",
    "RequestType",
    "UserRole",
    "DEFAULT_PAGE_SIZE",
    # Exceptions
    "AppException",
    "ConflictError",
    "ForbiddenException",
    "NotFoundException",
    "ValidationException",
    "register_exception_handlers",
    # Filters
    "apply_filters",
    "apply_sorting",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
