"""Approval workflow rules — transitions, chain evaluation, SLA.

Pure functions over request/approver objects; ``ApprovalService`` does the
locking, persistence and side effects.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from attendance_engine.common.constants import (
    OPEN_REQUEST_STATUSES,
    ApproverStatus,
    RequestStatus,
    RequestSubType,
    RequestType,
)
from attendance_engine.common.exceptions import InvalidTransitionError
from attendance_engine.common.timeutils import as_utc

# Actions permitted from each status
TRANSITIONS: dict[RequestStatus, frozenset[str]] = {
    RequestStatus.draft: frozenset({"submit", "cancel"}),
    RequestStatus.pending: frozenset({"approve", "reject", "forward", "cancel"}),
    RequestStatus.under_review: frozenset({"approve", "reject", "forward"}),
    RequestStatus.approved: frozenset(),
    RequestStatus.rejected: frozenset(),
    RequestStatus.cancelled: frozenset(),
}

CORRECTION_TYPES = frozenset({RequestType.correction, RequestType.missed_punch})
PRESENCE_TYPES = frozenset({RequestType.work_from_home, RequestType.on_duty})

# Which correction times each sub-type needs: (new_first_in, new_last_out)
REQUIRED_TIMES: dict[RequestSubType, tuple[bool, bool]] = {
    RequestSubType.in_missed: (True, False),
    RequestSubType.out_missed: (False, True),
    RequestSubType.both_missed: (True, True),
    RequestSubType.time_correction: (True, True),
}


def can_transition(status: RequestStatus, action: str) -> bool:
    return action in TRANSITIONS.get(status, frozenset())


def ensure_transition(status: RequestStatus, action: str) -> None:
    if not can_transition(status, action):
        raise InvalidTransitionError(status.value, action)


def _delegated_outcome(slot: Any, approvers: list[Any]) -> ApproverStatus:
    """Follow a forwarded slot to the approver who finally acted on it."""
    while slot.status == ApproverStatus.forwarded:
        later = [
            a for a in approvers
            if a.approver_id == slot.forwarded_to_id and a.order > slot.order
        ]
        if not later:
            return ApproverStatus.forwarded
        slot = min(later, key=lambda a: a.order)
    return slot.status


def evaluate_chain(approvers: Iterable[Any]) -> tuple[RequestStatus, Optional[int]]:
    """Fold approver rows into (request status, current approver level).

    - a mandatory rejection rejects immediately
    - with nobody pending, the request is approved when every mandatory
      approver approved, either directly or through whoever they forwarded
      to; a chain with no mandatory approver needs any one approval
    - anything else stays under review at the lowest pending order
    """
    approvers = list(approvers)
    if any(
        a.status == ApproverStatus.rejected and a.is_mandatory for a in approvers
    ):
        return RequestStatus.rejected, None

    pending = [a for a in approvers if a.status == ApproverStatus.pending]
    if pending:
        return RequestStatus.under_review, min(a.order for a in pending)

    mandatory = [a for a in approvers if a.is_mandatory]
    if mandatory:
        approved = all(
            _delegated_outcome(a, approvers) == ApproverStatus.approved for a in mandatory
        )
    else:
        approved = any(a.status == ApproverStatus.approved for a in approvers)
    if approved:
        return RequestStatus.approved, None
    return RequestStatus.rejected, None


def sla_due_at(submitted_at: datetime, sla_hours: int) -> datetime:
    return as_utc(submitted_at) + timedelta(hours=sla_hours)


def is_overdue(request: Any, now: datetime) -> bool:
    """Open and past its SLA; drafts and terminal requests are never overdue."""
    if request.status not in OPEN_REQUEST_STATUSES or request.sla_due_at is None:
        return False
    return as_utc(now) > as_utc(request.sla_due_at)


def response_time_hours(submitted_at: Optional[datetime], decided_at: datetime) -> Optional[float]:
    if submitted_at is None:
        return None
    return round((as_utc(decided_at) - as_utc(submitted_at)).total_seconds() / 3600, 2)


def infer_sub_type(
    request_type: RequestType,
    has_in: bool,
    has_out: bool,
) -> Optional[RequestSubType]:
    """Default sub-type when the client omits one."""
    if request_type == RequestType.correction:
        return RequestSubType.time_correction
    if request_type == RequestType.missed_punch:
        if has_in and has_out:
            return RequestSubType.both_missed
        if has_in:
            return RequestSubType.in_missed
        if has_out:
            return RequestSubType.out_missed
    return None
