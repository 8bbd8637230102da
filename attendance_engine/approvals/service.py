"""Approval service layer — submit, decide, cancel and read requests.

Business logic:
  - Chain built at submission: direct manager, then the org HR approver
  - Decisions lock the request row; ``evaluate_chain`` decides the outcome
  - Approval side effects (corrections, leave debit, reversals, presence
    recompute) run in the same transaction as the status change
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from attendance_engine.approvals.corrections import CorrectionService
from attendance_engine.approvals.models import (
    AttendanceRequest,
    RequestApprover,
    RequestHistory,
)
from attendance_engine.approvals.schemas import (
    DecisionRequest,
    HistoryResponse,
    RequestCreate,
    RequestResponse,
)
from attendance_engine.approvals.workflow import (
    CORRECTION_TYPES,
    PRESENCE_TYPES,
    ensure_transition,
    evaluate_chain,
    is_overdue,
    response_time_hours,
    sla_due_at,
)
from attendance_engine.attendance.service import AttendanceService
from attendance_engine.auth.dependencies import effective_roles
from attendance_engine.common.audit import create_audit_entry
from attendance_engine.common.constants import (
    OPEN_REQUEST_STATUSES,
    ApproverStatus,
    DecisionAction,
    RequestStatus,
    RequestType,
    UserRole,
)
from attendance_engine.common.exceptions import (
    ConflictError,
    ForbiddenException,
    InvalidTransitionError,
    NotFoundException,
    ValidationException,
)
from attendance_engine.common.filters import apply_filters
from attendance_engine.common.pagination import PaginatedResponse, PaginationParams, paginate
from attendance_engine.common.timeutils import (
    date_range,
    local_today,
    localize,
    to_local,
    utcnow,
)
from attendance_engine.config import settings
from attendance_engine.directory.models import Employee
from attendance_engine.directory.service import DirectoryService
from attendance_engine.holidays.service import HolidayService
from attendance_engine.leave.service import LeaveBalanceService, calculate_leave_days
from attendance_engine.notifications.service import (
    notify_request_approved,
    notify_request_cancelled,
    notify_request_forwarded,
    notify_request_rejected,
    notify_request_submitted,
)
from attendance_engine.shifts.resolver import weekly_off_days

logger = logging.getLogger(__name__)

_LEAVE_BLOCKING_STATUSES = (
    RequestStatus.pending,
    RequestStatus.under_review,
    RequestStatus.approved,
)


def _build_response(request: AttendanceRequest, now: Optional[datetime] = None) -> RequestResponse:
    response = RequestResponse.model_validate(request)
    response.is_overdue = is_overdue(request, now or utcnow())
    return response


class ApprovalService:
    """Async request-workflow operations."""

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    async def _load(
        db: AsyncSession,
        organization_id: uuid.UUID,
        request_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> AttendanceRequest:
        query = (
            select(AttendanceRequest)
            .where(
                AttendanceRequest.id == request_id,
                AttendanceRequest.organization_id == organization_id,
            )
            .options(selectinload(AttendanceRequest.approvers))
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        request = (await db.execute(query)).scalars().first()
        if request is None:
            raise NotFoundException("AttendanceRequest", request_id)
        return request

    @staticmethod
    def _add_history(
        db: AsyncSession,
        request: AttendanceRequest,
        action: str,
        *,
        actor_id: Optional[uuid.UUID],
        old_status: Optional[RequestStatus] = None,
        new_status: Optional[RequestStatus] = None,
        remarks: Optional[str] = None,
        extra: Optional[dict] = None,
    ) -> None:
        db.add(
            RequestHistory(
                request_id=request.id,
                action=action,
                actor_id=actor_id,
                remarks=remarks,
                old_status=old_status.value if old_status is not None else None,
                new_status=new_status.value if new_status is not None else None,
                extra=extra,
            )
        )

    @staticmethod
    async def _ensure_no_open_request(
        db: AsyncSession,
        organization_id: uuid.UUID,
        request: AttendanceRequest,
    ) -> None:
        result = await db.execute(
            select(AttendanceRequest.id).where(
                AttendanceRequest.organization_id == organization_id,
                AttendanceRequest.user_id == request.user_id,
                AttendanceRequest.target_date == request.target_date,
                AttendanceRequest.status.in_(list(OPEN_REQUEST_STATUSES)),
                AttendanceRequest.id != request.id,
            )
        )
        if result.first() is not None:
            raise ConflictError(
                "target_date",
                request.target_date.isoformat(),
                detail=(
                    f"An open request already exists for {request.target_date.isoformat()}."
                ),
            )

    @staticmethod
    async def _prepare_leave(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee: Employee,
        request: AttendanceRequest,
    ) -> None:
        """Day count, overlap and balance checks; stamps the balance snapshot."""
        overlap = await db.execute(
            select(AttendanceRequest.id).where(
                AttendanceRequest.organization_id == organization_id,
                AttendanceRequest.user_id == request.user_id,
                AttendanceRequest.request_type == RequestType.leave,
                AttendanceRequest.status.in_(list(_LEAVE_BLOCKING_STATUSES)),
                AttendanceRequest.id != request.id,
                AttendanceRequest.target_date <= request.last_date,
                func.coalesce(AttendanceRequest.end_date, AttendanceRequest.target_date)
                >= request.target_date,
            )
        )
        if overlap.first() is not None:
            raise ConflictError(
                "target_date",
                request.target_date.isoformat(),
                detail="The leave overlaps another pending or approved leave.",
            )

        holidays = await HolidayService.holidays_between(
            db, organization_id, employee.branch_id, request.target_date, request.last_date,
        )
        days = calculate_leave_days(
            request.target_date,
            request.last_date,
            weekly_off_days(employee.shift),
            set(holidays),
            is_half_day=bool(request.is_half_day),
        )
        if days <= 0:
            raise ValidationException(
                {"target_date": ["The selected range contains no working days."]}
            )

        check = await LeaveBalanceService.check(
            db, organization_id, request.user_id, request.leave_type, days,
            year=request.target_date.year,
        )
        if not check.has_balance:
            raise ValidationException(
                {"leave_type": [
                    f"Insufficient '{request.leave_type}' balance: "
                    f"{check.balance} available, {days} requested."
                ]}
            )
        request.days_count = days
        request.balance_before = check.balance
        request.balance_after = check.new_balance

    @staticmethod
    async def _prepare_reversal(
        db: AsyncSession,
        organization_id: uuid.UUID,
        request: AttendanceRequest,
    ) -> None:
        original = (
            await db.execute(
                select(AttendanceRequest).where(
                    AttendanceRequest.id == request.reversal_of_id,
                    AttendanceRequest.organization_id == organization_id,
                )
            )
        ).scalars().first()
        if original is None or original.user_id != request.user_id:
            raise NotFoundException("AttendanceRequest", request.reversal_of_id)
        if original.request_type != RequestType.leave or original.status != RequestStatus.approved:
            raise ValidationException(
                {"reversal_of_id": ["Only an approved leave can be reversed."]}
            )

    @staticmethod
    def _check_correction_window(request: AttendanceRequest, tz_name: str) -> None:
        """Corrected times must land on the target date in the branch zone.

        The clock-out may spill into the next morning for night shifts.
        """
        errors: dict[str, list[str]] = {}
        if request.new_first_in is not None:
            if to_local(request.new_first_in, tz_name).date() != request.target_date:
                errors["new_first_in"] = [
                    f"Must fall on {request.target_date.isoformat()} in {tz_name}."
                ]
        if request.new_last_out is not None:
            out_day = to_local(request.new_last_out, tz_name).date()
            if out_day not in (request.target_date, request.target_date + timedelta(days=1)):
                errors["new_last_out"] = [
                    f"Must fall on {request.target_date.isoformat()} or the following "
                    f"morning in {tz_name}."
                ]
        if errors:
            raise ValidationException(errors)

    @staticmethod
    async def _validate_for_submission(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee: Employee,
        request: AttendanceRequest,
    ) -> None:
        await ApprovalService._ensure_no_open_request(db, organization_id, request)

        if request.request_type in CORRECTION_TYPES:
            tz_name = DirectoryService.timezone_for(employee)
            if request.target_date > local_today(tz_name):
                raise ValidationException(
                    {"target_date": ["Cannot regularize a future date."]}
                )
            ApprovalService._check_correction_window(request, tz_name)
            record = await AttendanceService.get_record(
                db, organization_id, request.user_id, request.target_date,
            )
            request.old_first_in = record.first_in if record is not None else None
            request.old_last_out = record.last_out if record is not None else None
        elif request.request_type == RequestType.leave:
            await ApprovalService._prepare_leave(db, organization_id, employee, request)
        elif request.request_type == RequestType.leave_reversal:
            await ApprovalService._prepare_reversal(db, organization_id, request)

    @staticmethod
    async def _activate(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee: Employee,
        request: AttendanceRequest,
    ) -> None:
        """Attach the approver chain and move the request to ``pending``."""
        chain = await DirectoryService.build_approval_chain(db, organization_id, employee)
        if not chain:
            raise ValidationException(
                {"approvers": ["No eligible approver found for this request."]}
            )

        now = utcnow()
        old_status = request.status
        request.status = RequestStatus.pending
        request.submitted_at = now
        request.sla_due_at = sla_due_at(now, settings.REQUEST_SLA_HOURS)
        request.is_overdue = False
        request.approval_required = len(chain)
        request.current_approver_level = min(entry.order for entry in chain)
        request.updated_at = now
        for entry in chain:
            request.approvers.append(
                RequestApprover(
                    approver_id=entry.user_id,
                    role=entry.role,
                    order=entry.order,
                    is_mandatory=entry.is_mandatory,
                    status=ApproverStatus.pending,
                )
            )

        # The partial unique index catches a concurrent submit for the same date
        try:
            await db.flush()
        except IntegrityError:
            raise ConflictError(
                "target_date",
                request.target_date.isoformat(),
                detail=(
                    f"An open request already exists for {request.target_date.isoformat()}."
                ),
            )

        ApprovalService._add_history(
            db, request, "submitted",
            actor_id=employee.id, old_status=old_status, new_status=request.status,
        )
        for entry in chain:
            await notify_request_submitted(db, request, entry.user_id)

    # ─────────────────────────────────────────────────────────────────
    # Submit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def submit(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee: Employee,
        data: RequestCreate,
    ) -> RequestResponse:
        """Create a request; unless saved as a draft it enters the approver chain."""
        tz_name = DirectoryService.timezone_for(employee)
        request = AttendanceRequest(
            id=uuid.uuid4(),
            organization_id=organization_id,
            user_id=employee.id,
            request_type=data.request_type,
            sub_type=data.sub_type,
            target_date=data.target_date,
            end_date=data.end_date,
            leave_type=data.leave_type,
            is_half_day=data.is_half_day,
            reversal_of_id=data.reversal_of_id,
            new_first_in=localize(data.new_first_in, tz_name),
            new_last_out=localize(data.new_last_out, tz_name),
            reason=data.reason,
            priority=data.priority,
            source=data.source,
            status=RequestStatus.draft,
            approval_required=0,
            is_overdue=False,
            linked_attendance_ids=[],
            linked_punch_ids=[],
            approvers=[],
        )

        if not data.save_as_draft:
            await ApprovalService._validate_for_submission(db, organization_id, employee, request)

        db.add(request)
        await db.flush()
        ApprovalService._add_history(
            db, request, "created",
            actor_id=employee.id, new_status=RequestStatus.draft,
        )

        if not data.save_as_draft:
            await ApprovalService._activate(db, organization_id, employee, request)

        await db.flush()
        logger.info(
            "Request %s (%s) for %s created by %s as %s",
            request.id, request.request_type.value, request.target_date,
            employee.id, request.status.value,
        )
        return _build_response(request)

    @staticmethod
    async def submit_draft(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee: Employee,
        request_id: uuid.UUID,
    ) -> RequestResponse:
        request = await ApprovalService._load(db, organization_id, request_id, for_update=True)
        if request.user_id != employee.id:
            raise ForbiddenException("You can only submit your own requests.")
        ensure_transition(request.status, "submit")

        await ApprovalService._validate_for_submission(db, organization_id, employee, request)
        await ApprovalService._activate(db, organization_id, employee, request)
        await db.flush()
        return _build_response(request)

    # ─────────────────────────────────────────────────────────────────
    # Decide
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _forward(
        db: AsyncSession,
        organization_id: uuid.UUID,
        request: AttendanceRequest,
        slot: RequestApprover,
        data: DecisionRequest,
    ) -> None:
        target_id = data.forward_to
        if target_id == request.user_id:
            raise ValidationException(
                {"forward_to": ["A request cannot be forwarded to its submitter."]}
            )
        if any(
            a.approver_id == target_id and a.status == ApproverStatus.pending
            for a in request.approvers
        ):
            raise ValidationException(
                {"forward_to": ["That user is already a pending approver."]}
            )
        try:
            await DirectoryService.get_employee(db, organization_id, target_id)
        except NotFoundException:
            raise ValidationException(
                {"forward_to": ["Forward target must be an active user of this organization."]}
            )

        slot.status = ApproverStatus.forwarded
        slot.forwarded_to_id = target_id
        request.approvers.append(
            RequestApprover(
                approver_id=target_id,
                role="forwarded",
                order=max(a.order for a in request.approvers) + 1,
                is_mandatory=data.forward_mandatory,
                status=ApproverStatus.pending,
            )
        )
        request.approval_required = (request.approval_required or 0) + 1

    @staticmethod
    async def _apply_approval(
        db: AsyncSession,
        organization_id: uuid.UUID,
        request: AttendanceRequest,
        actor_id: uuid.UUID,
    ) -> None:
        """Side effects of reaching ``approved``; all inside the caller's transaction."""
        employee = await DirectoryService.get_employee(
            db, organization_id, request.user_id, active_only=False,
        )

        if request.request_type in CORRECTION_TYPES:
            await CorrectionService.apply(db, request, employee, actor_id=actor_id)

        elif request.request_type in PRESENCE_TYPES:
            linked = []
            for day in date_range(request.target_date, request.last_date):
                result = await AttendanceService.recompute(
                    db, organization_id, employee.id, day, employee=employee,
                )
                if result.record is not None:
                    linked.append(str(result.record.id))
            request.linked_attendance_ids = linked

        elif request.request_type == RequestType.leave:
            request.balance_after = await LeaveBalanceService.debit(
                db, organization_id, employee.id, request.leave_type,
                request.days_count or Decimal("0"), year=request.target_date.year,
            )
            linked = []
            for day in date_range(request.target_date, request.last_date):
                result = await AttendanceService.recompute(
                    db, organization_id, employee.id, day, employee=employee,
                )
                if result.record is not None:
                    linked.append(str(result.record.id))
            request.linked_attendance_ids = linked

        elif request.request_type == RequestType.leave_reversal:
            original = await ApprovalService._load(
                db, organization_id, request.reversal_of_id, for_update=True,
            )
            if original.status != RequestStatus.approved:
                raise InvalidTransitionError(original.status.value, "reverse")
            await ApprovalService._revoke_leave(
                db, organization_id, original, employee,
                actor_id=actor_id,
                reason=f"Reversed by request {request.id}",
                action="reversed",
            )

    @staticmethod
    async def _revoke_leave(
        db: AsyncSession,
        organization_id: uuid.UUID,
        leave: AttendanceRequest,
        employee: Employee,
        *,
        actor_id: uuid.UUID,
        reason: str,
        action: str,
    ) -> None:
        """Cancel an approved leave: credit the balance back and recompute its dates."""
        now = utcnow()
        old_status = leave.status
        leave.status = RequestStatus.cancelled
        leave.cancelled_at = now
        leave.cancelled_by = actor_id
        leave.cancellation_reason = reason
        leave.updated_at = now
        await db.flush()

        await LeaveBalanceService.credit(
            db, organization_id, leave.user_id, leave.leave_type,
            leave.days_count or Decimal("0"), year=leave.target_date.year,
        )
        for day in date_range(leave.target_date, leave.last_date):
            await AttendanceService.recompute(
                db, organization_id, leave.user_id, day, employee=employee,
            )
        ApprovalService._add_history(
            db, leave, action,
            actor_id=actor_id, old_status=old_status, new_status=leave.status,
            remarks=reason,
        )

    @staticmethod
    async def decide(
        db: AsyncSession,
        organization_id: uuid.UUID,
        request_id: uuid.UUID,
        actor: Employee,
        data: DecisionRequest,
    ) -> RequestResponse:
        """Approve, reject or forward on behalf of a pending approver."""
        request = await ApprovalService._load(db, organization_id, request_id, for_update=True)
        ensure_transition(request.status, data.action.value)

        slot = next(
            (
                a for a in request.approvers
                if a.approver_id == actor.id and a.status == ApproverStatus.pending
            ),
            None,
        )
        if slot is None:
            raise ForbiddenException("You are not a pending approver for this request.")

        now = utcnow()
        old_status = request.status
        slot.comments = data.comments
        slot.acted_at = now

        if data.action == DecisionAction.forward:
            await ApprovalService._forward(db, organization_id, request, slot, data)
        elif data.action == DecisionAction.approve:
            slot.status = ApproverStatus.approved
        else:
            slot.status = ApproverStatus.rejected

        new_status, level = evaluate_chain(request.approvers)
        request.status = new_status
        request.current_approver_level = level
        request.updated_at = now

        if new_status in (RequestStatus.approved, RequestStatus.rejected):
            request.decided_at = now
            request.decided_by = actor.id
            request.response_time_hours = response_time_hours(request.submitted_at, now)
        if new_status == RequestStatus.rejected:
            request.rejection_reason = data.comments
        await db.flush()

        if new_status == RequestStatus.approved:
            await ApprovalService._apply_approval(db, organization_id, request, actor.id)

        ApprovalService._add_history(
            db, request, data.action.value,
            actor_id=actor.id, old_status=old_status, new_status=new_status,
            remarks=data.comments,
            extra={"forward_to": str(data.forward_to)} if data.forward_to else None,
        )
        await create_audit_entry(
            db,
            action=data.action.value,
            entity_type="attendance_request",
            entity_id=request.id,
            organization_id=organization_id,
            actor_id=actor.id,
            old_values={"status": old_status.value},
            new_values={"status": new_status.value, "comments": data.comments},
        )

        if new_status == RequestStatus.approved:
            await notify_request_approved(db, request)
        elif new_status == RequestStatus.rejected:
            await notify_request_rejected(db, request, data.comments)
        elif data.action == DecisionAction.forward:
            await notify_request_forwarded(db, request, data.forward_to)

        await db.flush()
        logger.info(
            "Request %s: %s by %s (%s -> %s)",
            request.id, data.action.value, actor.id, old_status.value, new_status.value,
        )
        return _build_response(request, now)

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel(
        db: AsyncSession,
        organization_id: uuid.UUID,
        employee: Employee,
        request_id: uuid.UUID,
        reason: str,
    ) -> RequestResponse:
        """Cancel own request while draft/pending, or an approved leave before it starts."""
        request = await ApprovalService._load(db, organization_id, request_id, for_update=True)
        if request.user_id != employee.id:
            raise ForbiddenException("You can only cancel your own requests.")

        old_status = request.status
        revoke_leave = (
            request.status == RequestStatus.approved
            and request.request_type == RequestType.leave
        )
        if revoke_leave:
            today = local_today(DirectoryService.timezone_for(employee))
            if request.target_date <= today:
                raise ValidationException(
                    {"status": ["An approved leave can only be cancelled before it starts."]}
                )
            await ApprovalService._revoke_leave(
                db, organization_id, request, employee,
                actor_id=employee.id, reason=reason, action="cancelled",
            )
        else:
            ensure_transition(request.status, "cancel")
            now = utcnow()
            request.status = RequestStatus.cancelled
            request.cancelled_at = now
            request.cancelled_by = employee.id
            request.cancellation_reason = reason
            request.current_approver_level = None
            request.updated_at = now
            ApprovalService._add_history(
                db, request, "cancelled",
                actor_id=employee.id, old_status=old_status, new_status=request.status,
                remarks=reason,
            )

        await create_audit_entry(
            db,
            action="cancel",
            entity_type="attendance_request",
            entity_id=request.id,
            organization_id=organization_id,
            actor_id=employee.id,
            old_values={"status": old_status.value},
            new_values={"status": RequestStatus.cancelled.value, "reason": reason},
        )

        notified = {a.approver_id for a in request.approvers if a.status == ApproverStatus.pending}
        if revoke_leave:
            notified = {a.approver_id for a in request.approvers}
        for approver_id in notified:
            await notify_request_cancelled(db, request, approver_id)

        await db.flush()
        return _build_response(request)

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_mine(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        params: PaginationParams,
        *,
        status: Optional[RequestStatus] = None,
        request_type: Optional[RequestType] = None,
    ) -> PaginatedResponse:
        query = (
            select(AttendanceRequest)
            .where(
                AttendanceRequest.organization_id == organization_id,
                AttendanceRequest.user_id == user_id,
            )
            .options(selectinload(AttendanceRequest.approvers))
            .order_by(AttendanceRequest.created_at.desc())
        )
        query = apply_filters(
            query, AttendanceRequest, {"status": status, "request_type": request_type},
        )

        now = utcnow()
        return await paginate(
            db, query, params, model=AttendanceRequest,
            transform=lambda r: _build_response(r, now),
        )

    @staticmethod
    async def list_pending(
        db: AsyncSession,
        organization_id: uuid.UUID,
        approver_id: uuid.UUID,
        params: PaginationParams,
    ) -> PaginatedResponse:
        """Requests awaiting *approver_id*; overdue first, then by due time."""
        now = utcnow()
        awaiting = select(RequestApprover.request_id).where(
            RequestApprover.approver_id == approver_id,
            RequestApprover.status == ApproverStatus.pending,
        )
        query = (
            select(AttendanceRequest)
            .where(
                AttendanceRequest.organization_id == organization_id,
                AttendanceRequest.status.in_(list(OPEN_REQUEST_STATUSES)),
                AttendanceRequest.id.in_(awaiting),
            )
            .options(selectinload(AttendanceRequest.approvers))
            .order_by(
                case((AttendanceRequest.sla_due_at < now, 0), else_=1),
                AttendanceRequest.sla_due_at.asc(),
                AttendanceRequest.created_at.asc(),
            )
        )
        return await paginate(
            db, query, params,
            transform=lambda r: _build_response(r, now),
        )

    @staticmethod
    async def _get_visible(
        db: AsyncSession,
        organization_id: uuid.UUID,
        request_id: uuid.UUID,
        requester: Employee,
        role: UserRole,
    ) -> AttendanceRequest:
        request = await ApprovalService._load(db, organization_id, request_id)
        if request.user_id == requester.id:
            return request
        if UserRole.hr_admin in effective_roles(role):
            return request
        if any(a.approver_id == requester.id for a in request.approvers):
            return request
        raise ForbiddenException("You cannot view this request.")

    @staticmethod
    async def get(
        db: AsyncSession,
        organization_id: uuid.UUID,
        request_id: uuid.UUID,
        requester: Employee,
        role: UserRole,
    ) -> RequestResponse:
        request = await ApprovalService._get_visible(
            db, organization_id, request_id, requester, role,
        )
        return _build_response(request)

    @staticmethod
    async def history(
        db: AsyncSession,
        organization_id: uuid.UUID,
        request_id: uuid.UUID,
        requester: Employee,
        role: UserRole,
        params: PaginationParams,
    ) -> PaginatedResponse:
        await ApprovalService._get_visible(db, organization_id, request_id, requester, role)
        query = (
            select(RequestHistory)
            .where(RequestHistory.request_id == request_id)
            .order_by(RequestHistory.created_at.asc(), RequestHistory.id)
        )
        return await paginate(db, query, params, transform=HistoryResponse.model_validate)

    # ─────────────────────────────────────────────────────────────────
    # SLA sweep
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def flag_overdue(
        db: AsyncSession,
        organization_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> int:
        """Persist ``is_overdue`` on open requests past their SLA. Never changes status."""
        now = now or utcnow()
        result = await db.execute(
            select(AttendanceRequest).where(
                AttendanceRequest.organization_id == organization_id,
                AttendanceRequest.status.in_(list(OPEN_REQUEST_STATUSES)),
                AttendanceRequest.is_overdue.is_(False),
                AttendanceRequest.sla_due_at.is_not(None),
                AttendanceRequest.sla_due_at < now,
            )
        )
        requests = result.scalars().all()
        for request in requests:
            request.is_overdue = True
        await db.flush()
        if requests:
            logger.info(
                "Flagged %d overdue request(s) for organization %s",
                len(requests), organization_id,
            )
        return len(requests)
