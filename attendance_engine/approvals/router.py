"""Request router — submit, decide, cancel and read regularization/leave requests."""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.approvals.schemas import (
    CancelRequest,
    DecisionRequest,
    HistoryResponse,
    RequestCreate,
    RequestResponse,
)
from attendance_engine.approvals.service import ApprovalService
from attendance_engine.auth.dependencies import caller_role, get_current_user
from attendance_engine.common.constants import RequestStatus, RequestType
from attendance_engine.common.pagination import PaginatedResponse, PaginationParams
from attendance_engine.database import get_db
from attendance_engine.directory.models import Employee

router = APIRouter(prefix="", tags=["requests"])


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=RequestResponse, status_code=201)
async def create_request(
    body: RequestCreate,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Submit a request, or save it as a draft with ``save_as_draft``."""
    return await ApprovalService.submit(db, employee.organization_id, employee, body)


# ── POST /{request_id}/submit ───────────────────────────────────────

@router.post("/{request_id}/submit", response_model=RequestResponse)
async def submit_draft(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ApprovalService.submit_draft(
        db, employee.organization_id, employee, request_id,
    )


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=PaginatedResponse[RequestResponse])
async def my_requests(
    status: Optional[RequestStatus] = Query(None),
    request_type: Optional[RequestType] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The current user's requests, newest first."""
    return await ApprovalService.list_mine(
        db, employee.organization_id, employee.id, pagination,
        status=status, request_type=request_type,
    )


# ── GET /pending ────────────────────────────────────────────────────

@router.get("/pending", response_model=PaginatedResponse[RequestResponse])
async def pending_approvals(
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Requests waiting on the current user; overdue first."""
    return await ApprovalService.list_pending(
        db, employee.organization_id, employee.id, pagination,
    )


# ── GET /{request_id} ───────────────────────────────────────────────

@router.get("/{request_id}", response_model=RequestResponse)
async def get_request(
    request_id: uuid.UUID,
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ApprovalService.get(
        db, employee.organization_id, request_id, employee, caller_role(request),
    )


# ── GET /{request_id}/history ───────────────────────────────────────

@router.get("/{request_id}/history", response_model=PaginatedResponse[HistoryResponse])
async def request_history(
    request_id: uuid.UUID,
    request: Request,
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ApprovalService.history(
        db, employee.organization_id, request_id, employee, caller_role(request), pagination,
    )


# ── POST /{request_id}/decision ─────────────────────────────────────

@router.post("/{request_id}/decision", response_model=RequestResponse)
async def decide_request(
    request_id: uuid.UUID,
    body: DecisionRequest,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Approve, reject or forward. Only a pending approver in the chain may act."""
    return await ApprovalService.decide(
        db, employee.organization_id, request_id, employee, body,
    )


# ── POST /{request_id}/cancel ───────────────────────────────────────

@router.post("/{request_id}/cancel", response_model=RequestResponse)
async def cancel_request(
    request_id: uuid.UUID,
    body: CancelRequest,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ApprovalService.cancel(
        db, employee.organization_id, employee, request_id, body.reason,
    )
