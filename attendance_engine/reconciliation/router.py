"""Reconciliation router — trigger a sweep and list past runs (HR only)."""


from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendance_engine.auth.dependencies import require_role
from attendance_engine.common.constants import UserRole
from attendance_engine.database import get_db, get_session_factory
from attendance_engine.directory.models import Employee
from attendance_engine.reconciliation.schemas import (
    ReconciliationRunRequest,
    ReconciliationRunResponse,
)
from attendance_engine.reconciliation.service import ReconciliationService

router = APIRouter(prefix="", tags=["reconciliation"])


# ── POST /run ───────────────────────────────────────────────────────

@router.post("/run", response_model=ReconciliationRunResponse)
async def run_reconciliation(
    body: Optional[ReconciliationRunRequest] = None,
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Close out a date (default: yesterday) for every attendance user."""
    return await ReconciliationService.run(
        employee.organization_id,
        body.target_date if body else None,
        session_factory=session_factory,
        triggered_by="api",
        actor_id=employee.id,
    )


# ── GET /runs ───────────────────────────────────────────────────────

@router.get("/runs", response_model=list[ReconciliationRunResponse])
async def list_runs(
    limit: int = Query(30, ge=1, le=100),
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    return await ReconciliationService.list_runs(db, employee.organization_id, limit=limit)
