"""Punch router — user punches, machine sync, orphans, machine registration.

User endpoints authenticate with a Bearer JWT; ``/machine/sync`` uses the
device credentials checked by ``get_authenticated_machine``.
"""

import asyncio
import logging
from datetime import date
from typing import Union

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.auth.dependencies import get_current_user, require_role
from attendance_engine.common.constants import UserRole
from attendance_engine.common.exceptions import IngestionTimeoutError
from attendance_engine.common.pagination import PaginatedResponse, PaginationParams
from attendance_engine.config import settings
from attendance_engine.database import get_db
from attendance_engine.directory.models import Employee
from attendance_engine.punches.device_auth import get_authenticated_machine
from attendance_engine.punches.models import AttendanceMachine
from attendance_engine.punches.schemas import (
    MachineCreate,
    MachineCredentialsResponse,
    MachinePunchEntry,
    MachineResponse,
    MachineSyncResponse,
    OrphanPunchResponse,
    PunchCreate,
    PunchResponse,
    ReattributeResponse,
)
from attendance_engine.punches.service import PunchService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["punches"])
machines_router = APIRouter(prefix="", tags=["machines"])


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=PunchResponse, status_code=201)
async def create_punch(
    body: PunchCreate,
    request: Request,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Record a web/mobile punch for the current user."""
    ip = request.client.host if request.client else None
    return await PunchService.record_user_punch(db, employee, body, ip_address=ip)


# ── GET /me ─────────────────────────────────────────────────────────

@router.get("/me", response_model=list[PunchResponse])
async def my_punches(
    from_date: date = Query(..., description="Start date (inclusive)"),
    to_date: date = Query(..., description="End date (inclusive)"),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The current user's punch log by attributed date."""
    return await PunchService.list_my_punches(
        db, employee.organization_id, employee.id, from_date, to_date,
    )


# ── POST /machine/sync ──────────────────────────────────────────────

@router.post("/machine/sync", response_model=MachineSyncResponse)
async def machine_sync(
    body: Union[list[MachinePunchEntry], MachinePunchEntry],
    machine: AttendanceMachine = Depends(get_authenticated_machine),
    db: AsyncSession = Depends(get_db),
):
    """Ingest a single entry or a batch from an authenticated terminal."""
    entries = body if isinstance(body, list) else [body]
    payload = [entry.model_dump(exclude_none=True) for entry in entries]
    try:
        return await asyncio.wait_for(
            PunchService.ingest_machine_batch(db, machine, payload),
            timeout=settings.INGESTION_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error(
            "Ingestion of %d entr(ies) from machine %s timed out after %ss",
            len(payload), machine.id, settings.INGESTION_TIMEOUT_SECONDS,
        )
        raise IngestionTimeoutError(settings.INGESTION_TIMEOUT_SECONDS)


# ── GET /orphans ────────────────────────────────────────────────────

@router.get("/orphans", response_model=PaginatedResponse[OrphanPunchResponse])
async def list_orphans(
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Machine punches whose device user id did not resolve."""
    return await PunchService.list_orphans(db, employee.organization_id, pagination)


# ── POST /orphans/reattribute ───────────────────────────────────────

@router.post("/orphans/reattribute", response_model=ReattributeResponse)
async def reattribute_orphans(
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    return await PunchService.reattribute_orphans(db, employee.organization_id)


# ═════════════════════════════════════════════════════════════════════
# Machines
# ═════════════════════════════════════════════════════════════════════


@machines_router.post("", response_model=MachineCredentialsResponse, status_code=201)
async def register_machine(
    body: MachineCreate,
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    """Register a terminal. The API key and secret are only returned here."""
    return await PunchService.register_machine(
        db, employee.organization_id, body, actor_id=employee.id,
    )


@machines_router.get("", response_model=list[MachineResponse])
async def list_machines(
    employee: Employee = Depends(require_role(UserRole.hr_admin)),
    db: AsyncSession = Depends(get_db),
):
    return await PunchService.list_machines(db, employee.organization_id)
