"""Apply an approved correction / missed-punch request to the punch log."""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.approvals.models import AttendanceRequest
from attendance_engine.attendance.service import AttendanceService, RecomputeResult
from attendance_engine.common.audit import create_audit_entry
from attendance_engine.common.constants import (
    ProcessingState,
    PunchSource,
    PunchType,
    VerificationState,
)
from attendance_engine.common.timeutils import as_utc
from attendance_engine.directory.models import Employee
from attendance_engine.punches.models import PunchEvent

logger = logging.getLogger(__name__)


class CorrectionService:

    @staticmethod
    async def existing_punches(
        db: AsyncSession,
        organization_id: uuid.UUID,
        request_id: uuid.UUID,
    ) -> list[PunchEvent]:
        result = await db.execute(
            select(PunchEvent)
            .where(
                PunchEvent.organization_id == organization_id,
                PunchEvent.request_id == request_id,
            )
            .order_by(PunchEvent.timestamp)
        )
        return list(result.scalars().all())

    @staticmethod
    async def apply(
        db: AsyncSession,
        request: AttendanceRequest,
        employee: Employee,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RecomputeResult:
        """Write corrected punches for *request* and recompute the target day.

        Safe to call again: punches already carrying the request id mean the
        correction was applied, and only the recompute runs.
        """
        organization_id = request.organization_id
        punches = await CorrectionService.existing_punches(db, organization_id, request.id)

        if not punches:
            wanted = (
                (PunchType.in_, request.new_first_in),
                (PunchType.out, request.new_last_out),
            )
            for punch_type, timestamp in wanted:
                if timestamp is None:
                    continue
                event = PunchEvent(
                    organization_id=organization_id,
                    branch_id=employee.branch_id,
                    user_id=employee.id,
                    source=PunchSource.admin_manual,
                    punch_type=punch_type,
                    timestamp=as_utc(timestamp),
                    attributed_date=request.target_date,
                    verification_state=VerificationState.verified,
                    processing_state=ProcessingState.corrected,
                    request_id=request.id,
                    raw_data={"request_id": str(request.id)},
                )
                db.add(event)
                punches.append(event)
            await db.flush()
        else:
            logger.info("Correction for request %s already applied", request.id)

        result = await AttendanceService.recompute(
            db, organization_id, employee.id, request.target_date, employee=employee,
        )

        request.linked_punch_ids = [str(p.id) for p in punches]
        request.linked_attendance_ids = (
            [str(result.record.id)] if result.record is not None else []
        )

        await create_audit_entry(
            db,
            action="apply_correction",
            entity_type="attendance_request",
            entity_id=request.id,
            organization_id=organization_id,
            actor_id=actor_id,
            new_values={
                "target_date": request.target_date.isoformat(),
                "punch_ids": request.linked_punch_ids,
                "outcome": result.outcome,
            },
        )
        return result
