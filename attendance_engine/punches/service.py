"""Punch service layer — ingestion, dedup, sequencing, orphans, machines.

Business logic:
  - Machine batches: normalize each entry through the provider table,
    resolve the subject, persist orphans for later re-attribution
  - User punches: rate limit, geofence, dedup and sequencing before the
    event is written
  - Every stored punch triggers a recompute of its (user, date) record
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.attendance.derivation import COUNTED_STATES
from attendance_engine.attendance.service import AttendanceService
from attendance_engine.common.audit import create_audit_entry
from attendance_engine.common.constants import (
    MACHINE_API_KEY_PREFIX,
    MAX_DATE_RANGE_DAYS,
    ProcessingState,
    PunchSource,
    PunchType,
    VerificationState,
)
from attendance_engine.common.exceptions import (
    DuplicatePunchError,
    GeofenceViolation,
    NotFoundException,
    ValidationException,
)
from attendance_engine.common.pagination import PaginatedResponse, PaginationParams, paginate
from attendance_engine.common.rate_limit import punch_rate_limiter
from attendance_engine.common.timeutils import as_utc, utcnow
from attendance_engine.config import settings
from attendance_engine.directory.models import Employee
from attendance_engine.directory.service import DirectoryService
from attendance_engine.geofence.validator import (
    GeoPoint,
    LocatedPunch,
    check_location,
    location_hash,
    validate_coordinates,
)
from attendance_engine.punches.models import AttendanceMachine, PunchEvent
from attendance_engine.punches.normalizer import (
    is_duplicate,
    is_valid_sequence,
    normalize_machine_entry,
)
from attendance_engine.punches.providers import provider_for
from attendance_engine.punches.schemas import (
    MachineCreate,
    MachineCredentialsResponse,
    MachineSyncError,
    MachineSyncResponse,
    OrphanPunchResponse,
    PunchCreate,
    PunchResponse,
    ReattributeResponse,
)
from attendance_engine.shifts.service import ShiftService

logger = logging.getLogger(__name__)

INVALID_SEQUENCE = "invalid_sequence"


# ═════════════════════════════════════════════════════════════════════
# PunchService
# ═════════════════════════════════════════════════════════════════════


class PunchService:
    """Async punch operations: ingest, query, re-attribute."""

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    async def _find_duplicate(
        db: AsyncSession,
        organization_id: uuid.UUID,
        punch_type: PunchType,
        timestamp: datetime,
        *,
        user_id: Optional[uuid.UUID] = None,
        raw_user_id: Optional[str] = None,
        machine_id: Optional[uuid.UUID] = None,
    ) -> Optional[uuid.UUID]:
        """Id of a same-type, non-rejected punch inside the dedup window."""
        window = timedelta(seconds=settings.DUPLICATE_PUNCH_WINDOW_SECONDS)
        query = select(PunchEvent.id).where(
            PunchEvent.organization_id == organization_id,
            PunchEvent.punch_type == punch_type,
            PunchEvent.processing_state != ProcessingState.rejected,
            PunchEvent.timestamp >= timestamp - window,
            PunchEvent.timestamp <= timestamp + window,
        )
        if user_id is not None:
            query = query.where(PunchEvent.user_id == user_id)
        else:
            query = query.where(
                PunchEvent.user_id.is_(None),
                PunchEvent.raw_user_id == raw_user_id,
                PunchEvent.machine_id == machine_id,
            )
        return (await db.execute(query.limit(1))).scalars().first()

    @staticmethod
    async def _sequence_state(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        day: date,
        punch_type: PunchType,
        timestamp: datetime,
    ) -> tuple[ProcessingState, Optional[str]]:
        """``processed``, or ``flagged`` when the transition from the previous punch is invalid."""
        result = await db.execute(
            select(PunchEvent.punch_type)
            .where(
                PunchEvent.organization_id == organization_id,
                PunchEvent.user_id == user_id,
                PunchEvent.attributed_date == day,
                PunchEvent.processing_state.in_(list(COUNTED_STATES)),
                PunchEvent.timestamp < timestamp,
            )
            .order_by(PunchEvent.timestamp.desc())
            .limit(1)
        )
        previous = result.scalars().first()
        if is_valid_sequence(previous, punch_type):
            return ProcessingState.processed, None
        return ProcessingState.flagged, INVALID_SEQUENCE

    @staticmethod
    async def _last_located_punch(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        before: datetime,
    ) -> Optional[LocatedPunch]:
        result = await db.execute(
            select(PunchEvent)
            .where(
                PunchEvent.organization_id == organization_id,
                PunchEvent.user_id == user_id,
                PunchEvent.latitude.is_not(None),
                PunchEvent.longitude.is_not(None),
                PunchEvent.processing_state != ProcessingState.rejected,
                PunchEvent.timestamp <= before,
            )
            .order_by(PunchEvent.timestamp.desc())
            .limit(1)
        )
        punch = result.scalars().first()
        if punch is None:
            return None
        return LocatedPunch(
            point=GeoPoint(punch.latitude, punch.longitude),
            timestamp=as_utc(punch.timestamp),
        )

    # ── Machine ingestion ───────────────────────────────────────────

    @staticmethod
    async def ingest_machine_batch(
        db: AsyncSession,
        machine: AttendanceMachine,
        entries: Sequence[dict[str, Any]],
    ) -> MachineSyncResponse:
        """Normalize and store a terminal batch, then recompute touched days.

        Unresolvable subjects are stored as ``orphan``; unmappable or
        malformed entries are rejected and reported per index.
        """
        organization_id = machine.organization_id
        # One batch per terminal at a time; orphan punches have no daily row to lock
        await db.execute(
            select(AttendanceMachine.id)
            .where(AttendanceMachine.id == machine.id)
            .with_for_update()
        )
        provider = provider_for(machine.provider_type)
        branch = await DirectoryService.get_branch(db, organization_id, machine.branch_id)
        machine_tz = branch.timezone if branch is not None else None
        window = settings.DUPLICATE_PUNCH_WINDOW_SECONDS

        summary = MachineSyncResponse()
        seen: dict[tuple[str, PunchType], list[datetime]] = {}
        subjects: dict[str, Optional[Employee]] = {}
        touched: dict[tuple[uuid.UUID, date], Employee] = {}

        for index, entry in enumerate(entries):
            try:
                normalized = normalize_machine_entry(entry, provider, machine_tz)
            except ValidationException as exc:
                summary.rejected += 1
                summary.errors.append(
                    MachineSyncError(index=index, error="validation-error", detail=exc.errors)
                )
                continue

            key = (normalized.raw_user_id, normalized.punch_type)
            if is_duplicate(normalized.timestamp, seen.get(key, []), window):
                summary.duplicates += 1
                continue
            seen.setdefault(key, []).append(normalized.timestamp)

            if normalized.raw_user_id not in subjects:
                subjects[normalized.raw_user_id] = await DirectoryService.resolve_machine_user(
                    db, organization_id, normalized.raw_user_id,
                )
            employee = subjects[normalized.raw_user_id]

            event = PunchEvent(
                organization_id=organization_id,
                branch_id=machine.branch_id,
                raw_user_id=normalized.raw_user_id,
                machine_id=machine.id,
                source=PunchSource.machine,
                punch_type=normalized.punch_type,
                timestamp=normalized.timestamp,
                received_at=utcnow(),
                verification_state=VerificationState.verified,
                raw_data=normalized.raw,
            )

            if employee is None:
                duplicate = await PunchService._find_duplicate(
                    db, organization_id, normalized.punch_type, normalized.timestamp,
                    raw_user_id=normalized.raw_user_id, machine_id=machine.id,
                )
                if duplicate is not None:
                    summary.duplicates += 1
                    continue
                event.processing_state = ProcessingState.orphan
                db.add(event)
                await db.flush()
                summary.synced += 1
                summary.orphaned += 1
                continue

            resolution = await ShiftService.resolve(
                db, organization_id, employee, normalized.timestamp,
            )
            await AttendanceService.lock_day(
                db, organization_id, employee.id, resolution.attributed_date,
            )
            touched[(employee.id, resolution.attributed_date)] = employee

            duplicate = await PunchService._find_duplicate(
                db, organization_id, normalized.punch_type, normalized.timestamp,
                user_id=employee.id,
            )
            if duplicate is not None:
                summary.duplicates += 1
                continue

            state, flag_reason = await PunchService._sequence_state(
                db, organization_id, employee.id, resolution.attributed_date,
                normalized.punch_type, normalized.timestamp,
            )
            event.user_id = employee.id
            event.branch_id = machine.branch_id or employee.branch_id
            event.attributed_date = resolution.attributed_date
            event.processing_state = state
            event.flag_reason = flag_reason
            db.add(event)
            await db.flush()

            summary.synced += 1
            if state == ProcessingState.flagged:
                summary.flagged += 1
            else:
                summary.processed += 1

        for (user_id, day), employee in sorted(touched.items(), key=lambda kv: (str(kv[0][0]), kv[0][1])):
            await AttendanceService.recompute(
                db, organization_id, user_id, day, employee=employee,
            )

        machine.last_sync_at = utcnow()
        machine.sync_count = (machine.sync_count or 0) + 1
        await db.flush()

        if summary.orphaned:
            logger.warning(
                "Machine %s stored %d orphan punch(es) with unknown device user ids",
                machine.id, summary.orphaned,
            )
        if summary.duplicates or summary.rejected:
            logger.info(
                "Machine %s sync: %d duplicate(s), %d rejected entr(ies)",
                machine.id, summary.duplicates, summary.rejected,
            )
        return summary

    # ── User punch ──────────────────────────────────────────────────

    @staticmethod
    async def record_user_punch(
        db: AsyncSession,
        employee: Employee,
        data: PunchCreate,
        *,
        ip_address: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> PunchResponse:
        """Validate and store a web/mobile punch, then recompute the day."""
        organization_id = employee.organization_id
        punch_rate_limiter.hit(organization_id, employee.id)

        timestamp = as_utc(now) if now is not None else utcnow()
        branch = employee.branch
        verification = VerificationState.unverified
        distance = None
        fingerprint = None

        if data.latitude is None or data.longitude is None:
            if employee.geofence_required or (branch is not None and branch.has_geofence):
                raise GeofenceViolation(
                    "location-required",
                    "A location is required to punch from this branch.",
                )
        else:
            validate_coordinates(data.latitude, data.longitude)
            if branch is not None and branch.has_geofence:
                previous = await PunchService._last_located_punch(
                    db, organization_id, employee.id, timestamp,
                )
                result = check_location(
                    GeoPoint(data.latitude, data.longitude),
                    data.accuracy,
                    GeoPoint(branch.latitude, branch.longitude),
                    branch.geofence_radius_meters,
                    timestamp=timestamp,
                    previous=previous,
                    max_accuracy_meters=settings.GEOFENCE_MAX_ACCURACY_METERS,
                    max_speed_kmh=settings.GEOFENCE_MAX_SPEED_KMH,
                )
                distance = round(result.distance_meters, 1)
                verification = VerificationState.verified
            if settings.LOCATION_HASH_SECRET:
                fingerprint = location_hash(
                    settings.LOCATION_HASH_SECRET,
                    data.latitude, data.longitude, data.accuracy, timestamp,
                )

        resolution = await ShiftService.resolve(db, organization_id, employee, timestamp)
        await AttendanceService.lock_day(
            db, organization_id, employee.id, resolution.attributed_date,
        )
        duplicate = await PunchService._find_duplicate(
            db, organization_id, data.punch_type, timestamp, user_id=employee.id,
        )
        if duplicate is not None:
            raise DuplicatePunchError(data.punch_type.value, settings.DUPLICATE_PUNCH_WINDOW_SECONDS)

        state, flag_reason = await PunchService._sequence_state(
            db, organization_id, employee.id, resolution.attributed_date,
            data.punch_type, timestamp,
        )

        event = PunchEvent(
            organization_id=organization_id,
            branch_id=employee.branch_id,
            user_id=employee.id,
            source=data.source,
            punch_type=data.punch_type,
            timestamp=timestamp,
            received_at=utcnow(),
            attributed_date=resolution.attributed_date,
            latitude=data.latitude,
            longitude=data.longitude,
            accuracy=data.accuracy,
            distance_from_branch=distance,
            location_hash=fingerprint,
            verification_state=verification,
            processing_state=state,
            flag_reason=flag_reason,
            device_id=data.device_id,
            ip_address=ip_address,
        )
        db.add(event)
        await db.flush()

        await AttendanceService.recompute(
            db, organization_id, employee.id, resolution.attributed_date, employee=employee,
        )
        return PunchResponse.model_validate(event)

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def list_my_punches(
        db: AsyncSession,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        from_date: date,
        to_date: date,
    ) -> list[PunchResponse]:
        if from_date > to_date:
            raise ValidationException(
                {"date_range": ["from_date must be before or equal to to_date."]}
            )
        if (to_date - from_date).days > MAX_DATE_RANGE_DAYS:
            raise ValidationException(
                {"date_range": [f"Date range cannot exceed {MAX_DATE_RANGE_DAYS} days."]}
            )
        result = await db.execute(
            select(PunchEvent)
            .where(
                PunchEvent.organization_id == organization_id,
                PunchEvent.user_id == user_id,
                PunchEvent.attributed_date >= from_date,
                PunchEvent.attributed_date <= to_date,
            )
            .order_by(PunchEvent.timestamp)
        )
        return [PunchResponse.model_validate(p) for p in result.scalars().all()]

    @staticmethod
    async def list_orphans(
        db: AsyncSession,
        organization_id: uuid.UUID,
        params: PaginationParams,
    ) -> PaginatedResponse:
        query = (
            select(PunchEvent)
            .where(
                PunchEvent.organization_id == organization_id,
                PunchEvent.processing_state == ProcessingState.orphan,
            )
            .order_by(PunchEvent.timestamp.desc())
        )
        return await paginate(
            db, query, params, model=PunchEvent,
            transform=OrphanPunchResponse.model_validate,
        )

    # ── Orphan re-attribution ───────────────────────────────────────

    @staticmethod
    async def reattribute_orphans(
        db: AsyncSession,
        organization_id: uuid.UUID,
    ) -> ReattributeResponse:
        """Attach orphans whose device user id now resolves, and recompute their days."""
        result = await db.execute(
            select(PunchEvent)
            .where(
                PunchEvent.organization_id == organization_id,
                PunchEvent.processing_state == ProcessingState.orphan,
            )
            .order_by(PunchEvent.timestamp)
        )
        orphans = result.scalars().all()

        subjects: dict[str, Optional[Employee]] = {}
        touched: dict[tuple[uuid.UUID, date], Employee] = {}
        reattributed = 0

        for event in orphans:
            raw_id = event.raw_user_id or ""
            if raw_id not in subjects:
                subjects[raw_id] = (
                    await DirectoryService.resolve_machine_user(db, organization_id, raw_id)
                    if raw_id else None
                )
            employee = subjects[raw_id]
            if employee is None:
                continue

            resolution = await ShiftService.resolve(
                db, organization_id, employee, as_utc(event.timestamp),
            )
            event.user_id = employee.id
            event.branch_id = event.branch_id or employee.branch_id
            event.attributed_date = resolution.attributed_date
            event.processing_state = ProcessingState.processed
            touched[(employee.id, resolution.attributed_date)] = employee
            reattributed += 1

        await db.flush()

        for (user_id, day), employee in touched.items():
            await AttendanceService.recompute(
                db, organization_id, user_id, day, employee=employee,
            )

        if reattributed:
            logger.info(
                "Re-attributed %d orphan punch(es) for organization %s",
                reattributed, organization_id,
            )
        return ReattributeResponse(
            reattributed=reattributed,
            remaining=len(orphans) - reattributed,
            recomputed_days=len(touched),
        )

    # ── Machines ────────────────────────────────────────────────────

    @staticmethod
    async def register_machine(
        db: AsyncSession,
        organization_id: uuid.UUID,
        data: MachineCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> MachineCredentialsResponse:
        """Create a terminal with fresh credentials; the secret is returned once."""
        if data.branch_id is not None:
            branch = await DirectoryService.get_branch(db, organization_id, data.branch_id)
            if branch is None:
                raise NotFoundException("Branch", data.branch_id)

        machine = AttendanceMachine(
            organization_id=organization_id,
            branch_id=data.branch_id,
            name=data.name,
            serial_number=data.serial_number,
            provider_type=data.provider_type,
            auth_mode=data.auth_mode,
            ip_address=data.ip_address,
            api_key=f"{MACHINE_API_KEY_PREFIX}{secrets.token_hex(24)}",
            api_secret=secrets.token_hex(32),
            sync_count=0,
        )
        db.add(machine)
        await db.flush()

        await create_audit_entry(
            db,
            action="create",
            entity_type="attendance_machine",
            entity_id=machine.id,
            organization_id=organization_id,
            actor_id=actor_id,
            new_values={
                "name": machine.name,
                "provider_type": machine.provider_type.value,
                "auth_mode": machine.auth_mode.value,
                "branch_id": str(machine.branch_id) if machine.branch_id else None,
            },
        )
        return MachineCredentialsResponse.model_validate(machine)

    @staticmethod
    async def list_machines(
        db: AsyncSession,
        organization_id: uuid.UUID,
    ) -> Sequence[AttendanceMachine]:
        result = await db.execute(
            select(AttendanceMachine)
            .where(AttendanceMachine.organization_id == organization_id)
            .order_by(AttendanceMachine.name)
        )
        return result.scalars().all()
