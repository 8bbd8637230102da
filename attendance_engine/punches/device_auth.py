"""Device authentication for biometric terminals.

Terminals send ``X-Machine-Key``. Machines in ``hmac`` mode additionally
sign ``f"{api_key}:{timestamp}"`` with their secret and send the result in
``X-Machine-Signature`` alongside ``X-Machine-Timestamp``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_engine.common.constants import MachineAuthMode, MachineStatus
from attendance_engine.common.exceptions import UnauthorizedException
from attendance_engine.common.timeutils import utcnow
from attendance_engine.config import settings
from attendance_engine.database import get_db
from attendance_engine.punches.models import AttendanceMachine
from attendance_engine.punches.normalizer import parse_timestamp

logger = logging.getLogger(__name__)


def sign_request(api_key: str, api_secret: str, timestamp: str) -> str:
    """Hex HMAC-SHA256 of ``"{api_key}:{timestamp}"`` keyed by the secret."""
    return hmac.new(
        api_secret.encode(),
        f"{api_key}:{timestamp}".encode(),
        hashlib.sha256,
    ).hexdigest()


def verify_signature(
    machine: AttendanceMachine,
    timestamp: Optional[str],
    signature: Optional[str],
    *,
    now: Optional[datetime] = None,
    ttl_seconds: Optional[int] = None,
) -> None:
    """Raise ``UnauthorizedException`` unless the signature is valid and fresh."""
    if not timestamp or not signature:
        raise UnauthorizedException("Signed machine requests need a timestamp and signature.")

    try:
        signed_at = parse_timestamp(timestamp, "UTC")
    except (ValueError, OverflowError, OSError):
        raise UnauthorizedException("Invalid machine timestamp.")

    ttl = ttl_seconds if ttl_seconds is not None else settings.MACHINE_SIGNATURE_TTL_SECONDS
    age = abs(((now or utcnow()) - signed_at).total_seconds())
    if age > ttl:
        raise UnauthorizedException("Machine signature has expired.")

    expected = sign_request(machine.api_key, machine.api_secret, timestamp)
    if not hmac.compare_digest(expected, signature.lower()):
        raise UnauthorizedException("Invalid machine signature.")


async def get_authenticated_machine(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AttendanceMachine:
    """Resolve the calling terminal from its headers or raise 401."""
    api_key = request.headers.get("X-Machine-Key")
    if not api_key:
        raise UnauthorizedException("Missing X-Machine-Key header.")

    result = await db.execute(
        select(AttendanceMachine).where(AttendanceMachine.api_key == api_key)
    )
    machine = result.scalars().first()
    if machine is None or machine.status != MachineStatus.active:
        raise UnauthorizedException("Unknown or inactive machine.")

    if machine.auth_mode == MachineAuthMode.hmac:
        verify_signature(
            machine,
            request.headers.get("X-Machine-Timestamp"),
            request.headers.get("X-Machine-Signature"),
        )

    client_ip = request.client.host if request.client else None
    if machine.ip_address and client_ip and str(machine.ip_address) != client_ip:
        logger.warning(
            "Machine %s (%s) called from %s, registered IP is %s",
            machine.id, machine.name, client_ip, machine.ip_address,
        )

    return machine
