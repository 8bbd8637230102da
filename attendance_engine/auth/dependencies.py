"""Request authentication and role checks.

Access tokens come from the host platform's identity service and carry
``sub`` (employee id), ``org`` (organization id), ``role`` and
``type="access"``. This service never issues tokens itself.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from attendance_engine.common.constants import UserRole
from attendance_engine.common.exceptions import ForbiddenException
from attendance_engine.config import settings
from attendance_engine.database import get_db
from attendance_engine.directory.models import Employee

# Higher rank inherits every permission of the ranks below it
_ROLE_RANK: dict[UserRole, int] = {
    UserRole.employee: 0,
    UserRole.manager: 1,
    UserRole.hr_admin: 2,
    UserRole.system_admin: 3,
}


@dataclass(frozen=True)
class AccessClaims:
    employee_id: uuid.UUID
    organization_id: uuid.UUID
    role: UserRole


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


def effective_roles(role: UserRole) -> set[UserRole]:
    rank = _ROLE_RANK.get(role, 0)
    return {r for r, r_rank in _ROLE_RANK.items() if r_rank <= rank}


def decode_access_token(token: str) -> AccessClaims:
    """Verify signature, expiry and token type; unknown roles fall back to employee."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise _unauthorized("Token has expired.")
    except JWTError:
        raise _unauthorized("Invalid token.")

    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type.")

    try:
        employee_id = uuid.UUID(payload["sub"])
        organization_id = uuid.UUID(payload["org"])
    except (KeyError, TypeError, ValueError):
        raise _unauthorized("Token is missing subject or organization.")

    try:
        role = UserRole(payload.get("role", UserRole.employee.value))
    except ValueError:
        role = UserRole.employee
    return AccessClaims(employee_id, organization_id, role)


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Employee:
    """Resolve the bearer token to an active employee of the token's organization."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme != "Bearer" or not token:
        raise _unauthorized("Missing or invalid Authorization header.")

    claims = decode_access_token(token)

    employee = (
        await db.execute(
            select(Employee)
            .where(Employee.id == claims.employee_id, Employee.is_active.is_(True))
            .options(selectinload(Employee.branch), selectinload(Employee.shift)),
        )
    ).scalars().first()
    if employee is None:
        raise _unauthorized("User account is inactive or not found.")
    if employee.organization_id != claims.organization_id:
        raise ForbiddenException(detail="Token organization does not match the user.")

    request.state.user_role = claims.role
    return employee


def require_role(*allowed_roles: UserRole) -> Callable:
    """Dependency factory; a caller passes if any role it inherits is allowed."""

    async def _check(
        request: Request,
        employee: Employee = Depends(get_current_user),
    ) -> Employee:
        user_role: UserRole = request.state.user_role
        if effective_roles(user_role).isdisjoint(allowed_roles):
            raise ForbiddenException(
                detail=(
                    f"Role '{user_role.value}' is not permitted. "
                    f"Required: {[r.value for r in allowed_roles]}."
                ),
            )
        return employee

    return _check


def caller_role(request: Request) -> UserRole:
    return getattr(request.state, "user_role", UserRole.employee)
