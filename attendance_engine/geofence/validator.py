"""Geofence validator — great-circle distance and anti-spoofing checks.

Pure functions only; the punch service supplies the branch reference point
and the subject's previous located punch.
"""

from __future__ import annotations

import hashlib
import hmac
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from attendance_engine.common.exceptions import GeofenceViolation, ValidationException
from attendance_engine.common.timeutils import as_utc

EARTH_RADIUS_METERS = 6371e3


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class LocatedPunch:
    """A previous punch with coordinates, used for the speed heuristic."""

    point: GeoPoint
    timestamp: datetime


@dataclass(frozen=True)
class GeofenceResult:
    distance_meters: float
    speed_kmh: Optional[float] = None


def haversine_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in metres."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def validate_coordinates(latitude: float, longitude: float) -> None:
    errors: dict[str, list[str]] = {}
    if not -90 <= latitude <= 90:
        errors["latitude"] = ["Latitude must be between -90 and 90."]
    if not -180 <= longitude <= 180:
        errors["longitude"] = ["Longitude must be between -180 and 180."]
    if errors:
        raise ValidationException(errors)


def implied_speed_kmh(
    previous: LocatedPunch,
    point: GeoPoint,
    timestamp: datetime,
) -> Optional[float]:
    """Travel speed between two located punches; None when time did not advance."""
    elapsed = (as_utc(timestamp) - as_utc(previous.timestamp)).total_seconds()
    distance = haversine_meters(previous.point, point)
    if elapsed <= 0:
        return math.inf if distance > 0 else None
    return (distance / 1000) / (elapsed / 3600)


def check_location(
    point: GeoPoint,
    accuracy_meters: Optional[float],
    reference: GeoPoint,
    radius_meters: float,
    *,
    timestamp: datetime,
    previous: Optional[LocatedPunch] = None,
    max_accuracy_meters: float = 100.0,
    max_speed_kmh: float = 200.0,
) -> GeofenceResult:
    """Validate a claimed location or raise ``GeofenceViolation``.

    Order: accuracy ceiling, implausible movement, then radius — so a
    spoofed fix far from the branch reports "implausible movement" rather
    than merely "out of range".
    """
    validate_coordinates(point.latitude, point.longitude)

    if accuracy_meters is not None and accuracy_meters > max_accuracy_meters:
        raise GeofenceViolation(
            "low-accuracy",
            f"Location accuracy {accuracy_meters:.0f}m is worse than the "
            f"{max_accuracy_meters:.0f}m limit.",
            accuracy=accuracy_meters,
        )

    speed = None
    if previous is not None:
        speed = implied_speed_kmh(previous, point, timestamp)
        if speed is not None and speed > max_speed_kmh:
            raise GeofenceViolation(
                "implausible-movement",
                "Location changed faster than is physically plausible since "
                "the previous punch.",
                speed_kmh=round(speed, 1) if math.isfinite(speed) else "inf",
            )

    distance = haversine_meters(point, reference)
    if distance > radius_meters:
        raise GeofenceViolation(
            "out-of-range",
            f"You are {distance:.0f}m from the branch; the allowed radius is "
            f"{radius_meters:.0f}m.",
            distance_meters=round(distance, 1),
        )

    return GeofenceResult(distance_meters=distance, speed_kmh=speed)


def location_hash(
    secret: str,
    latitude: float,
    longitude: float,
    accuracy: Optional[float],
    timestamp: datetime,
) -> str:
    """HMAC-SHA256 fingerprint of a reported fix, stored for tamper evidence."""
    message = (
        f"{latitude:.6f}:{longitude:.6f}:{accuracy if accuracy is not None else ''}:"
        f"{int(as_utc(timestamp).timestamp())}"
    )
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
