"""Geofence validator tests — distance, accuracy, movement heuristic, hashing."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from attendance_engine.common.exceptions import GeofenceViolation, ValidationException
from attendance_engine.geofence.validator import (
    GeoPoint,
    LocatedPunch,
    check_location,
    haversine_meters,
    implied_speed_kmh,
    location_hash,
    validate_coordinates,
)

OFFICE = GeoPoint(19.0760, 72.8777)
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_haversine_zero_for_same_point():
    assert haversine_meters(OFFICE, OFFICE) == pytest.approx(0.0)


def test_haversine_small_offset():
    """0.001° of latitude is roughly 111 metres."""
    north = GeoPoint(OFFICE.latitude + 0.001, OFFICE.longitude)
    assert haversine_meters(OFFICE, north) == pytest.approx(111.2, abs=0.5)


def test_validate_coordinates_rejects_out_of_range():
    with pytest.raises(ValidationException) as exc_info:
        validate_coordinates(91.0, 200.0)
    assert set(exc_info.value.errors) == {"latitude", "longitude"}


def test_check_location_inside_radius():
    nearby = GeoPoint(OFFICE.latitude + 0.0005, OFFICE.longitude)
    result = check_location(nearby, 10.0, OFFICE, 100.0, timestamp=NOW)
    assert result.distance_meters < 100.0
    assert result.speed_kmh is None


def test_check_location_out_of_range():
    far = GeoPoint(OFFICE.latitude + 0.01, OFFICE.longitude)
    with pytest.raises(GeofenceViolation) as exc_info:
        check_location(far, 10.0, OFFICE, 100.0, timestamp=NOW)
    assert exc_info.value.reason == "out-of-range"
    assert exc_info.value.status_code == 422


def test_low_accuracy_checked_first():
    """A poor fix is rejected even when the point is far away."""
    far = GeoPoint(OFFICE.latitude + 0.01, OFFICE.longitude)
    with pytest.raises(GeofenceViolation) as exc_info:
        check_location(far, 500.0, OFFICE, 100.0, timestamp=NOW, max_accuracy_meters=100.0)
    assert exc_info.value.reason == "low-accuracy"


def test_implausible_movement_beats_out_of_range():
    previous = LocatedPunch(point=GeoPoint(18.5204, 73.8567), timestamp=NOW - timedelta(minutes=5))
    far = GeoPoint(OFFICE.latitude + 0.01, OFFICE.longitude)
    with pytest.raises(GeofenceViolation) as exc_info:
        check_location(far, 10.0, OFFICE, 100.0, timestamp=NOW, previous=previous)
    assert exc_info.value.reason == "implausible-movement"


def test_plausible_movement_passes():
    previous = LocatedPunch(point=OFFICE, timestamp=NOW - timedelta(hours=8))
    result = check_location(OFFICE, 5.0, OFFICE, 100.0, timestamp=NOW, previous=previous)
    assert result.speed_kmh == pytest.approx(0.0)


def test_implied_speed():
    previous = LocatedPunch(point=OFFICE, timestamp=NOW - timedelta(hours=1))
    north = GeoPoint(OFFICE.latitude + 0.1, OFFICE.longitude)
    speed = implied_speed_kmh(previous, north, NOW)
    assert speed == pytest.approx(11.1, abs=0.2)


def test_location_hash_is_keyed():
    first = location_hash("secret-a", OFFICE.latitude, OFFICE.longitude, 5.0, NOW)
    again = location_hash("secret-a", OFFICE.latitude, OFFICE.longitude, 5.0, NOW)
    other = location_hash("secret-b", OFFICE.latitude, OFFICE.longitude, 5.0, NOW)
    assert first == again
    assert first != other
    assert len(first) == 64
