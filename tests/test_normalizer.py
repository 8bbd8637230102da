"""Punch normalizer, provider table and device-signature tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from attendance_engine.common.constants import ProviderType, PunchType
from attendance_engine.common.exceptions import UnauthorizedException, ValidationException
from attendance_engine.punches.device_auth import sign_request, verify_signature
from attendance_engine.punches.normalizer import (
    is_duplicate,
    is_valid_sequence,
    normalize_machine_entry,
    parse_timestamp,
)
from attendance_engine.punches.providers import map_punch_type, provider_for


# ═════════════════════════════════════════════════════════════════════
# Provider tables
# ═════════════════════════════════════════════════════════════════════


def test_provider_codes_map_to_canonical_types():
    assert map_punch_type("0", ProviderType.zkteco) == PunchType.in_
    assert map_punch_type(1, ProviderType.zkteco) == PunchType.out
    assert map_punch_type("EXIT", ProviderType.hikvision) == PunchType.out
    assert map_punch_type("breakout", ProviderType.hikvision) == PunchType.break_start
    assert map_punch_type("3", ProviderType.essl) == PunchType.break_end
    assert map_punch_type("remote_in", ProviderType.generic) == PunchType.remote_in


def test_unmappable_code_returns_none():
    assert map_punch_type("7", ProviderType.zkteco) is None
    assert map_punch_type("checkin", ProviderType.essl) is None
    assert map_punch_type(None) is None


def test_unknown_provider_falls_back_to_generic():
    assert provider_for("acme-biometrics") == ProviderType.generic
    assert provider_for("ZKTeco") == ProviderType.zkteco
    assert map_punch_type("checkout", "acme-biometrics") == PunchType.out


# ═════════════════════════════════════════════════════════════════════
# Timestamps and entries
# ═════════════════════════════════════════════════════════════════════


def test_parse_epoch_seconds_and_milliseconds():
    expected = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    seconds = int(expected.timestamp())
    assert parse_timestamp(seconds) == expected
    assert parse_timestamp(seconds * 1000) == expected
    assert parse_timestamp(str(seconds)) == expected


def test_parse_iso_with_zone():
    assert parse_timestamp("2026-03-02T09:00:00Z") == datetime(
        2026, 3, 2, 9, 0, tzinfo=timezone.utc,
    )
    assert parse_timestamp("2026-03-02T14:30:00+05:30") == datetime(
        2026, 3, 2, 9, 0, tzinfo=timezone.utc,
    )


def test_naive_timestamp_read_in_terminal_timezone():
    parsed = parse_timestamp("2026-03-02 14:30:00", "Asia/Kolkata")
    assert parsed == datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_parse_rejects_garbage():
    with pytest.raises(ValueError):
        parse_timestamp("yesterday-ish")


def test_normalize_accepts_vendor_aliases():
    entry = {"uid": 1001, "time": "2026-03-02T09:05:00Z", "type": "0"}
    normalized = normalize_machine_entry(entry, ProviderType.zkteco)
    assert normalized.raw_user_id == "1001"
    assert normalized.punch_type == PunchType.in_
    assert normalized.timestamp == datetime(2026, 3, 2, 9, 5, tzinfo=timezone.utc)
    assert normalized.raw == entry


def test_normalize_reports_every_problem():
    with pytest.raises(ValidationException) as exc_info:
        normalize_machine_entry({"status": "9"}, ProviderType.essl)
    assert set(exc_info.value.errors) == {"user_id", "timestamp", "status"}


# ═════════════════════════════════════════════════════════════════════
# Dedup and sequencing
# ═════════════════════════════════════════════════════════════════════


def test_is_duplicate_inside_window_only():
    base = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    assert is_duplicate(base + timedelta(seconds=90), [base], 120)
    assert not is_duplicate(base + timedelta(seconds=121), [base], 120)
    assert not is_duplicate(base, [], 120)


def test_first_punch_must_be_an_in():
    assert is_valid_sequence(None, PunchType.in_)
    assert is_valid_sequence(None, PunchType.remote_in)
    assert not is_valid_sequence(None, PunchType.out)
    assert not is_valid_sequence(None, PunchType.break_end)


def test_sequence_transitions():
    assert is_valid_sequence(PunchType.in_, PunchType.out)
    assert is_valid_sequence(PunchType.in_, PunchType.break_start)
    assert is_valid_sequence(PunchType.break_start, PunchType.break_end)
    assert is_valid_sequence(PunchType.break_end, PunchType.in_)
    assert not is_valid_sequence(PunchType.out, PunchType.out)
    assert not is_valid_sequence(PunchType.break_start, PunchType.out)


def test_break_end_and_remote_out_need_a_fresh_in():
    # Returning from a break must clock back in before clocking out
    assert not is_valid_sequence(PunchType.break_end, PunchType.out)
    assert is_valid_sequence(PunchType.break_end, PunchType.break_start)
    assert is_valid_sequence(PunchType.remote_out, PunchType.remote_in)
    assert not is_valid_sequence(PunchType.remote_out, PunchType.in_)


# ═════════════════════════════════════════════════════════════════════
# Device HMAC
# ═════════════════════════════════════════════════════════════════════

MACHINE = SimpleNamespace(api_key="mch_test", api_secret="s3cret")


def test_verify_signature_accepts_fresh_signature():
    now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    ts = str(int(now.timestamp()))
    signature = sign_request(MACHINE.api_key, MACHINE.api_secret, ts)
    verify_signature(MACHINE, ts, signature, now=now, ttl_seconds=300)
    verify_signature(MACHINE, ts, signature.upper(), now=now, ttl_seconds=300)


def test_verify_signature_rejects_stale_timestamp():
    now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    ts = str(int((now - timedelta(minutes=10)).timestamp()))
    signature = sign_request(MACHINE.api_key, MACHINE.api_secret, ts)
    with pytest.raises(UnauthorizedException):
        verify_signature(MACHINE, ts, signature, now=now, ttl_seconds=300)


def test_verify_signature_rejects_wrong_secret_and_missing_headers():
    now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    ts = str(int(now.timestamp()))
    forged = sign_request(MACHINE.api_key, "not-the-secret", ts)
    with pytest.raises(UnauthorizedException):
        verify_signature(MACHINE, ts, forged, now=now, ttl_seconds=300)
    with pytest.raises(UnauthorizedException):
        verify_signature(MACHINE, None, None, now=now)
