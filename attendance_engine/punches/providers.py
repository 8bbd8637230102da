"""Per-provider punch code tables.

Each terminal vendor reports punch direction with its own codes. Adding a
vendor means adding a table here; nothing downstream branches on provider.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from attendance_engine.common.constants import ProviderType, PunchType

_IN = PunchType.in_
_OUT = PunchType.out
_BREAK_START = PunchType.break_start
_BREAK_END = PunchType.break_end

PROVIDER_PUNCH_MAPS: Mapping[ProviderType, Mapping[str, PunchType]] = {
    ProviderType.zkteco: {
        "0": _IN,
        "1": _OUT,
        "2": _BREAK_START,
        "3": _BREAK_END,
        "4": PunchType.remote_in,
        "5": PunchType.remote_out,
        "checkin": _IN,
        "checkout": _OUT,
        "in": _IN,
        "out": _OUT,
    },
    ProviderType.hikvision: {
        "in": _IN,
        "enter": _IN,
        "checkin": _IN,
        "out": _OUT,
        "exit": _OUT,
        "checkout": _OUT,
        "breakout": _BREAK_START,
        "breakin": _BREAK_END,
    },
    ProviderType.essl: {
        "0": _IN,
        "1": _OUT,
        "2": _BREAK_START,
        "3": _BREAK_END,
    },
    ProviderType.generic: {
        "0": _IN,
        "1": _OUT,
        "2": _BREAK_START,
        "3": _BREAK_END,
        "checkin": _IN,
        "checkout": _OUT,
        **{p.value: p for p in PunchType},
    },
}


def provider_for(value: Any) -> ProviderType:
    """Known provider, or ``generic`` for anything unrecognised."""
    if isinstance(value, ProviderType):
        return value
    try:
        return ProviderType(str(value).lower())
    except ValueError:
        return ProviderType.generic


def map_punch_type(code: Any, provider: Any = ProviderType.generic) -> Optional[PunchType]:
    """Canonical punch type for a provider code, or None when unmappable."""
    if code is None:
        return None
    table = PROVIDER_PUNCH_MAPS[provider_for(provider)]
    return table.get(str(code).strip().lower())
