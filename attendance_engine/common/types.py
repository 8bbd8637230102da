"""Shared column types."""

from __future__ import annotations

import enum
from typing import Type

import sqlalchemy as sa


def str_enum(enum_cls: Type[enum.Enum], name: str) -> sa.Enum:
    """VARCHAR-backed enum column storing member *values* (not names)."""
    return sa.Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
