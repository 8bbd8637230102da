"""Query-string filters and sort keys for list endpoints.

Filter keys name a mapped column, optionally followed by an operator
suffix (``target_date__from``, ``status__in``). Sort strings are
comma-separated column names, each optionally prefixed with ``-``.
"""

from __future__ import annotations

import operator
from typing import Any, Callable, Optional

from sqlalchemy import Select
from sqlalchemy.orm import InstrumentedAttribute

_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "from": operator.ge,
    "to": operator.le,
    "not": operator.ne,
    "in": lambda column, values: column.in_(list(values)),
}


def _get_column(model: Any, name: str) -> Optional[InstrumentedAttribute]:
    attr = getattr(model, name, None)
    return attr if isinstance(attr, InstrumentedAttribute) else None


def _split_key(key: str) -> tuple[str, Callable[[Any, Any], Any]]:
    name, sep, suffix = key.rpartition("__")
    if sep and suffix in _OPERATORS:
        return name, _OPERATORS[suffix]
    return key, operator.eq


def apply_filters(query: Select, model: Any, filters: dict[str, Any]) -> Select:
    """AND together one condition per non-``None`` entry of *filters*.

    Keys that do not resolve to a column of *model* are dropped.
    """
    for key, value in filters.items():
        if value is None:
            continue
        name, op = _split_key(key)
        column = _get_column(model, name)
        if column is not None:
            query = query.where(op(column, value))
    return query


def apply_sorting(query: Select, model: Any, sort: Optional[str]) -> Select:
    """Replace the ORDER BY of *query* with the columns named in *sort*.

    Returns *query* untouched when no key resolves, so a service's default
    ordering survives a bad ``?sort=``.
    """
    if not sort:
        return query

    clauses = []
    for key in sort.split(","):
        key = key.strip()
        column = _get_column(model, key.lstrip("-"))
        if column is not None:
            clauses.append(column.desc() if key.startswith("-") else column.asc())

    if not clauses:
        return query
    return query.order_by(None).order_by(*clauses)
