"""Constants and helpers for operators, directions and SQL keywords.

Callers name operators, directions and join types with short lowercase
strings (``"gte"``, ``"desc"``, ``"left"``).  This module defines the
allowable sets and the helpers that normalise caller input into them.  Both
the predicate compiler and the engines use these definitions, so adding an
operator means touching this module and
:mod:`clauseql.compile.predicates` only.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Predicate operators
# ---------------------------------------------------------------------------


class ComparisonOp(str, Enum):
    """Binary comparison operators (field, one bound value)."""

    EQ = "eq"
    NOT_EQ = "not_eq"
    LT = "lt"
    LTE = "lte"
    GT = "gt"
    GTE = "gte"


class PatternOp(str, Enum):
    """Pattern-match operators; the bound value is wrapped in ``%...%``."""

    LIKE = "like"
    NOT_LIKE = "not_like"
    ILIKE = "ilike"


class MembershipOp(str, Enum):
    """Membership operators (field, list of bound values)."""

    IN = "in"
    NOT_IN = "not_in"


class RangeOp(str, Enum):
    """Range operator (field, exactly two bound values)."""

    BETWEEN = "between"


class NullOp(str, Enum):
    """Null-check operators (no bound value)."""

    NULL = "null"
    NOT_NULL = "not_null"


#: Comparison operators mapped to their SQL symbol.
COMPARISON_SQL: dict[str, str] = {
    ComparisonOp.EQ.value: "=",
    ComparisonOp.NOT_EQ.value: "!=",
    ComparisonOp.LT.value: "<",
    ComparisonOp.LTE.value: "<=",
    ComparisonOp.GT.value: ">",
    ComparisonOp.GTE.value: ">=",
}

COMPARISON_OPS: frozenset[str] = frozenset(op.value for op in ComparisonOp)
PATTERN_OPS: frozenset[str] = frozenset(op.value for op in PatternOp)
MEMBERSHIP_OPS: frozenset[str] = frozenset(op.value for op in MembershipOp)
RANGE_OPS: frozenset[str] = frozenset(op.value for op in RangeOp)
NULL_OPS: frozenset[str] = frozenset(op.value for op in NullOp)

#: Complete set of supported predicate operators.
ALL_OPERATORS: frozenset[str] = (
    COMPARISON_OPS | PATTERN_OPS | MEMBERSHIP_OPS | RANGE_OPS | NULL_OPS
)

#: Long-form names accepted in request parameters.
OPERATOR_ALIASES: dict[str, str] = {
    "equals": "eq",
    "not_equals": "not_eq",
    "ne": "not_eq",
    "neq": "not_eq",
    "greater_than": "gt",
    "greater_than_or_equal": "gte",
    "less_than": "lt",
    "less_than_or_equal": "lte",
    "is_null": "null",
    "is_not_null": "not_null",
}

# ---------------------------------------------------------------------------
# Aggregates, directions, join and union types, date buckets
# ---------------------------------------------------------------------------


class AggregateFunction(str, Enum):
    """Aggregate functions accepted by sort, group and having helpers."""

    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


AGGREGATE_FUNCTIONS: frozenset[str] = frozenset(f.value for f in AggregateFunction)


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


SORT_DIRECTIONS: frozenset[str] = frozenset(d.value for d in SortDirection)


class NullsPolicy(str, Enum):
    FIRST = "first"
    LAST = "last"


NULLS_POLICIES: frozenset[str] = frozenset(p.value for p in NullsPolicy)


class JoinType(str, Enum):
    """SQL join types; ``CROSS`` takes no ON condition."""

    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL = "FULL"
    CROSS = "CROSS"


JOIN_TYPES: frozenset[str] = frozenset(t.value for t in JoinType)


class UnionType(str, Enum):
    UNION = "union"
    UNION_ALL = "union_all"


UNION_KEYWORDS: dict[str, str] = {
    UnionType.UNION.value: "UNION",
    UnionType.UNION_ALL.value: "UNION ALL",
}


class DateFormat(str, Enum):
    """Date buckets understood by :meth:`DialectStrategy.date_trunc`."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    HOUR = "hour"
    DAY_OF_WEEK = "day_of_week"


DATE_FORMATS: frozenset[str] = frozenset(f.value for f in DateFormat)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _key(value: Any) -> str | None:
    if isinstance(value, Enum):
        value = value.value
    if not isinstance(value, str):
        return None
    return value.strip().lower()


def normalize_operator(operator: Any) -> str | None:
    """Returns the canonical operator name or ``None`` if not recognised.

    Args:
        operator: Operator name, alias or enum member (case-insensitive).

    Returns:
        The canonical operator string (e.g. ``'gte'``) or ``None``.
    """
    key = _key(operator)
    if key is None:
        return None
    key = OPERATOR_ALIASES.get(key, key)
    return key if key in ALL_OPERATORS else None


def normalize_direction(direction: Any) -> str | None:
    """Returns ``'asc'`` / ``'desc'`` or ``None`` if not recognised."""
    key = _key(direction)
    return key if key in SORT_DIRECTIONS else None


def normalize_function(function: Any) -> str | None:
    """Returns the lowercase aggregate name or ``None`` if not supported."""
    key = _key(function)
    return key if key in AGGREGATE_FUNCTIONS else None


def normalize_join_type(join_type: Any) -> str | None:
    """Returns the uppercase join keyword or ``None`` if not recognised."""
    key = _key(join_type)
    if key is None:
        return None
    key = key.upper()
    return key if key in JOIN_TYPES else None


def normalize_nulls(nulls: Any) -> str | None:
    """Returns ``'first'`` / ``'last'`` or ``None`` if not recognised."""
    key = _key(nulls)
    return key if key in NULLS_POLICIES else None


def normalize_union_type(union_type: Any) -> str | None:
    """Returns ``'union'`` / ``'union_all'`` or ``None`` if not recognised."""
    key = _key(union_type)
    return key if key in UNION_KEYWORDS else None
