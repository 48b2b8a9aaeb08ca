"""Operator-to-SQL translation for WHERE and HAVING predicates.

``PredicateBuilder`` turns ``(expression, operator, value)`` triples into
:class:`Fragment` objects: SQL text with ``?`` markers plus the values bound
to them.  Caller-supplied values never reach the SQL text.

Both :class:`~clauseql.query.filter.FilterEngine` and
:class:`~clauseql.query.having.HavingEngine` share this builder, so the two
engines accept exactly the same operator set.  Failures are raised as
recoverable :class:`~clauseql.errors.BuilderError` subclasses; the engines
catch them and record them on the query state.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from clauseql.compile.base import DialectStrategy
from clauseql.errors import InvalidArgument, InvalidOperator
from clauseql.schema.operators import (
    ALL_OPERATORS,
    COMPARISON_SQL,
    MEMBERSHIP_OPS,
    PATTERN_OPS,
    normalize_operator,
)

_FALSY_STRINGS = frozenset({"false", "f", "0", "no", "n", "off", ""})


@dataclass(frozen=True)
class Fragment:
    """One SQL fragment plus its bound values (in marker order)."""

    sql: str
    params: tuple[Any, ...] = ()


def placeholders(count: int) -> str:
    """Return ``?, ?, ...`` with ``count`` markers."""
    return ", ".join("?" for _ in range(count))


def is_blank(value: Any) -> bool:
    """``None``, empty strings (after strip) and empty collections are blank."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def as_bool(value: Any) -> bool:
    """Interpret request-style booleans (``"false"``, ``"0"``) correctly."""
    if isinstance(value, str):
        return value.strip().lower() not in _FALSY_STRINGS
    return bool(value)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (str, bytes, dict)):
        return [value]
    if isinstance(value, Iterable):
        return list(value)
    return [value]


class PredicateBuilder:
    """Compiles operator predicates to parameterized SQL fragments.

    Args:
        dialect: Dialect strategy (used for ``ILIKE`` support).
    """

    def __init__(self, dialect: DialectStrategy) -> None:
        self._dialect = dialect

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, expression: str, operator: Any, value: Any) -> Fragment:
        """Compile ``expression <operator> value`` to a fragment.

        Args:
            expression: Qualified column or aggregate expression (trusted).
            operator: Operator name or alias (see
                :mod:`clauseql.schema.operators`).
            value: Caller-supplied value; always bound.

        Raises:
            InvalidOperator: If the operator is not supported.
            InvalidArgument: If the value has the wrong shape for the operator.
        """
        op = normalize_operator(operator)
        if op is None:
            raise InvalidOperator(str(operator), sorted(ALL_OPERATORS))
        return self._dispatch(expression, op, value)

    def combine(self, fragments: Sequence[Fragment], connector: str) -> Fragment:
        """Join fragments with ``AND`` / ``OR``.

        An OR of several fragments is parenthesised so it composes safely
        with the surrounding AND chain.
        """
        if len(fragments) == 1:
            return fragments[0]
        sql = f" {connector} ".join(f.sql for f in fragments)
        if connector == "OR":
            sql = f"({sql})"
        params = tuple(p for f in fragments for p in f.params)
        return Fragment(sql, params)

    # ------------------------------------------------------------------
    # Operator dispatch
    # ------------------------------------------------------------------

    def _dispatch(self, expression: str, op: str, value: Any) -> Fragment:
        if op in COMPARISON_SQL:
            return Fragment(f"{expression} {COMPARISON_SQL[op]} ?", (value,))

        if op in PATTERN_OPS:
            if op == "not_like":
                keyword = "NOT LIKE"
            elif op == "ilike":
                keyword = self._dialect.like_operator("ILIKE")
            else:
                keyword = "LIKE"
            return Fragment(f"{expression} {keyword} ?", (f"%{value}%",))

        if op in MEMBERSHIP_OPS:
            values = _as_list(value)
            if not values:
                # IN () is not valid SQL; an empty set matches nothing.
                return Fragment("1 = 0" if op == "in" else "1 = 1")
            keyword = "IN" if op == "in" else "NOT IN"
            return Fragment(
                f"{expression} {keyword} ({placeholders(len(values))})", tuple(values)
            )

        if op == "between":
            if (
                not isinstance(value, (list, tuple))
                or len(value) != 2
            ):
                raise InvalidArgument(
                    "Between requires a sequence with exactly two values.",
                    expression=expression,
                    value=value,
                )
            return Fragment(f"{expression} BETWEEN ? AND ?", (value[0], value[1]))

        if op == "null":
            suffix = "IS NULL" if as_bool(value) else "IS NOT NULL"
            return Fragment(f"{expression} {suffix}")

        if op == "not_null":
            suffix = "IS NOT NULL" if as_bool(value) else "IS NULL"
            return Fragment(f"{expression} {suffix}")

        raise InvalidOperator(op, sorted(ALL_OPERATORS))
