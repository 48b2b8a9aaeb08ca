"""Clause records and clause-level SQL builders.

Every clause fragment accumulated by a
:class:`~clauseql.query.state.QueryState` is stored as an immutable record
defined here.  Records are frozen, so copying a state only has to copy the
lists that hold them.

The builders each render exactly one clause and return a
:class:`~clauseql.compile.predicates.Fragment` (or ``None`` when the clause
is empty).  :class:`~clauseql.query.state.QueryState` drives them in a
fixed order, which is what makes the rendered clause order independent of
the order in which builder methods were called.

Classes
-------
SelectClauseBuilder   - ``SELECT [DISTINCT | DISTINCT ON (...)] <items>``
JoinClauseBuilder     - ``<TYPE> JOIN <table> [AS alias] [ON ...]``
ConditionBuilder      - ``WHERE`` / ``HAVING`` predicate chains
OrderClauseBuilder    - ``ORDER BY ...``
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any, Literal

from clauseql.compile.base import DialectStrategy
from clauseql.compile.predicates import Fragment

# ---------------------------------------------------------------------------
# Clause records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Predicate:
    """One WHERE / HAVING condition.

    Attributes:
        sql: Condition text with ``?`` markers.
        params: Bound values, in marker order.
        connector: How this predicate attaches to the ones before it.
    """

    sql: str
    params: tuple[Any, ...] = ()
    connector: Literal["AND", "OR"] = "AND"


@dataclass(frozen=True)
class JoinRecord:
    """One JOIN entry.

    Attributes:
        type: ``INNER``, ``LEFT``, ``RIGHT``, ``FULL`` or ``CROSS``.
        table: Table name, or a parenthesised derived table.
        alias: Optional alias for the joined table.
        on: ON condition (``None`` for CROSS joins).
        params: Values bound inside ``table`` and ``on``, in textual order.
    """

    type: str
    table: str
    alias: str | None = None
    on: str | None = None
    params: tuple[Any, ...] = ()

    @property
    def reference(self) -> str:
        """Name other clauses use to address the joined table."""
        return self.alias or self.table


@dataclass(frozen=True)
class OrderRecord:
    """One ORDER BY item.

    Attributes:
        key: De-duplication key (the field or raw expression).
        expression: Column or verbatim expression being ordered.
        direction: ``asc`` / ``desc``, or ``None`` to emit no keyword.
        nulls: Optional ``first`` / ``last`` NULL placement.
        params: Values bound inside ``expression``.
    """

    key: str
    expression: str
    direction: str | None = "asc"
    nulls: str | None = None
    params: tuple[Any, ...] = ()

    def reversed(self) -> OrderRecord:
        """Return the record with direction and NULL placement flipped."""
        direction = "asc" if self.direction == "desc" else "desc"
        nulls = {"first": "last", "last": "first"}.get(self.nulls or "")
        return replace(self, direction=direction, nulls=nulls)


@dataclass(frozen=True)
class Projection:
    """One SELECT item."""

    sql: str
    params: tuple[Any, ...] = ()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


class SelectClauseBuilder:
    """Builds the ``SELECT [DISTINCT] …`` clause."""

    def build(
        self,
        projections: Sequence[Projection],
        distinct: bool = False,
        distinct_on: Sequence[str] = (),
    ) -> Fragment:
        if distinct_on:
            prefix = f"SELECT DISTINCT ON ({', '.join(distinct_on)})"
        elif distinct:
            prefix = "SELECT DISTINCT"
        else:
            prefix = "SELECT"
        if not projections:
            return Fragment(f"{prefix} *")
        items = ", ".join(p.sql for p in projections)
        params = tuple(v for p in projections for v in p.params)
        return Fragment(f"{prefix} {items}", params)


class JoinClauseBuilder:
    """Builds a single ``JOIN … ON …`` fragment."""

    def build(self, join: JoinRecord) -> Fragment:
        table_sql = join.table
        if join.alias:
            table_sql = f"{table_sql} AS {join.alias}"
        if join.type == "CROSS" or not join.on:
            return Fragment(f"{join.type} JOIN {table_sql}", join.params)
        return Fragment(f"{join.type} JOIN {table_sql} ON {join.on}", join.params)


class ConditionBuilder:
    """Chains WHERE / HAVING predicates respecting their connectors.

    ``AND`` predicates are appended as-is; an ``OR`` predicate wraps
    everything before it, so ``a AND b`` followed by ``or c`` renders
    ``(a AND b) OR (c)``.  A later ``AND`` wraps the OR group again, which
    keeps SQL precedence equal to call order.
    """

    def build(self, predicates: Sequence[Predicate]) -> Fragment | None:
        sql: str | None = None
        grouped_or = False
        params: list[Any] = []
        for pred in predicates:
            if sql is None:
                sql = pred.sql
            elif pred.connector == "OR":
                sql = f"({sql}) OR ({pred.sql})"
                grouped_or = True
            elif grouped_or:
                sql = f"({sql}) AND {pred.sql}"
                grouped_or = False
            else:
                sql = f"{sql} AND {pred.sql}"
            params.extend(pred.params)
        if sql is None:
            return None
        return Fragment(sql, tuple(params))


class OrderClauseBuilder:
    """Builds the comma-separated ``ORDER BY`` item list.

    Args:
        dialect: Dialect strategy rendering NULLS FIRST / LAST.
    """

    def __init__(self, dialect: DialectStrategy) -> None:
        self._dialect = dialect

    def build(self, orders: Sequence[OrderRecord]) -> Fragment | None:
        if not orders:
            return None
        sql = ", ".join(self._item(o) for o in orders)
        params = tuple(v for o in orders for v in o.params)
        return Fragment(sql, params)

    def _item(self, order: OrderRecord) -> str:
        if order.direction is None:
            return order.expression
        if order.nulls:
            return self._dialect.order_nulls(order.expression, order.direction, order.nulls)
        return f"{order.expression} {order.direction.upper()}"
