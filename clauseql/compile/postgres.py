"""PostgreSQL dialect strategy."""

from __future__ import annotations

from clauseql.compile.base import DialectStrategy


class PostgresDialect(DialectStrategy):
    """Generates PostgreSQL-flavoured parameterized SQL.

    Parameter style: ``%s`` – compatible with ``psycopg`` and ``psycopg2``
    positional execution.  Literal ``%`` characters are doubled by
    :meth:`render`, so always pass a parameter sequence (even an empty one)
    when executing.
    """

    @property
    def dialect_name(self) -> str:
        return "postgres"

    @property
    def placeholder(self) -> str:
        return "%s"

    @property
    def supports_distinct_on(self) -> bool:
        return True

    def like_operator(self, op: str) -> str:
        return op  # 'LIKE' or 'ILIKE' - PostgreSQL supports both natively

    def date_trunc(self, expression: str, unit: str) -> str:
        if unit == "day_of_week":
            return f"EXTRACT(DOW FROM {expression})"
        if unit in ("day", "week", "month", "year", "hour"):
            return f"DATE_TRUNC('{unit}', {expression})"
        return expression
