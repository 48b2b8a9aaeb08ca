"""SQLite dialect strategy."""
from __future__ import annotations

from clauseql.compile.base import DialectStrategy

_STRFTIME: dict[str, str] = {
    "day": "%Y-%m-%d",
    "week": "%Y-%W",
    "month": "%Y-%m",
    "year": "%Y",
    "hour": "%H",
    "day_of_week": "%w",
}


class SQLiteDialect(DialectStrategy):
    """Generates SQLite-flavoured parameterized SQL.

    Parameter style: ``?`` – compatible with Python's built-in ``sqlite3``
    positional execution (``cursor.execute(sql, params)``).

    Note: SQLite does not support ``ILIKE``; it is mapped to ``LIKE``.
    SQLite's ``LIKE`` is case-insensitive for ASCII by default.
    """

    @property
    def dialect_name(self) -> str:
        return "sqlite"

    @property
    def placeholder(self) -> str:
        return "?"

    def like_operator(self, op: str) -> str:
        return "LIKE"  # SQLite has no ILIKE; fall back to LIKE

    def date_trunc(self, expression: str, unit: str) -> str:
        fmt = _STRFTIME.get(unit)
        if fmt is None:
            return expression
        return f"strftime('{fmt}', {expression})"

    def explain(self, sql: str) -> str:
        return f"EXPLAIN QUERY PLAN {sql}"

    def limit_offset(self, limit: int | None, offset: int | None) -> list[str]:
        # SQLite rejects OFFSET without LIMIT; -1 means unbounded.
        if offset is not None and limit is None:
            limit = -1
        return super().limit_offset(limit, offset)
