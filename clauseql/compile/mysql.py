"""MySQL dialect strategy."""

from __future__ import annotations

from clauseql.compile.base import DialectStrategy

_DATE_EXPRESSIONS: dict[str, str] = {
    "day": "DATE({expr})",
    "week": "YEARWEEK({expr}, 1)",
    "month": "DATE_FORMAT({expr}, '%Y-%m')",
    "year": "YEAR({expr})",
    "hour": "HOUR({expr})",
    "day_of_week": "DAYOFWEEK({expr})",
}


class MySQLDialect(DialectStrategy):
    """Generates MySQL-flavoured parameterized SQL.

    Parameter style: ``%s`` – compatible with ``PyMySQL`` and
    ``mysql-connector-python`` positional execution.

    Note: MySQL does not support ``ILIKE``; it is mapped to ``LIKE``.
    MySQL's ``LIKE`` is case-insensitive for non-binary TEXT/VARCHAR columns
    by default.

    MySQL has no ``NULLS FIRST`` / ``NULLS LAST``; the policy is emulated
    by ordering on ``<expr> IS NULL`` first.
    """

    @property
    def dialect_name(self) -> str:
        return "mysql"

    @property
    def placeholder(self) -> str:
        return "%s"

    def like_operator(self, op: str) -> str:
        return "LIKE"  # MySQL has no ILIKE; LIKE is case-insensitive for TEXT by default

    def date_trunc(self, expression: str, unit: str) -> str:
        template = _DATE_EXPRESSIONS.get(unit)
        if template is None:
            return expression
        return template.format(expr=expression)

    def random_function(self) -> str:
        return "RAND()"

    def order_nulls(self, expression: str, direction: str, nulls: str) -> str:
        # IS NULL sorts 0 before 1, so DESC puts NULLs first.
        null_direction = "DESC" if nulls.lower() == "first" else "ASC"
        return f"{expression} IS NULL {null_direction}, {expression} {direction.upper()}"

    def limit_offset(self, limit: int | None, offset: int | None) -> list[str]:
        # MySQL rejects OFFSET without LIMIT; use the documented maximum.
        if offset is not None and limit is None:
            limit = 18446744073709551615
        return super().limit_offset(limit, offset)
