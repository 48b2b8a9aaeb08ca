"""Compiler abstractions: CompiledQuery and the DialectStrategy ABC.

The Strategy pattern (GoF) is used:

- ``DialectStrategy`` defines every backend-specific step the engines need
  (placeholder style, date truncation, random ordering, NULLS ordering,
  ILIKE support, DISTINCT ON, EXPLAIN).
- ``SQLiteDialect``, ``PostgresDialect`` and ``MySQLDialect`` override the
  steps for their backend; call sites only ever talk to the interface.

Clause fragments are always written with ``?`` markers.  The dialect turns
the canonical text into driver-ready SQL in :meth:`DialectStrategy.render`,
so fragments stay portable and can be embedded in other queries (unions,
derived tables) before rendering.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, NamedTuple

#: Canonical bound-parameter marker used in every clause fragment.
MARKER = "?"


class CompiledQuery(NamedTuple):
    """SQL text plus its positional bound parameters.

    Unpacks as ``sql, params = state.to_sql()``.

    Attributes:
        sql: SQL string with one placeholder per bound value.
        params: Values for the placeholders, in textual order.
    """

    sql: str
    params: list[Any]

    def as_derived_table(self, alias: str) -> CompiledQuery:
        """Return ``(<sql>) AS alias`` with the same parameters."""
        return CompiledQuery(f"({self.sql}) AS {alias}", list(self.params))


def split_markers(sql: str) -> list[str]:
    """Split canonical SQL on ``?`` markers that sit outside quoted text.

    Markers inside single-quoted literals or double-quoted identifiers are
    kept verbatim.

    Args:
        sql: Canonical SQL text.

    Returns:
        The text chunks between markers; ``len(result) - 1`` is the number
        of markers.
    """
    chunks: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for ch in sql:
        if quote is not None:
            current.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            current.append(ch)
        elif ch == MARKER:
            chunks.append("".join(current))
            current = []
        else:
            current.append(ch)
    chunks.append("".join(current))
    return chunks


def count_markers(sql: str) -> int:
    """Return the number of bound-parameter markers in ``sql``."""
    return len(split_markers(sql)) - 1


class DialectStrategy(ABC):
    """Abstract base for backend-specific SQL generation.

    Subclasses implement the abstract hooks; the engines use this interface
    so swapping the database backend never touches a call site.
    """

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the canonical dialect name (e.g. ``'sqlite'``)."""

    @property
    @abstractmethod
    def placeholder(self) -> str:
        """Return the driver placeholder for one positional parameter."""

    @abstractmethod
    def date_trunc(self, expression: str, unit: str) -> str:
        """Return an expression bucketing ``expression`` by ``unit``.

        Args:
            expression: A qualified column or SQL expression.
            unit: One of ``day``, ``week``, ``month``, ``year``, ``hour``,
                ``day_of_week``.

        Returns:
            Dialect-specific SQL expression.
        """

    @abstractmethod
    def like_operator(self, op: str) -> str:
        """Return the SQL keyword for ``'LIKE'`` / ``'ILIKE'``.

        Backends without ``ILIKE`` fall back to ``LIKE``.
        """

    # ------------------------------------------------------------------
    # Hooks with portable defaults
    # ------------------------------------------------------------------

    @property
    def supports_distinct_on(self) -> bool:
        return False

    def random_function(self) -> str:
        return "RANDOM()"

    def order_nulls(self, expression: str, direction: str, nulls: str) -> str:
        """Return an ORDER BY item with an explicit NULLS FIRST/LAST policy."""
        return f"{expression} {direction.upper()} NULLS {nulls.upper()}"

    def explain(self, sql: str) -> str:
        return f"EXPLAIN {sql}"

    def limit_offset(self, limit: int | None, offset: int | None) -> list[str]:
        """Return the trailing ``LIMIT`` / ``OFFSET`` clauses.

        Both values are validated integers, so they are inlined.
        """
        parts = []
        if limit is not None:
            parts.append(f"LIMIT {limit}")
        if offset is not None:
            parts.append(f"OFFSET {offset}")
        return parts

    def render(self, sql: str) -> str:
        """Translate canonical ``?`` markers into the driver placeholder.

        Format-style drivers (``%s``) also need every literal ``%`` doubled.
        """
        if self.placeholder == MARKER:
            return sql
        chunks = split_markers(sql)
        if "%" in self.placeholder:
            chunks = [chunk.replace("%", "%%") for chunk in chunks]
        return self.placeholder.join(chunks)
