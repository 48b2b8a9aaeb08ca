"""UnionEngine: UNION / UNION ALL over finished queries.

Member queries are only read: each one is compiled and the results are
joined with the union keyword, concatenating bound parameters in the same
order.  Everything applied after the union (ordering, paging, grouping,
projection) and every terminal runs against the union wrapped as a derived
table::

    SELECT ... FROM (<member> UNION ALL <member>) AS subquery ...

Members that carry their own ORDER BY / LIMIT are wrapped individually, so
the combined statement is valid on every dialect.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from clauseql.compile.base import CompiledQuery
from clauseql.compile.identifiers import is_identifier
from clauseql.errors import BuilderError, ConfigurationError, InvalidUnionType
from clauseql.query.state import QueryState
from clauseql.relation import Relation, Row
from clauseql.schema.config import QueryConfig
from clauseql.schema.operators import UNION_KEYWORDS, normalize_union_type

logger = logging.getLogger(__name__)


class Compilable(Protocol):
    def compile(self) -> CompiledQuery: ...


def _state_of(query: Any) -> QueryState | None:
    state = getattr(query, "state", query)
    return state if isinstance(state, QueryState) else None


class UnionEngine:
    """Combines independent queries with UNION / UNION ALL.

    Args:
        relation: Relation that runs the combined query; defaults to the
            first member's relation.
        config: Configuration for the outer query; defaults to the first
            member's configuration.
    """

    def __init__(self, relation: Relation | None = None, config: QueryConfig | None = None) -> None:
        self._relation = relation
        self._config = config
        self.queries: list[Compilable] = []
        self.union_type = "union_all"
        self.errors: list[BuilderError] = []
        self.warnings: list[BuilderError] = []
        self._outer: QueryState | None = None

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    def add_query(self, query: Compilable) -> UnionEngine:
        self.queries.append(query)
        return self

    def add_queries(self, queries: Iterable[Compilable]) -> UnionEngine:
        self.queries.extend(queries)
        return self

    def set_union_type(self, union_type: Any) -> UnionEngine:
        """Choose ``union`` (deduplicating) or ``union_all`` (the default)."""
        key = normalize_union_type(union_type)
        if key is None:
            error = InvalidUnionType(union_type)
            logger.warning("clauseql: %s (%s)", error, error.code)
            self.errors.append(error)
            return self
        self.union_type = key
        return self

    def _member_sql(self, query: Compilable, index: int) -> CompiledQuery:
        compiled = query.compile()
        state = _state_of(query)
        if state is not None and (
            state.orders or state.limit_value is not None or state.offset_value is not None
        ):
            derived = compiled.as_derived_table(f"union_part_{index}")
            return CompiledQuery(f"SELECT * FROM {derived.sql}", derived.params)
        return compiled

    def build(self) -> CompiledQuery | None:
        """Return the canonical union of every member, or ``None`` when empty."""
        if not self.queries:
            return None
        parts = [self._member_sql(q, i) for i, q in enumerate(self.queries, start=1)]
        keyword = UNION_KEYWORDS[self.union_type]
        sql = f" {keyword} ".join(p.sql for p in parts)
        params = [value for p in parts for value in p.params]
        return CompiledQuery(sql, params)

    # ------------------------------------------------------------------
    # Derived outer query
    # ------------------------------------------------------------------

    def _derived(self) -> QueryState:
        """The outer query that post-union clauses are applied to."""
        if self._outer is None:
            self._outer = self._wrap()
        return self._outer

    def _reader(self) -> QueryState:
        """The outer query for terminals; never created as a side effect."""
        return self._outer if self._outer is not None else self._wrap()

    def _wrap(self) -> QueryState:
        first = _state_of(self.queries[0]) if self.queries else None
        relation = self._relation or (first.relation if first else None)
        if relation is None:
            raise ConfigurationError(
                "UnionEngine needs a relation; pass one or add a QueryState first.",
                option="relation",
            )
        config = self._config or (first.config if first else None)
        outer = QueryState(relation, config, source=self.build, source_alias="subquery")
        outer.errors = self.errors
        outer.warnings = self.warnings
        return outer

    def order(self, column: str, direction: str = "asc", nulls: str | None = None) -> UnionEngine:
        self._derived().order_by(column, direction, nulls)
        return self

    def limit(self, value: int | None) -> UnionEngine:
        self._derived().limit(value)
        return self

    def offset(self, value: int | None) -> UnionEngine:
        self._derived().offset(value)
        return self

    def group(self, column: str | Sequence[str]) -> UnionEngine:
        self._derived().group_by(column)
        return self

    def having(self, condition: str, *params: Any) -> UnionEngine:
        self._derived().having(condition, *params)
        return self

    def distinct(self) -> UnionEngine:
        self._derived().distinct()
        return self

    def distinct_on(self, columns: str | Sequence[str]) -> UnionEngine:
        self._derived().distinct_on(columns)
        return self

    def select_columns(self, columns: str | Sequence[str]) -> UnionEngine:
        """Project the derived table; non-identifier items are taken verbatim."""
        outer = self._derived()
        for column in [columns] if isinstance(columns, str) else columns:
            if column == "*" or is_identifier(column):
                outer.select(column)
            else:
                outer.select_raw(column)
        return self

    def paginate(self, page: Any = 1, per_page: Any = None) -> UnionEngine:
        """LIMIT / OFFSET the derived query; no count query is run."""
        outer = self._derived()
        try:
            page = max(1, int(page or 1))
            per_page = int(per_page) if per_page is not None else outer.config.default_per_page
        except (TypeError, ValueError, OverflowError):
            page, per_page = 1, outer.config.default_per_page
        per_page = min(max(per_page, 1), outer.config.max_per_page)
        outer.limit(per_page).offset((page - 1) * per_page)
        return self

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def compile(self) -> CompiledQuery | None:
        """Canonical SQL including any post-union clauses."""
        if not self.queries:
            return None
        if self._outer is None:
            return self.build()
        return self._outer.compile()

    def as_subquery(self, alias: str = "subquery") -> CompiledQuery | None:
        """Render the union as ``(<sql>) AS alias`` for another query."""
        compiled = self.compile()
        return compiled.as_derived_table(alias) if compiled else None

    def to_sql(self) -> CompiledQuery | None:
        compiled = self.compile()
        if compiled is None:
            return None
        return self._reader().render(compiled)

    def execute(self) -> list[Row]:
        if not self.queries:
            return []
        return self._reader().execute()

    def to_a(self) -> list[Row]:
        return self.execute()

    def count(self) -> int:
        if not self.queries:
            return 0
        return self._reader().count()

    def first(self) -> Row | None:
        if not self.queries:
            return None
        return self._reader().first()

    def last(self) -> Row | None:
        if not self.queries:
            return None
        return self._reader().last()

    def exists(self) -> bool:
        if not self.queries:
            return False
        return self._reader().exists()

    def explain(self) -> list[Row]:
        if not self.queries:
            return []
        return self._reader().explain()

    def reset(self) -> UnionEngine:
        self.queries = []
        self.union_type = "union_all"
        self.errors = []
        self.warnings = []
        self._outer = None
        return self
