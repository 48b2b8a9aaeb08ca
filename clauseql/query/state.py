"""QueryState: the mutable accumulator every engine writes into.

A ``QueryState`` holds one logical query against one
:class:`~clauseql.relation.Relation`.  Builder methods append immutable
clause records (see :mod:`clauseql.compile.clauses`) and return ``self``
for chaining.  Nothing is rendered until :meth:`QueryState.compile` walks
the records in a fixed order::

    SELECT → FROM → JOIN → WHERE → GROUP BY → HAVING → ORDER BY → LIMIT → OFFSET

so the order of builder calls never changes the shape of the SQL.

Recoverable failures (malformed identifiers, marker/param mismatches,
unknown directions) are recorded into :attr:`QueryState.errors`; the
offending call becomes a no-op and the chain continues.  Terminal methods
hand rendered SQL to the relation; whatever the relation raises propagates
unchanged.

Usage::

    state = QueryState(DBAPIRelation(conn, "products"))
    rows = (
        state.where("status = ?", "active")
        .order_by("price", "desc")
        .limit(10)
        .all()
    )
"""
from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Iterable, Sequence
from copy import copy as shallow_copy
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any

from clauseql.compile.base import CompiledQuery, count_markers
from clauseql.compile.clauses import (
    ConditionBuilder,
    JoinClauseBuilder,
    JoinRecord,
    OrderClauseBuilder,
    OrderRecord,
    Predicate,
    Projection,
    SelectClauseBuilder,
)
from clauseql.compile.identifiers import check_identifier, is_identifier, qualify
from clauseql.compile.predicates import Fragment, PredicateBuilder
from clauseql.compile.registry import DialectFactory
from clauseql.errors import (
    BuilderError,
    DefinitionNotFound,
    InvalidArgument,
    InvalidDirection,
    InvalidIdentifier,
    JoinTypeFallback,
    UnsupportedFeature,
)
from clauseql.relation import Relation, Row
from clauseql.schema.config import QueryConfig
from clauseql.schema.operators import normalize_direction, normalize_join_type, normalize_nulls

logger = logging.getLogger(__name__)

#: Produces the canonical SQL of a derived-table source, or ``None``.
SourceFactory = Callable[[], "CompiledQuery | None"]


@dataclass(frozen=True)
class AppliedOperation:
    """One entry of the applied-operation log.

    Attributes:
        kind: Engine concern (``filter``, ``sort``, ``join``, ...).
        name: Definition name or helper name that was applied.
        details: Free-form context (field, operator, table, condition).
    """

    kind: str
    name: str
    details: dict[str, Any] = field(default_factory=dict)


def recoverable(method: Callable[..., Any]) -> Callable[..., Any]:
    """Record any :class:`BuilderError` raised by ``method`` and return ``self``.

    Used on every chainable builder method: a failure leaves the query as it
    was before the call.
    """

    @functools.wraps(method)
    def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            method(self, *args, **kwargs)
        except BuilderError as exc:
            self.record_error(exc)
        return self

    return wrapper


def _plain_identifier(name: Any) -> str:
    if not is_identifier(name) or "." in name:
        raise InvalidIdentifier(name)
    return name


def _limit_value(name: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidArgument(f"{name} must be a non-negative integer.", **{name: value})
    return value


def day_bound(value: Any, end: bool) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise InvalidArgument("Unparseable date.", value=value) from None
    if isinstance(value, datetime):
        value = value.date()
    if not isinstance(value, date):
        raise InvalidArgument("Expected a date, datetime or ISO date string.", value=value)
    return datetime.combine(value, time.max if end else time.min)


class QueryState:
    """Accumulates clauses for one query over one relation.

    Args:
        relation: Collaborator that owns the base table and runs SQL.
        config: Immutable builder configuration; defaults to
            ``QueryConfig()`` (sqlite, 20 / 100 per page).
        source: Optional callable returning the canonical SQL of a derived
            table to select from instead of ``relation.table_name``.
        source_alias: Alias given to the derived table.

    Raises:
        ConfigurationError: If ``config.dialect`` is not registered.
    """

    def __init__(
        self,
        relation: Relation,
        config: QueryConfig | None = None,
        source: SourceFactory | None = None,
        source_alias: str = "subquery",
    ) -> None:
        self.relation = relation
        self.config = config or QueryConfig()
        self.dialect = DialectFactory.create(self.config.dialect)
        self.predicate_builder = PredicateBuilder(self.dialect)
        self._source = source
        self._source_alias = _plain_identifier(source_alias)
        self.errors: list[BuilderError] = []
        self.warnings: list[BuilderError] = []
        self.operations: list[AppliedOperation] = []
        self._clear_clauses()

    def _clear_clauses(self) -> None:
        self.predicates: list[Predicate] = []
        self.joins: list[JoinRecord] = []
        self.groups: list[str] = []
        self.havings: list[Predicate] = []
        self.orders: list[OrderRecord] = []
        self.projections: list[Projection] = []
        self.distinct_columns: list[str] = []
        self.is_distinct = False
        self.limit_value: int | None = None
        self.offset_value: int | None = None

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    @property
    def table_name(self) -> str:
        """Name other clauses use for the FROM source."""
        return self._source_alias if self._source else self.relation.table_name

    @property
    def primary_key_reference(self) -> str:
        if self._source:
            return self.relation.primary_key
        return f"{self.relation.table_name}.{self.relation.primary_key}"

    def record_error(self, error: BuilderError) -> None:
        logger.warning("clauseql: %s (%s)", error, error.code)
        self.errors.append(error)

    def record_warning(self, warning: BuilderError) -> None:
        logger.warning("clauseql: %s (%s)", warning, warning.code)
        self.warnings.append(warning)

    def log_operation(self, kind: str, name: str, **details: Any) -> None:
        logger.debug("applied %s '%s' %s", kind, name, details)
        self.operations.append(AppliedOperation(kind, name, details))

    def bind(self, condition: Any, params: Sequence[Any]) -> Fragment:
        """Pair ``condition`` with ``params``, checking the marker count."""
        if not isinstance(condition, str) or not condition.strip():
            raise InvalidArgument("Condition must be a non-empty string.", condition=condition)
        markers = count_markers(condition)
        if markers != len(params):
            raise InvalidArgument(
                f"Condition has {markers} placeholder(s) but {len(params)} value(s) were given.",
                condition=condition,
                params=list(params),
            )
        return Fragment(condition, tuple(params))

    # ------------------------------------------------------------------
    # WHERE
    # ------------------------------------------------------------------

    def add_predicate(self, fragment: Fragment, connector: str = "AND") -> None:
        """Append an already-validated WHERE fragment."""
        self.predicates.append(Predicate(fragment.sql, fragment.params, connector))

    @recoverable
    def where(self, condition: str, *params: Any) -> QueryState:
        """AND a condition with ``?`` markers onto the WHERE clause."""
        fragment = self.bind(condition, params)
        self.add_predicate(fragment)

    @recoverable
    def or_where(self, condition: str, *params: Any) -> QueryState:
        """OR a condition onto everything accumulated so far."""
        fragment = self.bind(condition, params)
        self.add_predicate(fragment, "OR")

    @recoverable
    def not_where(self, condition: str, *params: Any) -> QueryState:
        fragment = self.bind(condition, params)
        self.predicates.append(Predicate(f"NOT ({fragment.sql})", fragment.params, "AND"))

    def where_raw(self, sql: str, *bindings: Any) -> QueryState:
        return self.where(sql, *bindings)

    @recoverable
    def where_operator(self, field: str, operator: Any, value: Any, table: str | None = None) -> QueryState:
        """AND ``field <operator> value`` using the shared operator set."""
        fragment = self.predicate_builder.build(qualify(field, table), operator, value)
        self.add_predicate(fragment)

    def where_like(self, field: str, value: Any, table: str | None = None) -> QueryState:
        return self.where_operator(field, "like", value, table)

    def where_in(self, field: str, values: Iterable[Any], table: str | None = None) -> QueryState:
        return self.where_operator(field, "in", values, table)

    def where_not_in(self, field: str, values: Iterable[Any], table: str | None = None) -> QueryState:
        return self.where_operator(field, "not_in", values, table)

    def where_null(self, field: str, table: str | None = None) -> QueryState:
        return self.where_operator(field, "null", True, table)

    def where_not_null(self, field: str, table: str | None = None) -> QueryState:
        return self.where_operator(field, "not_null", True, table)

    def where_between(self, field: str, start: Any, end: Any, table: str | None = None) -> QueryState:
        return self.where_operator(field, "between", (start, end), table)

    @recoverable
    def where_date_between(
        self, field: str, start: Any, end: Any, table: str | None = None
    ) -> QueryState:
        """Match rows from the start of ``start``'s day to the end of ``end``'s."""
        bounds = (day_bound(start, end=False), day_bound(end, end=True))
        fragment = self.predicate_builder.build(qualify(field, table), "between", bounds)
        self.add_predicate(fragment)

    # ------------------------------------------------------------------
    # JOIN
    # ------------------------------------------------------------------

    def _join_type(self, join_type: Any) -> str:
        resolved = normalize_join_type(join_type)
        if resolved is None:
            self.record_warning(JoinTypeFallback(join_type))
            return "INNER"
        return resolved

    def add_join(self, record: JoinRecord) -> bool:
        """Append ``record`` unless an identical join is already present."""
        if record in self.joins:
            logger.debug("skipping duplicate join on %s", record.reference)
            return False
        self.joins.append(record)
        return True

    @recoverable
    def join(
        self,
        join_type: Any,
        table: str,
        alias: str | None = None,
        on: str | None = None,
        *params: Any,
    ) -> QueryState:
        """Add ``<TYPE> JOIN table [AS alias] ON on``.

        Unknown join types fall back to INNER and record a warning.
        """
        check_identifier(table)
        if alias is not None:
            _plain_identifier(alias)
        resolved = self._join_type(join_type)
        if resolved == "CROSS":
            if on is not None or params:
                raise InvalidArgument("CROSS JOIN takes no ON condition.", table=table)
            self.add_join(JoinRecord("CROSS", table, alias))
            return
        fragment = self.bind(on, params)
        self.add_join(JoinRecord(resolved, table, alias, fragment.sql, fragment.params))

    @recoverable
    def join_subquery(
        self, join_type: Any, subquery: CompiledQuery, on: str, *params: Any
    ) -> QueryState:
        """Join a derived table such as ``UnionEngine.as_subquery()``."""
        if not isinstance(subquery, CompiledQuery):
            raise InvalidArgument("join_subquery expects a CompiledQuery.", subquery=subquery)
        resolved = self._join_type(join_type)
        fragment = self.bind(on, params)
        self.add_join(
            JoinRecord(
                resolved,
                subquery.sql,
                None,
                fragment.sql,
                tuple(subquery.params) + fragment.params,
            )
        )

    def association_join(
        self, name: str, join_type: str = "INNER", alias: str | None = None
    ) -> JoinRecord:
        """Build the join record for a configured relationship.

        Raises:
            DefinitionNotFound: If ``name`` is not in ``config.relationships``.
        """
        relationship = self.config.relationships.get(name)
        if relationship is None:
            raise DefinitionNotFound("relationship", name, list(self.config.relationships))
        if alias is not None:
            _plain_identifier(alias)
        target = alias or relationship.to_table
        on = (
            f"{relationship.from_table}.{relationship.from_col} = "
            f"{target}.{relationship.to_col}"
        )
        return JoinRecord(join_type, relationship.to_table, alias, on)

    @recoverable
    def join_association(self, name: str, join_type: Any = "inner") -> QueryState:
        """Join the table a configured relationship points at."""
        self.add_join(self.association_join(name, self._join_type(join_type)))

    # ------------------------------------------------------------------
    # GROUP BY / HAVING
    # ------------------------------------------------------------------

    @recoverable
    def group_by(self, expression: str | Sequence[str]) -> QueryState:
        """Add one or more GROUP BY expressions (duplicates are ignored)."""
        expressions = [expression] if isinstance(expression, str) else list(expression)
        for expr in expressions:
            if not isinstance(expr, str) or not expr.strip() or count_markers(expr):
                raise InvalidArgument("GROUP BY expects non-empty, parameter-free expressions.", expression=expr)
        for expr in expressions:
            if expr not in self.groups:
                self.groups.append(expr)

    def add_having(self, fragment: Fragment) -> None:
        """Append an already-validated HAVING fragment."""
        self.havings.append(Predicate(fragment.sql, fragment.params, "AND"))

    @recoverable
    def having(self, condition: str, *params: Any) -> QueryState:
        self.add_having(self.bind(condition, params))

    def having_raw(self, sql: str, *bindings: Any) -> QueryState:
        return self.having(sql, *bindings)

    # ------------------------------------------------------------------
    # ORDER BY
    # ------------------------------------------------------------------

    def put_order(self, record: OrderRecord) -> None:
        """Insert ``record``; an existing entry with the same key is replaced in place."""
        for index, existing in enumerate(self.orders):
            if existing.key == record.key:
                self.orders[index] = record
                return
        self.orders.append(record)

    @recoverable
    def order_by(self, field: str, direction: Any = "asc", nulls: Any = None) -> QueryState:
        """Order by a column.  Re-ordering by the same column replaces the entry."""
        check_identifier(field)
        resolved = normalize_direction(direction)
        if resolved is None:
            raise InvalidDirection(direction)
        if nulls is not None:
            policy = normalize_nulls(nulls)
            if policy is None:
                raise InvalidArgument("nulls must be 'first' or 'last'.", nulls=nulls)
            nulls = policy
        self.put_order(OrderRecord(field, field, resolved, nulls))

    @recoverable
    def order_by_raw(self, expression: str, direction: Any = None, *params: Any) -> QueryState:
        """Order by a verbatim expression, keyed by its text."""
        fragment = self.bind(expression, params)
        resolved = None
        if direction is not None:
            resolved = normalize_direction(direction)
            if resolved is None:
                raise InvalidDirection(direction)
        self.put_order(OrderRecord(expression, fragment.sql, resolved, None, fragment.params))

    def order_by_multiple(self, orders: Iterable[Any]) -> QueryState:
        """Apply several orderings.

        Each item is a field name, a ``(field, direction[, nulls])`` sequence
        or a ``{"field": ..., "direction": ..., "nulls": ...}`` mapping.
        Items of any other shape are recorded and skipped.
        """
        for item in orders:
            if isinstance(item, str):
                self.order_by(item)
            elif isinstance(item, dict):
                self.order_by(item.get("field"), item.get("direction", "asc"), item.get("nulls"))
            elif isinstance(item, Sequence) and 1 <= len(item) <= 3:
                self.order_by(*item)
            else:
                self.record_error(
                    InvalidArgument(
                        "Order entries are a field, a (field, direction[, nulls]) "
                        "sequence or a mapping.",
                        entry=item,
                    )
                )
        return self

    def order_random(self) -> QueryState:
        expression = self.dialect.random_function()
        self.put_order(OrderRecord(expression, expression, None))
        return self

    def reorder(self) -> QueryState:
        self.orders.clear()
        return self

    # ------------------------------------------------------------------
    # SELECT / DISTINCT / LIMIT / OFFSET
    # ------------------------------------------------------------------

    def add_projection(self, projection: Projection) -> None:
        if projection not in self.projections:
            self.projections.append(projection)

    @recoverable
    def select(self, columns: str | Sequence[str]) -> QueryState:
        names = [columns] if isinstance(columns, str) else list(columns)
        for name in names:
            check_identifier(name)
        for name in names:
            self.add_projection(Projection(name))

    @recoverable
    def select_raw(self, expression: str, *params: Any) -> QueryState:
        fragment = self.bind(expression, params)
        self.add_projection(Projection(fragment.sql, fragment.params))

    def distinct(self, value: bool = True) -> QueryState:
        self.is_distinct = value
        return self

    @recoverable
    def distinct_on(self, columns: str | Sequence[str]) -> QueryState:
        if not self.dialect.supports_distinct_on:
            raise UnsupportedFeature("DISTINCT ON", self.dialect.dialect_name)
        names = [columns] if isinstance(columns, str) else list(columns)
        for name in names:
            check_identifier(name)
        self.distinct_columns = names

    @recoverable
    def limit(self, value: int | None) -> QueryState:
        self.limit_value = _limit_value("limit", value)

    @recoverable
    def offset(self, value: int | None) -> QueryState:
        self.offset_value = _limit_value("offset", value)

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def _from_clause(self) -> CompiledQuery:
        if self._source is None:
            return CompiledQuery(self.relation.table_name, [])
        derived = self._source()
        if derived is None:
            raise InvalidArgument("Derived source produced no query.")
        return derived.as_derived_table(self._source_alias)

    def _assemble(
        self,
        select: Fragment,
        *,
        grouping: bool = True,
        ordering: bool = True,
        paging: bool = True,
    ) -> CompiledQuery:
        parts = [select.sql]
        params: list[Any] = list(select.params)

        source = self._from_clause()
        parts.append(f"FROM {source.sql}")
        params.extend(source.params)

        join_builder = JoinClauseBuilder()
        for record in self.joins:
            fragment = join_builder.build(record)
            parts.append(fragment.sql)
            params.extend(fragment.params)

        conditions = ConditionBuilder()
        where = conditions.build(self.predicates)
        if where is not None:
            parts.append(f"WHERE {where.sql}")
            params.extend(where.params)

        if grouping:
            if self.groups:
                parts.append(f"GROUP BY {', '.join(self.groups)}")
            having = conditions.build(self.havings)
            if having is not None:
                parts.append(f"HAVING {having.sql}")
                params.extend(having.params)

        if ordering:
            order = OrderClauseBuilder(self.dialect).build(self.orders)
            if order is not None:
                parts.append(f"ORDER BY {order.sql}")
                params.extend(order.params)

        if paging:
            parts.extend(self.dialect.limit_offset(self.limit_value, self.offset_value))

        return CompiledQuery(" ".join(parts), params)

    def compile(self) -> CompiledQuery:
        """Return the canonical SQL (``?`` markers) and its parameters."""
        select = SelectClauseBuilder().build(
            self.projections, self.is_distinct, self.distinct_columns
        )
        return self._assemble(select)

    def render(self, compiled: CompiledQuery) -> CompiledQuery:
        """Translate a canonical query into the dialect's placeholder style."""
        return CompiledQuery(self.dialect.render(compiled.sql), list(compiled.params))

    def to_sql(self) -> CompiledQuery:
        """Return ``(sql, params)`` ready for the configured driver."""
        return self.render(self.compile())

    def explain(self) -> list[Row]:
        sql, params = self.compile()
        return self.relation.fetch_all(self.dialect.render(self.dialect.explain(sql)), params)

    # ------------------------------------------------------------------
    # Terminals
    # ------------------------------------------------------------------

    def execute(self) -> list[Row]:
        sql, params = self.to_sql()
        logger.debug("executing %s %s", sql, params)
        return self.relation.fetch_all(sql, params)

    def all(self) -> list[Row]:
        return self.execute()

    def first(self) -> Row | None:
        """Return the first row, ordering by primary key when unordered."""
        query = self.copy()
        if not query.orders:
            query.order_by(self.primary_key_reference)
        query.limit_value = 1
        rows = query.execute()
        return rows[0] if rows else None

    def last(self) -> Row | None:
        """Return the last row by reversing the current (or primary-key) order."""
        query = self.copy()
        if query.orders:
            query.orders = [o.reversed() for o in query.orders]
        else:
            query.order_by(self.primary_key_reference, "desc")
        query.limit_value = 1
        rows = query.execute()
        return rows[0] if rows else None

    def find(self, key: Any) -> Row:
        """Return the row whose primary key equals ``key``.

        Raises:
            RecordNotFound: Propagated from the relation when nothing matches.
        """
        query = self.copy()
        query.where(f"{self.primary_key_reference} = ?", key)
        query.limit_value = 1
        sql, params = query.to_sql()
        return self.relation.find(sql, params, key)

    def find_by(self, **conditions: Any) -> Row | None:
        """Return the first row matching every ``column=value`` pair."""
        query = self.copy()
        try:
            for column, value in conditions.items():
                if value is None:
                    operator = "null"
                elif isinstance(value, (list, tuple, set, frozenset)):
                    operator = "in"
                else:
                    operator = "eq"
                fragment = self.predicate_builder.build(
                    qualify(column, None if "." in column else self.table_name),
                    operator,
                    True if value is None else value,
                )
                query.add_predicate(fragment)
        except BuilderError as exc:
            self.record_error(exc)
            return None
        query.limit_value = 1
        rows = query.execute()
        return rows[0] if rows else None

    def _aggregate(self, function: str, column: str) -> CompiledQuery:
        check_identifier(column)
        return self._assemble(
            Fragment(f"SELECT {function}({column})"),
            grouping=False,
            ordering=False,
            paging=False,
        )

    def count(self, column: str = "*") -> int:
        """Count the rows this query returns.

        Plain filtered queries count directly; grouped, distinct or paged
        queries are wrapped as a derived table first.
        """
        try:
            check_identifier(column)
        except BuilderError as exc:
            self.record_error(exc)
            return 0
        wrapped = (
            self.groups
            or self.havings
            or self.is_distinct
            or self.distinct_columns
            or self.limit_value is not None
            or self.offset_value is not None
        )
        if wrapped:
            inner = self.copy()
            inner.orders = []
            derived = inner.compile().as_derived_table("count_subquery")
            target = "*" if column == "*" else column.split(".")[-1]
            compiled = CompiledQuery(f"SELECT COUNT({target}) FROM {derived.sql}", derived.params)
        else:
            compiled = self._aggregate("COUNT", column)
        sql, params = self.render(compiled)
        return int(self.relation.fetch_scalar(sql, params) or 0)

    def _scalar(self, function: str, column: str) -> Any:
        try:
            compiled = self._aggregate(function, column)
        except BuilderError as exc:
            self.record_error(exc)
            return None
        sql, params = self.render(compiled)
        return self.relation.fetch_scalar(sql, params)

    def sum(self, column: str) -> Any:
        return self._scalar("SUM", column)

    def avg(self, column: str) -> Any:
        return self._scalar("AVG", column)

    def min(self, column: str) -> Any:
        return self._scalar("MIN", column)

    def max(self, column: str) -> Any:
        return self._scalar("MAX", column)

    def exists(self) -> bool:
        inner = self.copy()
        inner.limit_value = 1
        sql, params = inner.compile()
        compiled = CompiledQuery(f"SELECT EXISTS({sql}) AS record_exists", params)
        return bool(self.relation.fetch_scalar(*self.render(compiled)))

    def pluck(self, column: str) -> list[Any]:
        """Return the values of one column across all matching rows."""
        try:
            check_identifier(column)
        except BuilderError as exc:
            self.record_error(exc)
            return []
        query = self.copy()
        query.projections = [Projection(column)]
        return [next(iter(row.values())) for row in query.execute()]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> QueryState:
        """Drop every clause, error, warning and log entry."""
        self._clear_clauses()
        self.errors = []
        self.warnings = []
        self.operations = []
        return self

    def copy(self) -> QueryState:
        """Return an independent copy; clause records are immutable and shared."""
        clone = shallow_copy(self)
        for name in (
            "predicates",
            "joins",
            "groups",
            "havings",
            "orders",
            "projections",
            "distinct_columns",
            "errors",
            "warnings",
            "operations",
        ):
            setattr(clone, name, list(getattr(self, name)))
        return clone

    def __repr__(self) -> str:
        return f"QueryState(table={self.table_name!r}, sql={self.compile().sql!r})"
