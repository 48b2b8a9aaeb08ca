"""SortEngine: named, request-driven and computed ORDER BY items.

Sorts are registered with :meth:`SortEngine.define_sort` and applied by
name.  Applying a sort on a field that is already ordered replaces the
earlier entry in place, so request-driven sorting is idempotent.

A sort may declare a ``join``.  When a :class:`~clauseql.query.join.JoinEngine`
over the same state is attached and knows that name, the join definition is
applied; otherwise the name is looked up in ``QueryConfig.relationships``.

Computed orderings (CASE, priority lists) bind every caller-supplied value;
only list positions are inlined.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from copy import copy as shallow_copy
from typing import Any

from clauseql.compile.clauses import OrderRecord
from clauseql.compile.identifiers import check_identifier, qualify
from clauseql.compile.predicates import is_blank
from clauseql.errors import BuilderError, ConfigurationError, InvalidDirection, InvalidFunction
from clauseql.query.base import QueryEngine
from clauseql.query.join import JoinEngine
from clauseql.query.state import AppliedOperation, QueryState
from clauseql.schema.definitions import SortDefinition
from clauseql.schema.operators import AGGREGATE_FUNCTIONS, normalize_direction, normalize_function

logger = logging.getLogger(__name__)


class SortEngine(QueryEngine[SortDefinition]):
    """Registers and applies ORDER BY items.

    Args:
        state: Query state to mutate.
        join_engine: Optional join engine over the same state, used to
            resolve a sort's ``join``.
    """

    kind = "sort"
    definition_model = SortDefinition

    def __init__(self, state: QueryState, join_engine: JoinEngine | None = None) -> None:
        super().__init__(state)
        if join_engine is not None and join_engine.state is not state:
            raise ConfigurationError(
                "SortEngine and its JoinEngine must wrap the same QueryState.",
                option="join_engine",
            )
        self.join_engine = join_engine
        self._default: tuple[str, str] | None = None

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def define_sort(
        self,
        name: str,
        field: str | None = None,
        table: str | None = None,
        direction: str = "asc",
        nulls: str | None = None,
        join: str | None = None,
        custom_sql: str | None = None,
    ) -> SortEngine:
        self._register(
            name,
            field=field,
            table=table,
            direction=direction,
            nulls=nulls,
            join=join,
            custom_sql=custom_sql,
        )
        return self

    def define_sorts(self, definitions: Mapping[str, Mapping[str, Any]]) -> SortEngine:
        self._define_many(definitions, self.define_sort)
        return self

    def set_default_sort(self, name: str, direction: str | None = None) -> SortEngine:
        """Sort applied by the ``*_from_params`` methods when the request names none."""
        definition = self._lookup(name)
        if definition is None:
            return self
        resolved = normalize_direction(direction or definition.direction)
        if resolved is None:
            self.record_error(InvalidDirection(direction))
            return self
        self._default = (name, resolved)
        return self

    # ------------------------------------------------------------------
    # Named application
    # ------------------------------------------------------------------

    def apply_sort(self, name: str, direction: str | None = None) -> SortEngine:
        """Apply the sort registered as ``name``.

        ``direction`` overrides the definition's default; anything other
        than ``asc`` / ``desc`` is recorded as :class:`InvalidDirection`.
        """
        definition = self._lookup(name)
        if definition is None:
            return self
        resolved = normalize_direction(direction if direction is not None else definition.direction)
        if resolved is None:
            self.record_error(InvalidDirection(direction))
            return self
        if definition.join:
            logger.debug("sort '%s' requires join '%s'", name, definition.join)
            if not self._require_join(definition.join):
                return self

        if definition.custom_sql:
            record = OrderRecord(definition.custom_sql, definition.custom_sql, resolved)
        else:
            try:
                expression = qualify(definition.field, definition.table)
            except BuilderError as exc:
                self.record_error(exc)
                return self
            record = OrderRecord(expression, expression, resolved, definition.nulls)
        self.state.put_order(record)
        self.log_operation(name, direction=resolved, nulls=definition.nulls)
        return self

    def _require_join(self, name: str) -> bool:
        if self.join_engine is not None and self.join_engine.definition(name) is not None:
            return self.join_engine.join_required(name)
        try:
            record = self.state.association_join(name)
        except BuilderError as exc:
            self.record_error(exc)
            return False
        self.state.add_join(record)
        return True

    def apply_sorts(self, sorts: Iterable[str | Mapping[str, Any]]) -> SortEngine:
        """Apply names or ``{"name": ..., "direction": ...}`` maps in order."""
        for sort in sorts:
            if isinstance(sort, Mapping):
                name = self._entry_key(sort)
                if name is not None:
                    self.apply_sort(name, sort.get("direction"))
            else:
                self.apply_sort(sort)
        return self

    def apply_default_sort(self) -> SortEngine:
        if self._default is not None:
            self.apply_sort(*self._default)
        return self

    def apply_sort_from_params(
        self,
        params: Mapping[str, Any],
        sort_param: str = "sort",
        direction_param: str = "direction",
    ) -> SortEngine:
        """Apply ``params[sort_param]``, falling back to the default sort.

        A leading ``-`` (``"-price"``) means descending unless
        ``params[direction_param]`` says otherwise.
        """
        name = params.get(sort_param)
        direction = params.get(direction_param)
        if is_blank(name):
            return self.apply_default_sort()
        name, prefixed = self._split_prefix(str(name))
        return self.apply_sort(name, direction or prefixed)

    def apply_sorts_from_params(
        self, params: Mapping[str, Any], sort_param: str = "sorts"
    ) -> SortEngine:
        """Apply several sorts from a list, a ``name -> direction`` map or ``"a,-b"``."""
        sorts = params.get(sort_param)
        if is_blank(sorts):
            return self.apply_default_sort()
        if isinstance(sorts, str):
            sorts = [s.strip() for s in sorts.split(",") if s.strip()]
        if isinstance(sorts, Mapping):
            for name, direction in sorts.items():
                self.apply_sort(name, direction)
            return self
        for sort in sorts:
            if isinstance(sort, str):
                name, prefixed = self._split_prefix(sort)
                self.apply_sort(name, prefixed)
            else:
                self.apply_sorts([sort])
        return self

    @staticmethod
    def _split_prefix(name: str) -> tuple[str, str | None]:
        if name.startswith("-"):
            return name[1:], "desc"
        return name, None

    # ------------------------------------------------------------------
    # Computed orderings
    # ------------------------------------------------------------------

    def _direction(self, direction: Any) -> str | None:
        resolved = normalize_direction(direction)
        if resolved is None:
            self.record_error(InvalidDirection(direction))
        return resolved

    def _order(self, record: OrderRecord, name: str, **details: Any) -> SortEngine:
        self.state.put_order(record)
        self.log_operation(name, **details)
        return self

    def apply_association_sort(
        self, association: str, field: str, direction: str = "asc"
    ) -> SortEngine:
        """Join a configured relationship and order by one of its columns."""
        resolved = self._direction(direction)
        if resolved is None:
            return self
        try:
            join = self.state.association_join(association)
            expression = qualify(field, join.reference)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.state.add_join(join)
        return self._order(
            OrderRecord(expression, expression, resolved), f"{association}_{field}", direction=resolved
        )

    def apply_multiple_fields_sort(self, fields: Sequence[str | Mapping[str, Any]]) -> SortEngine:
        """Order by several columns given as names or ``{field, direction, table}`` maps."""
        for item in fields:
            if isinstance(item, Mapping):
                field, table = item.get("field"), item.get("table")
                direction = item.get("direction", "asc")
            else:
                field, table, direction = item, None, "asc"
            resolved = self._direction(direction)
            if resolved is None:
                continue
            try:
                expression = qualify(field, table)
            except BuilderError as exc:
                self.record_error(exc)
                continue
            self._order(OrderRecord(expression, expression, resolved), field, direction=resolved, table=table)
        return self

    def apply_raw_sort(self, sql: str, *params: Any) -> SortEngine:
        """Order by a verbatim developer-supplied expression."""
        try:
            fragment = self.state.bind(sql, params)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        return self._order(OrderRecord(sql, sql, None, None, fragment.params), "raw", sql=sql)

    def apply_random_sort(self) -> SortEngine:
        self.state.order_random()
        self.log_operation("random")
        return self

    def apply_aggregate_sort(
        self, function: str, field: str, direction: str = "asc", table: str | None = None
    ) -> SortEngine:
        """Order by ``FUNC(field)``; meant for grouped queries."""
        name = normalize_function(function)
        if name is None:
            self.record_error(InvalidFunction(function, sorted(AGGREGATE_FUNCTIONS)))
            return self
        resolved = self._direction(direction)
        if resolved is None:
            return self
        try:
            column = check_identifier(field) if table is None else qualify(field, table)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        expression = f"{name.upper()}({column})"
        return self._order(
            OrderRecord(expression, expression, resolved), f"{name}_{field}", direction=resolved
        )

    def apply_case_sort(
        self,
        cases: Sequence[tuple[str, Any]],
        else_value: Any = None,
        direction: str = "asc",
    ) -> SortEngine:
        """Order by ``CASE WHEN <condition> THEN ? ... ELSE ? END``.

        Conditions are developer SQL without markers; every value is bound.
        """
        resolved = self._direction(direction)
        if resolved is None or not cases:
            return self
        params: list[Any] = []
        whens = []
        try:
            for condition, value in cases:
                self.state.bind(condition, ())
                whens.append(f"WHEN {condition} THEN ?")
                params.append(value)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        expression = f"CASE {' '.join(whens)}"
        if else_value is not None:
            expression += " ELSE ?"
            params.append(else_value)
        expression += " END"
        return self._order(
            OrderRecord(expression, expression, resolved, None, tuple(params)), "case", direction=resolved
        )

    def apply_priority_sort(
        self, field: str, priorities: Sequence[Any], direction: str = "asc", table: str | None = None
    ) -> SortEngine:
        """Order rows whose ``field`` matches ``priorities`` first, in list order.

        Unlisted values sort after every listed one.
        """
        resolved = self._direction(direction)
        if resolved is None or not priorities:
            return self
        try:
            column = qualify(field, table)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        whens = " ".join(f"WHEN {column} = ? THEN {index}" for index in range(len(priorities)))
        expression = f"CASE {whens} ELSE {len(priorities)} END"
        record = OrderRecord(f"priority:{column}", expression, resolved, None, tuple(priorities))
        return self._order(record, f"priority_{field}", direction=resolved)

    # ------------------------------------------------------------------
    # Introspection / lifecycle
    # ------------------------------------------------------------------

    def available_sorts(self) -> list[str]:
        return self._available()

    def current_sorts(self) -> list[AppliedOperation]:
        return self._current()

    def copy(self) -> SortEngine:
        clone = super().copy()
        if self.join_engine is not None:
            clone.join_engine = shallow_copy(self.join_engine)
            clone.join_engine.state = clone.state
        return clone
