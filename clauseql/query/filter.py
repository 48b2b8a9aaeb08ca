"""FilterEngine: named and request-driven WHERE filters.

Filters are registered once with :meth:`FilterEngine.define_filter` and
applied by name with a caller-supplied value.  The value is always bound;
the field name comes from the definition, so request data can never change
the shape of the SQL.

Usage::

    filters = FilterEngine(QueryState(products))
    filters.define_filter("min_price", field="price", operator="gte")
    filters.define_filter("status")
    filters.apply_filters({"min_price": 100, "status": "active"})
    filters.to_sql()
    # ('SELECT * FROM products WHERE price >= ? AND status = ?', [100, 'active'])

Request-style maps go through :meth:`FilterEngine.apply_params`, which also
accepts ad-hoc field filters for allow-listed keys::

    filters.apply_params(
        {"status": "active", "price": {"gte": 100}},
        allowed_filters=["status", "price"],
    )
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from clauseql.compile.identifiers import check_identifier, qualify
from clauseql.compile.predicates import Fragment, is_blank
from clauseql.errors import BuilderError, InvalidArgument, ValidationFailed
from clauseql.query.base import QueryEngine
from clauseql.query.state import AppliedOperation, QueryState, day_bound
from clauseql.schema.definitions import FilterDefinition

logger = logging.getLogger(__name__)


class FilterEngine(QueryEngine[FilterDefinition]):
    """Registers and applies WHERE filters.

    Args:
        state: Query state to mutate.
        handlers: Optional object whose methods may be named as a filter's
            ``custom_builder``.
    """

    kind = "filter"
    definition_model = FilterDefinition

    def __init__(self, state: QueryState, handlers: Any = None) -> None:
        super().__init__(state)
        self.handlers = handlers

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def define_filter(
        self,
        name: str,
        field: str | None = None,
        table: str | None = None,
        operator: str = "eq",
        validator: Callable[[Any], Any] | None = None,
        transform: Callable[[Any], Any] | None = None,
        custom_builder: Callable[[QueryState, Any], Any] | str | None = None,
    ) -> FilterEngine:
        """Register a reusable filter.

        ``custom_builder`` may be a callable ``(state, value)`` or the name
        of a method on :attr:`handlers`; names are resolved here, once.
        """
        if isinstance(custom_builder, str):
            resolved = getattr(self.handlers, custom_builder, None)
            if not callable(resolved):
                self.record_error(
                    InvalidArgument(
                        f"custom_builder '{custom_builder}' is not a method of the handlers object.",
                        name=name,
                        custom_builder=custom_builder,
                    )
                )
                return self
            custom_builder = resolved
        self._register(
            name,
            field=field,
            table=table,
            operator=operator,
            validator=validator,
            transform=transform,
            custom_builder=custom_builder,
        )
        return self

    def define_filters(self, definitions: Mapping[str, Mapping[str, Any]]) -> FilterEngine:
        self._define_many(definitions, self.define_filter)
        return self

    # ------------------------------------------------------------------
    # Named application
    # ------------------------------------------------------------------

    def apply_filter(self, name: str, value: Any) -> FilterEngine:
        """Apply the filter registered as ``name`` with ``value``.

        Blank values are ignored.  Unknown names, rejected values and
        malformed values are recorded on :attr:`errors` and leave the query
        unchanged.
        """
        if is_blank(value):
            return self
        definition = self._lookup(name)
        if definition is None:
            return self
        if definition.validator is not None and not definition.validator(value):
            self.record_error(ValidationFailed(name, value))
            return self
        if definition.transform is not None:
            value = definition.transform(value)

        if definition.custom_builder is not None:
            try:
                definition.custom_builder(self.state, value)
            except BuilderError as exc:
                self.record_error(exc)
                return self
        else:
            try:
                fragment = self.state.predicate_builder.build(
                    qualify(definition.field, definition.table),
                    definition.operator,
                    value,
                )
            except BuilderError as exc:
                self.record_error(exc)
                return self
            self.state.add_predicate(fragment)

        self.log_operation(
            name, field=definition.field, operator=definition.operator, value=value
        )
        return self

    def apply_filters(self, filters: Mapping[str, Any]) -> FilterEngine:
        """Apply each ``name -> value`` pair independently."""
        for name, value in filters.items():
            self.apply_filter(name, value)
        return self

    # ------------------------------------------------------------------
    # Request-driven application
    # ------------------------------------------------------------------

    def apply_params(
        self,
        filters: Mapping[str, Any],
        allowed_filters: Iterable[str] | None = None,
    ) -> FilterEngine:
        """Apply a request-style filter map.

        Registered names go through :meth:`apply_filter`.  Other keys become
        ad-hoc field filters: a scalar means ``eq``, a list means ``in`` and a
        mapping is read as ``{operator: value}``.  When ``allowed_filters`` is
        given, keys outside it are dropped silently; ad-hoc field names must
        also pass ``config.allowed_fields``.
        """
        allowed = None if allowed_filters is None else set(allowed_filters)
        for key, value in filters.items():
            if allowed is not None and key not in allowed:
                logger.debug("dropping filter '%s': not in allowed_filters", key)
                continue
            if key in self._definitions:
                self.apply_filter(key, value)
            else:
                self._apply_field_filter(key, value)
        return self

    def apply_filters_from_params(
        self,
        params: Mapping[str, Any],
        filter_param: str = "filters",
        allowed_filters: Iterable[str] | None = None,
    ) -> FilterEngine:
        """Apply ``params[filter_param]`` via :meth:`apply_params`."""
        filters = params.get(filter_param) or {}
        if not isinstance(filters, Mapping):
            self.record_error(
                InvalidArgument(f"'{filter_param}' must be a mapping.", value=filters)
            )
            return self
        return self.apply_params(filters, allowed_filters)

    def _apply_field_filter(self, field: str, value: Any) -> None:
        if is_blank(value):
            return
        try:
            expression = check_identifier(field, self.config.allowed_fields)
        except BuilderError as exc:
            self.record_error(exc)
            return

        if isinstance(value, Mapping):
            pairs = list(value.items())
        elif isinstance(value, (list, tuple, set, frozenset)):
            pairs = [("in", value)]
        else:
            pairs = [("eq", value)]

        fragments = []
        for operator, operand in pairs:
            try:
                fragments.append(self.state.predicate_builder.build(expression, operator, operand))
            except BuilderError as exc:
                self.record_error(exc)
        if not fragments:
            return
        self.state.add_predicate(self.state.predicate_builder.combine(fragments, "AND"))
        self.log_operation(field, field=field, value=value)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def apply_date_range_filter(
        self,
        field: str,
        start_date: Any = None,
        end_date: Any = None,
        table: str | None = None,
    ) -> FilterEngine:
        """Filter ``field`` to whole days; either bound may be omitted."""
        if start_date is None and end_date is None:
            return self
        fragments = []
        try:
            expression = qualify(field, table)
            if start_date is not None:
                fragments.append(Fragment(f"{expression} >= ?", (day_bound(start_date, end=False),)))
            if end_date is not None:
                fragments.append(Fragment(f"{expression} <= ?", (day_bound(end_date, end=True),)))
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.state.add_predicate(self.state.predicate_builder.combine(fragments, "AND"))
        self.log_operation(f"{field}_range", start_date=start_date, end_date=end_date)
        return self

    def apply_number_range_filter(
        self,
        field: str,
        min_value: Any = None,
        max_value: Any = None,
        table: str | None = None,
    ) -> FilterEngine:
        """Filter ``field`` to ``[min_value, max_value]``; either bound may be omitted."""
        if min_value is None and max_value is None:
            return self
        builder = self.state.predicate_builder
        try:
            expression = qualify(field, table)
            if min_value is not None and max_value is not None:
                fragment = builder.build(expression, "between", (min_value, max_value))
            elif min_value is not None:
                fragment = builder.build(expression, "gte", min_value)
            else:
                fragment = builder.build(expression, "lte", max_value)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.state.add_predicate(fragment)
        self.log_operation(f"{field}_range", min_value=min_value, max_value=max_value)
        return self

    def apply_search_filter(
        self, search_term: Any, fields: Sequence[str], table: str | None = None
    ) -> FilterEngine:
        """Match ``search_term`` against any of ``fields`` (OR of LIKE)."""
        if is_blank(search_term) or not fields:
            return self
        builder = self.state.predicate_builder
        try:
            fragments = [builder.build(qualify(f, table), "like", search_term) for f in fields]
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.state.add_predicate(builder.combine(fragments, "OR"))
        self.log_operation("search", value=search_term, fields=list(fields))
        return self

    def apply_association_filter(
        self, association: str, field: str, value: Any, operator: str = "eq"
    ) -> FilterEngine:
        """Join a configured relationship and filter the joined table."""
        if is_blank(value):
            return self
        try:
            join = self.state.association_join(association)
            fragment = self.state.predicate_builder.build(
                qualify(field, join.reference), operator, value
            )
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.state.add_join(join)
        self.state.add_predicate(fragment)
        self.log_operation(
            f"{association}_{field}", table=join.table, operator=operator, value=value
        )
        return self

    def apply_and_filter(self, filters: Sequence[Mapping[str, Any]]) -> FilterEngine:
        """AND together ``{field, value, operator?, table?}`` conditions."""
        return self._apply_compound(filters, "AND", "and_filter")

    def apply_or_filter(self, filters: Sequence[Mapping[str, Any]]) -> FilterEngine:
        """OR together ``{field, value, operator?, table?}`` conditions.

        The group is parenthesised, so it ANDs cleanly with other filters.
        """
        return self._apply_compound(filters, "OR", "or_filter")

    def _apply_compound(
        self, filters: Sequence[Mapping[str, Any]], connector: str, name: str
    ) -> FilterEngine:
        if not filters:
            return self
        builder = self.state.predicate_builder
        fragments = []
        for item in filters:
            value = item.get("value")
            if is_blank(value):
                continue
            try:
                expression = qualify(item.get("field"), item.get("table"))
                fragments.append(builder.build(expression, item.get("operator", "eq"), value))
            except BuilderError as exc:
                self.record_error(exc)
        if not fragments:
            return self
        self.state.add_predicate(builder.combine(fragments, connector))
        self.log_operation(name, filters=[dict(f) for f in filters])
        return self

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def available_filters(self) -> list[str]:
        return self._available()

    def current_filters(self) -> list[AppliedOperation]:
        return self._current()
