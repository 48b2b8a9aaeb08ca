"""GroupingEngine: GROUP BY entries, date buckets and aggregate projections.

Grouped expressions are selected under an alias and grouped by that alias::

    SELECT DATE_TRUNC('month', created_at) AS month_group ... GROUP BY month_group

Date bucketing goes through :meth:`DialectStrategy.date_trunc`, so the same
definition renders ``strftime`` on SQLite, ``DATE_TRUNC`` on PostgreSQL and
``DATE_FORMAT`` / ``YEARWEEK`` on MySQL.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from clauseql.compile.clauses import Projection
from clauseql.compile.identifiers import check_identifier, is_identifier, qualify
from clauseql.errors import BuilderError, InvalidArgument, InvalidFunction, InvalidIdentifier
from clauseql.query.base import QueryEngine
from clauseql.query.state import AppliedOperation
from clauseql.schema.definitions import GroupDefinition
from clauseql.schema.operators import AGGREGATE_FUNCTIONS, DATE_FORMATS, normalize_function

logger = logging.getLogger(__name__)


def _alias(name: Any) -> str:
    if not is_identifier(name) or "." in name:
        raise InvalidIdentifier(name)
    return name


class GroupingEngine(QueryEngine[GroupDefinition]):
    """Registers and applies GROUP BY entries."""

    kind = "group"
    definition_model = GroupDefinition

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def define_group(
        self,
        name: str,
        field: str | None = None,
        expression: str | None = None,
        table: str | None = None,
        alias: str | None = None,
        format: str | None = None,
    ) -> GroupingEngine:
        self._register(
            name, field=field, expression=expression, table=table, alias=alias, format=format
        )
        return self

    def define_groups(self, definitions: Mapping[str, Mapping[str, Any]]) -> GroupingEngine:
        self._define_many(definitions, self.define_group)
        return self

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def _select_and_group(self, expression: str, alias: str, params: Sequence[Any] = ()) -> None:
        self.state.add_projection(Projection(f"{expression} AS {_alias(alias)}", tuple(params)))
        self.state.group_by(alias)

    def _group_only(self, expression: str) -> None:
        self.state.bind(expression, ())
        self.state.group_by(expression)

    def apply_group(self, name: str) -> GroupingEngine:
        """Apply the group registered as ``name``."""
        definition = self._lookup(name)
        if definition is None:
            return self
        try:
            if definition.expression:
                self.state.bind(definition.expression, ())
                if definition.alias:
                    self._select_and_group(definition.expression, definition.alias)
                else:
                    self._group_only(definition.expression)
            else:
                column = qualify(definition.field, definition.table)
                if definition.format:
                    expression = self.dialect.date_trunc(column, definition.format)
                    self._select_and_group(
                        expression, definition.alias or f"{definition.format}_group"
                    )
                else:
                    self._group_only(column)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.log_operation(name, field=definition.field, format=definition.format)
        return self

    def apply_groups(self, groups: Iterable[str | Mapping[str, Any]]) -> GroupingEngine:
        for group in groups:
            name = self._entry_key(group) if isinstance(group, Mapping) else group
            if name is not None:
                self.apply_group(name)
        return self

    # ------------------------------------------------------------------
    # Direct helpers
    # ------------------------------------------------------------------

    def group_by_field(self, field: str, table: str | None = None) -> GroupingEngine:
        try:
            self._group_only(qualify(field, table))
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.log_operation(field, field=field, table=table)
        return self

    def group_by_fields(self, fields: Iterable[str | Mapping[str, Any]]) -> GroupingEngine:
        for item in fields:
            if isinstance(item, Mapping):
                field = self._entry_key(item, "field")
                if field is not None:
                    self.group_by_field(field, item.get("table"))
            else:
                self.group_by_field(item)
        return self

    def _group_by_format(
        self, field: str, unit: str, alias: str, table: str | None
    ) -> GroupingEngine:
        try:
            expression = self.dialect.date_trunc(qualify(field, table), unit)
            self._select_and_group(expression, alias)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.log_operation(field, field=field, table=table, format=unit)
        return self

    def group_by_date(self, field: str, table: str | None = None) -> GroupingEngine:
        return self._group_by_format(field, "day", "date_group", table)

    def group_by_week(self, field: str, table: str | None = None) -> GroupingEngine:
        return self._group_by_format(field, "week", "week_group", table)

    def group_by_month(self, field: str, table: str | None = None) -> GroupingEngine:
        return self._group_by_format(field, "month", "month_group", table)

    def group_by_year(self, field: str, table: str | None = None) -> GroupingEngine:
        return self._group_by_format(field, "year", "year_group", table)

    def group_by_hour(self, field: str, table: str | None = None) -> GroupingEngine:
        return self._group_by_format(field, "hour", "hour_group", table)

    def group_by_day_of_week(self, field: str, table: str | None = None) -> GroupingEngine:
        return self._group_by_format(field, "day_of_week", "day_of_week_group", table)

    def group_by_format(
        self, field: str, unit: str, alias: str | None = None, table: str | None = None
    ) -> GroupingEngine:
        """Bucket ``field`` by any supported date ``unit``."""
        if unit not in DATE_FORMATS:
            self.record_error(
                InvalidArgument(f"Unknown date format '{unit}'.", format=unit, allowed=sorted(DATE_FORMATS))
            )
            return self
        return self._group_by_format(field, unit, alias or f"{unit}_group", table)

    def group_by_expression(self, expression: str, alias: str | None = None) -> GroupingEngine:
        """Group by a verbatim developer-supplied expression."""
        try:
            self.state.bind(expression, ())
            if alias:
                self._select_and_group(expression, alias)
            else:
                self._group_only(expression)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.log_operation("expression", expression=expression, alias=alias)
        return self

    def group_by_range(
        self, field: str, ranges: Sequence[Mapping[str, Any]], table: str | None = None
    ) -> GroupingEngine:
        """Bucket ``field`` into labelled ranges.

        Each range is ``{"min": ..., "max": ..., "label": ...}`` with ``min``
        exclusive and ``max`` inclusive; either bound may be omitted.  Rows
        outside every range are labelled ``'Other'``.  Bounds and labels are
        bound parameters.
        """
        if not ranges:
            self.record_error(InvalidArgument("group_by_range requires at least one range.", field=field))
            return self
        try:
            column = qualify(field, table)
        except BuilderError as exc:
            self.record_error(exc)
            return self

        whens: list[str] = []
        params: list[Any] = []
        for index, bucket in enumerate(ranges):
            low, high = bucket.get("min"), bucket.get("max")
            label = bucket.get("label") or f"Range {index + 1}"
            if low is None and high is None:
                continue
            if low is None:
                whens.append(f"WHEN {column} <= ? THEN ?")
                params.extend((high, label))
            elif high is None:
                whens.append(f"WHEN {column} > ? THEN ?")
                params.extend((low, label))
            else:
                whens.append(f"WHEN {column} > ? AND {column} <= ? THEN ?")
                params.extend((low, high, label))
        if not whens:
            self.record_error(InvalidArgument("Every range is missing both bounds.", field=field))
            return self
        params.append("Other")
        expression = f"CASE {' '.join(whens)} ELSE ? END"
        self._select_and_group(expression, "range_group", params)
        self.log_operation(field, field=field, table=table, ranges=[dict(r) for r in ranges])
        return self

    # ------------------------------------------------------------------
    # Aggregate projections
    # ------------------------------------------------------------------

    def add_aggregate(
        self,
        function: str,
        field: str,
        alias: str | None = None,
        table: str | None = None,
    ) -> GroupingEngine:
        """Select ``FUNC(field) [AS alias]``; unknown functions are recorded."""
        name = normalize_function(function)
        if name is None:
            self.record_error(InvalidFunction(function, sorted(AGGREGATE_FUNCTIONS)))
            return self
        try:
            column = check_identifier(field) if table is None else qualify(field, table)
            expression = f"{name.upper()}({column})"
            if alias is not None:
                expression = f"{expression} AS {_alias(alias)}"
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.state.add_projection(Projection(expression))
        logger.debug("added aggregate %s", expression)
        return self

    def add_count(self, field: str = "*", alias: str | None = "count", table: str | None = None) -> GroupingEngine:
        return self.add_aggregate("count", field, alias, table)

    def add_sum(self, field: str, alias: str | None = "sum", table: str | None = None) -> GroupingEngine:
        return self.add_aggregate("sum", field, alias, table)

    def add_avg(self, field: str, alias: str | None = "avg", table: str | None = None) -> GroupingEngine:
        return self.add_aggregate("avg", field, alias, table)

    def add_min(self, field: str, alias: str | None = "min", table: str | None = None) -> GroupingEngine:
        return self.add_aggregate("min", field, alias, table)

    def add_max(self, field: str, alias: str | None = "max", table: str | None = None) -> GroupingEngine:
        return self.add_aggregate("max", field, alias, table)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def available_groups(self) -> list[str]:
        return self._available()

    def current_groups(self) -> list[AppliedOperation]:
        return self._current()
