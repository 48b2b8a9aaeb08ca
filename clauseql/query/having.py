"""HavingEngine: HAVING predicates over aggregates.

Field definitions compile through the same
:class:`~clauseql.compile.predicates.PredicateBuilder` as WHERE filters, so
HAVING accepts exactly the filter operator set.  Expression definitions
carry ``?`` markers; the applied value is bound to them:

- one marker binds the value itself;
- N markers bind an N-element sequence, in order.

The expression text is never modified.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from clauseql.compile.base import count_markers
from clauseql.compile.identifiers import is_identifier, qualify
from clauseql.compile.predicates import Fragment
from clauseql.errors import BuilderError, InvalidArgument, InvalidFunction
from clauseql.query.base import QueryEngine
from clauseql.query.state import AppliedOperation
from clauseql.schema.definitions import HavingDefinition

logger = logging.getLogger(__name__)


def _expression_params(expression: str, value: Any) -> tuple[Any, ...]:
    markers = count_markers(expression)
    if markers == 0:
        if value is not None:
            raise InvalidArgument(
                "Expression has no placeholders but a value was given.",
                expression=expression,
                value=value,
            )
        return ()
    if markers == 1:
        return (value,)
    if isinstance(value, (list, tuple)) and len(value) == markers:
        return tuple(value)
    raise InvalidArgument(
        f"Expression has {markers} placeholders; pass a sequence of {markers} values.",
        expression=expression,
        value=value,
    )


class HavingEngine(QueryEngine[HavingDefinition]):
    """Registers and applies HAVING predicates."""

    kind = "having"
    definition_model = HavingDefinition

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def define_having(
        self,
        name: str,
        field: str | None = None,
        expression: str | None = None,
        function: str | None = None,
        operator: str = "eq",
        table: str | None = None,
    ) -> HavingEngine:
        self._register(
            name,
            field=field,
            expression=expression,
            function=function,
            operator=operator,
            table=table,
        )
        return self

    def define_havings(self, definitions: Mapping[str, Mapping[str, Any]]) -> HavingEngine:
        self._define_many(definitions, self.define_having)
        return self

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply_having(self, name: str, value: Any = None) -> HavingEngine:
        """Apply the HAVING predicate registered as ``name`` with ``value``."""
        definition = self._lookup(name)
        if definition is None:
            return self
        try:
            if definition.expression:
                fragment = Fragment(
                    definition.expression, _expression_params(definition.expression, value)
                )
            else:
                fragment = self._predicate(
                    definition.function, definition.field, definition.operator, value, definition.table
                )
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.state.add_having(fragment)
        self.log_operation(name, value=value)
        return self

    def apply_havings(self, havings: Iterable[str | Mapping[str, Any]]) -> HavingEngine:
        """Apply names (no value) or ``{"name": ..., "value": ...}`` maps."""
        for having in havings:
            if isinstance(having, Mapping):
                name = self._entry_key(having)
                if name is not None:
                    self.apply_having(name, having.get("value"))
            else:
                self.apply_having(having)
        return self

    def _predicate(
        self,
        function: str | None,
        field: str,
        operator: Any,
        value: Any,
        table: str | None = None,
    ) -> Fragment:
        expression = qualify(field, table)
        if function:
            expression = f"{function.upper()}({expression})"
        return self.state.predicate_builder.build(expression, operator, value)

    # ------------------------------------------------------------------
    # Direct constructors
    # ------------------------------------------------------------------

    def having_function(
        self, function: str, field: str, operator: Any, value: Any, table: str | None = None
    ) -> HavingEngine:
        """``HAVING FUNCTION(field) <operator> ?`` for any SQL function name."""
        if not is_identifier(function) or "." in function:
            self.record_error(InvalidFunction(function, []))
            return self
        try:
            fragment = self._predicate(function, field, operator, value, table)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.state.add_having(fragment)
        self.log_operation(f"{function.lower()}_{field}", operator=operator, value=value)
        return self

    def having_count(self, field: str, operator: Any, value: Any, table: str | None = None) -> HavingEngine:
        return self.having_function("COUNT", field, operator, value, table)

    def having_sum(self, field: str, operator: Any, value: Any, table: str | None = None) -> HavingEngine:
        return self.having_function("SUM", field, operator, value, table)

    def having_avg(self, field: str, operator: Any, value: Any, table: str | None = None) -> HavingEngine:
        return self.having_function("AVG", field, operator, value, table)

    def having_min(self, field: str, operator: Any, value: Any, table: str | None = None) -> HavingEngine:
        return self.having_function("MIN", field, operator, value, table)

    def having_max(self, field: str, operator: Any, value: Any, table: str | None = None) -> HavingEngine:
        return self.having_function("MAX", field, operator, value, table)

    def having_and(self, conditions: Sequence[Mapping[str, Any]]) -> HavingEngine:
        """AND together ``{field, function?, operator, value, table?}`` predicates."""
        return self._compound(conditions, "AND")

    def having_or(self, conditions: Sequence[Mapping[str, Any]]) -> HavingEngine:
        """OR together ``{field, function?, operator, value, table?}`` predicates."""
        return self._compound(conditions, "OR")

    def _compound(self, conditions: Sequence[Mapping[str, Any]], connector: str) -> HavingEngine:
        fragments = []
        for item in conditions:
            function = item.get("function")
            try:
                if function is not None and (not is_identifier(function) or "." in function):
                    raise InvalidFunction(function, [])
                fragments.append(
                    self._predicate(
                        function,
                        item.get("field"),
                        item.get("operator", "eq"),
                        item.get("value"),
                        item.get("table"),
                    )
                )
            except BuilderError as exc:
                self.record_error(exc)
        if not fragments:
            return self
        self.state.add_having(self.state.predicate_builder.combine(fragments, connector))
        self.log_operation(f"{connector.lower()}_having", conditions=[dict(c) for c in conditions])
        return self

    def having_raw(self, sql: str, *bindings: Any) -> HavingEngine:
        """Verbatim HAVING condition; ``bindings`` fill its ``?`` markers."""
        try:
            fragment = self.state.bind(sql, bindings)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        self.state.add_having(fragment)
        logger.debug("raw having %s", sql)
        self.log_operation("raw", sql=sql)
        return self

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def available_havings(self) -> list[str]:
        return self._available()

    def current_havings(self) -> list[AppliedOperation]:
        return self._current()
