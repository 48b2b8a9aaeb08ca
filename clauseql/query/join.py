"""JoinEngine: named and direct JOIN construction.

A join definition resolves through exactly one strategy, checked in this
order:

1. ``association``: a relationship from ``QueryConfig.relationships``;
2. ``on``: an explicit ON condition;
3. ``foreign_key`` / ``primary_key``:
   ``<base>.<foreign_key> = <joined>.<primary_key>``.

The definition's ``conditions`` and any extra condition passed to
:meth:`JoinEngine.apply_join` are AND-ed onto the resolved ON clause.
Unknown join types fall back to ``INNER`` and leave a
:class:`~clauseql.errors.JoinTypeFallback` in :attr:`JoinEngine.warnings`.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from clauseql.compile.clauses import JoinRecord
from clauseql.compile.identifiers import check_identifier, is_identifier, singularize
from clauseql.errors import BuilderError, InvalidArgument, InvalidIdentifier, JoinTypeFallback
from clauseql.query.base import QueryEngine
from clauseql.query.state import AppliedOperation
from clauseql.schema.definitions import JoinDefinition
from clauseql.schema.operators import normalize_join_type

logger = logging.getLogger(__name__)


def _and_all(conditions: Sequence[str]) -> str:
    if len(conditions) == 1:
        return conditions[0]
    return " AND ".join(f"({c})" for c in conditions)


class JoinEngine(QueryEngine[JoinDefinition]):
    """Registers and applies JOIN clauses."""

    kind = "join"
    definition_model = JoinDefinition

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def define_join(
        self,
        name: str,
        table: str | None = None,
        alias: str | None = None,
        type: str = "inner",
        on: str | None = None,
        foreign_key: str | None = None,
        primary_key: str = "id",
        association: str | None = None,
        conditions: str | None = None,
    ) -> JoinEngine:
        self._register(
            name,
            table=table,
            alias=alias,
            type=type,
            on=on,
            foreign_key=foreign_key,
            primary_key=primary_key,
            association=association,
            conditions=conditions,
        )
        return self

    def define_joins(self, definitions: Mapping[str, Mapping[str, Any]]) -> JoinEngine:
        self._define_many(definitions, self.define_join)
        return self

    # ------------------------------------------------------------------
    # Named application
    # ------------------------------------------------------------------

    def apply_join(self, name: str, extra_condition: str | None = None, *params: Any) -> JoinEngine:
        """Apply the join registered as ``name``.

        Args:
            name: Registered join name.
            extra_condition: Optional condition AND-ed onto the ON clause.
            *params: Values for ``?`` markers in the ON clause, in order.
        """
        self.join_required(name, extra_condition, *params)
        return self

    def join_required(self, name: str, extra_condition: str | None = None, *params: Any) -> bool:
        """Apply ``name`` unless already applied; return ``False`` on failure."""
        definition = self._lookup(name)
        if definition is None:
            return False
        try:
            record = self._resolve(definition, extra_condition, params)
        except BuilderError as exc:
            self.record_error(exc)
            return False
        if self.state.add_join(record):
            self._log_join(name, record, extra_condition=extra_condition)
        else:
            logger.debug("join '%s' already applied", name)
        return True

    def _join_type(self, join_type: Any, name: str | None = None) -> str:
        resolved = normalize_join_type(join_type)
        if resolved is None:
            self.state.record_warning(JoinTypeFallback(join_type, name))
            return "INNER"
        return resolved

    def _resolve(
        self, definition: JoinDefinition, extra_condition: str | None, params: Sequence[Any]
    ) -> JoinRecord:
        join_type = self._join_type(definition.type, definition.name)
        table, alias = definition.table, definition.alias

        if join_type == "CROSS":
            if extra_condition or params:
                raise InvalidArgument("CROSS JOIN takes no ON condition.", name=definition.name)
            return JoinRecord("CROSS", table, alias)

        if definition.association:
            association = self.state.association_join(definition.association, join_type, alias)
            table, on = association.table, association.on
        elif definition.on:
            on = definition.on
        elif definition.foreign_key:
            on = (
                f"{self.state.table_name}.{definition.foreign_key} = "
                f"{definition.reference}.{definition.primary_key}"
            )
        else:
            raise InvalidArgument(
                f"Join '{definition.name}' has no join condition.", name=definition.name
            )

        conditions = [c for c in (on, definition.conditions, extra_condition) if c]
        fragment = self.state.bind(_and_all(conditions), params)
        return JoinRecord(join_type, table, alias, fragment.sql, fragment.params)

    def apply_joins(self, joins: Iterable[str | Mapping[str, Any]]) -> JoinEngine:
        """Apply several joins given as names or ``{name, conditions, params}`` maps."""
        for join in joins:
            if isinstance(join, Mapping):
                name = self._entry_key(join)
                if name is not None:
                    self.apply_join(name, join.get("conditions"), *join.get("params", ()))
            else:
                self.apply_join(join)
        return self

    def apply_conditional_join(
        self, name: str, condition: Any, extra_condition: str | None = None, *params: Any
    ) -> JoinEngine:
        """Apply ``name`` only when ``condition`` is truthy."""
        if condition:
            self.apply_join(name, extra_condition, *params)
        return self

    # ------------------------------------------------------------------
    # Direct constructors
    # ------------------------------------------------------------------

    def _direct(
        self,
        join_type: str,
        table: str,
        on: str | None,
        params: Sequence[Any],
        alias: str | None = None,
        **details: Any,
    ) -> JoinEngine:
        try:
            check_identifier(table)
            if alias is not None and (not is_identifier(alias) or "." in alias):
                raise InvalidIdentifier(alias)
            if join_type == "CROSS":
                record = JoinRecord("CROSS", table, alias)
            else:
                fragment = self.state.bind(on, params)
                record = JoinRecord(join_type, table, alias, fragment.sql, fragment.params)
        except BuilderError as exc:
            self.record_error(exc)
            return self
        if self.state.add_join(record):
            self._log_join(table, record, **details)
        return self

    def _log_join(self, name: str, record: JoinRecord, **details: Any) -> None:
        self.log_operation(
            name,
            table=record.table,
            alias=record.alias,
            type=record.type,
            on=record.on,
            **details,
        )

    def apply_inner_join(self, table: str, on: str, *params: Any, alias: str | None = None) -> JoinEngine:
        return self._direct("INNER", table, on, params, alias)

    def apply_left_join(self, table: str, on: str, *params: Any, alias: str | None = None) -> JoinEngine:
        return self._direct("LEFT", table, on, params, alias)

    def apply_right_join(self, table: str, on: str, *params: Any, alias: str | None = None) -> JoinEngine:
        return self._direct("RIGHT", table, on, params, alias)

    def apply_full_join(self, table: str, on: str, *params: Any, alias: str | None = None) -> JoinEngine:
        return self._direct("FULL", table, on, params, alias)

    def apply_cross_join(self, table: str, alias: str | None = None) -> JoinEngine:
        return self._direct("CROSS", table, None, (), alias)

    def apply_self_join(
        self, alias: str, on: str, *params: Any, type: str = "inner"
    ) -> JoinEngine:
        """Join the base table to itself under ``alias``."""
        return self._direct(
            self._join_type(type),
            self.state.relation.table_name,
            on,
            params,
            alias,
            self_join=True,
        )

    def apply_multiple_joins(
        self, tables: Sequence[str], common_key: str = "id", type: str = "inner"
    ) -> JoinEngine:
        """Join each table via the ``<base>.<singular>_id = <table>.<common_key>`` convention."""
        if not tables:
            return self
        if not is_identifier(common_key) or "." in common_key:
            self.record_error(InvalidIdentifier(common_key))
            return self
        join_type = self._join_type(type)
        base = self.state.table_name
        for table in tables:
            if not is_identifier(table) or "." in table:
                self.record_error(InvalidIdentifier(table))
                continue
            on = f"{base}.{singularize(table)}_id = {table}.{common_key}"
            self._direct(join_type, table, on, ())
        return self

    def apply_many_to_many_join(
        self,
        join_table: str,
        target_table: str,
        source_fk: str,
        target_fk: str,
        type: str = "inner",
    ) -> JoinEngine:
        """Two-hop join through a junction table."""
        join_type = self._join_type(type)
        names = (join_table, target_table, source_fk, target_fk)
        bad = [n for n in names if not is_identifier(n) or "." in n]
        if bad:
            self.record_error(InvalidIdentifier(bad[0]))
            return self
        base_key = f"{self.state.table_name}.{self.state.relation.primary_key}"
        self._direct(join_type, join_table, f"{base_key} = {join_table}.{source_fk}", ())
        self._direct(
            join_type, target_table, f"{join_table}.{target_fk} = {target_table}.id", ()
        )
        return self

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def available_joins(self) -> list[str]:
        return self._available()

    def current_joins(self) -> list[AppliedOperation]:
        return self._current()
