"""Shared machinery for the definition-driven engines.

Every engine wraps one :class:`~clauseql.query.state.QueryState`, keeps a
``name -> definition`` registry of frozen pydantic models, and mutates the
state in place.  This module holds what they have in common:

- definition registration (duplicates and invalid definitions are recorded,
  never raised);
- lookup with :class:`~clauseql.errors.DefinitionNotFound` recording;
- the ``available_*`` / ``current_*`` introspection primitives;
- delegation of terminals (``to_sql``, ``execute``, ``count`` ...) to the
  wrapped state.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from copy import copy as shallow_copy
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from clauseql.compile.base import CompiledQuery, DialectStrategy
from clauseql.errors import BuilderError, DefinitionNotFound, DuplicateDefinition, InvalidArgument
from clauseql.query.state import AppliedOperation, QueryState
from clauseql.relation import Row
from clauseql.schema.config import QueryConfig

logger = logging.getLogger(__name__)

D = TypeVar("D", bound=BaseModel)


class QueryEngine(Generic[D]):
    """Base class for Filter/Sort/Join/Grouping/Having engines.

    Args:
        state: The query state this engine mutates.
    """

    #: Concern name used in error details and the operation log.
    kind: ClassVar[str] = "definition"
    #: Definition model registered by this engine.
    definition_model: ClassVar[type[BaseModel]]

    def __init__(self, state: QueryState) -> None:
        self.state = state
        self._definitions: dict[str, D] = {}

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def config(self) -> QueryConfig:
        return self.state.config

    @property
    def dialect(self) -> DialectStrategy:
        return self.state.dialect

    @property
    def errors(self) -> list[BuilderError]:
        return self.state.errors

    @property
    def warnings(self) -> list[BuilderError]:
        return self.state.warnings

    def record_error(self, error: BuilderError) -> None:
        self.state.record_error(error)

    def log_operation(self, name: str, **details: Any) -> None:
        self.state.log_operation(self.kind, name, **details)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def _register(self, name: str, **attributes: Any) -> D | None:
        if name in self._definitions:
            self.record_error(DuplicateDefinition(self.kind, name))
            return None
        try:
            definition = self.definition_model(name=name, **attributes)
        except ValidationError as exc:
            self.record_error(
                InvalidArgument(
                    f"Invalid {self.kind} definition '{name}'.",
                    name=name,
                    problems=[error["msg"] for error in exc.errors()],
                )
            )
            return None
        self._definitions[name] = definition
        logger.debug("defined %s '%s'", self.kind, name)
        return definition

    def _define_many(
        self, definitions: Mapping[str, Mapping[str, Any]], define: Callable[..., Any]
    ) -> None:
        for name, options in definitions.items():
            define(name, **dict(options))

    def _entry_key(self, entry: Mapping[str, Any], key: str = "name") -> Any:
        """Return ``entry[key]``; a missing key is recorded and gives ``None``."""
        if key not in entry:
            self.record_error(
                InvalidArgument(
                    f"{self.kind.capitalize()} entry is missing '{key}'.",
                    entry=dict(entry),
                )
            )
            return None
        return entry[key]

    def _lookup(self, name: str) -> D | None:
        definition = self._definitions.get(name)
        if definition is None:
            self.record_error(DefinitionNotFound(self.kind, name, list(self._definitions)))
        return definition

    def definition(self, name: str) -> D | None:
        """Return the registered definition, or ``None``."""
        return self._definitions.get(name)

    def _available(self) -> list[str]:
        return list(self._definitions)

    def _current(self) -> list[AppliedOperation]:
        return [op for op in self.state.operations if op.kind == self.kind]

    # ------------------------------------------------------------------
    # Delegated terminals
    # ------------------------------------------------------------------

    def compile(self) -> CompiledQuery:
        return self.state.compile()

    def to_sql(self) -> CompiledQuery:
        return self.state.to_sql()

    def explain(self) -> list[Row]:
        return self.state.explain()

    def execute(self) -> list[Row]:
        return self.state.execute()

    def all(self) -> list[Row]:
        return self.state.all()

    def first(self) -> Row | None:
        return self.state.first()

    def last(self) -> Row | None:
        return self.state.last()

    def count(self, column: str = "*") -> int:
        return self.state.count(column)

    def reset(self) -> QueryEngine[D]:
        """Reset the wrapped state; registered definitions are kept."""
        self.state.reset()
        return self

    def copy(self) -> QueryEngine[D]:
        """Return an engine over a copy of the state sharing the definitions."""
        clone = shallow_copy(self)
        clone.state = self.state.copy()
        clone._definitions = dict(self._definitions)
        return clone
