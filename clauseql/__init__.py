"""ClauseQL – Composable, parameterized SQL query building.

Register Definitions. Apply Them. Never Interpolate Values.

Public API
----------
``QueryState``
    The clause accumulator over one :class:`Relation`; ``where``,
    ``order_by``, ``join`` ... then ``to_sql()`` or ``all()``.

``FilterEngine``, ``SortEngine``, ``JoinEngine``, ``GroupingEngine``,
``HavingEngine``
    Named, reusable clause definitions applied by name or from request
    parameters.

``PaginationEngine``, ``UnionEngine``
    Page / keyset pagination and UNION composition.

Re-exported types
-----------------
``QueryConfig``, ``CompiledQuery``, ``Relation`` adapters and all error
classes.

Extensibility
-------------
New dialects can be registered via::

    from clauseql.compile.registry import DialectFactory

    @DialectFactory.register("duckdb")
    class DuckDBDialect(DialectStrategy):
        ...

After registration, any ``QueryConfig(dialect="duckdb")`` picks it up.
"""

from __future__ import annotations

from clauseql.compile.base import CompiledQuery, DialectStrategy
from clauseql.compile.mysql import MySQLDialect
from clauseql.compile.postgres import PostgresDialect
from clauseql.compile.registry import DialectFactory
from clauseql.compile.sqlite import SQLiteDialect
from clauseql.errors import (
    BuilderError,
    ClauseQLError,
    ConfigurationError,
    DefinitionNotFound,
    DuplicateDefinition,
    InvalidArgument,
    InvalidDirection,
    InvalidFunction,
    InvalidIdentifier,
    InvalidOperator,
    InvalidUnionType,
    JoinTypeFallback,
    UnsupportedFeature,
    ValidationFailed,
)
from clauseql.query.filter import FilterEngine
from clauseql.query.group import GroupingEngine
from clauseql.query.having import HavingEngine
from clauseql.query.join import JoinEngine
from clauseql.query.pagination import PageInfo, PaginationEngine
from clauseql.query.sort import SortEngine
from clauseql.query.state import AppliedOperation, QueryState
from clauseql.query.union import UnionEngine
from clauseql.relation import DBAPIRelation, RecordNotFound, Relation, SQLAlchemyRelation
from clauseql.schema.config import QueryConfig, QueryConfigBuilder, Relationship

# ---------------------------------------------------------------------------
# Register built-in dialects with DialectFactory
# ---------------------------------------------------------------------------

DialectFactory.register_class("sqlite", SQLiteDialect)
DialectFactory.register_class("postgres", PostgresDialect)
DialectFactory.register_class("mysql", MySQLDialect)

__all__ = [
    # Core
    "QueryState",
    "AppliedOperation",
    # Engines
    "FilterEngine",
    "SortEngine",
    "JoinEngine",
    "GroupingEngine",
    "HavingEngine",
    "PaginationEngine",
    "PageInfo",
    "UnionEngine",
    # Configuration
    "QueryConfig",
    "QueryConfigBuilder",
    "Relationship",
    # Relations
    "Relation",
    "DBAPIRelation",
    "SQLAlchemyRelation",
    "RecordNotFound",
    # Compilation
    "CompiledQuery",
    "DialectStrategy",
    "DialectFactory",
    "SQLiteDialect",
    "PostgresDialect",
    "MySQLDialect",
    # Errors
    "ClauseQLError",
    "ConfigurationError",
    "BuilderError",
    "DefinitionNotFound",
    "DuplicateDefinition",
    "ValidationFailed",
    "InvalidArgument",
    "InvalidOperator",
    "InvalidDirection",
    "InvalidFunction",
    "InvalidIdentifier",
    "InvalidUnionType",
    "UnsupportedFeature",
    "JoinTypeFallback",
]
