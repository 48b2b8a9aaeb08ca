"""ClauseQL compilation layer: clause records → dialect-rendered SQL."""
from clauseql.compile.base import CompiledQuery, DialectStrategy
from clauseql.compile.mysql import MySQLDialect
from clauseql.compile.postgres import PostgresDialect
from clauseql.compile.predicates import Fragment, PredicateBuilder
from clauseql.compile.registry import DialectFactory
from clauseql.compile.sqlite import SQLiteDialect

__all__ = [
    "CompiledQuery",
    "DialectStrategy",
    "DialectFactory",
    "Fragment",
    "PredicateBuilder",
    "MySQLDialect",
    "PostgresDialect",
    "SQLiteDialect",
]
