"""ClauseQL schema models: QueryConfig and named clause definitions."""
from clauseql.schema.config import QueryConfig, QueryConfigBuilder, Relationship
from clauseql.schema.definitions import (
    FilterDefinition,
    GroupDefinition,
    HavingDefinition,
    JoinDefinition,
    SortDefinition,
)

__all__ = [
    "QueryConfig",
    "QueryConfigBuilder",
    "Relationship",
    "FilterDefinition",
    "GroupDefinition",
    "HavingDefinition",
    "JoinDefinition",
    "SortDefinition",
]
