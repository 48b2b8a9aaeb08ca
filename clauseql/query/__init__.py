"""ClauseQL query layer: the QueryState and the engines that mutate it."""
from clauseql.query.filter import FilterEngine
from clauseql.query.group import GroupingEngine
from clauseql.query.having import HavingEngine
from clauseql.query.join import JoinEngine
from clauseql.query.pagination import PageInfo, PaginationEngine
from clauseql.query.sort import SortEngine
from clauseql.query.state import AppliedOperation, QueryState
from clauseql.query.union import UnionEngine

__all__ = [
    "AppliedOperation",
    "QueryState",
    "FilterEngine",
    "SortEngine",
    "JoinEngine",
    "GroupingEngine",
    "HavingEngine",
    "PaginationEngine",
    "PageInfo",
    "UnionEngine",
]
