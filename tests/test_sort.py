"""Unit tests for SortEngine."""

from __future__ import annotations

import pytest

from clauseql import ConfigurationError, JoinEngine, QueryConfig, QueryState, SortEngine
from clauseql.errors import DefinitionNotFound, InvalidArgument, InvalidDirection, InvalidFunction
from tests.fixtures import RecordingRelation

CATEGORY_JOIN = "INNER JOIN categories ON products.category_id = categories.id"


def _sorts(state: QueryState, **kwargs) -> SortEngine:
    engine = SortEngine(state, **kwargs)
    engine.define_sorts(
        {
            "price": {},
            "newest": {"field": "created_at", "direction": "desc"},
            "name": {"table": "products"},
        }
    )
    return engine


# ---------------------------------------------------------------------------
# Named sorts
# ---------------------------------------------------------------------------


def test_apply_sort_uses_definition_direction(state: QueryState):
    engine = _sorts(state)
    engine.apply_sort("newest").apply_sort("name")
    assert engine.to_sql().sql == "SELECT * FROM products ORDER BY created_at DESC, products.name ASC"


def test_reapplying_a_sort_replaces_it(state: QueryState):
    engine = _sorts(state)
    engine.apply_sort("price").apply_sort("newest").apply_sort("price", "desc")
    assert engine.to_sql().sql == "SELECT * FROM products ORDER BY price DESC, created_at DESC"


def test_invalid_direction_is_recorded(state: QueryState):
    engine = _sorts(state)
    engine.apply_sort("price", "upwards")
    assert isinstance(engine.errors[0], InvalidDirection)
    assert state.orders == []


def test_unknown_sort_is_recorded(state: QueryState):
    engine = _sorts(state)
    engine.apply_sort("rating")
    assert isinstance(engine.errors[0], DefinitionNotFound)
    assert engine.errors[0].details["kind"] == "sort"


def test_nulls_placement_is_dialect_specific(pg_state: QueryState, mysql_state: QueryState):
    for st in (pg_state, mysql_state):
        engine = SortEngine(st)
        engine.define_sort("price", nulls="last")
        engine.apply_sort("price", "desc")
    assert pg_state.to_sql().sql.endswith("ORDER BY price DESC NULLS LAST")
    assert mysql_state.to_sql().sql.endswith("ORDER BY price IS NULL ASC, price DESC")


def test_custom_sql_sort(state: QueryState):
    engine = SortEngine(state)
    engine.define_sort("popularity", custom_sql="(views + likes)")
    engine.apply_sort("popularity", "desc")
    assert engine.to_sql().sql == "SELECT * FROM products ORDER BY (views + likes) DESC"


# ---------------------------------------------------------------------------
# Sorts that need a join
# ---------------------------------------------------------------------------


def test_sort_join_resolved_through_join_engine(state: QueryState):
    joins = JoinEngine(state)
    joins.define_join("categories", foreign_key="category_id")
    engine = SortEngine(state, join_engine=joins)
    engine.define_sort("category_name", field="name", table="categories", join="categories")
    engine.apply_sort("category_name").apply_sort("category_name", "desc")
    assert engine.to_sql().sql == f"SELECT * FROM products {CATEGORY_JOIN} ORDER BY categories.name DESC"
    assert len(joins.current_joins()) == 1


def test_sort_join_resolved_through_relationships(products: RecordingRelation, shop_config: QueryConfig):
    engine = SortEngine(QueryState(products, shop_config))
    engine.define_sort("category_name", field="name", table="categories", join="category")
    engine.apply_sort("category_name")
    assert engine.to_sql().sql == f"SELECT * FROM products {CATEGORY_JOIN} ORDER BY categories.name ASC"


def test_sort_with_unresolvable_join_is_skipped(state: QueryState):
    engine = SortEngine(state)
    engine.define_sort("supplier_name", field="name", table="suppliers", join="supplier")
    engine.apply_sort("supplier_name")
    assert state.orders == []
    assert state.joins == []
    assert isinstance(engine.errors[0], DefinitionNotFound)


def test_association_sort(products: RecordingRelation, shop_config: QueryConfig):
    engine = SortEngine(QueryState(products, shop_config))
    engine.apply_association_sort("category", "name", "desc")
    assert engine.to_sql().sql == f"SELECT * FROM products {CATEGORY_JOIN} ORDER BY categories.name DESC"
    assert engine.current_sorts()[0].name == "category_name"


# ---------------------------------------------------------------------------
# Request-driven sorts
# ---------------------------------------------------------------------------


def test_sort_from_params_prefix_and_override(state: QueryState):
    engine = _sorts(state)
    engine.apply_sort_from_params({"sort": "-price"})
    assert engine.to_sql().sql == "SELECT * FROM products ORDER BY price DESC"

    engine.apply_sort_from_params({"sort": "-price", "direction": "asc"})
    assert engine.to_sql().sql == "SELECT * FROM products ORDER BY price ASC"


def test_sort_from_params_falls_back_to_default(state: QueryState):
    engine = _sorts(state)
    engine.set_default_sort("newest")
    engine.apply_sort_from_params({"sort": ""})
    assert engine.to_sql().sql == "SELECT * FROM products ORDER BY created_at DESC"


def test_sort_from_params_without_default_is_noop(state: QueryState):
    engine = _sorts(state)
    engine.apply_sort_from_params({})
    assert engine.to_sql().sql == "SELECT * FROM products"
    assert engine.errors == []


def test_sorts_from_params_string_list_and_mapping(products: RecordingRelation):
    from_string = _sorts(QueryState(products))
    from_string.apply_sorts_from_params({"sorts": "price, -newest"})
    assert from_string.to_sql().sql == "SELECT * FROM products ORDER BY price ASC, created_at DESC"

    from_list = _sorts(QueryState(products))
    from_list.apply_sorts_from_params({"sorts": ["-price", {"name": "name", "direction": "desc"}]})
    assert from_list.to_sql().sql == "SELECT * FROM products ORDER BY price DESC, products.name DESC"

    from_mapping = _sorts(QueryState(products))
    from_mapping.apply_sorts_from_params({"sorts": {"newest": "asc", "price": "desc"}})
    assert from_mapping.to_sql().sql == "SELECT * FROM products ORDER BY created_at ASC, price DESC"


# ---------------------------------------------------------------------------
# Computed orderings
# ---------------------------------------------------------------------------


def test_multiple_fields_sort(state: QueryState):
    engine = SortEngine(state)
    engine.apply_multiple_fields_sort(
        ["status", {"field": "price", "direction": "desc"}, {"field": "id", "direction": "bad"}]
    )
    assert engine.to_sql().sql == "SELECT * FROM products ORDER BY status ASC, price DESC"
    assert isinstance(engine.errors[0], InvalidDirection)


def test_raw_sort_binds_params(state: QueryState):
    engine = SortEngine(state)
    engine.apply_raw_sort("ABS(price - ?)", 50)
    assert engine.to_sql() == ("SELECT * FROM products ORDER BY ABS(price - ?)", [50])


def test_random_sort(mysql_state: QueryState):
    engine = SortEngine(mysql_state)
    engine.apply_random_sort()
    assert engine.to_sql().sql == "SELECT * FROM products ORDER BY RAND()"


def test_aggregate_sort(state: QueryState):
    engine = SortEngine(state)
    state.group_by("category_id")
    engine.apply_aggregate_sort("count", "id", "desc")
    engine.apply_aggregate_sort("median", "price")
    assert engine.to_sql().sql == "SELECT * FROM products GROUP BY category_id ORDER BY COUNT(id) DESC"
    assert isinstance(engine.errors[0], InvalidFunction)


def test_case_sort_binds_values(state: QueryState):
    engine = SortEngine(state)
    engine.apply_case_sort(
        [("status = 'active'", 1), ("status = 'inactive'", 2)], else_value=3
    )
    assert engine.to_sql() == (
        "SELECT * FROM products ORDER BY CASE WHEN status = 'active' THEN ?"
        " WHEN status = 'inactive' THEN ? ELSE ? END ASC",
        [1, 2, 3],
    )


def test_case_sort_rejects_markers_in_conditions(state: QueryState):
    engine = SortEngine(state)
    engine.apply_case_sort([("status = ?", 1)])
    assert state.orders == []
    assert engine.errors[0].code == "INVALID_ARGUMENT"


def test_priority_sort_params_follow_where_params(state: QueryState):
    engine = SortEngine(state)
    state.where("price > ?", 5)
    engine.apply_priority_sort("status", ["featured", "active"])
    assert engine.to_sql() == (
        "SELECT * FROM products WHERE price > ?"
        " ORDER BY CASE WHEN status = ? THEN 0 WHEN status = ? THEN 1 ELSE 2 END ASC",
        [5, "featured", "active"],
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def test_copy_rebinds_join_engine(state: QueryState):
    joins = JoinEngine(state)
    joins.define_join("categories", foreign_key="category_id")
    engine = SortEngine(state, join_engine=joins)
    engine.define_sort("category_name", field="name", table="categories", join="categories")

    clone = engine.copy()
    clone.apply_sort("category_name")
    assert state.joins == []
    assert state.orders == []
    assert clone.to_sql().sql == f"SELECT * FROM products {CATEGORY_JOIN} ORDER BY categories.name ASC"


def test_join_engine_must_share_the_state(products: RecordingRelation):
    other = JoinEngine(QueryState(products))
    with pytest.raises(ConfigurationError):
        SortEngine(QueryState(products), join_engine=other)


def test_apply_sorts_skips_entries_without_a_name(state: QueryState):
    engine = SortEngine(state)
    engine.define_sort("price")
    engine.apply_sorts([{"direction": "desc"}, {"name": "price", "direction": "desc"}])
    assert engine.to_sql().sql == "SELECT * FROM products ORDER BY price DESC"
    assert len(engine.errors) == 1
    assert isinstance(engine.errors[0], InvalidArgument)
