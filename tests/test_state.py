"""Unit tests for QueryState: clause accumulation, rendering and terminals."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from clauseql import QueryConfig, QueryState, RecordNotFound
from clauseql.errors import (
    DefinitionNotFound,
    InvalidArgument,
    InvalidDirection,
    InvalidIdentifier,
    JoinTypeFallback,
    UnsupportedFeature,
)
from tests.fixtures import RecordingRelation

# ---------------------------------------------------------------------------
# Clause order
# ---------------------------------------------------------------------------


def test_clause_order_is_fixed_regardless_of_call_order(state: QueryState):
    (
        state.offset(10)
        .limit(5)
        .order_by("price", "desc")
        .having("COUNT(*) > ?", 2)
        .group_by("category_id")
        .where("status = ?", "active")
        .join("inner", "categories", None, "products.category_id = categories.id")
    )
    sql, params = state.to_sql()
    assert sql == (
        "SELECT * FROM products"
        " INNER JOIN categories ON products.category_id = categories.id"
        " WHERE status = ?"
        " GROUP BY category_id"
        " HAVING COUNT(*) > ?"
        " ORDER BY price DESC"
        " LIMIT 5 OFFSET 10"
    )
    assert params == ["active", 2]


def test_empty_state_selects_everything(state: QueryState):
    assert state.to_sql() == ("SELECT * FROM products", [])


# ---------------------------------------------------------------------------
# WHERE
# ---------------------------------------------------------------------------


def test_where_marker_mismatch_is_recorded_and_skipped(state: QueryState):
    state.where("price > ?")
    assert len(state.errors) == 1
    assert isinstance(state.errors[0], InvalidArgument)
    assert state.to_sql().sql == "SELECT * FROM products"


def test_where_with_empty_condition_is_recorded(state: QueryState):
    state.where("   ")
    assert state.errors[0].code == "INVALID_ARGUMENT"


def test_or_where_groups_everything_before_it(state: QueryState):
    state.where("a = ?", 1).where("b = ?", 2).or_where("c = ?", 3)
    assert state.compile() == ("SELECT * FROM products WHERE (a = ? AND b = ?) OR (c = ?)", [1, 2, 3])

    state.where("d = ?", 4)
    sql, params = state.compile()
    assert sql.endswith("WHERE ((a = ? AND b = ?) OR (c = ?)) AND d = ?")
    assert params == [1, 2, 3, 4]


def test_not_where_negates_condition(state: QueryState):
    state.not_where("status = ?", "archived")
    assert state.to_sql() == ("SELECT * FROM products WHERE NOT (status = ?)", ["archived"])


def test_where_in_empty_lists(state: QueryState):
    state.where_in("id", []).where_not_in("id", [])
    assert state.to_sql().sql == "SELECT * FROM products WHERE 1 = 0 AND 1 = 1"


def test_where_in_binds_each_value(state: QueryState):
    state.where_in("id", [1, 2, 3], table="products")
    assert state.to_sql() == ("SELECT * FROM products WHERE products.id IN (?, ?, ?)", [1, 2, 3])


def test_where_like_wraps_value(state: QueryState):
    state.where_like("name", "wid")
    assert state.to_sql() == ("SELECT * FROM products WHERE name LIKE ?", ["%wid%"])


def test_where_null_and_between(state: QueryState):
    state.where_null("deleted_at").where_between("price", 10, 20)
    assert state.to_sql() == (
        "SELECT * FROM products WHERE deleted_at IS NULL AND price BETWEEN ? AND ?",
        [10, 20],
    )


def test_where_date_between_expands_to_whole_days(state: QueryState):
    state.where_date_between("created_at", "2024-01-01", date(2024, 1, 31))
    sql, params = state.to_sql()
    assert sql == "SELECT * FROM products WHERE created_at BETWEEN ? AND ?"
    assert params == [datetime(2024, 1, 1), datetime(2024, 1, 31, 23, 59, 59, 999999)]


def test_where_date_between_rejects_garbage(state: QueryState):
    state.where_date_between("created_at", "yesterday", "today")
    assert isinstance(state.errors[0], InvalidArgument)
    assert state.predicates == []


def test_where_operator_rejects_bad_identifier(state: QueryState):
    state.where_operator("price; DROP TABLE products", "eq", 1)
    assert isinstance(state.errors[0], InvalidIdentifier)


# ---------------------------------------------------------------------------
# JOIN
# ---------------------------------------------------------------------------


def test_identical_joins_are_applied_once(state: QueryState):
    on = "products.category_id = categories.id"
    state.join("left", "categories", None, on).join("left", "categories", None, on)
    assert state.to_sql().sql == f"SELECT * FROM products LEFT JOIN categories ON {on}"


def test_unknown_join_type_falls_back_to_inner(state: QueryState):
    state.join("sideways", "categories", "c", "products.category_id = c.id")
    assert state.to_sql().sql == (
        "SELECT * FROM products INNER JOIN categories AS c ON products.category_id = c.id"
    )
    assert len(state.warnings) == 1
    assert isinstance(state.warnings[0], JoinTypeFallback)
    assert state.errors == []


def test_cross_join_rejects_on_condition(state: QueryState):
    state.join("cross", "categories", None, "1 = 1")
    assert isinstance(state.errors[0], InvalidArgument)
    state.join("cross", "categories")
    assert state.to_sql().sql == "SELECT * FROM products CROSS JOIN categories"


def test_join_on_binds_params(state: QueryState):
    state.join("inner", "categories", None, "products.category_id = categories.id AND categories.name = ?", "Books")
    assert state.to_sql().params == ["Books"]


def test_join_association(products: RecordingRelation, shop_config: QueryConfig):
    state = QueryState(products, shop_config).join_association("category", "left")
    assert state.to_sql().sql == (
        "SELECT * FROM products LEFT JOIN categories ON products.category_id = categories.id"
    )


def test_join_association_unknown_name(state: QueryState):
    state.join_association("supplier")
    assert isinstance(state.errors[0], DefinitionNotFound)
    assert state.errors[0].details["kind"] == "relationship"


# ---------------------------------------------------------------------------
# GROUP BY / HAVING
# ---------------------------------------------------------------------------


def test_group_by_deduplicates(state: QueryState):
    state.group_by("status").group_by(["status", "category_id"])
    assert state.to_sql().sql == "SELECT * FROM products GROUP BY status, category_id"


def test_group_by_rejects_markers(state: QueryState):
    state.group_by("price > ?")
    assert state.groups == []
    assert isinstance(state.errors[0], InvalidArgument)


def test_having_raw_binds(state: QueryState):
    state.group_by("status").having_raw("SUM(price) BETWEEN ? AND ?", 100, 500)
    assert state.to_sql() == (
        "SELECT * FROM products GROUP BY status HAVING SUM(price) BETWEEN ? AND ?",
        [100, 500],
    )


# ---------------------------------------------------------------------------
# ORDER BY
# ---------------------------------------------------------------------------


def test_order_by_same_field_replaces_in_place(state: QueryState):
    state.order_by("price").order_by("name").order_by("price", "desc")
    assert state.to_sql().sql == "SELECT * FROM products ORDER BY price DESC, name ASC"


def test_order_by_invalid_direction(state: QueryState):
    state.order_by("price", "sideways")
    assert isinstance(state.errors[0], InvalidDirection)
    assert state.orders == []


def test_order_by_nulls_per_dialect(pg_state: QueryState, mysql_state: QueryState):
    pg_state.order_by("price", "desc", nulls="last")
    mysql_state.order_by("price", "desc", nulls="last")
    assert pg_state.to_sql().sql == "SELECT * FROM products ORDER BY price DESC NULLS LAST"
    assert mysql_state.to_sql().sql == (
        "SELECT * FROM products ORDER BY price IS NULL ASC, price DESC"
    )


def test_order_random_uses_dialect_function(state: QueryState, mysql_state: QueryState):
    assert state.order_random().to_sql().sql == "SELECT * FROM products ORDER BY RANDOM()"
    assert mysql_state.order_random().to_sql().sql == "SELECT * FROM products ORDER BY RAND()"


def test_order_by_raw_and_reorder(state: QueryState):
    state.order_by_raw("LENGTH(name)", "desc").order_by_raw("ABS(price - ?)", None, 50)
    assert state.to_sql() == (
        "SELECT * FROM products ORDER BY LENGTH(name) DESC, ABS(price - ?)",
        [50],
    )
    state.reorder()
    assert state.to_sql().sql == "SELECT * FROM products"


def test_order_by_multiple_shapes(state: QueryState):
    state.order_by_multiple(["name", ("price", "desc"), {"field": "id", "direction": "asc"}])
    assert state.to_sql().sql == "SELECT * FROM products ORDER BY name ASC, price DESC, id ASC"


@pytest.mark.parametrize("entry", [("price", "asc", None, "extra"), (), 42])
def test_order_by_multiple_skips_malformed_entries(state: QueryState, entry):
    state.order_by_multiple([entry, "name"])
    assert state.to_sql().sql == "SELECT * FROM products ORDER BY name ASC"
    assert len(state.errors) == 1
    assert isinstance(state.errors[0], InvalidArgument)


def test_order_by_nulls_must_be_first_or_last(pg_state: QueryState):
    pg_state.order_by("price", "desc", nulls="middle").order_by("id", nulls="FIRST")
    assert pg_state.to_sql().sql == "SELECT * FROM products ORDER BY id ASC NULLS FIRST"
    assert isinstance(pg_state.errors[0], InvalidArgument)


# ---------------------------------------------------------------------------
# SELECT / DISTINCT / LIMIT / OFFSET
# ---------------------------------------------------------------------------


def test_select_columns_and_raw(state: QueryState):
    state.select(["id", "name"]).select_raw("price * ? AS gross", 1.2)
    assert state.to_sql() == ("SELECT id, name, price * ? AS gross FROM products", [1.2])


def test_select_rejects_malformed_column(state: QueryState):
    state.select("name, password")
    assert isinstance(state.errors[0], InvalidIdentifier)
    assert state.projections == []


def test_distinct(state: QueryState):
    assert state.select("status").distinct().to_sql().sql == "SELECT DISTINCT status FROM products"


def test_distinct_on_is_dialect_gated(state: QueryState, pg_state: QueryState):
    state.distinct_on("category_id")
    assert isinstance(state.errors[0], UnsupportedFeature)

    pg_state.distinct_on("category_id").order_by("category_id")
    assert pg_state.to_sql().sql == (
        "SELECT DISTINCT ON (category_id) * FROM products ORDER BY category_id ASC"
    )


@pytest.mark.parametrize("bad", [-1, "5", 2.5, True])
def test_limit_rejects_non_natural_numbers(state: QueryState, bad):
    state.limit(bad)
    assert state.limit_value is None
    assert isinstance(state.errors[0], InvalidArgument)


def test_offset_without_limit_per_dialect(state: QueryState, pg_state: QueryState, mysql_state: QueryState):
    assert state.offset(10).to_sql().sql == "SELECT * FROM products LIMIT -1 OFFSET 10"
    assert pg_state.offset(10).to_sql().sql == "SELECT * FROM products OFFSET 10"
    assert mysql_state.offset(10).to_sql().sql == (
        "SELECT * FROM products LIMIT 18446744073709551615 OFFSET 10"
    )


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def test_postgres_render_uses_format_placeholders(pg_state: QueryState):
    pg_state.where("price > ?", 10).where_like("name", "wid")
    assert pg_state.compile().sql == "SELECT * FROM products WHERE price > ? AND name LIKE ?"
    assert pg_state.to_sql() == (
        "SELECT * FROM products WHERE price > %s AND name LIKE %s",
        [10, "%wid%"],
    )


def test_postgres_render_escapes_literal_percent(pg_state: QueryState):
    pg_state.where("name LIKE 'a%'").where("note = '?'")
    assert pg_state.to_sql().sql == "SELECT * FROM products WHERE name LIKE 'a%%' AND note = '?'"


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def test_reset_matches_fresh_state(products: RecordingRelation, state: QueryState):
    state.where("price > ?", 1).order_by("bad-name").limit(3).join_association("nope")
    assert state.errors
    state.reset()
    assert state.to_sql() == QueryState(products).to_sql()
    assert state.errors == []
    assert state.warnings == []
    assert state.operations == []


def test_copy_is_independent(state: QueryState):
    state.where("status = ?", "active").order_by("price")
    before = state.to_sql()
    clone = state.copy()
    clone.where("price > ?", 5).order_by("price", "desc").limit(2).group_by("status")
    assert state.to_sql() == before
    assert clone.to_sql().sql == (
        "SELECT * FROM products WHERE status = ? AND price > ? GROUP BY status ORDER BY price DESC LIMIT 2"
    )


# ---------------------------------------------------------------------------
# Terminals
# ---------------------------------------------------------------------------


def test_first_orders_by_primary_key(products: RecordingRelation, state: QueryState):
    products.rows = [{"id": 1}]
    assert state.first() == {"id": 1}
    assert products.last_sql == "SELECT * FROM products ORDER BY products.id ASC LIMIT 1"
    assert state.limit_value is None


def test_last_reverses_existing_order(products: RecordingRelation, state: QueryState):
    state.order_by("price").order_by("name", "desc")
    assert state.last() is None
    assert products.last_sql == "SELECT * FROM products ORDER BY price DESC, name ASC LIMIT 1"
    assert state.to_sql().sql == "SELECT * FROM products ORDER BY price ASC, name DESC"


def test_last_without_order_uses_primary_key(products: RecordingRelation, state: QueryState):
    state.last()
    assert products.last_sql == "SELECT * FROM products ORDER BY products.id DESC LIMIT 1"


def test_find_raises_record_not_found(products: RecordingRelation, state: QueryState):
    with pytest.raises(RecordNotFound) as exc_info:
        state.find(7)
    assert exc_info.value.key == 7
    assert products.statements[-1] == ("SELECT * FROM products WHERE products.id = ? LIMIT 1", [7])


def test_find_by_maps_values_to_operators(products: RecordingRelation, state: QueryState):
    state.find_by(status="active", category_id=[1, 2], deleted_at=None)
    assert products.statements[-1] == (
        "SELECT * FROM products WHERE products.status = ? AND products.category_id IN (?, ?)"
        " AND products.deleted_at IS NULL LIMIT 1",
        ["active", 1, 2],
    )


def test_count_direct_and_wrapped(products: RecordingRelation, state: QueryState):
    products.rows = [{"n": 3}]
    state.where("status = ?", "active")
    assert state.count() == 3
    assert products.statements[-1] == ("SELECT COUNT(*) FROM products WHERE status = ?", ["active"])

    state.group_by("category_id").order_by("category_id")
    state.count()
    assert products.last_sql == (
        "SELECT COUNT(*) FROM (SELECT * FROM products WHERE status = ? GROUP BY category_id)"
        " AS count_subquery"
    )


def test_scalar_aggregates_ignore_paging(products: RecordingRelation, state: QueryState):
    products.rows = [{"total": 42.0}]
    state.where("status = ?", "active").order_by("price").limit(5)
    assert state.sum("price") == 42.0
    assert products.last_sql == "SELECT SUM(price) FROM products WHERE status = ?"
    state.max("price")
    assert products.last_sql == "SELECT MAX(price) FROM products WHERE status = ?"


def test_exists(products: RecordingRelation, state: QueryState):
    products.rows = [{"record_exists": 1}]
    assert state.where("id = ?", 1).exists() is True
    assert products.last_sql == (
        "SELECT EXISTS(SELECT * FROM products WHERE id = ? LIMIT 1) AS record_exists"
    )


def test_pluck(products: RecordingRelation, state: QueryState):
    products.rows = [{"name": "a"}, {"name": "b"}]
    assert state.pluck("name") == ["a", "b"]
    assert products.last_sql == "SELECT name FROM products"


def test_collaborator_errors_propagate(state: QueryState):
    class BrokenRelation(RecordingRelation):
        def fetch_all(self, sql, params):
            raise RuntimeError("connection lost")

    broken = QueryState(BrokenRelation())
    with pytest.raises(RuntimeError, match="connection lost"):
        broken.all()
    assert broken.errors == []
