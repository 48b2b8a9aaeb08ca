"""Unit tests for the compile layer: dialects, predicates and identifiers."""

from __future__ import annotations

import pytest

from clauseql import (
    ConfigurationError,
    DialectFactory,
    MySQLDialect,
    PostgresDialect,
    QueryConfig,
    QueryState,
    SQLiteDialect,
)
from clauseql.compile.base import count_markers, split_markers
from clauseql.compile.identifiers import check_identifier, qualify, singularize
from clauseql.compile.predicates import Fragment, PredicateBuilder, as_bool, is_blank
from clauseql.errors import InvalidArgument, InvalidIdentifier, InvalidOperator
from tests.fixtures import RecordingRelation

# ---------------------------------------------------------------------------
# Marker handling
# ---------------------------------------------------------------------------


def test_markers_inside_quotes_are_not_counted():
    assert count_markers("a = ? AND b = '?' AND \"c?\" = ?") == 2
    assert split_markers("x = ?") == ["x = ", ""]
    assert count_markers("COUNT(*) > 0") == 0


def test_sqlite_render_is_identity():
    sql = "SELECT * FROM products WHERE name LIKE ? AND note = '50%'"
    assert SQLiteDialect().render(sql) == sql


@pytest.mark.parametrize("dialect", [PostgresDialect(), MySQLDialect()])
def test_format_style_render_doubles_percent(dialect):
    sql = "SELECT strftime('%Y', created_at) FROM products WHERE a = ? AND b = 'x?'"
    assert dialect.render(sql) == (
        "SELECT strftime('%%Y', created_at) FROM products WHERE a = %s AND b = 'x?'"
    )


# ---------------------------------------------------------------------------
# Dialect hooks
# ---------------------------------------------------------------------------


class TestDateTrunc:
    def test_sqlite(self):
        d = SQLiteDialect()
        assert d.date_trunc("created_at", "month") == "strftime('%Y-%m', created_at)"
        assert d.date_trunc("created_at", "day_of_week") == "strftime('%w', created_at)"

    def test_postgres(self):
        d = PostgresDialect()
        assert d.date_trunc("created_at", "week") == "DATE_TRUNC('week', created_at)"
        assert d.date_trunc("created_at", "day_of_week") == "EXTRACT(DOW FROM created_at)"

    def test_mysql(self):
        d = MySQLDialect()
        assert d.date_trunc("created_at", "day") == "DATE(created_at)"
        assert d.date_trunc("created_at", "year") == "YEAR(created_at)"

    def test_unknown_unit_returns_expression(self):
        for d in (SQLiteDialect(), PostgresDialect(), MySQLDialect()):
            assert d.date_trunc("created_at", "decade") == "created_at"


class TestLimitOffset:
    def test_both_values(self):
        assert SQLiteDialect().limit_offset(10, 20) == ["LIMIT 10", "OFFSET 20"]

    def test_offset_without_limit(self):
        assert SQLiteDialect().limit_offset(None, 5) == ["LIMIT -1", "OFFSET 5"]
        assert MySQLDialect().limit_offset(None, 5) == ["LIMIT 18446744073709551615", "OFFSET 5"]
        assert PostgresDialect().limit_offset(None, 5) == ["OFFSET 5"]

    def test_neither(self):
        assert PostgresDialect().limit_offset(None, None) == []


class TestMySQLDialect:
    def test_nulls_ordering_is_emulated(self):
        assert MySQLDialect().order_nulls("price", "desc", "last") == "price IS NULL ASC, price DESC"
        assert MySQLDialect().order_nulls("price", "asc", "first") == "price IS NULL DESC, price ASC"

    def test_random_and_like(self):
        d = MySQLDialect()
        assert d.random_function() == "RAND()"
        assert d.like_operator("ILIKE") == "LIKE"
        assert d.supports_distinct_on is False


def test_explain_prefix():
    assert SQLiteDialect().explain("SELECT 1") == "EXPLAIN QUERY PLAN SELECT 1"
    assert PostgresDialect().explain("SELECT 1") == "EXPLAIN SELECT 1"


def test_postgres_nulls_and_distinct_on():
    d = PostgresDialect()
    assert d.order_nulls("price", "asc", "last") == "price ASC NULLS LAST"
    assert d.supports_distinct_on is True


# ---------------------------------------------------------------------------
# DialectFactory
# ---------------------------------------------------------------------------


class TestDialectFactory:
    def test_builtin_dialects_are_registered(self):
        assert {"sqlite", "postgres", "mysql"} <= set(DialectFactory.registered_dialects())
        assert isinstance(DialectFactory.create("postgres"), PostgresDialect)

    def test_unknown_dialect(self):
        with pytest.raises(ConfigurationError) as exc_info:
            DialectFactory.create("oracle")
        assert exc_info.value.option == "dialect"

    def test_state_with_unknown_dialect_raises(self):
        with pytest.raises(ConfigurationError):
            QueryState(RecordingRelation(), QueryConfig(dialect="oracle"))

    def test_custom_registration(self, monkeypatch):
        monkeypatch.setattr(DialectFactory, "_dialects", dict(DialectFactory._dialects))

        @DialectFactory.register("duckdb")
        class DuckDBDialect(SQLiteDialect):
            @property
            def dialect_name(self) -> str:
                return "duckdb"

            def date_trunc(self, expression: str, unit: str) -> str:
                return f"date_trunc('{unit}', {expression})"

        state = QueryState(RecordingRelation(), QueryConfig(dialect="duckdb"))
        assert state.dialect.dialect_name == "duckdb"
        assert state.dialect.date_trunc("created_at", "month") == "date_trunc('month', created_at)"


# ---------------------------------------------------------------------------
# PredicateBuilder
# ---------------------------------------------------------------------------


class TestPredicateBuilder:
    def test_comparisons_and_aliases(self):
        builder = PredicateBuilder(SQLiteDialect())
        assert builder.build("price", "gte", 10) == Fragment("price >= ?", (10,))
        assert builder.build("price", "greater_than", 10) == Fragment("price > ?", (10,))
        assert builder.build("status", "NE", "x") == Fragment("status != ?", ("x",))

    def test_ilike_per_dialect(self):
        assert PredicateBuilder(PostgresDialect()).build("name", "ilike", "ab") == Fragment(
            "name ILIKE ?", ("%ab%",)
        )
        assert PredicateBuilder(SQLiteDialect()).build("name", "ilike", "ab") == Fragment(
            "name LIKE ?", ("%ab%",)
        )

    def test_membership(self):
        builder = PredicateBuilder(SQLiteDialect())
        assert builder.build("id", "in", [1, 2, 3]) == Fragment("id IN (?, ?, ?)", (1, 2, 3))
        assert builder.build("id", "not_in", "7") == Fragment("id NOT IN (?)", ("7",))
        assert builder.build("id", "in", []) == Fragment("1 = 0")
        assert builder.build("id", "not_in", []) == Fragment("1 = 1")

    def test_between_requires_two_values(self):
        builder = PredicateBuilder(SQLiteDialect())
        assert builder.build("price", "between", (1, 5)) == Fragment("price BETWEEN ? AND ?", (1, 5))
        with pytest.raises(InvalidArgument):
            builder.build("price", "between", 5)

    def test_null_checks_read_request_booleans(self):
        builder = PredicateBuilder(SQLiteDialect())
        assert builder.build("deleted_at", "null", "true").sql == "deleted_at IS NULL"
        assert builder.build("deleted_at", "null", "false").sql == "deleted_at IS NOT NULL"
        assert builder.build("deleted_at", "not_null", True).sql == "deleted_at IS NOT NULL"

    def test_unknown_operator(self):
        with pytest.raises(InvalidOperator) as exc_info:
            PredicateBuilder(SQLiteDialect()).build("price", "approx", 1)
        assert "eq" in exc_info.value.details["allowed"]

    def test_combine(self):
        builder = PredicateBuilder(SQLiteDialect())
        a, b = Fragment("a = ?", (1,)), Fragment("b = ?", (2,))
        assert builder.combine([a, b], "OR") == Fragment("(a = ? OR b = ?)", (1, 2))
        assert builder.combine([a, b], "AND") == Fragment("a = ? AND b = ?", (1, 2))
        assert builder.combine([a], "OR") == a


@pytest.mark.parametrize(
    "value, blank",
    [(None, True), ("  ", True), ([], True), ({}, True), (0, False), ("x", False), (False, False)],
)
def test_is_blank(value, blank):
    assert is_blank(value) is blank


@pytest.mark.parametrize("value", ["false", "0", "No", "off", ""])
def test_as_bool_falsy_strings(value):
    assert as_bool(value) is False


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class TestIdentifiers:
    @pytest.mark.parametrize("name", ["price", "products.price", "*", "products.*", "_tmp1"])
    def test_accepts_well_formed_names(self, name):
        assert check_identifier(name) == name

    @pytest.mark.parametrize("name", ["price; DROP TABLE x", "1abc", "a.b.c", "", None, "name--"])
    def test_rejects_malformed_names(self, name):
        with pytest.raises(InvalidIdentifier):
            check_identifier(name)

    def test_allow_list_matches_bare_column(self):
        assert check_identifier("products.price", {"price"}) == "products.price"
        with pytest.raises(InvalidIdentifier):
            check_identifier("secret", {"price"})

    def test_qualify(self):
        assert qualify("price") == "price"
        assert qualify("price", "products") == "products.price"
        assert qualify("*", "products") == "products.*"
        with pytest.raises(InvalidIdentifier):
            qualify("p.price", "products")
        with pytest.raises(InvalidIdentifier):
            qualify("price", "products p")

    @pytest.mark.parametrize(
        "table, singular",
        [("categories", "category"), ("products", "product"), ("boxes", "box"), ("addresses", "address")],
    )
    def test_singularize(self, table, singular):
        assert singularize(table) == singular
