"""Shared pytest fixtures for ClauseQL unit and integration tests."""
from __future__ import annotations

import sqlite3
from collections.abc import Iterator

import pytest

from clauseql import DBAPIRelation, QueryConfig, QueryState
from tests.fixtures import RecordingRelation, load_ddl, seed


@pytest.fixture()
def products() -> RecordingRelation:
    """Unit-test relation over ``products``; records SQL, returns no rows."""
    return RecordingRelation("products")


@pytest.fixture()
def state(products: RecordingRelation) -> QueryState:
    """SQLite-dialect state over ``products``."""
    return QueryState(products)


@pytest.fixture()
def pg_state(products: RecordingRelation) -> QueryState:
    return QueryState(products, QueryConfig(dialect="postgres"))


@pytest.fixture()
def mysql_state(products: RecordingRelation) -> QueryState:
    return QueryState(products, QueryConfig(dialect="mysql"))


@pytest.fixture()
def shop_config() -> QueryConfig:
    """Config with the ``category`` relationship and a small page size."""
    return (
        QueryConfig.builder("sqlite")
        .per_page(default=10, maximum=50)
        .relationship("category", "products", "category_id", "categories")
        .build()
    )


@pytest.fixture()
def db() -> Iterator[sqlite3.Connection]:
    """Seeded in-memory SQLite database."""
    conn = sqlite3.connect(":memory:")
    conn.executescript(load_ddl("sqlite"))
    seed(conn)
    yield conn
    conn.close()


@pytest.fixture()
def product_table(db: sqlite3.Connection) -> DBAPIRelation:
    return DBAPIRelation(db, "products")
