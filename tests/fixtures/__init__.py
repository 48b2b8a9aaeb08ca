"""Test fixtures: sample DDL, seed rows and an in-memory Relation."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any, Literal

from clauseql.relation import Relation, Row

_FIXTURES_DIR = Path(__file__).parent

CATEGORIES = [(1, "Books"), (2, "Games"), (3, "Tools")]
ACTIVE_PRODUCTS = [(1, "Product 01"), (2, "Product 02"), (3, "Product 03")]
ARCHIVED_PRODUCTS = [(3, "Product 03"), (4, "Product 04")]


def product_rows() -> list[tuple[Any, ...]]:
    """25 products spread over five months of 2024.

    - odd ids are ``active``, even ids ``inactive``;
    - ``price`` is ``id * 10``;
    - ids 1-5 fall in January, 6-10 in February, and so on;
    - ``category_id`` is ``id % 3 + 1``.
    """
    rows = []
    for i in range(1, 26):
        month = (i - 1) // 5 + 1
        day = (i - 1) % 5 * 5 + 1
        rows.append(
            (
                i,
                f"Product {i:02d}",
                "active" if i % 2 else "inactive",
                float(i * 10),
                f"2024-{month:02d}-{day:02d} 10:00:00",
                i % 3 + 1,
            )
        )
    return rows


def load_ddl(target: Literal["sqlite", "postgres"] = "sqlite") -> str:
    """Return the sample DDL SQL string for the given backend.

    Args:
        target: ``'sqlite'`` (default) or ``'postgres'``.

    Returns:
        DDL string ready to execute against the target backend.
    """
    filename = f"ddl_{target}.sql"
    return (_FIXTURES_DIR / filename).read_text()


def seed(connection: Any, placeholder: str = "?") -> None:
    """Insert the sample rows through a DB-API connection."""

    def insert(table: str, rows: Sequence[tuple[Any, ...]]) -> None:
        marks = ", ".join(placeholder for _ in rows[0])
        cursor = connection.cursor()
        cursor.executemany(f"INSERT INTO {table} VALUES ({marks})", rows)
        cursor.close()

    insert("categories", CATEGORIES)
    insert("products", product_rows())
    insert("active_products", ACTIVE_PRODUCTS)
    insert("archived_products", ARCHIVED_PRODUCTS)
    connection.commit()


class RecordingRelation(Relation):
    """Relation that records every statement and answers with canned rows."""

    def __init__(
        self,
        table_name: str = "products",
        primary_key: str = "id",
        rows: Sequence[Row] = (),
    ) -> None:
        super().__init__(table_name, primary_key)
        self.rows = list(rows)
        self.statements: list[tuple[str, list[Any]]] = []

    def fetch_all(self, sql: str, params: Sequence[Any]) -> list[Row]:
        self.statements.append((sql, list(params)))
        return list(self.rows)

    @property
    def last_sql(self) -> str:
        return self.statements[-1][0]
