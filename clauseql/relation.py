"""The Relation collaborator: where compiled SQL meets a database.

Builders never talk to a driver directly.  They compile SQL and hand it to
an injected :class:`Relation`, which owns the base table name and knows how
to run a statement.  Anything the database raises (missing rows, connection
failures, malformed SQL) propagates from here to the caller unchanged; the
builders neither catch nor retry.

Two adapters ship with the package:

``DBAPIRelation``
    Wraps any DB-API 2 connection (``sqlite3``, ``psycopg``, ``PyMySQL``).

``SQLAlchemyRelation``
    Wraps a SQLAlchemy :class:`~sqlalchemy.engine.Engine`.  Install the
    optional dependency first::

        pip install "clauseql[sqlalchemy]"

The SQL handed to a relation is already rendered for the configured
dialect, so the placeholder style must match the driver (``?`` for
``sqlite3``, ``%s`` for ``psycopg`` / ``PyMySQL``).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from contextlib import closing
from typing import TYPE_CHECKING, Any

from clauseql.compile.identifiers import is_identifier
from clauseql.errors import ConfigurationError

if TYPE_CHECKING:
    from sqlalchemy import Engine

Row = dict[str, Any]


class RecordNotFound(LookupError):
    """Raised by :meth:`Relation.find` when no row matches the key.

    Args:
        table: Table that was searched.
        key: The primary-key value that was requested.
    """

    def __init__(self, table: str, key: Any) -> None:
        super().__init__(f"Couldn't find {table} with primary key {key!r}.")
        self.table = table
        self.key = key


class Relation(ABC):
    """Abstract query handle over one base table.

    Args:
        table_name: Base table every query selects from.
        primary_key: Key column used by ``find``, ``first`` and ``last``.

    Raises:
        ConfigurationError: If either name is not a plain identifier.
    """

    def __init__(self, table_name: str, primary_key: str = "id") -> None:
        for option, value in (("table_name", table_name), ("primary_key", primary_key)):
            if not is_identifier(value) or "." in value:
                raise ConfigurationError(
                    f"{option} must be a plain identifier, got {value!r}.",
                    option=option,
                )
        self._table_name = table_name
        self._primary_key = primary_key

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def primary_key(self) -> str:
        return self._primary_key

    @abstractmethod
    def fetch_all(self, sql: str, params: Sequence[Any]) -> list[Row]:
        """Run ``sql`` and return every row as a column → value dict."""

    def fetch_one(self, sql: str, params: Sequence[Any]) -> Row | None:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def fetch_scalar(self, sql: str, params: Sequence[Any]) -> Any:
        """Return the first column of the first row (``None`` when empty)."""
        row = self.fetch_one(sql, params)
        if row is None:
            return None
        return next(iter(row.values()), None)

    def find(self, sql: str, params: Sequence[Any], key: Any) -> Row:
        """Return the single row selected by ``sql`` or raise.

        Raises:
            RecordNotFound: If the statement returns no rows.
        """
        row = self.fetch_one(sql, params)
        if row is None:
            raise RecordNotFound(self._table_name, key)
        return row

    def __repr__(self) -> str:
        return f"{type(self).__name__}(table_name={self._table_name!r})"


class DBAPIRelation(Relation):
    """Relation backed by a DB-API 2 connection.

    Example::

        conn = sqlite3.connect("shop.db")
        products = DBAPIRelation(conn, "products")
        rows = QueryState(products).where("price > ?", 10).all()

    Args:
        connection: An open DB-API 2 connection.  Its lifecycle (commit,
            close) stays with the caller.
        table_name: Base table name.
        primary_key: Primary-key column.
    """

    def __init__(self, connection: Any, table_name: str, primary_key: str = "id") -> None:
        super().__init__(table_name, primary_key)
        self._connection = connection

    def fetch_all(self, sql: str, params: Sequence[Any]) -> list[Row]:
        with closing(self._connection.cursor()) as cursor:
            cursor.execute(sql, tuple(params))
            if cursor.description is None:
                return []
            columns = [col[0] for col in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]


class SQLAlchemyRelation(Relation):
    """Relation backed by a SQLAlchemy engine.

    Statements run through :meth:`~sqlalchemy.engine.Connection.exec_driver_sql`
    so the dialect-rendered placeholders reach the DB-API driver untouched.

    Args:
        engine: A :class:`sqlalchemy.engine.Engine`.
        table_name: Base table name.
        primary_key: Primary-key column.
    """

    def __init__(self, engine: Engine, table_name: str, primary_key: str = "id") -> None:
        super().__init__(table_name, primary_key)
        self._engine = engine

    def fetch_all(self, sql: str, params: Sequence[Any]) -> list[Row]:
        with self._engine.connect() as conn:
            result = conn.exec_driver_sql(sql, tuple(params))
            if not result.returns_rows:
                return []
            return [dict(row._mapping) for row in result]
