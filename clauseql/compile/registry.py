"""Dialect registry (Open/Closed Principle).

``DialectFactory``
    Central registry for :class:`~clauseql.compile.base.DialectStrategy`
    implementations.  Register a new dialect once; every builder configured
    with that name picks it up automatically, and no call site has to
    change when the backend is swapped.

Usage::

    from clauseql.compile.registry import DialectFactory

    @DialectFactory.register("duckdb")
    class DuckDBDialect(DialectStrategy):
        ...
"""

from __future__ import annotations

from collections.abc import Callable
from typing import ClassVar

from clauseql.compile.base import DialectStrategy
from clauseql.errors import ConfigurationError


class DialectFactory:
    """Registry mapping dialect names to :class:`DialectStrategy` classes.

    Callers register a strategy class once; builders create instances on
    demand via :meth:`create`.

    Example::

        @DialectFactory.register("duckdb")
        class DuckDBDialect(DialectStrategy):
            ...

        dialect = DialectFactory.create("duckdb")
    """

    _dialects: ClassVar[dict[str, type[DialectStrategy]]] = {}

    @classmethod
    def register(
        cls, name: str
    ) -> Callable[[type[DialectStrategy]], type[DialectStrategy]]:
        """Decorator that registers a dialect class under ``name``.

        Args:
            name: The dialect name (e.g. ``"postgres"``).

        Returns:
            A decorator that registers and returns the dialect class.
        """

        def decorator(dialect_cls: type[DialectStrategy]) -> type[DialectStrategy]:
            cls._dialects[name] = dialect_cls
            return dialect_cls

        return decorator

    @classmethod
    def register_class(cls, name: str, dialect_cls: type[DialectStrategy]) -> None:
        """Register a dialect class without using the decorator form."""
        cls._dialects[name] = dialect_cls

    @classmethod
    def create(cls, name: str) -> DialectStrategy:
        """Instantiate the dialect registered for ``name``.

        Args:
            name: The dialect name.

        Returns:
            A fresh :class:`DialectStrategy` instance.

        Raises:
            ConfigurationError: If no dialect is registered for ``name``.
        """
        dialect_cls = cls._dialects.get(name)
        if dialect_cls is None:
            registered = sorted(cls._dialects)
            raise ConfigurationError(
                f"Unsupported dialect: '{name}'. Registered dialects: {registered}.",
                option="dialect",
            )
        return dialect_cls()

    @classmethod
    def registered_dialects(cls) -> list[str]:
        """Return the sorted list of registered dialect names."""
        return sorted(cls._dialects)
