"""Pydantic models for the per-builder QueryConfig.

A ``QueryConfig`` is an immutable value handed to every builder at
construction time.  It selects the SQL dialect, bounds pagination, lists
the fields ad-hoc (request-driven) filters may touch, and names the
relationships association joins resolve through.  Nothing is stored at
class level, so two builders never share configuration by accident.

Create a config directly or through the fluent builder::

    from clauseql import QueryConfig

    config = (
        QueryConfig.builder("postgres")
        .per_page(default=25, maximum=100)
        .allow_fields("status", "price", "created_at")
        .relationship("category", "products", "category_id", "categories")
        .build()
    )
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clauseql.compile.identifiers import is_identifier
from clauseql.errors import ConfigurationError


class Relationship(BaseModel):
    """A named association between two tables.

    Joins always target ``to_table``::

        JOIN <to_table> ON <from_table>.<from_col> = <to_table>.<to_col>

    Attributes:
        from_table: Table holding the left-hand key (usually the base table).
        from_col: Left-hand key column.
        to_table: Table being joined.
        to_col: Right-hand key column.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    from_table: str
    from_col: str
    to_table: str
    to_col: str = "id"

    @field_validator("from_table", "from_col", "to_table", "to_col")
    @classmethod
    def _plain_identifier(cls, value: str) -> str:
        if not is_identifier(value) or "." in value:
            raise ValueError(f"'{value}' is not a valid identifier")
        return value


class QueryConfig(BaseModel):
    """Immutable configuration shared by one builder family.

    Attributes:
        dialect: Registered dialect name (``sqlite``, ``postgres``, ``mysql``).
        default_per_page: Page size used when the caller gives none.
        max_per_page: Upper bound every requested page size is clamped to.
        allowed_fields: Field names ad-hoc filters may reference.  Empty
            means any well-formed identifier is accepted.
        relationships: Named associations used by association joins,
            filters and sorts.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    dialect: str = "sqlite"
    default_per_page: int = Field(20, ge=1)
    max_per_page: int = Field(100, ge=1)
    allowed_fields: frozenset[str] = frozenset()
    relationships: dict[str, Relationship] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _per_page_within_max(self) -> QueryConfig:
        if self.default_per_page > self.max_per_page:
            raise ValueError(
                f"default_per_page ({self.default_per_page}) exceeds "
                f"max_per_page ({self.max_per_page})"
            )
        return self

    @classmethod
    def builder(cls, dialect: str = "sqlite") -> QueryConfigBuilder:
        """Return a :class:`QueryConfigBuilder` for ``dialect``."""
        return QueryConfigBuilder(dialect)


class QueryConfigBuilder:
    """Fluent builder for :class:`QueryConfig`.

    Always obtained via :meth:`QueryConfig.builder`.  Methods may be called
    in any order; :meth:`build` checks the combination.
    """

    def __init__(self, dialect: str) -> None:
        self._dialect = dialect
        self._default_per_page = 20
        self._max_per_page = 100
        self._allowed_fields: set[str] = set()
        self._relationships: dict[str, Relationship] = {}

    def per_page(self, default: int = 20, maximum: int = 100) -> QueryConfigBuilder:
        """Set the default page size and the hard maximum."""
        self._default_per_page = default
        self._max_per_page = maximum
        return self

    def allow_fields(self, *fields: str) -> QueryConfigBuilder:
        """Allow-list field names for request-driven filters."""
        self._allowed_fields.update(fields)
        return self

    def relationship(
        self,
        name: str,
        from_table: str,
        from_col: str,
        to_table: str,
        to_col: str = "id",
    ) -> QueryConfigBuilder:
        """Register a named association."""
        self._relationships[name] = Relationship(
            from_table=from_table,
            from_col=from_col,
            to_table=to_table,
            to_col=to_col,
        )
        return self

    def build(self) -> QueryConfig:
        """Validate the configuration and return the :class:`QueryConfig`.

        Raises:
            ConfigurationError: For an unregistered dialect, a malformed
                allow-listed field, or a default page size above the maximum.
        """
        from clauseql.compile.registry import DialectFactory

        if self._dialect not in DialectFactory.registered_dialects():
            raise ConfigurationError(
                f"Unsupported dialect: '{self._dialect}'. "
                f"Registered dialects: {DialectFactory.registered_dialects()}.",
                option="dialect",
            )
        if self._default_per_page > self._max_per_page:
            raise ConfigurationError(
                "per_page(default=...) must not exceed per_page(maximum=...). "
                "An unbounded or inverted page size lets a single request "
                "fetch arbitrarily many rows.",
                option="per_page",
            )
        bad = sorted(f for f in self._allowed_fields if not is_identifier(f))
        if bad:
            raise ConfigurationError(
                f"allow_fields() received malformed identifiers: {bad}.",
                option="allowed_fields",
            )
        return QueryConfig(
            dialect=self._dialect,
            default_per_page=self._default_per_page,
            max_per_page=self._max_per_page,
            allowed_fields=frozenset(self._allowed_fields),
            relationships=dict(self._relationships),
        )
