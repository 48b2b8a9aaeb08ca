"""Pydantic models for named, reusable query definitions.

Each engine keeps a ``name -> definition`` registry.  Definitions are
frozen: once registered they never change, so a registry can be shared by
copies of the same engine.  Field, table and alias names are validated here
at registration time; raw SQL pieces (``on``, ``custom_sql``,
``expression``) come from developer code and are taken verbatim.

Usage::

    from clauseql.schema.definitions import FilterDefinition

    FilterDefinition(name="min_price", field="price", operator="gte")
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from clauseql.compile.identifiers import is_identifier
from clauseql.schema.operators import (
    DATE_FORMATS,
    normalize_direction,
    normalize_nulls,
    normalize_operator,
)

_FROZEN = ConfigDict(extra="forbid", frozen=True)


def _check_identifier(value: str | None, allow_qualified: bool = True) -> str | None:
    if value is None:
        return value
    if value == "*":
        return value
    if not is_identifier(value) or (not allow_qualified and "." in value):
        raise ValueError(f"'{value}' is not a valid identifier")
    return value


def _default_field_to_name(data: Any) -> Any:
    if isinstance(data, dict) and data.get("field") is None and data.get("expression") is None:
        data = dict(data)
        data["field"] = data.get("name")
    return data


class FilterDefinition(BaseModel):
    """A reusable WHERE filter.

    Attributes:
        name: Registry key.
        field: Column to filter (defaults to ``name``).
        table: Optional table qualifier.
        operator: Default operator (see :mod:`clauseql.schema.operators`).
        validator: Optional predicate; a falsy result rejects the value.
        transform: Optional value transform applied after validation.
        custom_builder: Optional ``(state, value) -> None`` callable that
            replaces the default operator mapping entirely.
    """

    model_config = _FROZEN

    name: str
    field: str
    table: str | None = None
    operator: str = "eq"
    validator: Callable[[Any], Any] | None = None
    transform: Callable[[Any], Any] | None = None
    custom_builder: Callable[..., Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _defaults(cls, data: Any) -> Any:
        return _default_field_to_name(data)

    @field_validator("field")
    @classmethod
    def _valid_field(cls, value: str) -> str:
        return _check_identifier(value)

    @field_validator("table")
    @classmethod
    def _valid_table(cls, value: str | None) -> str | None:
        return _check_identifier(value, allow_qualified=False)

    @field_validator("operator", mode="before")
    @classmethod
    def _valid_operator(cls, value: Any) -> str:
        op = normalize_operator(value)
        if op is None:
            raise ValueError(f"unknown operator '{value}'")
        return op


class SortDefinition(BaseModel):
    """A reusable ORDER BY item.

    Attributes:
        name: Registry key.
        field: Column to sort by (defaults to ``name``).
        table: Optional table qualifier.
        direction: Default direction.
        nulls: Optional ``first`` / ``last`` NULL placement.
        join: Name of a join definition that must be applied first.
        custom_sql: Verbatim ORDER BY expression (developer-supplied).
    """

    model_config = _FROZEN

    name: str
    field: str
    table: str | None = None
    direction: Literal["asc", "desc"] = "asc"
    nulls: Literal["first", "last"] | None = None
    join: str | None = None
    custom_sql: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _defaults(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("field") is None:
            data = dict(data)
            data["field"] = data.get("name")
        return data

    @field_validator("field")
    @classmethod
    def _valid_field(cls, value: str) -> str:
        return _check_identifier(value)

    @field_validator("table")
    @classmethod
    def _valid_table(cls, value: str | None) -> str | None:
        return _check_identifier(value, allow_qualified=False)

    @field_validator("direction", mode="before")
    @classmethod
    def _valid_direction(cls, value: Any) -> str:
        direction = normalize_direction(value)
        if direction is None:
            raise ValueError(f"invalid sort direction '{value}'")
        return direction

    @field_validator("nulls", mode="before")
    @classmethod
    def _valid_nulls(cls, value: Any) -> str | None:
        if value is None:
            return None
        nulls = normalize_nulls(value)
        if nulls is None:
            raise ValueError(f"invalid nulls placement '{value}'")
        return nulls


class JoinDefinition(BaseModel):
    """A reusable JOIN.

    Exactly one resolution strategy is used, in this order of precedence:
    ``association`` (a configured relationship), ``on`` (explicit
    condition), or ``foreign_key`` / ``primary_key`` against the base table.

    Attributes:
        name: Registry key.
        table: Joined table (defaults to ``name``).
        alias: Optional alias for the joined table.
        type: Join type; validated when applied (unknown types fall back to
            INNER with a warning).
        on: Explicit ON condition.
        foreign_key: Base-table column referencing the joined table.
        primary_key: Joined-table key column.
        association: Name of a relationship in ``QueryConfig.relationships``.
        conditions: Extra condition AND-ed to the ON clause.
    """

    model_config = _FROZEN

    name: str
    table: str
    alias: str | None = None
    type: str = "inner"
    on: str | None = None
    foreign_key: str | None = None
    primary_key: str = "id"
    association: str | None = None
    conditions: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _defaults(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("table") is None:
            data = dict(data)
            data["table"] = data.get("name")
        return data

    @field_validator("table", "alias", "foreign_key", "primary_key")
    @classmethod
    def _valid_names(cls, value: str | None) -> str | None:
        return _check_identifier(value, allow_qualified=False)

    @property
    def reference(self) -> str:
        return self.alias or self.table


class GroupDefinition(BaseModel):
    """A reusable GROUP BY entry.

    Attributes:
        name: Registry key.
        field: Column to group by (defaults to ``name`` unless
            ``expression`` is given).
        expression: Verbatim grouping expression.
        table: Optional table qualifier for ``field``.
        alias: Output alias; formatted groups default to ``<format>_group``.
        format: Date bucket (``day``, ``week``, ``month``, ``year``,
            ``hour``, ``day_of_week``).
    """

    model_config = _FROZEN

    name: str
    field: str | None = None
    expression: str | None = None
    table: str | None = None
    alias: str | None = None
    format: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _defaults(cls, data: Any) -> Any:
        return _default_field_to_name(data)

    @field_validator("field")
    @classmethod
    def _valid_field(cls, value: str | None) -> str | None:
        return _check_identifier(value)

    @field_validator("table", "alias")
    @classmethod
    def _valid_names(cls, value: str | None) -> str | None:
        return _check_identifier(value, allow_qualified=False)

    @field_validator("format", mode="before")
    @classmethod
    def _valid_format(cls, value: Any) -> Any:
        if value is None:
            return value
        key = str(value).lower()
        if key not in DATE_FORMATS:
            raise ValueError(f"unknown date format '{value}'; expected one of {sorted(DATE_FORMATS)}")
        return key


class HavingDefinition(BaseModel):
    """A reusable HAVING predicate.

    Attributes:
        name: Registry key.
        field: Column the aggregate applies to (defaults to ``name`` unless
            ``expression`` is given).
        expression: Verbatim predicate with ``?`` markers for the value(s).
        function: Aggregate or other SQL function wrapped around ``field``.
        operator: Comparison operator for field-based definitions.
        table: Optional table qualifier for ``field``.
    """

    model_config = _FROZEN

    name: str
    field: str | None = None
    expression: str | None = None
    function: str | None = None
    operator: str = "eq"
    table: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _defaults(cls, data: Any) -> Any:
        return _default_field_to_name(data)

    @field_validator("field")
    @classmethod
    def _valid_field(cls, value: str | None) -> str | None:
        return _check_identifier(value)

    @field_validator("table")
    @classmethod
    def _valid_table(cls, value: str | None) -> str | None:
        return _check_identifier(value, allow_qualified=False)

    @field_validator("function", mode="before")
    @classmethod
    def _valid_function(cls, value: Any) -> Any:
        if value is None:
            return value
        name = str(value)
        if not is_identifier(name) or "." in name:
            raise ValueError(f"'{value}' is not a valid function name")
        return name.upper()

    @field_validator("operator", mode="before")
    @classmethod
    def _valid_operator(cls, value: Any) -> str:
        op = normalize_operator(value)
        if op is None:
            raise ValueError(f"unknown operator '{value}'")
        return op
