"""Custom exception hierarchy for ClauseQL.

All public errors inherit from :class:`ClauseQLError` so callers can catch
the base class for any ClauseQL-specific failure.

Most builder failures are *recoverable*: the engine records a
:class:`BuilderError` instance into ``QueryState.errors`` instead of raising
it, turns the offending call into a no-op, and lets the chain continue.
Only construction-time misconfiguration (:class:`ConfigurationError`) is
raised.  Collaborator failures (record not found, driver errors) are never
caught by the engine and reach the caller unchanged.
"""
from __future__ import annotations

from typing import Any


class ClauseQLError(Exception):
    """Base exception for all ClauseQL errors."""


class ConfigurationError(ClauseQLError):
    """Raised when a builder is constructed with an unusable configuration.

    Args:
        message: Human-readable description.
        option: The configuration option at fault.
    """

    def __init__(self, message: str, option: str | None = None) -> None:
        super().__init__(message)
        self.option = option


class BuilderError(ClauseQLError):
    """A recoverable failure recorded while building a query.

    Args:
        message: Human-readable description.
        code: Machine-readable error code (e.g. ``DEFINITION_NOT_FOUND``).
        details: Extra context for the caller.
    """

    def __init__(
        self,
        message: str,
        code: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details: dict[str, Any] = details or {}

    def to_error_response(self) -> dict[str, Any]:
        """Returns a structured error response suitable for API payloads."""
        return {
            "error": self.code,
            "message": str(self),
            "details": self.details,
        }


class DefinitionNotFound(BuilderError):
    """Recorded when a named filter/sort/join/group/having is not registered."""

    def __init__(self, kind: str, name: str, available: list[str]) -> None:
        super().__init__(
            f"{kind.capitalize()} '{name}' is not defined.",
            code="DEFINITION_NOT_FOUND",
            details={"kind": kind, "name": name, "available": available},
        )


class DuplicateDefinition(BuilderError):
    """Recorded when a name is registered twice on the same engine."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(
            f"{kind.capitalize()} '{name}' is already defined.",
            code="DUPLICATE_DEFINITION",
            details={"kind": kind, "name": name},
        )


class ValidationFailed(BuilderError):
    """Recorded when a filter validator rejects the supplied value."""

    def __init__(self, name: str, value: Any) -> None:
        super().__init__(
            f"Invalid value for filter '{name}'.",
            code="VALIDATION_FAILED",
            details={"name": name, "value": value},
        )


class InvalidArgument(BuilderError):
    """Recorded when an argument has the wrong shape (arity, type, range)."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, code="INVALID_ARGUMENT", details=details)


class InvalidOperator(BuilderError):
    """Recorded when an operator is not part of the supported operator set."""

    def __init__(self, operator: str, allowed: list[str]) -> None:
        super().__init__(
            f"Unknown operator '{operator}'.",
            code="INVALID_OPERATOR",
            details={"operator": operator, "allowed": allowed},
        )


class InvalidDirection(BuilderError):
    """Recorded when a sort direction is neither ``asc`` nor ``desc``."""

    def __init__(self, direction: Any) -> None:
        super().__init__(
            f"Invalid sort direction '{direction}'.",
            code="INVALID_DIRECTION",
            details={"direction": direction, "allowed": ["asc", "desc"]},
        )


class InvalidFunction(BuilderError):
    """Recorded when an aggregate function name is not supported."""

    def __init__(self, function: Any, allowed: list[str]) -> None:
        super().__init__(
            f"Invalid aggregate function '{function}'.",
            code="INVALID_FUNCTION",
            details={"function": function, "allowed": allowed},
        )


class InvalidIdentifier(BuilderError):
    """Recorded when a field or table name is malformed or not allow-listed."""

    def __init__(self, identifier: Any, allowed: list[str] | None = None) -> None:
        super().__init__(
            f"Identifier '{identifier}' is not allowed.",
            code="INVALID_IDENTIFIER",
            details={"identifier": identifier, "allowed": allowed or []},
        )


class InvalidUnionType(BuilderError):
    """Recorded when a union type other than ``union`` / ``union_all`` is set."""

    def __init__(self, union_type: Any) -> None:
        super().__init__(
            f"Invalid union type '{union_type}'. Must be 'union' or 'union_all'.",
            code="INVALID_UNION_TYPE",
            details={"union_type": union_type, "allowed": ["union", "union_all"]},
        )


class UnsupportedFeature(BuilderError):
    """Recorded when the configured dialect cannot express a clause."""

    def __init__(self, feature: str, dialect: str) -> None:
        super().__init__(
            f"'{feature}' is not supported by the {dialect} dialect.",
            code="UNSUPPORTED_FEATURE",
            details={"feature": feature, "dialect": dialect},
        )


class JoinTypeFallback(BuilderError):
    """Warning recorded when an unknown join type is replaced with INNER."""

    def __init__(self, join_type: Any, name: str | None = None) -> None:
        super().__init__(
            f"Unknown join type '{join_type}'; falling back to INNER.",
            code="JOIN_TYPE_FALLBACK",
            details={"join_type": join_type, "name": name},
        )
