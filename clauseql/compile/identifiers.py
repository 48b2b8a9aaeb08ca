"""Identifier checks for field, table and alias names.

Values are always bound, but names end up in SQL text.  Every name that
reaches a clause passes through :func:`qualify` or :func:`check_identifier`,
which accept only ``name`` / ``table.name`` shapes (plus ``*``) and,
when an allow-list is configured, only allow-listed names.
"""
from __future__ import annotations

import re
from collections.abc import Collection
from typing import Any

from clauseql.errors import InvalidIdentifier

_NAME = r"[A-Za-z_][A-Za-z0-9_]*"
_IDENTIFIER = re.compile(rf"^{_NAME}(\.{_NAME})?$")
_QUALIFIED_STAR = re.compile(rf"^({_NAME}\.)?\*$")


def is_identifier(name: Any) -> bool:
    """Return ``True`` for ``name`` or ``table.name`` shaped strings."""
    return isinstance(name, str) and bool(_IDENTIFIER.match(name))


def check_identifier(name: Any, allowed: Collection[str] = ()) -> str:
    """Validate ``name`` and return it.

    Args:
        name: Candidate identifier.
        allowed: Optional allow-list; empty means any well-formed name.

    Raises:
        InvalidIdentifier: If the name is malformed or not allow-listed.
    """
    if isinstance(name, str) and _QUALIFIED_STAR.match(name):
        return name
    if not is_identifier(name):
        raise InvalidIdentifier(name, sorted(allowed))
    if allowed and name not in allowed and name.split(".")[-1] not in allowed:
        raise InvalidIdentifier(name, sorted(allowed))
    return name


def qualify(field: Any, table: str | None = None, allowed: Collection[str] = ()) -> str:
    """Return ``table.field`` (or ``field``) after validating both parts.

    Raises:
        InvalidIdentifier: If either part is malformed or not allow-listed.
    """
    if table is None:
        return check_identifier(field, allowed)
    if not is_identifier(table) or "." in table:
        raise InvalidIdentifier(table)
    if field == "*":
        return f"{table}.*"
    if not isinstance(field, str) or "." in field:
        raise InvalidIdentifier(field, sorted(allowed))
    check_identifier(field, allowed)
    return f"{table}.{field}"


def singularize(table: str) -> str:
    """Best-effort singular form used by the ``<singular>_id`` key convention."""
    if table.endswith("ies") and len(table) > 3:
        return table[:-3] + "y"
    if table.endswith(("ses", "xes", "zes", "ches", "shes")):
        return table[:-2]
    if table.endswith("s") and not table.endswith("ss"):
        return table[:-1]
    return table
