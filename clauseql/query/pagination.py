"""PaginationEngine: page/offset and keyset pagination over a QueryState.

``paginate(page, per_page)`` always leaves the state in a valid position:

- ``per_page`` is clamped into ``[1, config.max_per_page]`` and defaults to
  ``config.default_per_page``;
- ``page`` is at least 1 and is pulled back to the last page (page 1 for
  an empty result) when it runs past the end;
- the total is counted on a copy of the query without LIMIT / OFFSET.

Usage::

    pages = PaginationEngine(state).paginate(page=3, per_page=10)
    pages.page_info().total_pages
    rows = pages.current_page_records()
"""
from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict

from clauseql.compile.base import CompiledQuery
from clauseql.compile.identifiers import check_identifier
from clauseql.compile.predicates import is_blank
from clauseql.errors import BuilderError, InvalidArgument
from clauseql.query.state import QueryState
from clauseql.relation import Row

logger = logging.getLogger(__name__)


class PageInfo(BaseModel):
    """Snapshot of the current pagination position."""

    model_config = ConfigDict(frozen=True)

    current_page: int
    per_page: int
    total_count: int
    total_pages: int
    first_page: bool
    last_page: bool
    prev_page: int | None
    next_page: int | None
    offset: int
    limit: int


class PaginationEngine:
    """Applies LIMIT / OFFSET to a query state and reports the position.

    Args:
        state: Query state to paginate.
    """

    def __init__(self, state: QueryState) -> None:
        self.state = state
        self.page = 1
        self.per_page = state.config.default_per_page
        self.total_count = 0
        self.total_pages = 0

    @property
    def errors(self) -> list[BuilderError]:
        return self.state.errors

    # ------------------------------------------------------------------
    # Coercion
    # ------------------------------------------------------------------

    def _as_int(self, name: str, value: Any, fallback: int) -> int:
        if isinstance(value, bool):
            value = None
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError):
            self.state.record_error(
                InvalidArgument(f"{name} must be an integer.", **{name: value})
            )
            return fallback

    def _clamp_per_page(self, per_page: Any) -> int:
        if is_blank(per_page):
            return self.state.config.default_per_page
        value = self._as_int("per_page", per_page, self.state.config.default_per_page)
        return min(max(value, 1), self.state.config.max_per_page)

    def _unpaged_count(self) -> int:
        counter = self.state.copy()
        counter.limit_value = None
        counter.offset_value = None
        return counter.count()

    # ------------------------------------------------------------------
    # Page-based pagination
    # ------------------------------------------------------------------

    def paginate(self, page: Any = None, per_page: Any = None) -> PaginationEngine:
        """Move to ``page`` with ``per_page`` rows per page.

        Runs one count query against the relation.
        """
        if not is_blank(page):
            self.page = max(1, self._as_int("page", page, 1))
        self.per_page = self._clamp_per_page(per_page)
        self.total_count = self._unpaged_count()
        self.total_pages = math.ceil(self.total_count / self.per_page)
        last = max(self.total_pages, 1)
        if self.page > last:
            logger.debug("page %s past the end; clamping to %s", self.page, last)
            self.page = last
        self.state.limit(self.per_page).offset((self.page - 1) * self.per_page)
        return self

    def paginate_from_params(
        self,
        params: Mapping[str, Any],
        page_param: str = "page",
        per_page_param: str = "per_page",
    ) -> PaginationEngine:
        return self.paginate(params.get(page_param), params.get(per_page_param))

    def page_info(self) -> PageInfo:
        return PageInfo(
            current_page=self.page,
            per_page=self.per_page,
            total_count=self.total_count,
            total_pages=self.total_pages,
            first_page=self.page == 1,
            last_page=self.page >= self.total_pages,
            prev_page=self.page - 1 if self.page > 1 else None,
            next_page=self.page + 1 if self.page < self.total_pages else None,
            offset=(self.page - 1) * self.per_page,
            limit=self.per_page,
        )

    def pagination_meta(self) -> dict[str, Any]:
        return {"pagination": self.page_info().model_dump()}

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def page_records(self, page: Any = None) -> list[Row]:
        if not is_blank(page):
            self.paginate(page, self.per_page)
        return self.state.execute()

    def current_page_records(self) -> list[Row]:
        return self.state.execute()

    def next_page_records(self) -> list[Row]:
        if self.page >= self.total_pages:
            return []
        return self.page_records(self.page + 1)

    def prev_page_records(self) -> list[Row]:
        if self.page <= 1:
            return []
        return self.page_records(self.page - 1)

    def first_page_records(self) -> list[Row]:
        return self.page_records(1)

    def last_page_records(self) -> list[Row]:
        return self.page_records(max(self.total_pages, 1))

    # ------------------------------------------------------------------
    # Links and headers
    # ------------------------------------------------------------------

    def _page_url(self, url_base: str, page: int, params: Mapping[str, Any]) -> str:
        parts = urlsplit(url_base)
        query = dict(parse_qsl(parts.query))
        query.update({k: str(v) for k, v in params.items()})
        query["page"] = str(page)
        return urlunsplit(parts._replace(query=urlencode(query)))

    def pagination_links(
        self, url_base: str, params: Mapping[str, Any] | None = None
    ) -> dict[str, str]:
        """Return ``self`` / ``first`` / ``last`` / ``prev`` / ``next`` URLs."""
        params = params or {}
        links = {
            "self": self._page_url(url_base, self.page, params),
            "first": self._page_url(url_base, 1, params),
        }
        if self.total_pages > 0:
            links["last"] = self._page_url(url_base, self.total_pages, params)
        if self.page > 1:
            links["prev"] = self._page_url(url_base, self.page - 1, params)
        if self.page < self.total_pages:
            links["next"] = self._page_url(url_base, self.page + 1, params)
        return links

    def pagination_headers(
        self, url_base: str, params: Mapping[str, Any] | None = None
    ) -> dict[str, str]:
        """Return count headers plus an RFC 5988 ``Link`` header."""
        links = self.pagination_links(url_base, params)
        return {
            "X-Total-Count": str(self.total_count),
            "X-Total-Pages": str(self.total_pages),
            "X-Current-Page": str(self.page),
            "X-Per-Page": str(self.per_page),
            "Link": ", ".join(f'<{url}>; rel="{rel}"' for rel, url in links.items()),
        }

    def page_numbers(self, max_visible: int = 5) -> list[int]:
        """Sliding window of page numbers around the current page."""
        if self.total_pages <= 1 or max_visible < 1:
            return []
        start = max(self.page - max_visible // 2, 1)
        end = min(start + max_visible - 1, self.total_pages)
        if end - start + 1 < max_visible:
            start = max(end - max_visible + 1, 1)
        return list(range(start, end + 1))

    # ------------------------------------------------------------------
    # Keyset and offset pagination
    # ------------------------------------------------------------------

    def paginate_by_cursor(
        self,
        cursor: Any,
        limit: Any = 20,
        field: str = "id",
        direction: str = "after",
    ) -> PaginationEngine:
        """Keyset pagination: rows strictly after (or before) ``cursor``.

        ``after`` orders by ``field`` ascending, ``before`` descending.
        """
        if direction not in ("after", "before"):
            self.state.record_error(
                InvalidArgument("direction must be 'after' or 'before'.", direction=direction)
            )
            return self
        try:
            check_identifier(field)
        except BuilderError as exc:
            self.state.record_error(exc)
            return self
        self.per_page = self._clamp_per_page(limit)
        if not is_blank(cursor):
            comparison = ">" if direction == "after" else "<"
            self.state.where(f"{field} {comparison} ?", cursor)
        self.state.order_by(field, "asc" if direction == "after" else "desc")
        self.state.limit(self.per_page)
        return self

    def paginate_by_offset(self, offset: Any, limit: Any = 20) -> PaginationEngine:
        """Raw offset / limit without page clamping."""
        self.per_page = self._clamp_per_page(limit)
        offset = max(0, self._as_int("offset", offset, 0))
        self.total_count = self._unpaged_count()
        self.total_pages = math.ceil(self.total_count / self.per_page)
        self.page = offset // self.per_page + 1
        self.state.limit(self.per_page).offset(offset)
        return self

    # ------------------------------------------------------------------
    # Delegation / lifecycle
    # ------------------------------------------------------------------

    def to_sql(self) -> CompiledQuery:
        return self.state.to_sql()

    def execute(self) -> list[Row]:
        return self.state.execute()

    def reset(self) -> PaginationEngine:
        self.page = 1
        self.per_page = self.state.config.default_per_page
        self.total_count = 0
        self.total_pages = 0
        self.state.reset()
        return self
