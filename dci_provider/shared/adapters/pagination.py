"""
Pagination Aggregator for cursor-paginated DoiT Console API list endpoints.

Two modes, chosen from what the caller asked for:

- Manual: the caller bounded the page size, so exactly one page is fetched
  with the caller's page size and cursor, and the API's next cursor is handed
  back for the caller to continue with.
- Auto: no bound was given, so every page is fetched and concatenated. The
  result is all-or-nothing: a failing page discards everything fetched so far.

Item order is preserved exactly as returned; nothing is sorted or deduplicated.
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar, Union

import structlog

from dci_provider.shared.core.exceptions import PaginationError

logger = structlog.get_logger()

T = TypeVar("T")


def normalize_page_token(token: Optional[str]) -> Optional[str]:
    """Absent and empty cursors both mean "no more pages"; collapse them to None."""
    if token is None:
        return None
    token = str(token)
    return token if token.strip() else None


@dataclass(frozen=True)
class PageRequest:
    """Parameters for one page-fetch call. `max_results` is None in auto mode."""

    max_results: Union[int, str, None] = None
    page_token: Optional[str] = None


@dataclass(frozen=True)
class PageResult(Generic[T]):
    items: list[T] = field(default_factory=list)
    next_page_token: Optional[str] = None
    # Server-reported total, when the endpoint provides one
    row_count: Optional[int] = None


@dataclass(frozen=True)
class ManualPagination:
    max_results: Union[int, str]
    page_token: Optional[str] = None


@dataclass(frozen=True)
class AutoPagination:
    page_token: Optional[str] = None


PaginationIntent = Union[ManualPagination, AutoPagination]
PageFetcher = Callable[[PageRequest], Awaitable[PageResult[T]]]


@dataclass(frozen=True)
class AggregationResult(Generic[T]):
    items: list[T]
    page_token: Optional[str]
    row_count: int
    pages_fetched: int = 1


def select_pagination(
    max_results: Union[int, str, None] = None, page_token: Optional[str] = None
) -> PaginationIntent:
    """
    Pick the mode from caller intent: a page-size bound means manual control,
    no bound means fetch everything.
    """
    if isinstance(max_results, str):
        max_results = max_results.strip() or None
    if max_results is not None:
        return ManualPagination(
            max_results=max_results, page_token=normalize_page_token(page_token)
        )
    return AutoPagination(page_token=normalize_page_token(page_token))


class PaginationAggregator:
    """
    Runs a page-fetch function according to a PaginationIntent.

    `max_pages` caps auto mode. Reaching the cap is an error rather than a
    silently truncated result.
    """

    def __init__(self, max_pages: Optional[int] = None):
        if max_pages is not None and max_pages <= 0:
            raise ValueError("max_pages must be > 0 when provided")
        self.max_pages = max_pages

    async def aggregate(
        self,
        fetch_page: PageFetcher[T],
        intent: PaginationIntent,
        *,
        operation: str = "list",
    ) -> AggregationResult[T]:
        if isinstance(intent, ManualPagination):
            return await self._fetch_one(fetch_page, intent, operation)
        if isinstance(intent, AutoPagination):
            return await self._fetch_all(fetch_page, intent, operation)
        raise TypeError(f"Unsupported pagination intent: {intent!r}")

    async def _fetch_one(
        self, fetch_page: PageFetcher[T], intent: ManualPagination, operation: str
    ) -> AggregationResult[T]:
        page = await fetch_page(
            PageRequest(
                max_results=intent.max_results,
                page_token=normalize_page_token(intent.page_token),
            )
        )
        items = list(page.items)
        row_count = page.row_count if page.row_count is not None else len(items)
        logger.debug(
            "dci_pagination_manual_page_fetched",
            operation=operation,
            items=len(items),
            has_next_page=normalize_page_token(page.next_page_token) is not None,
        )
        return AggregationResult(
            items=items,
            page_token=normalize_page_token(page.next_page_token),
            row_count=row_count,
        )

    async def _fetch_all(
        self, fetch_page: PageFetcher[T], intent: AutoPagination, operation: str
    ) -> AggregationResult[T]:
        accumulated: list[T] = []
        seen_tokens: set[str] = set()
        token = normalize_page_token(intent.page_token)
        if token is not None:
            seen_tokens.add(token)
        pages = 0

        while True:
            if self.max_pages is not None and pages >= self.max_pages:
                raise PaginationError(
                    f"{operation}: more than {self.max_pages} pages, refusing to truncate",
                    details={"pages_fetched": pages, "items_fetched": len(accumulated)},
                )
            try:
                page = await fetch_page(PageRequest(page_token=token))
            except Exception:
                logger.warning(
                    "dci_pagination_aborted",
                    operation=operation,
                    failed_page=pages + 1,
                    discarded_items=len(accumulated),
                )
                raise
            pages += 1
            accumulated.extend(page.items)

            token = normalize_page_token(page.next_page_token)
            logger.debug(
                "dci_pagination_page_fetched",
                operation=operation,
                page=pages,
                items=len(page.items),
                has_next_page=token is not None,
            )
            if token is None:
                break
            if token in seen_tokens:
                raise PaginationError(
                    f"{operation}: API repeated page token after {pages} pages",
                    details={"pages_fetched": pages},
                )
            seen_tokens.add(token)

        return AggregationResult(
            items=accumulated,
            page_token=None,
            row_count=len(accumulated),
            pages_fetched=pages,
        )
