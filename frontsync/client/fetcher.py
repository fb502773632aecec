"""
Paginated Fetcher

Walks cursor-paginated Front collections. Front pages look like
`{"_results": [...], "_pagination": {"next": "<absolute url>"}}`; the decode
step is pluggable so other page shapes can be consumed the same way.

Failures never raise out of the fetcher: a non-success status, exhausted
network retries or an open circuit stop the walk and whatever was already
fetched is kept.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

import httpx
import structlog

from frontsync.kernel.errors import FrontSyncError

logger = structlog.get_logger()


class Requester(Protocol):
    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        operation: str | None = None,
    ) -> httpx.Response:
        ...


@dataclass
class Page:
    items: list[dict[str, Any]]
    next_url: str | None = None
    number: int = 1

    @property
    def has_more(self) -> bool:
        return bool(self.next_url)


PageDecoder = Callable[[Any], Page]
PageCallback = Callable[[list[dict[str, Any]]], Awaitable[None]]


def decode_front_page(payload: Any) -> Page:
    if isinstance(payload, list):
        return Page(items=payload)
    if not isinstance(payload, dict):
        return Page(items=[])
    pagination = payload.get("_pagination") or {}
    return Page(
        items=list(payload.get("_results") or []),
        next_url=pagination.get("next") or None,
    )


class PaginatedFetcher:
    """Follows `next` cursors until exhausted or `max_pages` is reached."""

    def __init__(
        self,
        requester: Requester,
        *,
        max_pages: int = 500,
        decode: PageDecoder = decode_front_page,
    ) -> None:
        self._requester = requester
        self.max_pages = max_pages
        self._decode = decode

    async def iter_pages(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        max_pages: int | None = None,
    ) -> AsyncIterator[Page]:
        limit = max_pages or self.max_pages
        url: str | None = path
        pages = 0

        while url and pages < limit:
            # The next cursor is an absolute URL that already carries the query.
            query = dict(params or {}) if pages == 0 else None
            try:
                response = await self._requester.request("GET", url, params=query, operation=path)
            except FrontSyncError as exc:
                logger.warning(
                    "Stopping pagination after request failure",
                    path=path,
                    pages_fetched=pages,
                    error=exc.message,
                    code=exc.code,
                )
                return

            if not response.is_success:
                logger.error(
                    "Failed to fetch page",
                    path=path,
                    status_code=response.status_code,
                    pages_fetched=pages,
                    body=response.text[:500],
                )
                return

            try:
                payload = response.json()
            except ValueError as exc:
                logger.error("Undecodable page body", path=path, pages_fetched=pages, error=str(exc))
                return

            pages += 1
            page = self._decode(payload)
            page.number = pages
            yield page
            url = page.next_url

        if url:
            logger.warning("Pagination stopped at page limit", path=path, max_pages=limit)

    async def fetch_all(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        max_pages: int | None = None,
    ) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        async for page in self.iter_pages(path, params, max_pages=max_pages):
            results.extend(page.items)
        logger.debug("Fetched collection", path=path, count=len(results))
        return results

    async def for_each_page(
        self,
        path: str,
        callback: PageCallback,
        params: dict[str, Any] | None = None,
        *,
        max_pages: int | None = None,
        max_items: int | None = None,
    ) -> int:
        """Stream pages to `callback`; returns the number of items processed."""
        total = 0
        async for page in self.iter_pages(path, params, max_pages=max_pages):
            items = page.items if max_items is None else page.items[: max_items - total]
            if items:
                logger.info("Processing page", path=path, page=page.number, size=len(items), total=total)
                await callback(items)
                total += len(items)
            if max_items is not None and total >= max_items:
                break
        return total
