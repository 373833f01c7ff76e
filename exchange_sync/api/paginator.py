"""
Offset-based pagination against the remote store.

The remote listing call returns at most `limit` items per request. A page
holding exactly `limit` items means more may follow; a short page ends the
listing. A page reported with success=False also ends it, keeping whatever
was already fetched.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from exchange_sync.api.stores import Page

# Batch sizes per entity type
MAIL_BATCH_SIZE = 50
CONTACTS_BATCH_SIZE = 100
CALENDAR_BATCH_SIZE = 50

DEFAULT_PAGE_DELAY = 0.1  # seconds

logger = logging.getLogger(__name__)

FetchPage = Callable[[int, int], Awaitable[Page]]


@dataclass
class FetchResult:
    """
    Everything a fetch_all() call collected.

    Attributes:
        items: Items from every page fetched before the loop ended
        pages: Number of pages requested
        complete: False when a page reported failure or raised
        error: The exception that ended the loop, if one was raised
    """

    items: list[dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    complete: bool = True
    error: Exception | None = None


class Paginator:
    """
    Drives a fetch_page(offset, limit) callable until the data runs out.

    Usage:
        paginator = Paginator(limit=100)
        async for items in paginator.iter_pages(fetch_page):
            ...
    """

    def __init__(
        self,
        limit: int,
        page_delay: float = DEFAULT_PAGE_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self.page_delay = page_delay
        self._sleep = sleep
        self.last_page_failed = False

    async def iter_pages(
        self, fetch_page: FetchPage
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """
        Yield item lists page by page.

        Exceptions raised by fetch_page propagate to the consumer. A page with
        success=False stops iteration and sets last_page_failed.
        """
        self.last_page_failed = False
        offset = 0

        while True:
            page = await fetch_page(offset, self.limit)

            if not page.success:
                logger.warning(f"Page at offset {offset} reported failure, stopping")
                self.last_page_failed = True
                return

            items = list(page.items)
            if items:
                yield items

            if len(items) < self.limit:
                return

            offset += self.limit
            await self._sleep(self.page_delay)

    async def fetch_all(self, fetch_page: FetchPage) -> FetchResult:
        """
        Collect every page into one FetchResult.

        Never raises for fetch errors; the exception is recorded on the
        result with complete=False.
        """
        result = FetchResult()

        async def counted(offset: int, limit: int) -> Page:
            result.pages += 1
            return await fetch_page(offset, limit)

        try:
            async for items in self.iter_pages(counted):
                result.items.extend(items)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Fetching page {result.pages} failed: {e}")
            result.complete = False
            result.error = e
            return result

        if self.last_page_failed:
            result.complete = False
        return result


__all__ = [
    "Paginator",
    "FetchResult",
    "FetchPage",
    "MAIL_BATCH_SIZE",
    "CONTACTS_BATCH_SIZE",
    "CALENDAR_BATCH_SIZE",
    "DEFAULT_PAGE_DELAY",
]
