"""
Song search result aggregation.

The server answers file.search with one or more search_complete broadcasts,
one per page, and sends no completion signal. Pages are collected per query
and callers wait for them through a pluggable wait strategy.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from turntable_client.connect.dispatcher import EventDispatcher
from turntable_client.connect.types import Command
from turntable_client.exceptions import SearchTimeoutError

from .models import SongResult

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_TIMEOUT = 5.0  # seconds
DEFAULT_POLL_INTERVAL = 0.1  # seconds

Pages = list[list[Any]]


class SearchResultAggregator:
    """
    Collects search pages per query.

    Page slots are write-once: the first payload for a (query, page) pair is
    kept and later ones are dropped. Pages are 1-based on the wire and
    0-based in storage.
    """

    def __init__(self, waiter: Optional["ResultWaiter"] = None):
        self._index: dict[str, dict[int, list[Any]]] = {}
        self._waiter = waiter or PollingWaiter()

    def register(self, dispatcher: EventDispatcher) -> None:
        """Subscribe to search_complete broadcasts."""
        dispatcher.on(Command.SEARCH_COMPLETE, self.handle_search_complete)

    def handle_search_complete(self, message: dict[str, Any]) -> None:
        """Record one page from a search_complete broadcast."""
        query = message.get("query")
        page = message.get("page")
        if not isinstance(query, str) or not isinstance(page, int) or page < 1:
            logger.warning(f"Ignoring malformed search page: query={query!r} page={page!r}")
            return

        docs = message.get("docs") or []
        results = [SongResult.from_dict(doc) for doc in docs if isinstance(doc, dict)]
        self.record_page(query, page, results)

    def record_page(self, query: str, page: int, results: Sequence[Any]) -> bool:
        """
        Store a page of results unless that slot is already filled.

        Args:
            query: Search query the page belongs to
            page: 1-based page number
            results: Song results on the page

        Returns:
            True if stored, False if the slot was already filled
        """
        if page < 1:
            raise ValueError(f"Page numbers start at 1, got {page}")

        pages = self._index.setdefault(query, {})
        slot = page - 1
        if slot in pages:
            logger.debug(f"Discarding duplicate page {page} for {query!r}")
            return False

        pages[slot] = list(results)
        logger.debug(f"Recorded page {page} for {query!r} ({len(results)} results)")
        self._waiter.notify(query)
        return True

    def get_pages(self, query: str) -> Optional[Pages]:
        """
        Pages recorded so far for a query, with missing pages skipped.

        Returns:
            None if no page has arrived for the query yet
        """
        pages = self._index.get(query)
        if pages is None:
            return None
        return [pages[slot] for slot in sorted(pages)]

    async def wait_for_pages(
        self,
        query: str,
        timeout: float = DEFAULT_SEARCH_TIMEOUT,
        poll_interval: Optional[float] = None,
    ) -> Pages:
        """
        Wait until at least one page has arrived for a query.

        This returns as soon as the first page lands, which is not the same
        as the search being finished.

        Args:
            query: Search query
            timeout: Seconds to wait before giving up
            poll_interval: Seconds between checks (waiter default if None)

        Raises:
            SearchTimeoutError: No page arrived within timeout
        """
        return await self._waiter.wait(self, query, timeout, poll_interval)


class ResultWaiter(ABC):
    """Strategy for waiting on search pages."""

    @abstractmethod
    async def wait(
        self,
        aggregator: SearchResultAggregator,
        query: str,
        timeout: float,
        poll_interval: Optional[float] = None,
    ) -> Pages:
        """Return the pages for query once available, or raise SearchTimeoutError."""

    def notify(self, query: str) -> None:
        """Called after a page is recorded for query."""


class PollingWaiter(ResultWaiter):
    """Re-checks the aggregator at a fixed interval."""

    def __init__(self, poll_interval: float = DEFAULT_POLL_INTERVAL):
        self.poll_interval = poll_interval

    async def wait(
        self,
        aggregator: SearchResultAggregator,
        query: str,
        timeout: float,
        poll_interval: Optional[float] = None,
    ) -> Pages:
        if poll_interval is None:
            poll_interval = self.poll_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            pages = aggregator.get_pages(query)
            if pages is not None:
                return pages

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise SearchTimeoutError(query, timeout)
            await asyncio.sleep(min(poll_interval, remaining))
