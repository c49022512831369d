"""Rank resolution with early-exit pagination."""

from __future__ import annotations

import logging
import os
from typing import Protocol

from rankpilot.search.budget import ApiBudget
from rankpilot.search.models import RankResolution, SearchPage
from rankpilot.utils.retry import DEFAULT_MAX_ATTEMPTS, Sleep, retry_async

logger = logging.getLogger(__name__)

RANK_CHECK_LIMIT = int(os.environ.get("RANK_CHECK_LIMIT", 1000))
RANK_PAGE_SIZE = int(os.environ.get("RANK_PAGE_SIZE", 100))


class PageSource(Protocol):
    async def search_page(self, keyword: str, start: int, display: int = 100) -> SearchPage: ...


class RankResolver:
    """Finds the 1-based position of a product in a keyword's search results.

    Pages are fetched in order and the scan stops as soon as the product turns
    up, so a product ranked on page ``p`` costs exactly ``p`` successful calls.
    A short page means the result set is exhausted. Every request attempt is
    charged to the budget, retried attempts included.
    """

    def __init__(
        self,
        source: PageSource,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Sleep | None = None,
    ) -> None:
        self.source = source
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def resolve(
        self,
        keyword: str,
        target_id: str,
        *,
        max_position: int = RANK_CHECK_LIMIT,
        page_size: int = RANK_PAGE_SIZE,
        budget: ApiBudget | None = None,
    ) -> RankResolution:
        calls = 0

        async def fetch_once(start: int) -> SearchPage:
            nonlocal calls
            if budget is not None:
                budget.ensure()
            calls += 1
            try:
                return await self.source.search_page(keyword, start, page_size)
            finally:
                if budget is not None:
                    budget.record()

        fetch = retry_async(fetch_once, max_attempts=self.max_attempts, sleep=self._sleep)

        start = 1
        while start <= max_position:
            page = await fetch(start)
            for offset, item in enumerate(page.items):
                if item.product_id == target_id:
                    rank = start + offset
                    logger.debug("Found %s for %r at %s after %s calls", target_id, keyword, rank, calls)
                    return RankResolution(rank=rank, api_calls=calls)
            if len(page.items) < page_size:
                logger.debug("Results for %r exhausted at start=%s", keyword, start)
                break
            start += page_size

        logger.debug("%s not ranked for %r within %s (%s calls)", target_id, keyword, max_position, calls)
        return RankResolution(rank=None, api_calls=calls)
