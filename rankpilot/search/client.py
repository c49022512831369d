"""Shopping search API client."""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from rankpilot.search.errors import (
    RateLimitError,
    SearchRequestError,
    TransientNetworkError,
)
from rankpilot.search.models import SearchItem, SearchPage
from rankpilot.utils.rate_limit import RequestPacer

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openapi.naver.com"
SEARCH_PATH = "/v1/search/shop.json"
EXCLUDE_FILTER = "used:rental:cbshop"


class SearchClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        base_url: str | None = None,
        session: httpx.AsyncClient | None = None,
        pacer: RequestPacer | None = None,
    ) -> None:
        self.base_url = (base_url or os.environ.get("SEARCH_API_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.session = session or httpx.AsyncClient(timeout=15.0)
        self._headers = {
            "X-Naver-Client-Id": client_id,
            "X-Naver-Client-Secret": client_secret,
        }
        rate = float(os.environ.get("SEARCH_RATE_PER_SECOND", 10))
        self._pacer = pacer or RequestPacer(rate=rate)

    @classmethod
    def from_env(cls) -> "SearchClient":
        return cls(os.environ["SEARCH_CLIENT_ID"], os.environ["SEARCH_CLIENT_SECRET"])

    async def close(self) -> None:
        await self.session.aclose()

    async def search_page(self, keyword: str, start: int, display: int = 100) -> SearchPage:
        """Fetch one relevance-sorted page of results beginning at ``start``."""
        params = {
            "query": keyword,
            "display": display,
            "start": start,
            "sort": "sim",
            "exclude": EXCLUDE_FILTER,
        }
        data = await self._get_json(SEARCH_PATH, params)
        try:
            items = [
                SearchItem(product_id=str(item.get("productId", "")), title=item.get("title", ""))
                for item in data.get("items", [])
            ]
            page = SearchPage(total=int(data.get("total", 0)), start=int(data.get("start", start)), items=items)
        except (TypeError, AttributeError, ValueError) as exc:
            raise SearchRequestError(f"Unexpected search payload: {exc}") from exc
        logger.debug("Search %r start=%s returned %s items", keyword, start, len(items))
        return page

    async def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        await self._pacer.wait()
        try:
            response = await self.session.get(f"{self.base_url}{path}", params=params, headers=self._headers)
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Transport failure: {exc}") from exc
        _raise_for_status(response)
        try:
            return response.json()
        except ValueError as exc:
            raise SearchRequestError("Malformed search response", status_code=response.status_code) from exc


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    message = f"Search API returned {status}: {response.text[:200]}"
    if status == 429:
        raise RateLimitError(message, status_code=status)
    if status >= 500:
        raise TransientNetworkError(message, status_code=status)
    raise SearchRequestError(message, status_code=status)
