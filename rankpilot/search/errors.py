"""Errors raised while talking to the search API."""

from __future__ import annotations


class SearchError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(SearchError):
    """HTTP 429 from the search API."""


class TransientNetworkError(SearchError):
    """Server-side (5xx) or transport failure; safe to retry."""


class SearchRequestError(SearchError):
    """Any other rejected request. Not retried."""


class BudgetExhausted(Exception):
    """The daily call budget cannot cover the next request.

    This is a stop signal rather than a failure.
    """

    def __init__(self, feature: str, used: int, limit: int) -> None:
        super().__init__(f"API budget exhausted for {feature}: {used}/{limit}")
        self.feature = feature
        self.used = used
        self.limit = limit
