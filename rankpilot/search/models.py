"""Search and rank tracking data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime


@dataclass(slots=True)
class SearchItem:
    product_id: str
    title: str = ""


@dataclass(slots=True)
class SearchPage:
    total: int
    start: int
    items: list[SearchItem]


@dataclass(slots=True, frozen=True)
class TrackedPair:
    product_id: str
    keyword: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.product_id, self.keyword.strip().lower())


@dataclass(slots=True)
class RankResolution:
    rank: int | None
    api_calls: int


@dataclass(slots=True)
class RankSnapshot:
    product_id: str
    keyword: str
    rank: int | None
    checked_at: datetime
    check_date: date
    api_calls: int
    rank_limit: int = 1000


@dataclass(slots=True)
class PairFailure:
    pair: TrackedPair
    error: Exception
    api_calls: int = 0


@dataclass(slots=True)
class BatchResult:
    results: list[RankSnapshot] = field(default_factory=list)
    failures: list[PairFailure] = field(default_factory=list)
    consumed: int = 0
    incomplete: bool = False
    skipped: int = 0

    @property
    def succeeded(self) -> int:
        return len(self.results)
