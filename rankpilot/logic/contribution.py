"""Contribution scoring for active keywords."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

from rankpilot.logic.lifecycle import CandidateStatus, KeywordCandidate
from rankpilot.logic.performance import TOP_PAGE_RANK_LIMIT

WEIGHTS = {
    "search_volume": 0.4,
    "rank": 0.4,
    "stability": 0.2,
}

SEARCH_VOLUME_MAX = 40.0
RANK_MAX = 40.0
STABILITY_MAX = 20.0

# (minimum monthly searches, share of SEARCH_VOLUME_MAX)
SEARCH_VOLUME_TIERS = [
    (10000, 1.0),
    (5000, 0.9),
    (3000, 0.8),
    (1000, 0.7),
    (500, 0.5),
    (100, 0.3),
]
SEARCH_VOLUME_FLOOR = 0.1

# (worst rank in tier, share of RANK_MAX); page one closes the list
RANK_TIERS = [
    (10, 1.0),
    (20, 0.85),
    (30, 0.7),
]
PAGE_ONE_SHARE = 0.5

STABILITY_CONSECUTIVE_DAYS = 7
STABILITY_TOTAL_DAYS = 14

SCORED_STATUSES = (CandidateStatus.ACTIVE, CandidateStatus.WARNING)


@dataclass(slots=True)
class ContributionFactors:
    search_volume: float
    rank: float
    stability: float


@dataclass(slots=True)
class ContributionEntry:
    candidate_id: int
    keyword: str
    raw_score: float
    normalized_score: float
    rank: int
    factors: ContributionFactors


@dataclass(slots=True)
class ContributionSummary:
    total: int
    average_score: float
    top_keywords: list[str]
    bottom_keywords: list[str]


def search_volume_score(volume: int | None) -> float:
    volume = volume or 0
    for minimum, share in SEARCH_VOLUME_TIERS:
        if volume >= minimum:
            return SEARCH_VOLUME_MAX * share
    return SEARCH_VOLUME_MAX * SEARCH_VOLUME_FLOOR


def rank_score(rank: int | None, top_limit: int = TOP_PAGE_RANK_LIMIT) -> float:
    if rank is None:
        return 0.0
    for worst, share in RANK_TIERS:
        if rank <= worst:
            return RANK_MAX * share
    if rank <= top_limit:
        return RANK_MAX * PAGE_ONE_SHARE
    return 0.0


def stability_score(consecutive_days: int, total_days: int) -> float:
    consecutive = min(consecutive_days / STABILITY_CONSECUTIVE_DAYS, 1.0)
    total = min(total_days / STABILITY_TOTAL_DAYS, 1.0)
    return STABILITY_MAX * (0.7 * consecutive + 0.3 * total)


def score_factors(candidate: KeywordCandidate, top_limit: int = TOP_PAGE_RANK_LIMIT) -> ContributionFactors:
    return ContributionFactors(
        search_volume=search_volume_score(candidate.monthly_search_volume),
        rank=rank_score(candidate.current_rank, top_limit),
        stability=stability_score(candidate.consecutive_days_in_top, candidate.days_in_top),
    )


def raw_score(factors: ContributionFactors) -> float:
    return (
        WEIGHTS["search_volume"] * factors.search_volume
        + WEIGHTS["rank"] * factors.rank
        + WEIGHTS["stability"] * factors.stability
    )


def analyze_contributions(
    candidates: Iterable[KeywordCandidate],
    top_limit: int = TOP_PAGE_RANK_LIMIT,
) -> list[ContributionEntry]:
    """Score active and warning candidates, best first, top entry normalised to 100."""
    scored = [c for c in candidates if c.status in SCORED_STATUSES]
    if not scored:
        return []
    factors = [score_factors(c, top_limit) for c in scored]
    raw = np.array([raw_score(f) for f in factors], dtype=float)
    max_raw = raw.max() or 1.0
    normalized = raw / max_raw * 100
    order = sorted(range(len(scored)), key=lambda idx: (-raw[idx], scored[idx].id))
    entries: list[ContributionEntry] = []
    for rank, idx in enumerate(order, start=1):
        entries.append(
            ContributionEntry(
                candidate_id=scored[idx].id,
                keyword=scored[idx].keyword,
                raw_score=round(float(raw[idx]), 4),
                normalized_score=round(float(normalized[idx]), 2),
                rank=rank,
                factors=factors[idx],
            )
        )
    return entries


def top_contributors(entries: Sequence[ContributionEntry], limit: int = 5) -> list[ContributionEntry]:
    return list(entries[:limit])


def bottom_contributors(entries: Sequence[ContributionEntry], limit: int = 5) -> list[ContributionEntry]:
    return list(reversed(entries[-limit:])) if limit > 0 else []


def apply_contribution_scores(
    candidates: Iterable[KeywordCandidate],
    entries: Iterable[ContributionEntry],
) -> list[KeywordCandidate]:
    scores = {entry.candidate_id: entry.normalized_score for entry in entries}
    return [
        dataclasses.replace(c, contribution_score=scores[c.id]) if c.id in scores else c
        for c in candidates
    ]


def summarize_contributions(entries: Sequence[ContributionEntry]) -> ContributionSummary:
    if not entries:
        return ContributionSummary(total=0, average_score=0.0, top_keywords=[], bottom_keywords=[])
    average = float(np.mean([e.normalized_score for e in entries]))
    return ContributionSummary(
        total=len(entries),
        average_score=round(average, 2),
        top_keywords=[e.keyword for e in top_contributors(entries, 3)],
        bottom_keywords=[e.keyword for e in bottom_contributors(entries, 3)],
    )
