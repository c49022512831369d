"""Daily performance evaluation of rank-driven candidates."""

from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

import numpy as np

from rankpilot.logic.lifecycle import (
    TEST_TIMEOUT_DAYS,
    CandidateStatus,
    KeywordCandidate,
    TestResult,
    TransitionResult,
    activate,
    candidate_metrics,
    fail,
    is_test_timed_out,
    recover,
    test_days,
    warn,
)
from rankpilot.search.models import RankSnapshot
from rankpilot.utils.dates import utcnow

logger = logging.getLogger(__name__)

TOP_PAGE_RANK_LIMIT = int(os.environ.get("TOP_PAGE_RANK_LIMIT", 40))
TEST_SUCCESS_DAYS = int(os.environ.get("TEST_SUCCESS_DAYS", 3))

RANK_DRIVEN = frozenset({CandidateStatus.TESTING, CandidateStatus.ACTIVE, CandidateStatus.WARNING})


@dataclass(slots=True)
class Evaluation:
    candidate: KeywordCandidate
    in_top: bool
    rank: int | None
    result: TransitionResult | None = None

    @property
    def transitioned(self) -> bool:
        return self.result is not None and self.result.success


@dataclass(slots=True)
class TestProgress:
    __test__ = False

    testing: int
    passed: int
    failed: int
    avg_days_in_top: float
    avg_test_days: float


def is_in_top(rank: int | None, limit: int = TOP_PAGE_RANK_LIMIT) -> bool:
    return rank is not None and rank <= limit


def update_metrics(candidate: KeywordCandidate, snapshot: RankSnapshot, *, top_limit: int = TOP_PAGE_RANK_LIMIT) -> KeywordCandidate:
    rank = snapshot.rank
    if is_in_top(rank, top_limit):
        best = rank if candidate.best_rank is None else min(candidate.best_rank, rank)
        return dataclasses.replace(
            candidate,
            current_rank=rank,
            best_rank=best,
            days_in_top=candidate.days_in_top + 1,
            consecutive_days_in_top=candidate.consecutive_days_in_top + 1,
            last_checked_on=snapshot.check_date,
        )
    return dataclasses.replace(
        candidate, current_rank=rank, consecutive_days_in_top=0, last_checked_on=snapshot.check_date
    )


def evaluate(
    candidate: KeywordCandidate,
    snapshot: RankSnapshot,
    *,
    now: datetime | None = None,
    top_limit: int = TOP_PAGE_RANK_LIMIT,
    success_days: int = TEST_SUCCESS_DAYS,
    timeout_days: int = TEST_TIMEOUT_DAYS,
) -> Evaluation:
    """Fold one day's rank into the candidate and apply the status rule.

    Only testing, active and warning candidates are rank-driven; any other
    status comes back as-is with no metric update. A snapshot day that was
    already folded in is not counted twice.
    """
    rank = snapshot.rank
    in_top = is_in_top(rank, top_limit)
    if candidate.status not in RANK_DRIVEN:
        return Evaluation(candidate=candidate, in_top=in_top, rank=rank)
    if candidate.last_checked_on is not None and candidate.last_checked_on >= snapshot.check_date:
        logger.debug("Candidate %s already evaluated for %s", candidate.id, snapshot.check_date)
        return Evaluation(candidate=candidate, in_top=in_top, rank=rank)

    now = now or utcnow()
    updated = update_metrics(candidate, snapshot, top_limit=top_limit)
    metrics = candidate_metrics(updated, now=now)
    result: TransitionResult | None = None

    if updated.status is CandidateStatus.TESTING:
        if updated.consecutive_days_in_top >= success_days:
            result = activate(
                updated,
                metrics,
                f"{updated.consecutive_days_in_top} consecutive days within top {top_limit}",
                now=now,
            )
        elif is_test_timed_out(updated, now=now, timeout_days=timeout_days):
            result = fail(
                updated,
                metrics,
                f"test window of {timeout_days} days elapsed ({metrics['test_days']} days)",
                timed_out=True,
                now=now,
            )
    elif updated.status is CandidateStatus.ACTIVE:
        if not in_top:
            result = warn(updated, metrics, f"rank {rank if rank is not None else 'unranked'} outside top {top_limit}", now=now)
    elif updated.status is CandidateStatus.WARNING:
        if in_top:
            result = recover(updated, metrics, f"rank {rank} back within top {top_limit}", now=now)

    if result is not None and result.success:
        updated = result.candidate
    return Evaluation(candidate=updated, in_top=in_top, rank=rank, result=result)


def evaluate_batch(
    candidates: Iterable[KeywordCandidate],
    snapshots: Mapping[str, RankSnapshot],
    **kwargs,
) -> list[Evaluation]:
    """Evaluate every candidate that has a snapshot, matching keywords case-insensitively."""
    by_keyword = {keyword.strip().lower(): snapshot for keyword, snapshot in snapshots.items()}
    evaluations = []
    for candidate in candidates:
        snapshot = by_keyword.get(candidate.keyword.strip().lower())
        if snapshot is None:
            logger.warning("No snapshot for candidate %s (%r); skipping", candidate.id, candidate.keyword)
            continue
        evaluations.append(evaluate(candidate, snapshot, **kwargs))
    return evaluations


def summarize_test_progress(candidates: Iterable[KeywordCandidate], *, now: datetime | None = None) -> TestProgress:
    candidates = list(candidates)
    testing = [c for c in candidates if c.status is CandidateStatus.TESTING]
    finished = [c for c in candidates if c.test_result is not None]
    passed = sum(1 for c in finished if c.test_result is TestResult.PASS)
    failed = sum(1 for c in finished if c.test_result in (TestResult.FAIL, TestResult.TIMEOUT))
    if testing:
        avg_days_in_top = float(np.mean([c.days_in_top for c in testing]))
        avg_test_days = float(np.mean([test_days(c, now=now) for c in testing]))
    else:
        avg_days_in_top = avg_test_days = 0.0
    return TestProgress(
        testing=len(testing),
        passed=passed,
        failed=failed,
        avg_days_in_top=round(avg_days_in_top, 2),
        avg_test_days=round(avg_test_days, 2),
    )
