"""Keyword candidate lifecycle: states, allowed edges and transitions.

A candidate moves through::

    candidate -> testing -> active <-> warning -> retired
                        \\-> failed -> retired
                                 \\-> candidate

Every transition function takes an immutable ``KeywordCandidate`` and returns a
``TransitionResult``. When the candidate is not in the required source state
the result carries an ``InvalidTransition`` and the very same candidate object,
untouched. On success it carries an updated copy and the ``LifecycleTransition``
to append to the audit log.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from rankpilot.utils.dates import elapsed_days, utcnow

logger = logging.getLogger(__name__)

TEST_TIMEOUT_DAYS = int(os.environ.get("TEST_TIMEOUT_DAYS", 14))
MAX_CONCURRENT_TESTS = int(os.environ.get("MAX_CONCURRENT_TESTS", 3))


class CandidateStatus(str, Enum):
    CANDIDATE = "candidate"
    TESTING = "testing"
    ACTIVE = "active"
    WARNING = "warning"
    FAILED = "failed"
    RETIRED = "retired"


class TestResult(str, Enum):
    __test__ = False

    PASS = "pass"
    FAIL = "fail"
    TIMEOUT = "timeout"


VALID_TRANSITIONS: dict[CandidateStatus, frozenset[CandidateStatus]] = {
    CandidateStatus.CANDIDATE: frozenset({CandidateStatus.TESTING, CandidateStatus.RETIRED}),
    CandidateStatus.TESTING: frozenset({CandidateStatus.ACTIVE, CandidateStatus.FAILED, CandidateStatus.RETIRED}),
    CandidateStatus.ACTIVE: frozenset({CandidateStatus.WARNING, CandidateStatus.RETIRED}),
    CandidateStatus.WARNING: frozenset({CandidateStatus.ACTIVE, CandidateStatus.RETIRED}),
    CandidateStatus.FAILED: frozenset({CandidateStatus.RETIRED, CandidateStatus.CANDIDATE}),
    CandidateStatus.RETIRED: frozenset(),
}


@dataclass(slots=True, frozen=True)
class KeywordCandidate:
    id: int
    product_id: str
    keyword: str
    status: CandidateStatus = CandidateStatus.CANDIDATE
    competition_index: str | None = None
    monthly_search_volume: int = 0
    best_rank: int | None = None
    current_rank: int | None = None
    days_in_top: int = 0
    consecutive_days_in_top: int = 0
    contribution_score: float = 0.0
    candidate_score: float = 0.0
    test_started_at: datetime | None = None
    test_ended_at: datetime | None = None
    test_result: TestResult | None = None
    last_checked_on: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.days_in_top < 0 or self.consecutive_days_in_top < 0:
            raise ValueError("Top-page day counters must be non-negative")
        if self.consecutive_days_in_top > self.days_in_top:
            raise ValueError("consecutive_days_in_top cannot exceed days_in_top")


@dataclass(slots=True, frozen=True)
class LifecycleTransition:
    candidate_id: int
    from_status: CandidateStatus
    to_status: CandidateStatus
    reason: str
    metrics: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class InvalidTransition:
    candidate_id: int
    current: CandidateStatus
    target: CandidateStatus
    message: str


@dataclass(slots=True, frozen=True)
class TransitionResult:
    candidate: KeywordCandidate
    transition: LifecycleTransition | None = None
    error: InvalidTransition | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def is_valid_transition(source: CandidateStatus, target: CandidateStatus) -> bool:
    return target in VALID_TRANSITIONS[CandidateStatus(source)]


def candidate_metrics(candidate: KeywordCandidate, *, now: datetime | None = None) -> dict[str, Any]:
    return {
        "rank": candidate.current_rank,
        "best_rank": candidate.best_rank,
        "days_in_top": candidate.days_in_top,
        "consecutive_days_in_top": candidate.consecutive_days_in_top,
        "test_days": test_days(candidate, now=now),
    }


def _transition(
    candidate: KeywordCandidate,
    target: CandidateStatus,
    *,
    sources: Iterable[CandidateStatus],
    reason: str,
    metrics: Mapping[str, Any] | None,
    now: datetime | None,
    **changes: Any,
) -> TransitionResult:
    allowed = tuple(sources)
    if candidate.status not in allowed or not is_valid_transition(candidate.status, target):
        expected = "/".join(status.value for status in allowed)
        return TransitionResult(
            candidate=candidate,
            error=InvalidTransition(
                candidate_id=candidate.id,
                current=candidate.status,
                target=target,
                message=f"{target.value} requires status {expected} (current: {candidate.status.value})",
            ),
        )
    ts = now or utcnow()
    updated = dataclasses.replace(candidate, status=target, updated_at=ts, **changes)
    transition = LifecycleTransition(
        candidate_id=candidate.id,
        from_status=candidate.status,
        to_status=target,
        reason=reason,
        metrics=dict(metrics or {}),
        created_at=ts,
    )
    logger.info(
        "Candidate %s (%r): %s -> %s (%s)",
        candidate.id,
        candidate.keyword,
        candidate.status.value,
        target.value,
        reason,
    )
    return TransitionResult(candidate=updated, transition=transition)


def start_test(
    candidate: KeywordCandidate,
    metrics: Mapping[str, Any] | None = None,
    reason: str = "test started",
    *,
    now: datetime | None = None,
) -> TransitionResult:
    """``metrics`` defaults to the candidate score that earned the slot."""
    ts = now or utcnow()
    if metrics is None:
        metrics = {"candidate_score": candidate.candidate_score}
    return _transition(
        candidate,
        CandidateStatus.TESTING,
        sources=[CandidateStatus.CANDIDATE],
        reason=reason,
        metrics=metrics,
        now=ts,
        test_started_at=ts,
        test_ended_at=None,
        test_result=None,
    )


def activate(
    candidate: KeywordCandidate,
    metrics: Mapping[str, Any],
    reason: str = "test passed",
    *,
    now: datetime | None = None,
) -> TransitionResult:
    ts = now or utcnow()
    return _transition(
        candidate,
        CandidateStatus.ACTIVE,
        sources=[CandidateStatus.TESTING],
        reason=reason,
        metrics=metrics,
        now=ts,
        test_ended_at=ts,
        test_result=TestResult.PASS,
    )


def fail(
    candidate: KeywordCandidate,
    metrics: Mapping[str, Any],
    reason: str,
    *,
    timed_out: bool = False,
    now: datetime | None = None,
) -> TransitionResult:
    ts = now or utcnow()
    return _transition(
        candidate,
        CandidateStatus.FAILED,
        sources=[CandidateStatus.TESTING],
        reason=reason,
        metrics=metrics,
        now=ts,
        test_ended_at=ts,
        test_result=TestResult.TIMEOUT if timed_out else TestResult.FAIL,
    )


def warn(
    candidate: KeywordCandidate,
    metrics: Mapping[str, Any],
    reason: str = "dropped off the top page",
    *,
    now: datetime | None = None,
) -> TransitionResult:
    return _transition(
        candidate,
        CandidateStatus.WARNING,
        sources=[CandidateStatus.ACTIVE],
        reason=reason,
        metrics=metrics,
        now=now,
    )


def recover(
    candidate: KeywordCandidate,
    metrics: Mapping[str, Any],
    reason: str = "back on the top page",
    *,
    now: datetime | None = None,
) -> TransitionResult:
    return _transition(
        candidate,
        CandidateStatus.ACTIVE,
        sources=[CandidateStatus.WARNING],
        reason=reason,
        metrics=metrics,
        now=now,
    )


def retire(
    candidate: KeywordCandidate,
    metrics: Mapping[str, Any],
    reason: str,
    *,
    now: datetime | None = None,
) -> TransitionResult:
    ts = now or utcnow()
    changes: dict[str, Any] = {}
    if candidate.status is CandidateStatus.TESTING:
        changes = {"test_ended_at": ts, "test_result": TestResult.FAIL}
    sources = [status for status, targets in VALID_TRANSITIONS.items() if CandidateStatus.RETIRED in targets]
    return _transition(
        candidate,
        CandidateStatus.RETIRED,
        sources=sources,
        reason=reason,
        metrics=metrics,
        now=ts,
        **changes,
    )


def requeue(
    candidate: KeywordCandidate,
    metrics: Mapping[str, Any],
    reason: str = "queued for another test",
    *,
    now: datetime | None = None,
) -> TransitionResult:
    return _transition(
        candidate,
        CandidateStatus.CANDIDATE,
        sources=[CandidateStatus.FAILED],
        reason=reason,
        metrics=metrics,
        now=now,
        test_started_at=None,
        test_ended_at=None,
        test_result=None,
        consecutive_days_in_top=0,
    )


def test_days(candidate: KeywordCandidate, *, now: datetime | None = None) -> int:
    if candidate.test_started_at is None:
        return 0
    end = candidate.test_ended_at or now or utcnow()
    return elapsed_days(candidate.test_started_at, end)


def is_test_timed_out(
    candidate: KeywordCandidate,
    *,
    now: datetime | None = None,
    timeout_days: int = TEST_TIMEOUT_DAYS,
) -> bool:
    if candidate.status is not CandidateStatus.TESTING or candidate.test_started_at is None:
        return False
    return (now or utcnow()) - candidate.test_started_at >= timedelta(days=timeout_days)


def group_by_status(candidates: Iterable[KeywordCandidate]) -> dict[CandidateStatus, list[KeywordCandidate]]:
    groups: dict[CandidateStatus, list[KeywordCandidate]] = {status: [] for status in CandidateStatus}
    for candidate in candidates:
        groups[candidate.status].append(candidate)
    return groups


def start_tests(
    candidates: Sequence[KeywordCandidate],
    max_concurrent: int = MAX_CONCURRENT_TESTS,
    *,
    now: datetime | None = None,
) -> list[TransitionResult]:
    """Move the best-scoring idle candidates into testing, up to ``max_concurrent`` running."""
    groups = group_by_status(candidates)
    slots = max(max_concurrent - len(groups[CandidateStatus.TESTING]), 0)
    eligible = sorted(groups[CandidateStatus.CANDIDATE], key=lambda c: (-c.candidate_score, c.id))[:slots]
    results = [start_test(candidate, now=now) for candidate in eligible]
    logger.info("Started %s tests (%s slots free)", sum(r.success for r in results), slots)
    return results


def handle_test_timeouts(
    candidates: Iterable[KeywordCandidate],
    *,
    now: datetime | None = None,
    timeout_days: int = TEST_TIMEOUT_DAYS,
) -> list[TransitionResult]:
    """Fail every testing candidate whose window has run out."""
    results = []
    for candidate in candidates:
        if not is_test_timed_out(candidate, now=now, timeout_days=timeout_days):
            continue
        metrics = candidate_metrics(candidate, now=now)
        results.append(
            fail(
                candidate,
                metrics,
                f"test window of {timeout_days} days elapsed ({metrics['test_days']} days)",
                timed_out=True,
                now=now,
            )
        )
    if results:
        logger.info("Timed out %s tests", len(results))
    return results
