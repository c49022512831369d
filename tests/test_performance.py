import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from rankpilot.logic import performance
from rankpilot.logic.lifecycle import CandidateStatus, KeywordCandidate, TestResult
from rankpilot.search.models import RankSnapshot

NOW = datetime(2026, 10, 17, 1, 0, tzinfo=timezone.utc)
DAY = date(2026, 10, 17)


def candidate(status, **kwargs):
    defaults = {"id": 1, "product_id": "82345671234", "keyword": "running shoes", "status": status}
    defaults.update(kwargs)
    return KeywordCandidate(**defaults)


def snapshot(rank, keyword="running shoes", day=DAY):
    return RankSnapshot(
        product_id="82345671234",
        keyword=keyword,
        rank=rank,
        checked_at=NOW,
        check_date=day,
        api_calls=1,
    )


def evaluate(c, rank, **kwargs):
    kwargs.setdefault("now", NOW)
    return performance.evaluate(c, snapshot(rank), top_limit=40, success_days=3, timeout_days=14, **kwargs)


def test_is_in_top():
    assert performance.is_in_top(40, 40)
    assert not performance.is_in_top(41, 40)
    assert not performance.is_in_top(None, 40)


def test_testing_candidate_activates_after_consecutive_days():
    c = candidate(
        CandidateStatus.TESTING,
        test_started_at=NOW - timedelta(days=3),
        days_in_top=2,
        consecutive_days_in_top=2,
        best_rank=25,
    )
    result = evaluate(c, 12)
    assert result.transitioned
    assert result.candidate.status is CandidateStatus.ACTIVE
    assert result.candidate.test_result is TestResult.PASS
    assert result.candidate.days_in_top == 3
    assert result.candidate.consecutive_days_in_top == 3
    assert result.candidate.best_rank == 12
    assert result.result.transition.metrics["rank"] == 12


def test_testing_candidate_stays_while_counting():
    c = candidate(CandidateStatus.TESTING, test_started_at=NOW - timedelta(days=1))
    result = evaluate(c, 30)
    assert not result.transitioned
    assert result.candidate.status is CandidateStatus.TESTING
    assert result.candidate.best_rank == 30
    assert result.candidate.last_checked_on == DAY


def test_testing_candidate_times_out():
    c = candidate(
        CandidateStatus.TESTING,
        test_started_at=NOW - timedelta(days=14),
        days_in_top=5,
        consecutive_days_in_top=1,
    )
    result = evaluate(c, 80)
    assert result.candidate.status is CandidateStatus.FAILED
    assert result.candidate.test_result is TestResult.TIMEOUT
    assert result.candidate.days_in_top == 5
    assert result.candidate.consecutive_days_in_top == 0


def test_success_wins_over_timeout_on_the_same_day():
    c = candidate(
        CandidateStatus.TESTING,
        test_started_at=NOW - timedelta(days=20),
        days_in_top=2,
        consecutive_days_in_top=2,
    )
    result = evaluate(c, 5)
    assert result.candidate.status is CandidateStatus.ACTIVE
    assert result.candidate.test_result is TestResult.PASS


def test_active_drops_to_warning():
    c = candidate(CandidateStatus.ACTIVE, days_in_top=9, consecutive_days_in_top=9, best_rank=3)
    result = evaluate(c, None)
    assert result.candidate.status is CandidateStatus.WARNING
    assert result.candidate.current_rank is None
    assert result.candidate.days_in_top == 9
    assert result.candidate.consecutive_days_in_top == 0
    assert result.candidate.best_rank == 3


def test_active_in_range_stays_active():
    c = candidate(CandidateStatus.ACTIVE, days_in_top=4, consecutive_days_in_top=4)
    result = evaluate(c, 39)
    assert result.result is None
    assert result.candidate.status is CandidateStatus.ACTIVE
    assert result.candidate.consecutive_days_in_top == 5


def test_warning_recovers():
    c = candidate(CandidateStatus.WARNING, days_in_top=4)
    result = evaluate(c, 20)
    assert result.candidate.status is CandidateStatus.ACTIVE
    assert result.result.transition.from_status is CandidateStatus.WARNING


def test_warning_out_of_range_stays_warning():
    c = candidate(CandidateStatus.WARNING, days_in_top=4)
    result = evaluate(c, 300)
    assert result.result is None
    assert result.candidate.status is CandidateStatus.WARNING


@pytest.mark.parametrize("status", [CandidateStatus.CANDIDATE, CandidateStatus.FAILED, CandidateStatus.RETIRED])
def test_other_statuses_are_not_evaluated(status):
    c = candidate(status)
    result = evaluate(c, 3)
    assert result.candidate is c
    assert result.result is None


def test_same_snapshot_day_is_counted_once():
    c = candidate(CandidateStatus.ACTIVE, days_in_top=1, consecutive_days_in_top=1)
    first = evaluate(c, 10)
    second = evaluate(first.candidate, 10)
    assert second.candidate is first.candidate
    assert second.candidate.days_in_top == 2


def test_counters_stay_consistent_over_many_days():
    c = candidate(CandidateStatus.ACTIVE)
    ranks = [5, 8, None, 45, 12, 3, None, 2, 2, 2, 90]
    for offset, rank in enumerate(ranks):
        day = DAY + timedelta(days=offset)
        c = performance.evaluate(c, snapshot(rank, day=day), now=NOW + timedelta(days=offset), top_limit=40).candidate
        assert 0 <= c.consecutive_days_in_top <= c.days_in_top
    assert c.days_in_top == 7
    assert c.consecutive_days_in_top == 0
    assert c.best_rank == 2


def test_evaluate_batch_matches_case_insensitively_and_skips_missing(caplog):
    candidates = [
        candidate(CandidateStatus.ACTIVE, id=1, keyword="Running Shoes"),
        candidate(CandidateStatus.ACTIVE, id=2, keyword="linen shirt"),
    ]
    snapshots = {"running shoes ": snapshot(None, keyword="running shoes ")}
    with caplog.at_level(logging.WARNING):
        results = performance.evaluate_batch(candidates, snapshots, now=NOW)
    assert [r.candidate.id for r in results] == [1]
    assert results[0].candidate.status is CandidateStatus.WARNING
    assert "linen shirt" in caplog.text


def test_summarize_test_progress():
    candidates = [
        candidate(CandidateStatus.TESTING, id=1, test_started_at=NOW - timedelta(days=2), days_in_top=2, consecutive_days_in_top=2),
        candidate(CandidateStatus.TESTING, id=2, test_started_at=NOW - timedelta(days=4)),
        candidate(CandidateStatus.ACTIVE, id=3, test_result=TestResult.PASS),
        candidate(CandidateStatus.FAILED, id=4, test_result=TestResult.TIMEOUT),
        candidate(CandidateStatus.FAILED, id=5, test_result=TestResult.FAIL),
    ]
    progress = performance.summarize_test_progress(candidates, now=NOW)
    assert progress.testing == 2
    assert progress.passed == 1
    assert progress.failed == 2
    assert progress.avg_days_in_top == 1.0
    assert progress.avg_test_days == 3.0
