import dataclasses
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import text

from conftest import keyword_candidates, tracked_keywords
from rankpilot.db.migrate import SCHEMA_PATH, split_statements
from rankpilot.logic.candidates import (
    add_candidate,
    candidate_products,
    load_candidates,
    persist_changes,
    transition_history,
)
from rankpilot.logic.lifecycle import CandidateStatus, TestResult, start_test
from rankpilot.search import load_tracked_pairs
from rankpilot.search.models import TrackedPair
from rankpilot.search.store import checked_products, fetch_tracked_pairs, latest_snapshots, pending_pairs
from scripts.seed import seed_tracked

PRODUCT = "82345671234"
DAY = date(2026, 10, 17)
NOW = datetime(2026, 10, 17, 1, 0, tzinfo=timezone.utc)


def test_load_tracked_pairs_from_yaml():
    pairs = load_tracked_pairs()
    assert TrackedPair(PRODUCT, "running shoes") in pairs
    assert all(isinstance(pair.product_id, str) for pair in pairs)
    assert len(load_tracked_pairs(limit=2)) == 2


def test_seed_is_repeatable(engine):
    pairs = load_tracked_pairs()
    seed_tracked(engine, pairs)
    seed_tracked(engine, pairs)
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM tracked_keywords")).scalar() == len(pairs)


def test_fetch_tracked_pairs_merges_candidates(engine):
    with engine.begin() as conn:
        conn.execute(
            tracked_keywords.insert(),
            [
                {"product_id": PRODUCT, "keyword": "running shoes", "is_tracked": True},
                {"product_id": PRODUCT, "keyword": "old keyword", "is_tracked": False},
            ],
        )
        conn.execute(
            keyword_candidates.insert(),
            [
                {"product_id": PRODUCT, "keyword": "Running Shoes", "status": "active"},
                {"product_id": PRODUCT, "keyword": "trail shoes", "status": "testing"},
                {"product_id": PRODUCT, "keyword": "idle keyword", "status": "candidate"},
                {"product_id": PRODUCT, "keyword": "gone keyword", "status": "retired"},
            ],
        )
    pairs = fetch_tracked_pairs(engine)
    assert {pair.key for pair in pairs} == {(PRODUCT, "running shoes"), (PRODUCT, "trail shoes")}


def test_pending_pairs_and_latest_snapshots(engine, add_snapshot):
    add_snapshot(PRODUCT, "running shoes", 9, DAY, checked_at=datetime(2026, 10, 17, 0, 5, tzinfo=timezone.utc))
    add_snapshot(PRODUCT, "Running Shoes", 14, DAY, checked_at=datetime(2026, 10, 17, 2, 5, tzinfo=timezone.utc))
    add_snapshot(PRODUCT, "linen shirt", None, DAY - timedelta(days=1))

    pairs = [TrackedPair(PRODUCT, "running shoes"), TrackedPair(PRODUCT, "linen shirt")]
    assert pending_pairs(engine, pairs, DAY) == [TrackedPair(PRODUCT, "linen shirt")]

    latest = latest_snapshots(engine, PRODUCT, DAY)
    assert list(latest) == ["running shoes"]
    assert latest["running shoes"].rank == 14
    assert latest["running shoes"].check_date == DAY
    assert latest["running shoes"].checked_at.tzinfo is not None
    assert checked_products(engine, DAY) == [PRODUCT]


def test_candidate_round_trip(engine):
    candidate_id = add_candidate(engine, PRODUCT, "trail shoes", monthly_search_volume=4200, candidate_score=6.5)
    [loaded] = load_candidates(engine, PRODUCT)
    assert loaded.id == candidate_id
    assert loaded.status is CandidateStatus.CANDIDATE
    assert loaded.monthly_search_volume == 4200

    result = start_test(loaded, now=NOW)
    changed = dataclasses.replace(result.candidate, last_checked_on=DAY)
    persist_changes(engine, [changed], [result.transition])

    [stored] = load_candidates(engine, statuses=[CandidateStatus.TESTING])
    assert stored.status is CandidateStatus.TESTING
    assert stored.test_started_at == NOW
    assert stored.last_checked_on == DAY
    assert stored.test_result is None
    assert load_candidates(engine, statuses=[CandidateStatus.ACTIVE]) == []
    assert candidate_products(engine, [CandidateStatus.TESTING]) == [PRODUCT]

    [logged] = transition_history(engine, candidate_id)
    assert logged.from_status is CandidateStatus.CANDIDATE
    assert logged.to_status is CandidateStatus.TESTING
    assert logged.metrics == {"candidate_score": 6.5}


def test_test_result_is_persisted(engine):
    candidate_id = add_candidate(engine, PRODUCT, "trail shoes")
    [loaded] = load_candidates(engine)
    finished = dataclasses.replace(loaded, status=CandidateStatus.FAILED, test_result=TestResult.TIMEOUT)
    persist_changes(engine, [finished], [])
    [stored] = load_candidates(engine)
    assert stored.id == candidate_id
    assert stored.test_result is TestResult.TIMEOUT


def test_schema_statements():
    statements = list(split_statements(SCHEMA_PATH.read_text()))
    assert all(stmt.rstrip().endswith(";") for stmt in statements)
    created = [stmt for stmt in statements if stmt.lstrip().startswith("CREATE TABLE")]
    assert len(created) == 7
    assert any("rank_snapshots" in stmt for stmt in created)
