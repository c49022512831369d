from datetime import datetime, timezone

import pytest
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    PrimaryKeyConstraint,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.pool import StaticPool

from rankpilot.search.models import RankSnapshot
from rankpilot.search.store import save_snapshot

metadata = MetaData()

tracked_keywords = Table(
    "tracked_keywords",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Text, nullable=False),
    Column("keyword", Text, nullable=False),
    Column("is_tracked", Boolean, nullable=False, default=True),
    UniqueConstraint("product_id", "keyword"),
)

keyword_candidates = Table(
    "keyword_candidates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Text, nullable=False),
    Column("keyword", Text, nullable=False),
    Column("status", Text, nullable=False, default="candidate"),
    Column("competition_index", Text),
    Column("monthly_search_volume", Integer, default=0),
    Column("best_rank", Integer),
    Column("current_rank", Integer),
    Column("days_in_top", Integer, default=0),
    Column("consecutive_days_in_top", Integer, default=0),
    Column("contribution_score", Numeric, default=0),
    Column("candidate_score", Numeric, default=0),
    Column("test_started_at", DateTime),
    Column("test_ended_at", DateTime),
    Column("test_result", Text),
    Column("last_checked_on", Date),
    Column("created_at", DateTime),
    Column("updated_at", DateTime),
    UniqueConstraint("product_id", "keyword"),
)

rank_snapshots = Table(
    "rank_snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Text, nullable=False),
    Column("keyword", Text, nullable=False),
    Column("rank", Integer),
    Column("rank_limit", Integer, default=1000),
    Column("checked_at", DateTime, nullable=False),
    Column("check_date", Date, nullable=False),
    Column("api_calls", Integer, default=0),
)

rank_alerts = Table(
    "rank_alerts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Text, nullable=False),
    Column("keyword", Text, nullable=False),
    Column("alert_date", Date, nullable=False),
    Column("prev_rank", Integer),
    Column("curr_rank", Integer),
    Column("change_amount", Integer, nullable=False),
    Column("alert_type", Text, nullable=False),
    Column("is_read", Boolean, default=False),
    Column("created_at", DateTime),
    UniqueConstraint("product_id", "keyword", "alert_date"),
)

lifecycle_transitions = Table(
    "lifecycle_transitions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("candidate_id", Integer, nullable=False),
    Column("from_status", Text, nullable=False),
    Column("to_status", Text, nullable=False),
    Column("reason", Text, nullable=False),
    Column("metrics", JSON),
    Column("created_at", DateTime),
)

api_budget_usage = Table(
    "api_budget_usage",
    metadata,
    Column("usage_date", Date, nullable=False),
    Column("feature", Text, nullable=False),
    Column("used", Integer, nullable=False, default=0),
    PrimaryKeyConstraint("usage_date", "feature"),
)

ranking_error_logs = Table(
    "ranking_error_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("keyword", Text, nullable=False),
    Column("product_id", Text, nullable=False),
    Column("error_code", Text),
    Column("error_msg", Text),
    Column("created_at", DateTime),
)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def add_snapshot(engine):
    """Store a snapshot for ``day``; ``checked_at`` defaults to 00:30 UTC that day."""

    def _add(product_id, keyword, rank, day, checked_at=None, api_calls=1):
        checked_at = checked_at or datetime(day.year, day.month, day.day, 0, 30, tzinfo=timezone.utc)
        snapshot = RankSnapshot(
            product_id=product_id,
            keyword=keyword,
            rank=rank,
            checked_at=checked_at,
            check_date=day,
            api_calls=api_calls,
        )
        save_snapshot(engine, snapshot)
        return snapshot

    return _add
