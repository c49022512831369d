"""Persistence for tracked pairs, rank snapshots and collection errors."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from rankpilot.search.models import PairFailure, RankSnapshot, TrackedPair
from rankpilot.utils.dates import coerce_date, coerce_datetime, utcnow

logger = logging.getLogger(__name__)


def fetch_tracked_pairs(engine: Engine) -> list[TrackedPair]:
    """Tracked keywords plus every candidate whose status depends on rank."""
    query = text(
        """
        SELECT product_id, keyword FROM tracked_keywords WHERE is_tracked = TRUE
        UNION
        SELECT product_id, keyword FROM keyword_candidates
        WHERE status IN ('testing', 'active', 'warning')
        ORDER BY product_id, keyword
        """
    )
    with engine.connect() as conn:
        rows = conn.execute(query).fetchall()
    seen: set[tuple[str, str]] = set()
    pairs: list[TrackedPair] = []
    for product_id, keyword in rows:
        pair = TrackedPair(product_id=str(product_id), keyword=keyword)
        if pair.key in seen:
            continue
        seen.add(pair.key)
        pairs.append(pair)
    return pairs


def pending_pairs(engine: Engine, pairs: Sequence[TrackedPair], day: date) -> list[TrackedPair]:
    """Drop pairs that already have a snapshot for ``day``."""
    query = text("SELECT DISTINCT product_id, keyword FROM rank_snapshots WHERE check_date = :day")
    with engine.connect() as conn:
        done = {
            (str(product_id), keyword.strip().lower())
            for product_id, keyword in conn.execute(query, {"day": day})
        }
    remaining = [pair for pair in pairs if pair.key not in done]
    if len(remaining) < len(pairs):
        logger.info("Resuming: %s of %s pairs already checked on %s", len(pairs) - len(remaining), len(pairs), day)
    return remaining


def save_snapshot(engine: Engine, snapshot: RankSnapshot) -> None:
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                INSERT INTO rank_snapshots (product_id, keyword, rank, rank_limit, checked_at, check_date, api_calls)
                VALUES (:product_id, :keyword, :rank, :rank_limit, :checked_at, :check_date, :api_calls)
                """
            ),
            {
                "product_id": snapshot.product_id,
                "keyword": snapshot.keyword,
                "rank": snapshot.rank,
                "rank_limit": snapshot.rank_limit,
                "checked_at": snapshot.checked_at,
                "check_date": snapshot.check_date,
                "api_calls": snapshot.api_calls,
            },
        )


def log_ranking_error(engine: Engine, failure: PairFailure) -> None:
    error = failure.error
    code = getattr(error, "status_code", None)
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                INSERT INTO ranking_error_logs (keyword, product_id, error_code, error_msg, created_at)
                VALUES (:keyword, :product_id, :error_code, :error_msg, :created_at)
                """
            ),
            {
                "keyword": failure.pair.keyword,
                "product_id": failure.pair.product_id,
                "error_code": str(code) if code is not None else error.__class__.__name__,
                "error_msg": str(error),
                "created_at": utcnow(),
            },
        )


def latest_snapshots(engine: Engine, product_id: str, day: date) -> dict[str, RankSnapshot]:
    """Latest snapshot per keyword on ``day``, keyed by lowercased keyword."""
    query = text(
        """
        SELECT product_id, keyword, rank, rank_limit, checked_at, check_date, api_calls
        FROM rank_snapshots
        WHERE product_id = :product_id AND check_date = :day
        ORDER BY checked_at, id
        """
    )
    with engine.connect() as conn:
        rows = conn.execute(query, {"product_id": product_id, "day": day}).mappings().all()
    latest: dict[str, RankSnapshot] = {}
    for row in rows:
        latest[row["keyword"].strip().lower()] = _row_to_snapshot(row)
    return latest


def checked_products(engine: Engine, day: date) -> list[str]:
    query = text("SELECT DISTINCT product_id FROM rank_snapshots WHERE check_date = :day ORDER BY product_id")
    with engine.connect() as conn:
        return [str(row[0]) for row in conn.execute(query, {"day": day})]


def _row_to_snapshot(row) -> RankSnapshot:
    return RankSnapshot(
        product_id=str(row["product_id"]),
        keyword=row["keyword"],
        rank=row["rank"],
        checked_at=coerce_datetime(row["checked_at"]),
        check_date=coerce_date(row["check_date"]),
        api_calls=row["api_calls"] or 0,
        rank_limit=row["rank_limit"],
    )
