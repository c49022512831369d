"""Day-over-day rank change alerts."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum

from sqlalchemy import bindparam
from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from rankpilot.search.models import RankSnapshot
from rankpilot.search.store import latest_snapshots
from rankpilot.utils.dates import coerce_date, coerce_datetime, utcnow

logger = logging.getLogger(__name__)

RANK_ALERT_THRESHOLD = int(os.environ.get("RANK_ALERT_THRESHOLD", 50))
POPULARITY_SURGE_THRESHOLD = int(os.environ.get("POPULARITY_SURGE_THRESHOLD", 50))


class AlertType(str, Enum):
    ENTER = "ENTER"
    EXIT = "EXIT"
    SURGE = "SURGE"
    DROP = "DROP"


@dataclass(slots=True, frozen=True)
class RankAlert:
    product_id: str
    keyword: str
    prev_rank: int | None
    curr_rank: int | None
    change_amount: int
    alert_type: AlertType
    alert_date: date | None = None
    id: int | None = None
    is_read: bool = False
    created_at: datetime | None = None


def classify(prev: int | None, curr: int | None, threshold: int = RANK_ALERT_THRESHOLD) -> tuple[AlertType, int] | None:
    """Alert type and change amount for one keyword, or None when nothing fires.

    A positive change means the rank improved (moved toward 1).
    """
    if prev is None and curr is None:
        return None
    if prev is None:
        return AlertType.ENTER, curr
    if curr is None:
        return AlertType.EXIT, -prev
    delta = prev - curr
    if delta >= threshold:
        return AlertType.SURGE, delta
    if delta <= -threshold:
        return AlertType.DROP, delta
    return None


def compare_days(
    product_id: str,
    today: Mapping[str, RankSnapshot],
    previous: Mapping[str, RankSnapshot],
    *,
    alert_date: date | None = None,
    threshold: int = RANK_ALERT_THRESHOLD,
) -> list[RankAlert]:
    """Alerts for keywords present on both days; maps are keyed by lowercased keyword."""
    alerts: list[RankAlert] = []
    for key, snapshot in sorted(today.items()):
        baseline = previous.get(key)
        if baseline is None:
            logger.debug("No baseline for %s / %r; skipping", product_id, snapshot.keyword)
            continue
        outcome = classify(baseline.rank, snapshot.rank, threshold)
        if outcome is None:
            continue
        alert_type, change = outcome
        alerts.append(
            RankAlert(
                product_id=product_id,
                keyword=snapshot.keyword,
                prev_rank=baseline.rank,
                curr_rank=snapshot.rank,
                change_amount=change,
                alert_type=alert_type,
                alert_date=alert_date or snapshot.check_date,
            )
        )
    return alerts


def analyze(engine: Engine, product_id: str, day: date, *, threshold: int = RANK_ALERT_THRESHOLD) -> list[RankAlert]:
    today = latest_snapshots(engine, product_id, day)
    if not today:
        return []
    previous = latest_snapshots(engine, product_id, day - timedelta(days=1))
    alerts = compare_days(product_id, today, previous, alert_date=day, threshold=threshold)
    logger.info("Product %s on %s: %s keywords, %s alerts", product_id, day, len(today), len(alerts))
    return alerts


def detect_popularity_surge(alerts: Iterable[RankAlert], threshold: int = POPULARITY_SURGE_THRESHOLD) -> bool:
    return any(a.alert_type is AlertType.SURGE and a.change_amount >= threshold for a in alerts)


def save_alerts(engine: Engine, alerts: Sequence[RankAlert]) -> int:
    """Insert alerts; an alert already stored for the same day is left as it is."""
    inserted = 0
    created_at = utcnow()
    with engine.begin() as conn:
        for alert in alerts:
            result = conn.execute(
                text(
                    """
                    INSERT INTO rank_alerts (
                        product_id, keyword, alert_date, prev_rank, curr_rank,
                        change_amount, alert_type, is_read, created_at
                    )
                    VALUES (
                        :product_id, :keyword, :alert_date, :prev_rank, :curr_rank,
                        :change_amount, :alert_type, FALSE, :created_at
                    )
                    ON CONFLICT (product_id, keyword, alert_date) DO NOTHING
                    """
                ),
                {
                    "product_id": alert.product_id,
                    "keyword": alert.keyword,
                    "alert_date": alert.alert_date,
                    "prev_rank": alert.prev_rank,
                    "curr_rank": alert.curr_rank,
                    "change_amount": alert.change_amount,
                    "alert_type": alert.alert_type.value,
                    "created_at": created_at,
                },
            )
            inserted += result.rowcount or 0
    return inserted


def unread_alerts(engine: Engine, product_id: str | None = None, limit: int = 100) -> list[RankAlert]:
    query = """
        SELECT id, product_id, keyword, alert_date, prev_rank, curr_rank,
               change_amount, alert_type, is_read, created_at
        FROM rank_alerts
        WHERE is_read = FALSE
    """
    params: dict[str, object] = {"limit": limit}
    if product_id is not None:
        query += " AND product_id = :product_id"
        params["product_id"] = product_id
    query += " ORDER BY created_at DESC, id DESC LIMIT :limit"
    with engine.connect() as conn:
        rows = conn.execute(text(query), params).mappings().all()
    return [
        RankAlert(
            id=row["id"],
            product_id=str(row["product_id"]),
            keyword=row["keyword"],
            prev_rank=row["prev_rank"],
            curr_rank=row["curr_rank"],
            change_amount=row["change_amount"],
            alert_type=AlertType(row["alert_type"]),
            alert_date=coerce_date(row["alert_date"]),
            is_read=bool(row["is_read"]),
            created_at=coerce_datetime(row["created_at"]),
        )
        for row in rows
    ]


def mark_alerts_read(engine: Engine, ids: Iterable[int]) -> int:
    ids = list(ids)
    if not ids:
        return 0
    query = text("UPDATE rank_alerts SET is_read = TRUE WHERE id IN :ids").bindparams(
        bindparam("ids", expanding=True)
    )
    with engine.begin() as conn:
        return conn.execute(query, {"ids": ids}).rowcount
