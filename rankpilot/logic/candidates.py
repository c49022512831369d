"""Keyword candidate persistence and the lifecycle transition log."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from sqlalchemy import bindparam
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text

from rankpilot.logic.lifecycle import CandidateStatus, KeywordCandidate, LifecycleTransition, TestResult
from rankpilot.utils.dates import coerce_date, coerce_datetime, utcnow

logger = logging.getLogger(__name__)

COLUMNS = """
    id, product_id, keyword, status, competition_index, monthly_search_volume,
    best_rank, current_rank, days_in_top, consecutive_days_in_top,
    contribution_score, candidate_score, test_started_at, test_ended_at,
    test_result, last_checked_on, created_at, updated_at
"""


def add_candidate(
    engine: Engine,
    product_id: str,
    keyword: str,
    *,
    monthly_search_volume: int = 0,
    competition_index: str | None = None,
    candidate_score: float = 0.0,
) -> int:
    now = utcnow()
    with engine.begin() as conn:
        result = conn.execute(
            text(
                """
                INSERT INTO keyword_candidates (
                    product_id, keyword, status, competition_index, monthly_search_volume,
                    candidate_score, created_at, updated_at
                )
                VALUES (
                    :product_id, :keyword, 'candidate', :competition_index, :monthly_search_volume,
                    :candidate_score, :now, :now
                )
                RETURNING id
                """
            ),
            {
                "product_id": product_id,
                "keyword": keyword,
                "competition_index": competition_index,
                "monthly_search_volume": monthly_search_volume,
                "candidate_score": candidate_score,
                "now": now,
            },
        )
        return int(result.scalar_one())


def load_candidates(
    engine: Engine,
    product_id: str | None = None,
    statuses: Iterable[CandidateStatus] | None = None,
) -> list[KeywordCandidate]:
    query = f"SELECT {COLUMNS} FROM keyword_candidates WHERE 1 = 1"
    params: dict[str, object] = {}
    if product_id is not None:
        query += " AND product_id = :product_id"
        params["product_id"] = product_id
    stmt = text(query + (" AND status IN :statuses" if statuses is not None else "") + " ORDER BY id")
    if statuses is not None:
        stmt = stmt.bindparams(bindparam("statuses", expanding=True))
        params["statuses"] = [CandidateStatus(s).value for s in statuses]
    with engine.connect() as conn:
        rows = conn.execute(stmt, params).mappings().all()
    return [_row_to_candidate(row) for row in rows]


def candidate_products(engine: Engine, statuses: Iterable[CandidateStatus]) -> list[str]:
    stmt = text(
        "SELECT DISTINCT product_id FROM keyword_candidates WHERE status IN :statuses ORDER BY product_id"
    ).bindparams(bindparam("statuses", expanding=True))
    with engine.connect() as conn:
        rows = conn.execute(stmt, {"statuses": [CandidateStatus(s).value for s in statuses]})
        return [str(row[0]) for row in rows]


def save_candidate(conn: Connection, candidate: KeywordCandidate) -> None:
    conn.execute(
        text(
            """
            UPDATE keyword_candidates SET
                status = :status,
                best_rank = :best_rank,
                current_rank = :current_rank,
                days_in_top = :days_in_top,
                consecutive_days_in_top = :consecutive_days_in_top,
                contribution_score = :contribution_score,
                test_started_at = :test_started_at,
                test_ended_at = :test_ended_at,
                test_result = :test_result,
                last_checked_on = :last_checked_on,
                updated_at = :updated_at
            WHERE id = :id
            """
        ),
        {
            "id": candidate.id,
            "status": candidate.status.value,
            "best_rank": candidate.best_rank,
            "current_rank": candidate.current_rank,
            "days_in_top": candidate.days_in_top,
            "consecutive_days_in_top": candidate.consecutive_days_in_top,
            "contribution_score": candidate.contribution_score,
            "test_started_at": candidate.test_started_at,
            "test_ended_at": candidate.test_ended_at,
            "test_result": candidate.test_result.value if candidate.test_result else None,
            "last_checked_on": candidate.last_checked_on,
            "updated_at": candidate.updated_at or utcnow(),
        },
    )


def record_transition(conn: Connection, transition: LifecycleTransition) -> None:
    metrics = json.dumps(dict(transition.metrics), default=str)
    insert_sql = (
        """
        INSERT INTO lifecycle_transitions (candidate_id, from_status, to_status, reason, metrics, created_at)
        VALUES (:candidate_id, :from_status, :to_status, :reason, :metrics, :created_at)
        """
        if conn.dialect.name == "sqlite"
        else """
        INSERT INTO lifecycle_transitions (candidate_id, from_status, to_status, reason, metrics, created_at)
        VALUES (:candidate_id, :from_status, :to_status, :reason, CAST(:metrics AS JSONB), :created_at)
        """
    )
    conn.execute(
        text(insert_sql),
        {
            "candidate_id": transition.candidate_id,
            "from_status": transition.from_status.value,
            "to_status": transition.to_status.value,
            "reason": transition.reason,
            "metrics": metrics,
            "created_at": transition.created_at or utcnow(),
        },
    )


def persist_changes(
    engine: Engine,
    candidates: Iterable[KeywordCandidate],
    transitions: Iterable[LifecycleTransition],
) -> None:
    """Write candidate rows and their transition log entries in one transaction."""
    candidates = list(candidates)
    transitions = list(transitions)
    with engine.begin() as conn:
        for candidate in candidates:
            save_candidate(conn, candidate)
        for transition in transitions:
            record_transition(conn, transition)
    logger.info("Saved %s candidates and %s transitions", len(candidates), len(transitions))


def transition_history(engine: Engine, candidate_id: int) -> list[LifecycleTransition]:
    query = text(
        """
        SELECT candidate_id, from_status, to_status, reason, metrics, created_at
        FROM lifecycle_transitions
        WHERE candidate_id = :candidate_id
        ORDER BY created_at, id
        """
    )
    with engine.connect() as conn:
        rows = conn.execute(query, {"candidate_id": candidate_id}).mappings().all()
    history = []
    for row in rows:
        metrics = row["metrics"]
        if isinstance(metrics, str):
            metrics = json.loads(metrics)
        history.append(
            LifecycleTransition(
                candidate_id=row["candidate_id"],
                from_status=CandidateStatus(row["from_status"]),
                to_status=CandidateStatus(row["to_status"]),
                reason=row["reason"],
                metrics=metrics or {},
                created_at=coerce_datetime(row["created_at"]),
            )
        )
    return history


def _row_to_candidate(row) -> KeywordCandidate:
    return KeywordCandidate(
        id=row["id"],
        product_id=str(row["product_id"]),
        keyword=row["keyword"],
        status=CandidateStatus(row["status"]),
        competition_index=row["competition_index"],
        monthly_search_volume=row["monthly_search_volume"] or 0,
        best_rank=row["best_rank"],
        current_rank=row["current_rank"],
        days_in_top=row["days_in_top"] or 0,
        consecutive_days_in_top=row["consecutive_days_in_top"] or 0,
        contribution_score=float(row["contribution_score"] or 0),
        candidate_score=float(row["candidate_score"] or 0),
        test_started_at=coerce_datetime(row["test_started_at"]),
        test_ended_at=coerce_datetime(row["test_ended_at"]),
        test_result=TestResult(row["test_result"]) if row["test_result"] else None,
        last_checked_on=coerce_date(row["last_checked_on"]),
        created_at=coerce_datetime(row["created_at"]),
        updated_at=coerce_datetime(row["updated_at"]),
    )
