"""FastAPI application exposing alerts, budget usage and contribution rankings."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine

from rankpilot.db.session import create_engine_from_env
from rankpilot.logic.alerts import mark_alerts_read, unread_alerts
from rankpilot.logic.candidates import load_candidates
from rankpilot.logic.contribution import analyze_contributions, summarize_contributions
from rankpilot.logic.lifecycle import CandidateStatus
from rankpilot.search.budget import ApiBudget, BudgetLimits

logger = logging.getLogger(__name__)

app = FastAPI(title="Rankpilot API")


class AlertOut(BaseModel):
    id: int
    product_id: str
    keyword: str
    alert_date: date | None
    alert_type: str
    prev_rank: int | None
    curr_rank: int | None
    change_amount: int


class AlertsResponse(BaseModel):
    alerts: list[AlertOut]


class MarkReadRequest(BaseModel):
    ids: list[int] = Field(min_length=1)


class MarkReadResponse(BaseModel):
    updated: int


class BudgetLine(BaseModel):
    used: int
    limit: int
    remaining: int


class BudgetResponse(BaseModel):
    features: dict[str, BudgetLine]
    total: BudgetLine


class ContributionOut(BaseModel):
    candidate_id: int
    keyword: str
    rank: int
    raw_score: float
    normalized_score: float


class ContributionsResponse(BaseModel):
    product_id: str
    average_score: float
    top_keywords: list[str]
    bottom_keywords: list[str]
    entries: list[ContributionOut]


def get_engine() -> Engine:
    return create_engine_from_env()


@app.get("/alerts", response_model=AlertsResponse)
async def list_alerts(
    product_id: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    engine: Engine = Depends(get_engine),
) -> AlertsResponse:
    alerts = unread_alerts(engine, product_id=product_id, limit=limit)
    return AlertsResponse(
        alerts=[
            AlertOut(
                id=alert.id,
                product_id=alert.product_id,
                keyword=alert.keyword,
                alert_date=alert.alert_date,
                alert_type=alert.alert_type.value,
                prev_rank=alert.prev_rank,
                curr_rank=alert.curr_rank,
                change_amount=alert.change_amount,
            )
            for alert in alerts
        ]
    )


@app.post("/alerts/read", response_model=MarkReadResponse)
async def read_alerts(payload: MarkReadRequest, engine: Engine = Depends(get_engine)) -> MarkReadResponse:
    updated = mark_alerts_read(engine, payload.ids)
    if not updated:
        raise HTTPException(status_code=404, detail="No matching alerts")
    return MarkReadResponse(updated=updated)


@app.get("/budget", response_model=BudgetResponse)
async def budget_status(engine: Engine = Depends(get_engine)) -> BudgetResponse:
    report = ApiBudget(engine, BudgetLimits.from_env()).status()
    total = report.pop("total")
    return BudgetResponse(
        features={feature: BudgetLine(**line) for feature, line in report.items()},
        total=BudgetLine(**total),
    )


@app.get("/products/{product_id}/contributions", response_model=ContributionsResponse)
async def product_contributions(product_id: str, engine: Engine = Depends(get_engine)) -> ContributionsResponse:
    candidates = load_candidates(engine, product_id, [CandidateStatus.ACTIVE, CandidateStatus.WARNING])
    if not candidates:
        raise HTTPException(status_code=404, detail="No active keywords for product")
    entries = analyze_contributions(candidates)
    summary = summarize_contributions(entries)
    return ContributionsResponse(
        product_id=product_id,
        average_score=summary.average_score,
        top_keywords=summary.top_keywords,
        bottom_keywords=summary.bottom_keywords,
        entries=[
            ContributionOut(
                candidate_id=entry.candidate_id,
                keyword=entry.keyword,
                rank=entry.rank,
                raw_score=entry.raw_score,
                normalized_score=entry.normalized_score,
            )
            for entry in entries
        ],
    )
