"""Daily rank collection and lifecycle job."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from rankpilot.db.session import create_engine_from_env
from rankpilot.logic import alerts
from rankpilot.logic.candidates import candidate_products, load_candidates, persist_changes
from rankpilot.logic.daily import compute_lifecycle_update
from rankpilot.logic.lifecycle import CandidateStatus, start_tests
from rankpilot.search.budget import ApiBudget, BudgetLimits
from rankpilot.search.client import SearchClient
from rankpilot.search.collector import BatchCollector
from rankpilot.search.models import BatchResult
from rankpilot.search.resolver import RankResolver
from rankpilot.search.store import (
    checked_products,
    fetch_tracked_pairs,
    latest_snapshots,
    log_ranking_error,
    pending_pairs,
    save_snapshot,
)
from rankpilot.utils.dates import format_date, parse_iso_date, today_in_tz, utcnow
from rankpilot.utils.logs import setup_logging

logger = logging.getLogger(__name__)

LIFECYCLE_STATUSES = (
    CandidateStatus.CANDIDATE,
    CandidateStatus.TESTING,
    CandidateStatus.ACTIVE,
    CandidateStatus.WARNING,
)


@dataclass(slots=True)
class DailyRunReport:
    as_of: date
    checked: int = 0
    failed: int = 0
    skipped: int = 0
    already_checked: int = 0
    api_calls: int = 0
    incomplete: bool = False
    alerts: int = 0
    surging_products: list[str] = field(default_factory=list)
    transitions: int = 0
    tests_started: int = 0
    budget: dict[str, dict[str, int]] = field(default_factory=dict)


async def run_daily(as_of: date | None = None) -> DailyRunReport:
    load_dotenv()
    engine = create_engine_from_env()
    target_date = as_of or today_in_tz()
    report = DailyRunReport(as_of=target_date)
    budget = ApiBudget(engine, BudgetLimits.from_env(), feature="ranking")

    if target_date == today_in_tz():
        batch = await collect_ranks(engine, budget, target_date, report)
        report.checked = batch.succeeded
        report.failed = len(batch.failures)
        report.skipped = batch.skipped
        report.api_calls = batch.consumed
        report.incomplete = batch.incomplete
    else:
        logger.info("Backfill for %s: skipping collection, analysing stored snapshots", format_date(target_date))

    products = sorted(set(checked_products(engine, target_date)) | set(candidate_products(engine, LIFECYCLE_STATUSES)))
    for product_id in products:
        process_product(engine, product_id, target_date, report)

    report.budget = budget.status()
    logger.info(
        "Daily run %s: %s checked, %s failed, %s skipped, %s already done, %s calls, incomplete=%s, "
        "%s alerts, %s transitions, %s tests started",
        format_date(target_date),
        report.checked,
        report.failed,
        report.skipped,
        report.already_checked,
        report.api_calls,
        report.incomplete,
        report.alerts,
        report.transitions,
        report.tests_started,
    )
    return report


async def collect_ranks(engine: Engine, budget: ApiBudget, day: date, report: DailyRunReport) -> BatchResult:
    pairs = fetch_tracked_pairs(engine)
    remaining = pending_pairs(engine, pairs, day)
    report.already_checked = len(pairs) - len(remaining)
    client = SearchClient.from_env()
    try:
        collector = BatchCollector(
            RankResolver(client),
            sink=lambda snapshot: save_snapshot(engine, snapshot),
            on_failure=lambda failure: log_ranking_error(engine, failure),
        )
        return await collector.collect(remaining, budget)
    finally:
        await client.close()


def process_product(engine: Engine, product_id: str, day: date, report: DailyRunReport) -> None:
    product_alerts = alerts.analyze(engine, product_id, day)
    report.alerts += alerts.save_alerts(engine, product_alerts)
    if alerts.detect_popularity_surge(product_alerts):
        logger.info("Popularity surge detected for product %s", product_id)
        report.surging_products.append(product_id)

    now = utcnow()
    candidates = load_candidates(engine, product_id, LIFECYCLE_STATUSES)
    if not candidates:
        return
    snapshots = latest_snapshots(engine, product_id, day)
    update = compute_lifecycle_update(product_id, candidates, snapshots, now=now)

    started = []
    if day == today_in_tz():
        started = [r for r in start_tests(update.candidates, now=now) if r.success]
    else:
        logger.debug("Backfill for %s: not starting new tests for %s", format_date(day), product_id)
    changed = {c.id: c for c in update.changed}
    changed.update({r.candidate.id: r.candidate for r in started})
    transitions = update.transitions + [r.transition for r in started]
    persist_changes(engine, changed.values(), transitions)

    report.transitions += len(transitions)
    report.tests_started += len(started)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Collect keyword ranks and update keyword lifecycles")
    parser.add_argument(
        "--as-of",
        type=parse_iso_date,
        default=None,
        help="Analyse stored snapshots for a past day (YYYY-MM-DD) without calling the search API",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    setup_logging()
    try:
        asyncio.run(run_daily(args.as_of))
    except SQLAlchemyError as exc:
        logger.error("Daily run aborted, database unavailable: %s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
