"""Celery configuration for the scheduled daily run."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from rankpilot.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("rankpilot", broker=broker_url, backend=backend_url, include=["rankpilot.jobs.daily"])
celery_app.conf.timezone = timezone_name()
celery_app.conf.beat_schedule = {
    "daily-rank-check": {
        "task": "rankpilot.jobs.daily.run_daily",
        "schedule": crontab(hour=int(os.environ.get("RUN_HOUR", "6")), minute=int(os.environ.get("RUN_MINUTE", "0"))),
    },
}


@celery_app.task(name="rankpilot.jobs.daily.run_daily")
def run_daily_task() -> dict[str, object]:  # pragma: no cover - executed by worker
    import asyncio
    import dataclasses

    from rankpilot.jobs.daily import run_daily

    report = asyncio.run(run_daily())
    result = dataclasses.asdict(report)
    result["as_of"] = report.as_of.isoformat()
    return result
