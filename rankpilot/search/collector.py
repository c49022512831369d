"""Sequential, budget-aware rank collection."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable, Sequence

from rankpilot.search.budget import ApiBudget
from rankpilot.search.errors import BudgetExhausted, SearchError
from rankpilot.search.models import BatchResult, PairFailure, RankSnapshot, TrackedPair
from rankpilot.search.resolver import RANK_CHECK_LIMIT, RankResolver
from rankpilot.utils.dates import local_date, utcnow
from rankpilot.utils.retry import Sleep

logger = logging.getLogger(__name__)

CALL_DELAY = float(os.environ.get("RANK_CALL_DELAY", 0.1))

SnapshotSink = Callable[[RankSnapshot], None]
FailureSink = Callable[[PairFailure], None]


class BatchCollector:
    """Runs the resolver over tracked pairs, one at a time.

    The budget is checked before every pair; when it cannot cover another
    call the batch stops and is flagged ``incomplete``. A pair that still fails
    after the resolver's retries is recorded and skipped. Snapshots are handed
    to ``sink`` as soon as they exist so an interrupted run keeps its work.
    """

    def __init__(
        self,
        resolver: RankResolver,
        *,
        call_delay: float = CALL_DELAY,
        rank_limit: int = RANK_CHECK_LIMIT,
        sink: SnapshotSink | None = None,
        on_failure: FailureSink | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.resolver = resolver
        self.call_delay = call_delay
        self.rank_limit = rank_limit
        self.sink = sink
        self.on_failure = on_failure
        self._sleep = sleep or asyncio.sleep

    async def collect(self, pairs: Sequence[TrackedPair], budget: ApiBudget) -> BatchResult:
        started = time.monotonic()
        spent_before = budget.spent
        batch = BatchResult()
        logger.info("Collecting ranks for %s pairs", len(pairs))

        for index, pair in enumerate(pairs):
            if not budget.can_spend():
                self._stop(batch, pairs, index)
                break
            if index > 0 and self.call_delay > 0:
                await self._sleep(self.call_delay)
            calls_before = budget.spent
            try:
                resolution = await self.resolver.resolve(
                    pair.keyword,
                    pair.product_id,
                    max_position=self.rank_limit,
                    budget=budget,
                )
            except BudgetExhausted:
                self._stop(batch, pairs, index)
                break
            except SearchError as exc:
                logger.error("Rank check failed for %s / %r: %s", pair.product_id, pair.keyword, exc)
                self._fail(batch, PairFailure(pair=pair, error=exc, api_calls=budget.spent - calls_before))
                continue
            except Exception as exc:
                logger.exception("Unexpected error checking %s / %r", pair.product_id, pair.keyword)
                self._fail(batch, PairFailure(pair=pair, error=exc, api_calls=budget.spent - calls_before))
                continue

            checked_at = utcnow()
            snapshot = RankSnapshot(
                product_id=pair.product_id,
                keyword=pair.keyword,
                rank=resolution.rank,
                checked_at=checked_at,
                check_date=local_date(checked_at),
                api_calls=resolution.api_calls,
                rank_limit=self.rank_limit,
            )
            if self.sink:
                self.sink(snapshot)
            batch.results.append(snapshot)
            logger.info(
                "  %s / %r -> %s",
                pair.product_id,
                pair.keyword,
                snapshot.rank if snapshot.rank is not None else "unranked",
            )

        batch.consumed = budget.spent - spent_before
        logger.info(
            "Collection finished: %s ok, %s failed, %s skipped, %s calls, incomplete=%s (%.1fs)",
            batch.succeeded,
            len(batch.failures),
            batch.skipped,
            batch.consumed,
            batch.incomplete,
            time.monotonic() - started,
        )
        return batch

    def _fail(self, batch: BatchResult, failure: PairFailure) -> None:
        batch.failures.append(failure)
        if self.on_failure:
            self.on_failure(failure)

    @staticmethod
    def _stop(batch: BatchResult, pairs: Sequence[TrackedPair], index: int) -> None:
        batch.incomplete = True
        batch.skipped = len(pairs) - index
        logger.warning("Budget exhausted; stopping with %s pairs left", batch.skipped)
