"""Daily search API call budget, persisted per calendar day."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from rankpilot.search.errors import BudgetExhausted
from rankpilot.utils.dates import today_in_tz

logger = logging.getLogger(__name__)

FEATURES = ("ranking", "color_analysis", "reserve")
RESERVE = "reserve"


@dataclass(slots=True, frozen=True)
class BudgetLimits:
    daily_total: int
    ranking: int
    color_analysis: int
    reserve: int

    @classmethod
    def from_env(cls) -> "BudgetLimits":
        return cls(
            daily_total=int(os.environ.get("API_DAILY_LIMIT", 25000)),
            ranking=int(os.environ.get("API_BUDGET_RANKING", 15000)),
            color_analysis=int(os.environ.get("API_BUDGET_COLOR_ANALYSIS", 5000)),
            reserve=int(os.environ.get("API_BUDGET_RESERVE", 5000)),
        )

    @classmethod
    def flat(cls, total: int) -> "BudgetLimits":
        """All calls come from ``ranking``; no sub-budgets, no reserve."""
        return cls(daily_total=total, ranking=total, color_analysis=0, reserve=0)

    def for_feature(self, feature: str) -> int:
        return getattr(self, feature)


class ApiBudget:
    """Shared daily call counter for one feature.

    Usage lives in ``api_budget_usage`` keyed by (day, feature) so a restarted
    process continues from what was already spent today. A feature that has
    used up its own allowance may borrow from the reserve while the daily
    total still has room.
    """

    def __init__(
        self,
        engine: Engine,
        limits: BudgetLimits,
        *,
        feature: str = "ranking",
        today: Callable[[], date] = today_in_tz,
    ) -> None:
        if feature not in FEATURES:
            raise ValueError(f"Unknown budget feature: {feature}")
        self.engine = engine
        self.limits = limits
        self.feature = feature
        self._today = today
        self.spent = 0

    def usage(self) -> dict[str, int]:
        query = text("SELECT feature, used FROM api_budget_usage WHERE usage_date = :day")
        with self.engine.connect() as conn:
            rows = conn.execute(query, {"day": self._today()}).fetchall()
        counts = {feature: 0 for feature in FEATURES}
        for feature, used in rows:
            counts[feature] = int(used)
        return counts

    def remaining(self) -> int:
        counts = self.usage()
        total_left = self.limits.daily_total - sum(counts.values())
        own_left = self.limits.for_feature(self.feature) - counts[self.feature]
        if self.feature != RESERVE:
            own_left = max(own_left, 0) + max(self.limits.reserve - counts[RESERVE], 0)
        return max(min(total_left, own_left), 0)

    def can_spend(self, count: int = 1) -> bool:
        return self.remaining() >= count

    def ensure(self, count: int = 1) -> None:
        if not self.can_spend(count):
            counts = self.usage()
            logger.warning(
                "API budget exhausted for %s (used %s, total %s/%s)",
                self.feature,
                counts[self.feature],
                sum(counts.values()),
                self.limits.daily_total,
            )
            raise BudgetExhausted(self.feature, counts[self.feature], self.limits.for_feature(self.feature))

    def record(self, count: int = 1) -> None:
        day = self._today()
        with self.engine.begin() as conn:
            used = conn.execute(
                text("SELECT used FROM api_budget_usage WHERE usage_date = :day AND feature = :feature"),
                {"day": day, "feature": self.feature},
            ).scalar_one_or_none() or 0
            limit = self.limits.for_feature(self.feature)
            overflow = 0
            if self.feature != RESERVE and used + count > limit:
                overflow = min(count, used + count - limit)
            charges = {self.feature: count - overflow}
            if overflow:
                charges[RESERVE] = overflow
            for feature, amount in charges.items():
                if amount <= 0:
                    continue
                conn.execute(
                    text(
                        """
                        INSERT INTO api_budget_usage (usage_date, feature, used)
                        VALUES (:day, :feature, :amount)
                        ON CONFLICT (usage_date, feature) DO UPDATE SET
                          used = api_budget_usage.used + EXCLUDED.used
                        """
                    ),
                    {"day": day, "feature": feature, "amount": amount},
                )
        self.spent += count

    def status(self) -> dict[str, dict[str, int]]:
        counts = self.usage()
        report = {}
        for feature in FEATURES:
            limit = self.limits.for_feature(feature)
            report[feature] = {
                "used": counts[feature],
                "limit": limit,
                "remaining": max(limit - counts[feature], 0),
            }
        total_used = sum(counts.values())
        report["total"] = {
            "used": total_used,
            "limit": self.limits.daily_total,
            "remaining": max(self.limits.daily_total - total_used, 0),
        }
        return report
