"""Seed tracked keywords from tracked.yml."""

from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine

from rankpilot.db.session import create_engine_from_env
from rankpilot.search import load_tracked_pairs
from rankpilot.search.models import TrackedPair
from rankpilot.utils.logs import setup_logging

logger = logging.getLogger(__name__)


def seed_tracked(engine: Engine, pairs: list[TrackedPair]) -> None:
    with engine.begin() as conn:
        for pair in pairs:
            conn.execute(
                text(
                    """
                    INSERT INTO tracked_keywords (product_id, keyword, is_tracked)
                    VALUES (:product_id, :keyword, TRUE)
                    ON CONFLICT (product_id, keyword) DO UPDATE SET is_tracked = TRUE
                    """
                ),
                {"product_id": pair.product_id, "keyword": pair.keyword},
            )


def main() -> None:
    setup_logging()
    engine = create_engine_from_env()
    pairs = load_tracked_pairs()
    seed_tracked(engine, pairs)
    logger.info("Seeded %s tracked keywords", len(pairs))


if __name__ == "__main__":
    main()
