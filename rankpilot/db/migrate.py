"""Apply schema.sql to the configured database."""

from __future__ import annotations

import logging
import pathlib
import sys
from typing import Iterable

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from rankpilot.db.session import create_engine_from_env
from rankpilot.utils.logs import setup_logging

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).with_name("schema.sql")


def run_migrations(engine: Engine, path: pathlib.Path = SCHEMA_PATH) -> int:
    statements = list(split_statements(path.read_text(encoding="utf-8")))
    with engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
    logger.info("Applied %s statements from %s", len(statements), path.name)
    return len(statements)


def split_statements(sql: str) -> Iterable[str]:
    """Split on lines ending in ``;``; schema.sql keeps one statement per block."""
    buffer: list[str] = []
    for line in sql.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        buffer.append(line)
        if stripped.endswith(";"):
            yield "\n".join(buffer)
            buffer.clear()
    if buffer:
        yield "\n".join(buffer)


def main() -> None:
    setup_logging()
    engine = create_engine_from_env()
    try:
        run_migrations(engine)
    except SQLAlchemyError as exc:
        logger.error("Migration failed: %s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
