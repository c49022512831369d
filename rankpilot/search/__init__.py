"""Rank tracking against the external search API."""

from __future__ import annotations

import pathlib

import yaml

from rankpilot.search.models import TrackedPair

TRACKED_PATH = pathlib.Path(__file__).with_name("tracked.yml")


def load_tracked_pairs(path: pathlib.Path = TRACKED_PATH, limit: int | None = None) -> list[TrackedPair]:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or []
    pairs = [
        TrackedPair(product_id=str(item["product_id"]), keyword=keyword)
        for item in data
        for keyword in item.get("keywords", [])
    ]
    if limit:
        return pairs[:limit]
    return pairs
