from __future__ import annotations

import threading
import time
from dataclasses import asdict
from typing import Optional

from shelf_harvester.core.models import StatsSnapshot


class StatsTracker:
    """
    Thread-safe counters for one ingestion run.

    Rule: All mutation is done under one lock.
    Call snapshot() to get a consistent StatsSnapshot for logging.
    """

    def __init__(self, shelves_total: int = 0) -> None:
        self._lock = threading.Lock()
        self._shelves_total = int(shelves_total)
        self._counts = {
            "shelves_done": 0,
            "shelves_failed": 0,
            "requests_made": 0,
            "rows_seen": 0,
            "rows_skipped": 0,
            "records": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "uncached_fetches": 0,
            "image_errors": 0,
            "created": 0,
            "updated": 0,
            "unchanged": 0,
        }
        self._start_ts: Optional[float] = None

    def _inc(self, key: str, n: int) -> None:
        with self._lock:
            if self._start_ts is None:
                self._start_ts = time.time()
            self._counts[key] += int(n)

    def set_shelves_total(self, n: int) -> None:
        with self._lock:
            self._shelves_total = int(n)

    def inc_shelves_done(self, n: int = 1) -> None:
        self._inc("shelves_done", n)

    def inc_shelves_failed(self, n: int = 1) -> None:
        self._inc("shelves_failed", n)

    def inc_requests(self, n: int = 1) -> None:
        self._inc("requests_made", n)

    def inc_rows_seen(self, n: int = 1) -> None:
        self._inc("rows_seen", n)

    def inc_rows_skipped(self, n: int = 1) -> None:
        self._inc("rows_skipped", n)

    def inc_records(self, n: int = 1) -> None:
        self._inc("records", n)

    def inc_cache_hits(self, n: int = 1) -> None:
        self._inc("cache_hits", n)

    def inc_cache_misses(self, n: int = 1) -> None:
        self._inc("cache_misses", n)

    def inc_uncached_fetches(self, n: int = 1) -> None:
        self._inc("uncached_fetches", n)

    def inc_image_errors(self, n: int = 1) -> None:
        self._inc("image_errors", n)

    def inc_emitted(self, outcome: str, n: int = 1) -> None:
        if outcome not in ("created", "updated", "unchanged"):
            raise ValueError(f"unknown emit outcome: {outcome}")
        self._inc(outcome, n)

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(shelves_total=self._shelves_total, **self._counts)

    def snapshot_dict(self) -> dict:
        snap = self.snapshot()
        with self._lock:
            start_ts = self._start_ts
        out = asdict(snap)
        out["seconds"] = max(0.0, time.time() - start_ts) if start_ts is not None else 0.0
        return out
