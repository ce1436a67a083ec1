from __future__ import annotations

import csv
import logging
from typing import Iterable

from shelf_harvester.core.models import BookRecord
from shelf_harvester.io.utils import atomic_write_csv

logger = logging.getLogger(__name__)

FULL_CSV_FIELDS = [
    "isbn",
    "isbn13",
    "asin",
    "title",
    "author",
    "pages",
    "published",
    "started",
    "finished",
    "shelf",
    "url",
    "cover",
    "coverImage",
]


def write_full_csv(records: Iterable[BookRecord], out_path: str) -> None:
    records = list(records)

    def _write(path: str) -> None:
        with open(path, "w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=FULL_CSV_FIELDS)
            w.writeheader()
            for r in records:
                row = r.as_node_fields()
                w.writerow({k: "" if row[k] is None else row[k] for k in FULL_CSV_FIELDS})

    atomic_write_csv(_write, out_path)
    logger.info("Wrote full CSV: %s rows=%s", out_path, len(records))
