from __future__ import annotations

import logging
from typing import Callable, List, Optional

import requests

from .core.models import NODE_TYPE, BookRecord, IngestResult, ResolveResult, ShelfRequest
from .core.parse import parse_shelf
from .core.stats_tracker import StatsTracker
from .covers import ImageResolver, resolve_images
from .integrations.http_client import FetchError, fetch_shelf_html
from .io.sink import NodeSink, create_content_digest, create_node_id

logger = logging.getLogger(__name__)

SHELF_FAILURE_POLICIES = ("abort", "continue")
IDENTITY_MODES = ("isbn", "isbn_shelf")


def node_seed(record: BookRecord, identity: str = "isbn") -> str:
    """
    Seed for the emitted node id.

    In "isbn" mode the same book on two shelves maps to the same node and the
    later shelf wins. Books without an ISBN fall back to their detail URL.
    """
    key = record.isbn or record.url
    if identity == "isbn_shelf":
        return f"goodreads-book-{key}-{record.shelf}"
    return f"goodreads-book-{key}"


class Harvester:
    def __init__(
        self,
        *,
        requests_: List[ShelfRequest],
        session: requests.Session,
        resolver: ImageResolver,
        sink: NodeSink,
        stats: Optional[StatsTracker] = None,
        fetch_fn: Callable[..., str] = fetch_shelf_html,
        shelf_failure: str = "abort",
        image_failure: str = "fail_fast",
        identity: str = "isbn",
        concurrency: int = 1,
        timeout_s: Optional[int] = 30,
    ) -> None:
        if shelf_failure not in SHELF_FAILURE_POLICIES:
            raise ValueError(f"unknown shelf failure policy: {shelf_failure}")
        if identity not in IDENTITY_MODES:
            raise ValueError(f"unknown identity mode: {identity}")

        self.requests = list(requests_)
        self.session = session
        self.resolver = resolver
        self.sink = sink
        self.stats = stats or resolver.stats or StatsTracker()
        if resolver.stats is None:
            resolver.stats = self.stats
        self.fetch_fn = fetch_fn
        self.shelf_failure = shelf_failure
        self.image_failure = image_failure
        self.identity = identity
        self.concurrency = max(1, int(concurrency))
        self.timeout_s = timeout_s

    def fetch_records(self) -> Optional[List[BookRecord]]:
        """
        Fetch and parse every shelf in order.

        Returns None when a shelf fetch fails under the "abort" policy; records
        parsed from earlier shelves are dropped with it.
        """
        self.stats.set_shelves_total(len(self.requests))
        out: List[BookRecord] = []
        for req in self.requests:
            try:
                html = self.fetch_fn(self.session, req, timeout_s=self.timeout_s)
            except FetchError as e:
                self.stats.inc_shelves_failed()
                if self.shelf_failure == "abort":
                    logger.error("could not fetch Goodreads shelf, aborting run | shelf=%s | err=%s", req.shelf, e)
                    return None
                logger.error("could not fetch Goodreads shelf, skipping | shelf=%s | err=%s", req.shelf, e)
                continue
            self.stats.inc_requests()

            records = parse_shelf(html, req.shelf, stats=self.stats)
            self.stats.inc_shelves_done()
            logger.info("shelf fetched | shelf=%s | records=%s", req.shelf, len(records))
            out.extend(records)
        return out

    def resolve(self, records: List[BookRecord]) -> List[ResolveResult]:
        return resolve_images(
            records,
            self.resolver,
            policy=self.image_failure,
            concurrency=self.concurrency,
        )

    def emit(self, results: List[ResolveResult]) -> List[BookRecord]:
        emitted: List[BookRecord] = []
        for res in results:
            rec = res.record
            fields = rec.as_node_fields()
            outcome = self.sink.emit(
                create_node_id(node_seed(rec, self.identity)),
                create_content_digest(fields),
                NODE_TYPE,
                fields,
            )
            self.stats.inc_emitted(outcome)
            emitted.append(rec)
        return emitted

    def run(self) -> IngestResult:
        logger.info(
            "Ingest start: shelves=%s shelf_failure=%s image_failure=%s identity=%s",
            [r.shelf for r in self.requests],
            self.shelf_failure,
            self.image_failure,
            self.identity,
        )
        try:
            records = self.fetch_records()
            if records is None:
                return IngestResult(records=[], aborted=True, stats=self.stats.snapshot())

            results = self.resolve(records)
            emitted = self.emit(results)
            self.sink.prune()
            self.sink.save()
        finally:
            self.resolver.cache.save()

        snap = self.stats.snapshot()
        logger.info(
            "Ingest complete: records=%s created=%s updated=%s unchanged=%s skipped_rows=%s",
            len(emitted),
            snap.created,
            snap.updated,
            snap.unchanged,
            snap.rows_skipped,
        )
        return IngestResult(records=emitted, aborted=False, stats=snap)

