from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from .core.models import BookRecord, ImageRef, ResolveResult
from .core.stats_tracker import StatsTracker
from .core.store import CacheStore
from .io.utils import atomic_write_bytes

logger = logging.getLogger(__name__)

IMAGE_FAILURE_POLICIES = ("fail_fast", "best_effort")


class ImageFetchError(RuntimeError):
    pass


def cover_cache_key(isbn: Optional[str]) -> Optional[str]:
    if not isbn:
        return None
    return f"local-goodreads-cover-{isbn}"


def guess_ext_from_url(url: str) -> str:
    parsed = urlparse(url)
    if "." in parsed.path:
        ext = parsed.path.rsplit(".", 1)[-1].lower()
        if ext in ("jpeg", "jpg", "png", "webp", "gif"):
            return ext
    return "jpg"


def fetch_image_bytes(session: requests.Session, url: str, *, timeout_s: int, retries: int) -> Tuple[bytes, str]:
    backoff = 1.0
    for attempt in range(1, retries + 2):
        try:
            r = session.get(url, timeout=timeout_s)
            if r.status_code in (429, 500, 502, 503, 504):
                if attempt <= retries:
                    time.sleep(min(30.0, backoff))
                    backoff = min(30.0, backoff * 2)
                    continue

            r.raise_for_status()
            content_type = (r.headers.get("Content-Type") or "image/jpeg").split(";")[0].strip().lower()
            body = r.content or b""

            if not content_type.startswith("image/"):
                raise ImageFetchError(f"Non-image content-type: {content_type}")
            if not body:
                raise ImageFetchError("Empty image body")

            return body, content_type
        except ImageFetchError:
            raise
        except requests.RequestException as e:
            if attempt <= retries:
                logger.warning("image fetch error | url=%s | err=%r (retrying)", url, e)
                time.sleep(min(30.0, backoff))
                backoff = min(30.0, backoff * 2)
                continue
            raise ImageFetchError(f"Image fetch failed: {url} error={e}") from e
    raise ImageFetchError(f"Image fetch failed: {url}")


def content_address(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()[:16]


class RemoteFileDownloader:
    """
    Materializes remote images under a local directory.

    Files are named by the hash of their bytes, so the same image downloaded
    twice lands on the same path and is written once.
    """

    def __init__(
        self,
        root: str,
        *,
        session: Optional[requests.Session] = None,
        timeout_s: int = 30,
        retries: int = 2,
    ) -> None:
        self.root = root
        self.timeout_s = timeout_s
        self.retries = retries
        self._session = session
        self._local = threading.local()

    def _get_session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        sess = getattr(self._local, "session", None)
        if sess is None:
            sess = requests.Session()
            self._local.session = sess
        return sess

    def create(self, url: str) -> ImageRef:
        body, _content_type = fetch_image_bytes(
            self._get_session(), url, timeout_s=self.timeout_s, retries=self.retries
        )
        file_id = content_address(body)
        path = os.path.join(self.root, f"{file_id}.{guess_ext_from_url(url)}")
        if not os.path.exists(path):
            atomic_write_bytes(body, path)
            logger.debug("image stored | url=%s | path=%s", url, path)
        return ImageRef(file_id=file_id, path=path, modified=int(os.path.getmtime(path)))


class ImageResolver:
    def __init__(self, *, cache: CacheStore, downloader: RemoteFileDownloader, stats: Optional[StatsTracker] = None) -> None:
        self.cache = cache
        self.downloader = downloader
        self.stats = stats

    def resolve(self, url: str, cache_key: Optional[str]) -> Tuple[ImageRef, bool]:
        """
        Return (image, cache_hit). A cache entry without a file id counts as a miss.
        """
        if cache_key:
            entry = self.cache.get(cache_key)
            cached = ImageRef.from_cache_entry(entry) if entry else None
            if cached is not None:
                if self.stats:
                    self.stats.inc_cache_hits()
                return cached, True

        if self.stats:
            if cache_key:
                self.stats.inc_cache_misses()
            else:
                self.stats.inc_uncached_fetches()
        image = self.downloader.create(url)
        if cache_key:
            self.cache.set(cache_key, image.to_cache_entry())
        return image, False


def _resolve_one(resolver: ImageResolver, record: BookRecord) -> ResolveResult:
    image, hit = resolver.resolve(record.cover, cover_cache_key(record.isbn))
    return ResolveResult(record=replace(record, cover_image=image.file_id), image=image, cache_hit=hit)


def resolve_images(
    records: Iterable[BookRecord],
    resolver: ImageResolver,
    *,
    policy: str = "fail_fast",
    concurrency: int = 1,
) -> List[ResolveResult]:
    if policy not in IMAGE_FAILURE_POLICIES:
        raise ValueError(f"unknown image failure policy: {policy}")

    records = list(records)
    results: List[Optional[ResolveResult]] = [None] * len(records)

    def _handle_failure(idx: int, e: Exception) -> None:
        rec = records[idx]
        if resolver.stats:
            resolver.stats.inc_image_errors()
        if policy == "fail_fast":
            logger.error("cover failed | isbn=%s | url=%s | err=%r", rec.isbn, rec.cover, e)
            if isinstance(e, ImageFetchError):
                raise e
            raise ImageFetchError(f"Cover failed for {rec.url}: {e}") from e
        logger.warning("cover skipped | isbn=%s | url=%s | err=%r", rec.isbn, rec.cover, e)
        results[idx] = ResolveResult(record=rec, error=repr(e))

    if concurrency <= 1:
        for i, rec in enumerate(records):
            try:
                results[i] = _resolve_one(resolver, rec)
            except (ImageFetchError, OSError) as e:
                _handle_failure(i, e)
    else:
        with ThreadPoolExecutor(max_workers=concurrency) as ex:
            future_map = {ex.submit(_resolve_one, resolver, rec): i for i, rec in enumerate(records)}
            for fut in as_completed(future_map):
                idx = future_map[fut]
                try:
                    results[idx] = fut.result()
                except (ImageFetchError, OSError) as e:
                    if policy == "fail_fast":
                        for pending in future_map:
                            pending.cancel()
                    _handle_failure(idx, e)

    out = [r for r in results if r is not None]
    hits = sum(1 for r in out if r.cache_hit)
    logger.info("covers resolved | total=%s | cache_hits=%s | failed=%s", len(records), hits, sum(1 for r in out if not r.ok))
    return out
