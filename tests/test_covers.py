import hashlib
import os
import time
from datetime import date

import pytest
import requests

from shelf_harvester.core.models import BookRecord, ImageRef
from shelf_harvester.core.stats_tracker import StatsTracker
from shelf_harvester.core.store import CacheStore
from shelf_harvester.covers import (
    ImageFetchError,
    ImageResolver,
    RemoteFileDownloader,
    cover_cache_key,
    resolve_images,
)


class FakeDownloader:
    def __init__(self, fail_urls=()) -> None:
        self.calls = []
        self.fail_urls = set(fail_urls)

    def create(self, url: str) -> ImageRef:
        self.calls.append(url)
        if url in self.fail_urls:
            raise ImageFetchError(f"boom: {url}")
        file_id = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
        return ImageRef(file_id=file_id, path=f"/tmp/{file_id}.jpg", modified=1700000000)


class SlowDownloader(FakeDownloader):
    """Fails listed urls at once; every other download takes a while."""

    def create(self, url: str) -> ImageRef:
        if url not in self.fail_urls:
            time.sleep(0.2)
        return super().create(url)


class FakeResponse:
    def __init__(self, status_code: int = 200, content: bytes = b"", headers=None) -> None:
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.text = content.decode("utf-8", "replace")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, response: FakeResponse) -> None:
        self.response = response
        self.calls = 0

    def get(self, url, **kwargs):
        self.calls += 1
        return self.response


def _make_record(isbn, cover: str = "https://x.test/cover.jpg", shelf: str = "read") -> BookRecord:
    return BookRecord(
        title="Title",
        author="Author",
        isbn=isbn,
        isbn13=None,
        asin=None,
        pages=0,
        published=date(2000, 1, 1),
        started=date(2000, 1, 1),
        finished=date(2000, 1, 1),
        cover=cover,
        url=f"https://www.goodreads.com/book/show/{isbn or cover}",
        shelf=shelf,
    )


def test_cover_cache_key() -> None:
    assert cover_cache_key("0441013597") == "local-goodreads-cover-0441013597"
    assert cover_cache_key(None) is None
    assert cover_cache_key("") is None


def test_resolver_miss_then_hit() -> None:
    cache = CacheStore()
    downloader = FakeDownloader()
    stats = StatsTracker()
    resolver = ImageResolver(cache=cache, downloader=downloader, stats=stats)

    first, hit1 = resolver.resolve("https://x.test/a.jpg", "local-goodreads-cover-1")
    second, hit2 = resolver.resolve("https://x.test/a.jpg", "local-goodreads-cover-1")

    assert hit1 is False
    assert hit2 is True
    assert first == second
    assert downloader.calls == ["https://x.test/a.jpg"]
    assert cache.get("local-goodreads-cover-1")["fileNodeID"] == first.file_id
    snap = stats.snapshot()
    assert snap.cache_hits == 1
    assert snap.cache_misses == 1


def test_resolver_without_key_always_fetches() -> None:
    cache = CacheStore()
    downloader = FakeDownloader()
    stats = StatsTracker()
    resolver = ImageResolver(cache=cache, downloader=downloader, stats=stats)

    resolver.resolve("https://x.test/a.jpg", None)
    resolver.resolve("https://x.test/a.jpg", None)

    assert len(downloader.calls) == 2
    assert cache.size() == 0
    snap = stats.snapshot()
    assert snap.uncached_fetches == 2
    assert snap.cache_misses == 0
    assert snap.cache_hits == 0


def test_resolver_ignores_entry_without_file_id() -> None:
    cache = CacheStore(initial={"local-goodreads-cover-1": {"modified": 5}})
    downloader = FakeDownloader()
    resolver = ImageResolver(cache=cache, downloader=downloader)

    image, hit = resolver.resolve("https://x.test/a.jpg", "local-goodreads-cover-1")

    assert hit is False
    assert downloader.calls == ["https://x.test/a.jpg"]
    assert cache.get("local-goodreads-cover-1")["fileNodeID"] == image.file_id


def test_resolve_images_preserves_order_with_threads() -> None:
    records = [_make_record(str(i), cover=f"https://x.test/{i}.jpg") for i in range(20)]
    resolver = ImageResolver(cache=CacheStore(), downloader=FakeDownloader())

    results = resolve_images(records, resolver, concurrency=4)

    assert [r.record.isbn for r in results] == [str(i) for i in range(20)]
    assert all(r.ok and r.record.cover_image == r.image.file_id for r in results)


def test_resolve_images_fail_fast_raises() -> None:
    records = [_make_record("1", cover="https://x.test/ok.jpg"), _make_record("2", cover="https://x.test/bad.jpg")]
    resolver = ImageResolver(cache=CacheStore(), downloader=FakeDownloader(fail_urls=["https://x.test/bad.jpg"]))

    with pytest.raises(ImageFetchError):
        resolve_images(records, resolver, policy="fail_fast")


def test_resolve_images_fail_fast_stops_pending_downloads() -> None:
    records = [_make_record(str(i), cover=f"https://x.test/{i}.jpg") for i in range(40)]
    downloader = SlowDownloader(fail_urls=["https://x.test/0.jpg"])
    resolver = ImageResolver(cache=CacheStore(), downloader=downloader)

    with pytest.raises(ImageFetchError):
        resolve_images(records, resolver, policy="fail_fast", concurrency=2)

    assert len(downloader.calls) < 10


def test_resolve_images_best_effort_keeps_record() -> None:
    records = [_make_record("1", cover="https://x.test/bad.jpg"), _make_record("2", cover="https://x.test/ok.jpg")]
    stats = StatsTracker()
    resolver = ImageResolver(
        cache=CacheStore(),
        downloader=FakeDownloader(fail_urls=["https://x.test/bad.jpg"]),
        stats=stats,
    )

    results = resolve_images(records, resolver, policy="best_effort")

    assert [r.record.isbn for r in results] == ["1", "2"]
    assert results[0].ok is False
    assert results[0].record.cover_image is None
    assert results[1].record.cover_image is not None
    assert stats.snapshot().image_errors == 1


def test_resolve_images_rejects_unknown_policy() -> None:
    resolver = ImageResolver(cache=CacheStore(), downloader=FakeDownloader())
    with pytest.raises(ValueError):
        resolve_images([], resolver, policy="sometimes")


def test_remote_downloader_is_content_addressed(tmp_path) -> None:
    body = b"\xff\xd8\xff" + b"x" * 100
    session = FakeSession(FakeResponse(200, body, {"Content-Type": "image/jpeg"}))
    downloader = RemoteFileDownloader(str(tmp_path / "covers"), session=session, retries=0)

    a = downloader.create("https://x.test/books/1.jpg")
    b = downloader.create("https://x.test/other/2.jpg")

    assert a.file_id == hashlib.sha256(body).hexdigest()[:16]
    assert a.file_id == b.file_id
    assert a.path == b.path
    assert os.path.exists(a.path)
    with open(a.path, "rb") as f:
        assert f.read() == body
    assert len(os.listdir(tmp_path / "covers")) == 1


def test_remote_downloader_rejects_non_image(tmp_path) -> None:
    session = FakeSession(FakeResponse(200, b"<html></html>", {"Content-Type": "text/html"}))
    downloader = RemoteFileDownloader(str(tmp_path), session=session, retries=0)

    with pytest.raises(ImageFetchError):
        downloader.create("https://x.test/1.jpg")


def test_remote_downloader_http_error(tmp_path) -> None:
    session = FakeSession(FakeResponse(404, b"nope", {"Content-Type": "text/plain"}))
    downloader = RemoteFileDownloader(str(tmp_path), session=session, retries=0)

    with pytest.raises(ImageFetchError):
        downloader.create("https://x.test/1.jpg")
    assert session.calls == 1


def test_cache_store_persists(tmp_path) -> None:
    path = str(tmp_path / "cache.json")
    cache = CacheStore(path)
    cache.set("local-goodreads-cover-1", {"fileNodeID": "abc", "path": "/x/abc.jpg", "modified": 1})
    cache.save()

    reloaded = CacheStore(path)
    assert reloaded.get("local-goodreads-cover-1")["fileNodeID"] == "abc"
    assert reloaded.get("missing") is None
