from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

GOODREADS_BASE_URL = "https://www.goodreads.com"
NODE_TYPE = "GoodreadsBook"


@dataclass(frozen=True)
class BookRecord:
    title: Optional[str]
    author: Optional[str]
    isbn: Optional[str]
    isbn13: Optional[str]
    asin: Optional[str]
    pages: int
    published: date
    started: date
    finished: date
    cover: str
    url: str
    shelf: str
    cover_image: Optional[str] = None

    def as_node_fields(self) -> Dict[str, object]:
        """
        Field set stored on the emitted node, using the node schema names.
        Dates are serialized as ISO strings so the digest is stable.
        """
        return {
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "isbn13": self.isbn13,
            "asin": self.asin,
            "pages": self.pages,
            "published": self.published.isoformat(),
            "started": self.started.isoformat(),
            "finished": self.finished.isoformat(),
            "cover": self.cover,
            "coverImage": self.cover_image,
            "url": self.url,
            "shelf": self.shelf,
        }


@dataclass(frozen=True)
class ShelfRequest:
    user_id: str
    shelf: str
    per_page: int = 100
    ref: str = "nav_mybooks"


@dataclass(frozen=True)
class ImageRef:
    file_id: str
    path: str
    modified: int

    def to_cache_entry(self) -> Dict[str, object]:
        return {"fileNodeID": self.file_id, "path": self.path, "modified": self.modified}

    @classmethod
    def from_cache_entry(cls, entry: dict) -> Optional["ImageRef"]:
        file_id = entry.get("fileNodeID") if isinstance(entry, dict) else None
        if not file_id:
            return None
        return cls(
            file_id=str(file_id),
            path=str(entry.get("path") or ""),
            modified=int(entry.get("modified") or 0),
        )


@dataclass(frozen=True)
class ResolveResult:
    record: BookRecord
    image: Optional[ImageRef] = None
    error: Optional[str] = None
    cache_hit: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class StatsSnapshot:
    shelves_total: int
    shelves_done: int
    shelves_failed: int
    requests_made: int
    rows_seen: int
    rows_skipped: int
    records: int
    cache_hits: int
    cache_misses: int
    uncached_fetches: int
    image_errors: int
    created: int
    updated: int
    unchanged: int


@dataclass
class IngestResult:
    records: List[BookRecord] = field(default_factory=list)
    aborted: bool = False
    stats: Optional[StatsSnapshot] = None
