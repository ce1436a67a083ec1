from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional

from bs4 import BeautifulSoup, Tag

from shelf_harvester.core.models import GOODREADS_BASE_URL, BookRecord
from shelf_harvester.core.normalize import (
    absolute_url,
    custom_trim,
    full_size_cover_url,
    parse_date,
    parse_pages,
)

logger = logging.getLogger(__name__)

ROW_SELECTOR = "#booksBody .bookalike"
COVER_IMG_SELECTOR = "td.field.cover img"
COVER_LINK_SELECTOR = "td.field.cover a"
TITLE_SELECTOR = "td.field.title a"

TEXT_FIELD_SELECTORS = {
    "author": "td.field.author .value",
    "isbn": "td.field.isbn .value",
    "isbn13": "td.field.isbn13 .value",
    "asin": "td.field.asin .value",
}
PAGES_SELECTOR = "td.field.num_pages .value"
DATE_FIELD_SELECTORS = {
    "published": "td.field.date_pub .value",
    "started": "td.field.date_started .date_started_value",
    "finished": "td.field.date_read .date_read_value",
}


def parse_document(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def iter_rows(doc: BeautifulSoup) -> Iterator[Tag]:
    yield from doc.select(ROW_SELECTOR)


def _attr(row: Tag, selector: str, attr: str) -> Optional[str]:
    el = row.select_one(selector)
    if el is None:
        return None
    val = el.get(attr)
    if isinstance(val, list):
        val = " ".join(val)
    return val or None


def _text(row: Tag, selector: str) -> Optional[str]:
    el = row.select_one(selector)
    if el is None:
        return None
    return el.get_text()


def extract_fields(row: Tag) -> Dict[str, object]:
    """
    Pull the optional fields out of one shelf row.

    Text fields are None when the cell is missing or trims to nothing.
    pages is always an int and dates are always dates (see parse_date).
    """
    fields: Dict[str, object] = {"title": custom_trim(_attr(row, TITLE_SELECTOR, "title"))}
    for name, selector in TEXT_FIELD_SELECTORS.items():
        fields[name] = custom_trim(_text(row, selector))
    fields["pages"] = parse_pages(_text(row, PAGES_SELECTOR))
    for name, selector in DATE_FIELD_SELECTORS.items():
        fields[name] = parse_date(_text(row, selector))
    return fields


def parse_row(row: Tag, shelf: str, base_url: str = GOODREADS_BASE_URL) -> Optional[BookRecord]:
    cover = full_size_cover_url(_attr(row, COVER_IMG_SELECTOR, "src"))
    url_path = _attr(row, COVER_LINK_SELECTOR, "href")
    if not cover or not url_path:
        return None

    f = extract_fields(row)
    return BookRecord(
        title=f["title"],
        author=f["author"],
        isbn=f["isbn"],
        isbn13=f["isbn13"],
        asin=f["asin"],
        pages=f["pages"],
        published=f["published"],
        started=f["started"],
        finished=f["finished"],
        cover=cover,
        url=absolute_url(url_path, base_url),
        shelf=shelf,
    )


def parse_shelf(html: str, shelf: str, stats=None) -> List[BookRecord]:
    doc = parse_document(html)
    out: List[BookRecord] = []
    seen = 0
    skipped = 0
    for row in iter_rows(doc):
        seen += 1
        rec = parse_row(row, shelf)
        if rec is None:
            skipped += 1
            continue
        out.append(rec)

    if stats is not None:
        stats.inc_rows_seen(seen)
        stats.inc_rows_skipped(skipped)
        stats.inc_records(len(out))
    logger.debug("parsed shelf | shelf=%s | rows=%s | kept=%s | skipped=%s", shelf, seen, len(out), skipped)
    return out
