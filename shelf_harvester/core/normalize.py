from __future__ import annotations

import re
from datetime import date, datetime
from typing import Optional

TRIM_CHARS = "\n *\t\r\f\v"

# Goodreads renders dates it does not know as "unknown" or "not set".
UNKNOWN_DATE_MARKERS = ("unknown", "not set")
SENTINEL_DATE = date(2000, 1, 1)

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %Y",
    "%B %Y",
    "%Y",
    "%m/%d/%Y",
)

_LEADING_INT_RE = re.compile(r"^[+-]?\d+")
_THUMB_SIZE_RE = re.compile(r"\._\w+\d+_")
_WS_RE = re.compile(r"\s+")


def custom_trim(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    t = value.strip(TRIM_CHARS)
    return t or None


def parse_pages(value: Optional[str]) -> int:
    t = custom_trim(value)
    if not t:
        return 0
    m = _LEADING_INT_RE.match(t)
    if not m:
        return 0
    return max(0, int(m.group(0)))


def parse_date(value: Optional[str]) -> date:
    """
    Normalize a shelf date cell to a calendar date.

    Absent text, an unknown marker, or anything none of the known layouts
    accept all collapse to SENTINEL_DATE.
    """
    if not value:
        return SENTINEL_DATE
    lowered = value.lower()
    if any(marker in lowered for marker in UNKNOWN_DATE_MARKERS):
        return SENTINEL_DATE
    t = custom_trim(value)
    if not t:
        return SENTINEL_DATE
    t = _WS_RE.sub(" ", t)
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(t, fmt).date()
        except ValueError:
            continue
    return SENTINEL_DATE


def full_size_cover_url(src: Optional[str]) -> Optional[str]:
    if not src:
        return None
    return _THUMB_SIZE_RE.sub("", src, count=1) or None


def absolute_url(path: Optional[str], base_url: str) -> Optional[str]:
    if not path:
        return None
    if path.startswith("http://") or path.startswith("https://"):
        return path
    return f"{base_url}{path}"
