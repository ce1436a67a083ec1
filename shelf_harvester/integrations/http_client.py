from __future__ import annotations

import json
import logging
from typing import Dict, Optional, Tuple
from urllib.parse import quote

import requests

from shelf_harvester.core.models import GOODREADS_BASE_URL, ShelfRequest

logger = logging.getLogger(__name__)

USER_AGENT = "shelf-harvester/1.0"


class FetchError(RuntimeError):
    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


def _safe_body_preview(resp: requests.Response, limit: int = 800) -> str:
    try:
        if "application/json" in (resp.headers.get("Content-Type") or "").lower():
            try:
                payload = resp.json()
                text = json.dumps(payload, ensure_ascii=False, indent=2)
            except ValueError:
                text = resp.text or ""
        else:
            text = resp.text or ""
    except Exception:
        return "<unavailable>"
    text = text.replace("\r", " ").strip()
    if len(text) > limit:
        return text[:limit].rstrip() + "..."
    return text


def make_goodreads_session(user_agent: str = USER_AGENT) -> requests.Session:
    s = requests.Session()
    s.headers.update({
        "Accept": "text/html,application/xhtml+xml",
        "User-Agent": user_agent,
    })
    return s


def build_shelf_request(request: ShelfRequest, base_url: str = GOODREADS_BASE_URL) -> Tuple[str, Dict[str, str]]:
    """
    Build the shelf listing request.

    One page per shelf: per_page is sent as-is and no further pages are requested.
    """
    user = quote(request.user_id, safe="")
    params: Dict[str, str] = {
        "ref": request.ref,
        "shelf": request.shelf,
        "per_page": str(request.per_page),
    }
    return f"{base_url}/review/list/{user}", params


def fetch_shelf_html(
    session: requests.Session,
    request: ShelfRequest,
    *,
    timeout_s: Optional[int] = None,
    base_url: str = GOODREADS_BASE_URL,
) -> str:
    url, params = build_shelf_request(request, base_url=base_url)
    logger.debug("request | method=GET | url=%s | params=%s", url, params)
    try:
        r = session.get(url, params=params, timeout=timeout_s)
    except requests.RequestException as e:
        logger.error("request error | url=%s | params=%s | err=%r", url, params, e)
        raise FetchError(f"Request failed: {url} shelf={request.shelf} error={e}", cause=e) from e

    if r.status_code >= 400:
        logger.error(
            "http error | status=%s | url=%s | params=%s | body=%s",
            r.status_code,
            url,
            params,
            _safe_body_preview(r),
        )
        try:
            r.raise_for_status()
        except requests.HTTPError as e:
            raise FetchError(f"{r.status_code} from {url} shelf={request.shelf}", cause=e) from e
        raise FetchError(f"{r.status_code} from {url} shelf={request.shelf}")

    return r.text or ""
