from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List

import yaml

from shelf_harvester.core.models import ShelfRequest

logger = logging.getLogger(__name__)

PER_PAGE = 100
NAV_REF = "nav_mybooks"


def read_config_file(path: Path) -> Dict[str, object]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except FileNotFoundError as e:
        raise SystemExit(f"Config file not found: {path}") from e
    except (OSError, yaml.YAMLError) as e:
        raise SystemExit(f"Failed to read config file: {path} ({e})") from e
    if not isinstance(data, dict):
        raise SystemExit(f"Config file must be a mapping: {path}")
    logger.info("Loaded config file: %s", path)

    shelves = data.get("shelves")
    if shelves is not None:
        if isinstance(shelves, str):
            shelves = [shelves]
        if not isinstance(shelves, list):
            raise SystemExit(f"'shelves' must be a list in {path}")
        data["shelves"] = [str(s).strip() for s in shelves if str(s).strip()]
    if data.get("user_id") is not None:
        data["user_id"] = str(data["user_id"]).strip()
    return data


def build_shelf_requests(user_id: str, shelves: Iterable[str]) -> List[ShelfRequest]:
    """
    One request per shelf, in the order given.

    Shelf names are not restricted to Goodreads' built-in shelves; repeated
    names are fetched again.
    """
    out = [
        ShelfRequest(user_id=user_id, shelf=s.strip(), per_page=PER_PAGE, ref=NAV_REF)
        for s in shelves
        if s and s.strip()
    ]
    logger.info("Built shelf requests: %s", len(out))
    return out
