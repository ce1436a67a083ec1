from __future__ import annotations

import json
import logging
import os
import threading
from typing import Dict, Optional

from shelf_harvester.io.utils import atomic_write_text

logger = logging.getLogger(__name__)


class CacheStore:
    """
    Thread-safe key/value cache for materialized cover images.
    Entries are plain dicts; the store is persisted as one JSON object.
    """

    def __init__(self, path: Optional[str] = None, initial: Optional[Dict[str, dict]] = None) -> None:
        self._lock = threading.Lock()
        self.path = path
        self._data: Dict[str, dict] = dict(initial or {})
        self._dirty = False
        if path and initial is None:
            self._data = _read_cache_file(path)

    def get(self, key: str) -> Optional[dict]:
        with self._lock:
            entry = self._data.get(key)
            return dict(entry) if entry is not None else None

    def set(self, key: str, value: dict) -> None:
        with self._lock:
            self._data[key] = dict(value)
            self._dirty = True

    def size(self) -> int:
        with self._lock:
            return len(self._data)

    def save(self) -> None:
        if not self.path:
            return
        with self._lock:
            if not self._dirty:
                return
            payload = {k: dict(v) for k, v in self._data.items()}
            self._dirty = False

        def _write(tmp_path: str) -> None:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2, sort_keys=True)

        atomic_write_text(_write, self.path)
        logger.info("cache saved | path=%s | entries=%s", self.path, len(payload))


def _read_cache_file(path: str) -> Dict[str, dict]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("cache unreadable, starting empty | path=%s | err=%r", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("cache has unexpected shape, starting empty | path=%s", path)
        return {}
    return {str(k): v for k, v in data.items() if isinstance(v, dict)}
