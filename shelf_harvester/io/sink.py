from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
import uuid
from typing import Dict, List, Optional, Set

from shelf_harvester.io.utils import atomic_write_text

logger = logging.getLogger(__name__)

NODE_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "https://github.com/shelf-harvester/nodes")


def create_node_id(seed: str) -> str:
    return str(uuid.uuid5(NODE_NAMESPACE, seed))


def create_content_digest(obj) -> str:
    if isinstance(obj, str):
        payload = obj
    else:
        payload = json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


class NodeSink:
    """
    Keeps the latest version of every emitted node, keyed by node id.

    emit() returns "created", "updated" or "unchanged"; re-emitting the same
    id with the same digest leaves the stored node untouched.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._nodes: Dict[str, dict] = _read_nodes_file(path) if path else {}
        self._order: List[str] = list(self._nodes)
        self._touched: Set[str] = set()

    def emit(self, node_id: str, content_digest: str, type_name: str, fields: dict) -> str:
        node = {
            "id": node_id,
            "internal": {
                "type": type_name,
                "content": json.dumps(fields, ensure_ascii=False, sort_keys=True),
                "contentDigest": content_digest,
            },
            **fields,
        }
        with self._lock:
            self._touched.add(node_id)
            existing = self._nodes.get(node_id)
            if existing is None:
                self._nodes[node_id] = node
                self._order.append(node_id)
                return "created"
            if (existing.get("internal") or {}).get("contentDigest") == content_digest:
                return "unchanged"
            self._nodes[node_id] = node
            return "updated"

    def prune(self) -> int:
        """
        Drop nodes not emitted since the last prune, like a host discarding
        nodes a run did not touch. Returns the number removed.
        """
        with self._lock:
            stale = [k for k in self._order if k not in self._touched]
            for k in stale:
                del self._nodes[k]
            self._order = [k for k in self._order if k in self._touched]
            self._touched = set()
        if stale:
            logger.info("nodes pruned | removed=%s", len(stale))
        return len(stale)

    def get(self, node_id: str) -> Optional[dict]:
        with self._lock:
            node = self._nodes.get(node_id)
            return dict(node) if node is not None else None

    def nodes(self) -> List[dict]:
        with self._lock:
            return [dict(self._nodes[k]) for k in self._order]

    def save(self) -> None:
        if not self.path:
            return
        payload = self.nodes()

        def _write(tmp_path: str) -> None:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)

        atomic_write_text(_write, self.path)
        logger.info("nodes saved | path=%s | nodes=%s", self.path, len(payload))


def _read_nodes_file(path: str) -> Dict[str, dict]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("nodes file unreadable, starting empty | path=%s | err=%r", path, e)
        return {}
    out: Dict[str, dict] = {}
    for node in data if isinstance(data, list) else []:
        if isinstance(node, dict) and node.get("id"):
            out[str(node["id"])] = node
    return out
