from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from shelf_harvester.covers import IMAGE_FAILURE_POLICIES
from shelf_harvester.harvest import IDENTITY_MODES, SHELF_FAILURE_POLICIES


def _strip_inline_comment(val: str) -> str:
    in_single = False
    in_double = False
    for i, ch in enumerate(val):
        if ch == "'" and not in_double:
            in_single = not in_single
            continue
        if ch == '"' and not in_single:
            in_double = not in_double
            continue
        if ch == "#" and not in_single and not in_double:
            return val[:i].rstrip()
    return val.rstrip()


def _parse_env_file(path: Path) -> None:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        k, v = line.split("=", 1)
        k = k.strip()
        v = _strip_inline_comment(v.strip())
        if len(v) >= 2 and v[0] == v[-1] and v[0] in ("'", '"'):
            v = v[1:-1]
        if k and k not in os.environ:
            os.environ[k] = v


def load_dotenv(path: str = ".env") -> Optional[str]:
    """
    Loads environment variables from a .env file.

    Search order:
    1) ENV_PATH (if set)
    2) explicit `path` as provided (relative to CWD or absolute)
    3) project root (parent of the shelf_harvester package directory)
    4) current working directory

    Returns the resolved .env path used, or None if not found.
    """
    override = os.getenv("ENV_PATH")
    candidates: List[Path] = []
    if override:
        candidates.append(Path(override).expanduser())

    p = Path(path).expanduser()
    candidates.append(p if p.is_absolute() else (Path.cwd() / p))

    pkg_dir = Path(__file__).resolve().parent
    project_root = pkg_dir.parent
    candidates.append(project_root / ".env")

    candidates.append(Path.cwd() / ".env")

    seen = set()
    for c in candidates:
        c = c.resolve()
        if str(c) in seen:
            continue
        seen.add(str(c))
        if c.exists() and c.is_file():
            _parse_env_file(c)
            return str(c)

    return None


def split_list(s: Optional[str]) -> List[str]:
    return [x.strip() for x in (s or "").split(",") if x.strip()]


@dataclass
class AppConfig:
    user_id: str
    shelves: List[str] = field(default_factory=list)

    out_path: str = "goodreads_nodes.json"
    csv_out: Optional[str] = None
    cache_path: str = ".cache/goodreads_cache.json"
    image_dir: str = ".cache/covers"

    timeout_s: int = 30
    image_timeout_s: int = 30
    image_retries: int = 2
    concurrency: int = 1

    shelf_failure: str = "abort"
    image_failure: str = "fail_fast"
    identity: str = "isbn"

    def validate(self) -> None:
        if not (self.user_id or "").strip():
            raise SystemExit("Missing GOODREADS_USER_ID (set in .env, environment, config file or --user-id).")
        if not self.shelves:
            raise SystemExit("No shelves configured (e.g. read, currently-reading, want-to-read).")
        if self.shelf_failure not in SHELF_FAILURE_POLICIES:
            raise SystemExit(f"shelf_failure must be one of {', '.join(SHELF_FAILURE_POLICIES)}")
        if self.image_failure not in IMAGE_FAILURE_POLICIES:
            raise SystemExit(f"image_failure must be one of {', '.join(IMAGE_FAILURE_POLICIES)}")
        if self.identity not in IDENTITY_MODES:
            raise SystemExit(f"identity must be one of {', '.join(IDENTITY_MODES)}")
        if self.concurrency < 1:
            raise SystemExit("concurrency must be >= 1")
