from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import List, Optional

from .config import AppConfig, load_dotenv, split_list
from .covers import ImageFetchError, ImageResolver, RemoteFileDownloader
from .core.stats_tracker import StatsTracker
from .core.store import CacheStore
from .harvest import Harvester
from .integrations.http_client import make_goodreads_session
from .io.export_full import write_full_csv
from .io.sink import NodeSink
from .shelves import build_shelf_requests, read_config_file

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

try:
    from rich.logging import RichHandler
except ImportError:
    RichHandler = None


def _setup_logging(level_name: str) -> None:
    level = LOG_LEVELS.get(level_name.lower(), logging.INFO)
    if RichHandler:
        logging.basicConfig(
            level=level,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        )
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="shelf_harvester",
        description="Goodreads shelf ingester: shelf HTML -> book nodes with locally cached covers",
    )

    # Source
    ap.add_argument("--user-id", default=None, help="Goodreads user ID (the number in /user/show/<id>-name)")
    ap.add_argument("--shelves", default=None, help="Comma list of shelves, e.g. read,currently-reading,want-to-read")
    ap.add_argument("--config", default=None, help="YAML config file (user_id, shelves, and any option below)")

    # Outputs
    ap.add_argument("--out", default=None, help="Nodes JSON output (re-runs update it in place)")
    ap.add_argument("--csv-out", default=None, help="Optional flat CSV of emitted records")
    ap.add_argument("--cache", default=None, help="Cover cache JSON path")
    ap.add_argument("--image-dir", default=None, help="Directory for downloaded cover images")

    # Tuning
    ap.add_argument("--timeout", type=int, default=None, help="Shelf fetch timeout seconds")
    ap.add_argument("--image-timeout", type=int, default=None, help="Cover download timeout seconds")
    ap.add_argument("--image-retries", type=int, default=None, help="Retries for cover downloads")
    ap.add_argument("--concurrency", type=int, default=None, help="Parallel cover downloads")

    # Policies
    ap.add_argument("--shelf-failure", default=None, choices=["abort", "continue"], help="On shelf fetch failure (default: abort)")
    ap.add_argument("--image-failure", default=None, choices=["fail_fast", "best_effort"], help="On cover failure (default: fail_fast)")
    ap.add_argument("--identity", default=None, choices=["isbn", "isbn_shelf"], help="Node identity seed (default: isbn)")

    ap.add_argument("--log-level", default="info", help="Log level: debug, info, warning, error")
    return ap


_OPTION_KEYS = {
    "out": "out_path",
    "csv_out": "csv_out",
    "cache": "cache_path",
    "image_dir": "image_dir",
    "timeout": "timeout_s",
    "image_timeout": "image_timeout_s",
    "image_retries": "image_retries",
    "concurrency": "concurrency",
    "shelf_failure": "shelf_failure",
    "image_failure": "image_failure",
    "identity": "identity",
}

_INT_OPTIONS = ("timeout_s", "image_timeout_s", "image_retries", "concurrency")


def resolve_config(args: argparse.Namespace) -> AppConfig:
    """
    Merge settings: CLI flags over config file over environment.
    """
    file_data = read_config_file(Path(args.config)) if args.config else {}

    user_id = (
        args.user_id
        or file_data.get("user_id")
        or (os.getenv("GOODREADS_USER_ID") or "").strip()
    )
    if args.shelves:
        shelves = split_list(args.shelves)
    elif file_data.get("shelves"):
        shelves = list(file_data["shelves"])
    else:
        shelves = split_list(os.getenv("GOODREADS_SHELVES"))

    cfg = AppConfig(user_id=user_id or "", shelves=shelves)
    for arg_name, attr in _OPTION_KEYS.items():
        val = getattr(args, arg_name)
        if val is None:
            val = file_data.get(attr, file_data.get(arg_name))
        if val is None:
            continue
        if attr in _INT_OPTIONS:
            try:
                val = int(val)
            except (TypeError, ValueError) as e:
                raise SystemExit(f"{attr} must be an integer, got {val!r}") from e
        setattr(cfg, attr, val)
    cfg.validate()
    return cfg


def main(argv: Optional[List[str]] = None) -> int:
    logger = logging.getLogger(__name__)
    args = build_parser().parse_args(argv)
    _setup_logging(args.log_level)

    used = load_dotenv(".env")
    if used:
        logger.info("loaded .env: %s", used)
    else:
        logger.debug(".env not found via search paths; relying on existing environment variables")

    cfg = resolve_config(args)
    logger.info("User: %s | shelves=%s", cfg.user_id, cfg.shelves)
    logger.info("Output(nodes): %s", cfg.out_path)
    logger.info("Cache: %s | images: %s", cfg.cache_path, cfg.image_dir)

    stats = StatsTracker()
    session = make_goodreads_session()
    resolver = ImageResolver(
        cache=CacheStore(cfg.cache_path),
        downloader=RemoteFileDownloader(
            cfg.image_dir,
            timeout_s=cfg.image_timeout_s,
            retries=cfg.image_retries,
        ),
        stats=stats,
    )
    sink = NodeSink(cfg.out_path)

    harvester = Harvester(
        requests_=build_shelf_requests(cfg.user_id, cfg.shelves),
        session=session,
        resolver=resolver,
        sink=sink,
        stats=stats,
        shelf_failure=cfg.shelf_failure,
        image_failure=cfg.image_failure,
        identity=cfg.identity,
        concurrency=cfg.concurrency,
        timeout_s=cfg.timeout_s,
    )

    try:
        result = harvester.run()
    except ImageFetchError as e:
        logger.error("Run failed on cover download: %s", e)
        return 1

    if result.aborted:
        logger.error("Run aborted: a shelf could not be fetched; nothing was emitted.")
        return 1

    if cfg.csv_out:
        write_full_csv(result.records, cfg.csv_out)

    logger.info("Stats: %s", stats.snapshot_dict())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
