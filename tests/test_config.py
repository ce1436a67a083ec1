import os

import pytest

from shelf_harvester.cli import build_parser, resolve_config
from shelf_harvester.config import AppConfig, load_dotenv
from shelf_harvester.shelves import build_shelf_requests


def test_resolve_config_cli_over_file_over_env(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("GOODREADS_USER_ID", "env-user")
    monkeypatch.setenv("GOODREADS_SHELVES", "read")
    cfg_path = tmp_path / "goodreads.yaml"
    cfg_path.write_text(
        "user_id: 29665939\n"
        "shelves:\n"
        "  - currently-reading\n"
        "  - want-to-read\n"
        "concurrency: 3\n"
        "image_failure: best_effort\n",
        encoding="utf-8",
    )

    args = build_parser().parse_args(["--config", str(cfg_path), "--identity", "isbn_shelf"])
    cfg = resolve_config(args)

    assert cfg.user_id == "29665939"
    assert cfg.shelves == ["currently-reading", "want-to-read"]
    assert cfg.concurrency == 3
    assert cfg.image_failure == "best_effort"
    assert cfg.identity == "isbn_shelf"
    assert cfg.shelf_failure == "abort"

    args = build_parser().parse_args(["--config", str(cfg_path), "--shelves", "read,to-read", "--user-id", "42"])
    cfg = resolve_config(args)
    assert cfg.user_id == "42"
    assert cfg.shelves == ["read", "to-read"]


def test_resolve_config_from_env(monkeypatch) -> None:
    monkeypatch.setenv("GOODREADS_USER_ID", "7")
    monkeypatch.setenv("GOODREADS_SHELVES", "read, currently-reading")
    cfg = resolve_config(build_parser().parse_args([]))
    assert cfg.user_id == "7"
    assert cfg.shelves == ["read", "currently-reading"]


def test_validate_rejects_missing_inputs() -> None:
    with pytest.raises(SystemExit):
        AppConfig(user_id="", shelves=["read"]).validate()
    with pytest.raises(SystemExit):
        AppConfig(user_id="1", shelves=[]).validate()
    with pytest.raises(SystemExit):
        AppConfig(user_id="1", shelves=["read"], shelf_failure="retry").validate()


def test_build_shelf_requests_keeps_order() -> None:
    reqs = build_shelf_requests("1", ["read", " ", "custom-shelf", "read"])
    assert [r.shelf for r in reqs] == ["read", "custom-shelf", "read"]
    assert all(r.per_page == 100 and r.ref == "nav_mybooks" for r in reqs)


def test_load_dotenv_does_not_override(monkeypatch, tmp_path) -> None:
    env_file = tmp_path / "custom.env"
    env_file.write_text(
        "export GOODREADS_USER_ID='123' # mine\nGOODREADS_SHELVES=read\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("ENV_PATH", str(env_file))
    monkeypatch.setenv("GOODREADS_USER_ID", "placeholder")
    monkeypatch.delenv("GOODREADS_USER_ID")
    monkeypatch.setenv("GOODREADS_SHELVES", "to-read")

    used = load_dotenv()

    assert used == str(env_file.resolve())
    assert os.environ["GOODREADS_USER_ID"] == "123"
    assert os.environ["GOODREADS_SHELVES"] == "to-read"


def test_resolve_config_coerces_quoted_numbers(tmp_path) -> None:
    cfg_path = tmp_path / "goodreads.yaml"
    cfg_path.write_text(
        'user_id: 1\nshelves: [read]\nconcurrency: "4"\ntimeout_s: "10"\nimage_retries: "0"\n',
        encoding="utf-8",
    )
    cfg = resolve_config(build_parser().parse_args(["--config", str(cfg_path)]))

    assert cfg.concurrency == 4
    assert cfg.timeout_s == 10
    assert cfg.image_retries == 0


def test_resolve_config_rejects_non_numeric_option(tmp_path) -> None:
    cfg_path = tmp_path / "goodreads.yaml"
    cfg_path.write_text('user_id: 1\nshelves: [read]\nconcurrency: "many"\n', encoding="utf-8")

    with pytest.raises(SystemExit):
        resolve_config(build_parser().parse_args(["--config", str(cfg_path)]))
