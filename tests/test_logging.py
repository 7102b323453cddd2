"""Tests for :mod:`cvagent.utils.logging`."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from cvagent.utils import logging as log_utils


@pytest.fixture
def restore_logging(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_levels = {
        name: logging.getLogger(name).level for name in ("cvagent", "httpx", "httpcore", "openai", "asyncio")
    }
    saved_root_level = root.level
    monkeypatch.setattr(log_utils, "_configured_path", None)
    yield
    for handler in list(root.handlers):
        if handler not in saved_handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in saved_handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(saved_root_level)
    for name, level in saved_levels.items():
        logging.getLogger(name).setLevel(level)


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def test_records_go_to_rotating_file(tmp_path: Path, restore_logging: None) -> None:
    path = log_utils.setup_logging(logging.INFO, log_dir=tmp_path, stderr_level=None)

    logging.getLogger("cvagent.test").info("turn finished")
    _flush()

    assert path == tmp_path / log_utils.LOG_FILE_NAME
    assert "turn finished" in path.read_text(encoding="utf-8")


def test_debug_flag_only_opens_package_loggers(tmp_path: Path, restore_logging: None) -> None:
    path = log_utils.setup_logging(logging.WARNING, log_dir=tmp_path, debug=True, stderr_level=None)

    logging.getLogger("cvagent.ai.client").debug("payload dump")
    logging.getLogger("httpx").info("HTTP Request: POST")
    _flush()

    content = path.read_text(encoding="utf-8")
    assert "payload dump" in content
    assert "HTTP Request" not in content
    assert logging.getLogger("httpx").level == logging.WARNING


def test_log_dir_falls_back_to_environment(
    tmp_path: Path, restore_logging: None, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CVAGENT_LOG_DIR", str(tmp_path / "env-logs"))

    path = log_utils.setup_logging(stderr_level=None)

    assert path == tmp_path / "env-logs" / log_utils.LOG_FILE_NAME
    assert path.parent.is_dir()


def test_repeated_setup_is_a_no_op_unless_forced(tmp_path: Path, restore_logging: None) -> None:
    first = log_utils.setup_logging(log_dir=tmp_path / "a", stderr_level=None)

    assert log_utils.setup_logging(log_dir=tmp_path / "b", stderr_level=None) == first
    assert log_utils.setup_logging(log_dir=tmp_path / "b", stderr_level=None, force=True) == tmp_path / "b" / "cvagent.log"


def test_secrets_are_masked(tmp_path: Path, restore_logging: None) -> None:
    path = log_utils.setup_logging(logging.INFO, log_dir=tmp_path, stderr_level=None)

    logging.getLogger("cvagent.test").warning("header Authorization: Bearer %s", "gsk_abcdef123456")
    logging.getLogger("cvagent.test").warning("config api_key=sk-live-987654")
    _flush()

    content = path.read_text(encoding="utf-8")
    assert "gsk_abcdef123456" not in content
    assert "Bearer gs************56" in content
    assert "sk-live-987654" not in content
