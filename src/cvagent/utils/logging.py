"""Logging setup for the ``cvagent`` command.

The CLI writes the conversation to stdout, so log records go to a rotating
file and only warnings reach stderr. ``debug`` (``Settings.debug_logging``)
lowers the ``cvagent`` loggers to DEBUG without opening up the HTTP stack.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
from pathlib import Path

__all__ = ["setup_logging", "SecretFilter", "LOG_FILE_NAME"]

LOG_FILE_NAME = "cvagent.log"
_DEFAULT_LOG_DIR = Path.home() / ".cvagent" / "logs"
_PACKAGE_LOGGER = "cvagent"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_SECRET_RE = re.compile(r"(Bearer\s+|api_key['\"]?\s*[:=]\s*['\"]?)([A-Za-z0-9_\-\.]{6,})")
_configured_path: Path | None = None


class SecretFilter(logging.Filter):
    """Masks bearer tokens and ``api_key`` values in rendered log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _SECRET_RE.sub(_mask_match, message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(
    level: int = logging.WARNING,
    *,
    log_dir: Path | str | None = None,
    debug: bool = False,
    stderr_level: int | None = logging.WARNING,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Route logging to ``<log_dir>/cvagent.log`` and return that path.

    ``log_dir`` falls back to ``CVAGENT_LOG_DIR`` and then ``~/.cvagent/logs``.
    Repeated calls are no-ops unless ``force`` is set. Pass
    ``stderr_level=None`` to keep stderr silent.
    """

    global _configured_path
    if _configured_path is not None and not force:
        return _configured_path

    target_dir = Path(log_dir or os.environ.get("CVAGENT_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / LOG_FILE_NAME

    package_level = logging.DEBUG if debug else level
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    secrets = SecretFilter()

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setLevel(min(level, package_level))
    file_handler.setFormatter(formatter)
    file_handler.addFilter(secrets)
    handlers: list[logging.Handler] = [file_handler]

    if stderr_level is not None:
        stderr_handler = logging.StreamHandler()
        stderr_handler.setLevel(max(stderr_level, level))
        stderr_handler.setFormatter(formatter)
        stderr_handler.addFilter(secrets)
        handlers.append(stderr_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.getLogger(_PACKAGE_LOGGER).setLevel(package_level)
    quiet_level = max(logging.WARNING, level)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)

    _configured_path = log_path
    return log_path


def _mask_match(match: re.Match[str]) -> str:
    token = match.group(2)
    return f"{match.group(1)}{token[:2]}{'*' * (len(token) - 4)}{token[-2:]}"
