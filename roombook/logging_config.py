"""Logging setup shared by the command line and any embedding application."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from roombook import app_paths

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# googleapiclient logs every discovery cache miss at WARNING.
_NOISY_LOGGERS = ("googleapiclient.discovery_cache", "google_auth_oauthlib.flow")

_LOG_PATH: Optional[Path] = None


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    return any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(path)
        for handler in logger.handlers
    )


def configure_logging(level: int = logging.INFO) -> Path:
    """Send log records to ``logs/roombook.log`` under the app directory.

    Sheet mutations are logged at INFO and parsed rows at DEBUG, so the
    default level keeps a history of every write.  Calling this again only
    lowers the level; the file handler is never duplicated.
    """

    global _LOG_PATH

    log_path = _LOG_PATH or app_paths.logs_path("roombook.log")
    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(min(root_logger.level, level))
    else:
        root_logger.setLevel(level)

    if not _has_file_handler(root_logger, log_path):
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)

    _LOG_PATH = log_path
    root_logger.debug("Logging to %s", log_path)
    return log_path
