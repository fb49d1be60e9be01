# deal_tracker/config/logging_config.py

"""Logging setup for the two process shapes of deal_tracker.

One-shot commands (``check-prices``, ``add``, ``list``, ...) write a fresh
``<command>_YYYYMMDD_HHMMSS.log`` so a whole batch run lands in one file.
``serve`` is long-lived: it appends to a size-rotated ``serve.log`` and
echoes INFO records to stderr, where the process supervisor collects
each triggered price check.

The file level comes from ``LOG_LEVEL`` and the directory from
``LOGS_DIR`` (both read through :class:`Settings`).
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from deal_tracker.config.settings import Settings

SERVE_COMMAND = "serve"

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "%(funcName)s:%(lineno)d | %(message)s"
)

_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _file_level() -> int:
    """Resolve ``Settings.LOG_LEVEL``; unknown names fall back to DEBUG."""
    level = logging.getLevelName(Settings.LOG_LEVEL)
    return level if isinstance(level, int) else logging.DEBUG


def _current_log_file(logger: logging.Logger) -> Path | None:
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
    return None


def setup_logging(command: str = "run") -> Path:
    """Attach file and console handlers to the ``deal_tracker`` logger.

    Args:
        command: The CLI command being run.  ``"serve"`` selects the
            rotating server log; anything else gets a per-run file named
            after the command.

    Returns:
        The path of the log file in use.  Repeated calls (tests, server
        reloads) keep the first configuration and return its file.
    """
    root_logger = logging.getLogger("deal_tracker")
    current = _current_log_file(root_logger)
    if current is not None:
        return current

    logs_dir: Path = Settings.LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)

    file_handler: logging.FileHandler
    if command == SERVE_COMMAND:
        log_file = logs_dir / "serve.log"
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=Settings.SERVE_LOG_MAX_BYTES,
            backupCount=Settings.SERVE_LOG_BACKUPS,
            encoding="utf-8",
        )
        console_level = logging.INFO
    else:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        stem = command.replace("-", "_")
        log_file = logs_dir / f"{stem}_{timestamp}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        console_level = logging.WARNING

    file_level = _file_level()
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT)
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)
    )

    root_logger.setLevel(min(file_level, console_level))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    root_logger.info(
        "Logging initialised for %s, log file: %s", command, log_file,
    )
    return log_file
