# ordercache/config/logging_config.py

"""Per-run timestamped logging configuration for ordercache.

Each application launch creates a dedicated log file inside ``logs/``,
named with the launch timestamp (e.g. ``logs/run_20260214_153045.log``).
All ``ordercache.*`` loggers route through this file handler so that
background count resolutions, remote search failures and collection
evictions land in the same per-run log.

The TUI owns the terminal, so it runs with ``console=False`` and only
the file handler is attached.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from ordercache.config.settings import Settings

_ROOT_LOGGER = "ordercache"

_DETAILED_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | "
    "%(message)s"
)

_CONSOLE_FORMAT = "%(levelname)-8s | %(name)s | %(message)s"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _file_level() -> int:
    level = logging.getLevelName(Settings.LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.DEBUG


def setup_logging(
    logs_dir: Path | None = None,
    console: bool = True,
) -> Path:
    """Attach the per-run file handler (and optionally stderr) once.

    A repeated call keeps the handlers already installed and returns
    the log file they write to.

    Returns:
        The :class:`~pathlib.Path` to the log file for this run.
    """
    root_logger = logging.getLogger(_ROOT_LOGGER)
    for handler in root_logger.handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)

    directory: Path = logs_dir or Settings.LOGS_DIR
    directory.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = directory / f"run_{timestamp}.log"

    level = _file_level()
    root_logger.setLevel(level)
    root_logger.propagate = False

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(
        logging.Formatter(_DETAILED_FORMAT, datefmt=_DATE_FORMAT)
    )
    root_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        root_logger.addHandler(console_handler)

    root_logger.info(
        "Logging initialised at %s, log file: %s",
        logging.getLevelName(level),
        log_file,
    )
    return log_file
