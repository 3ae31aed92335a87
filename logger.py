"""
logger.py
---------
Application-wide logging for the migrator.

Design Decisions:
    * A single root logger ("migrator") owns every handler; engine modules,
      store handles and the CLI all log beneath it via ``get_logger``.
    * Handlers are installed once at import time from CONFIG, and can be
      re-installed by ``configure_logging`` when the CLI overrides the level.
    * Optional file handler appends DEBUG lines (with file:line) to LOG_FILE.
    * Driver chatter (cassandra, mysql.connector) is capped at WARNING so the
      per-batch DEBUG lines remain readable.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

from config import CONFIG, get_log_level

_ROOT_LOGGER_NAME = "migrator"
_CONSOLE_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
_NOISY_LIBRARIES = ("cassandra", "mysql.connector")


def configure_logging(level: int | None = None, log_file: str | None = None) -> logging.Logger:
    """
    (Re)install the console and optional file handlers on the root logger.

    Args:
        level:    Console level; defaults to ``LOG_LEVEL`` from the config.
        log_file: Path of an additional DEBUG log; defaults to ``LOG_FILE``.

    Returns:
        The configured 'migrator' root logger.
    """
    level = get_log_level() if level is None else level
    log_file = CONFIG.migration.log_file if log_file is None else log_file

    root = logging.getLogger(_ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.DEBUG if log_file else level)
    root.propagate = False

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        logging.Formatter(fmt=_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)
    )
    root.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter(fmt=_FILE_FORMAT, datefmt=_DATE_FORMAT)
            )
            root.addHandler(file_handler)
        except OSError as exc:
            root.warning("Could not create log file '%s': %s", log_path, exc)

    for name in _NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


configure_logging()


def get_logger(name: str) -> logging.Logger:
    """
    Return a child logger scoped to the given name.

    Example::

        log = get_logger(__name__)
        log.info("Table '%s' created", "albums")
        log.warning("Skipping row %d of '%s'", 17, "tracks")
    """
    return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")
