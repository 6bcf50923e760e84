"""Logging configuration for Komic.

setup_logging() installs two handlers on the root logger:
- a rotating file (komic.log in DATA_DIR, 10MB x 5) that records everything
- a Rich console handler at the requested level

KOMIC_LOG_LEVEL overrides the default console level. Calling setup_logging()
again replaces the handlers it installed earlier rather than stacking them.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

LOG_FILE_NAME = "komic.log"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Third-party loggers held at WARNING.
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "multipart", "PIL")

_handlers: list[logging.Handler] = []


def _data_dir() -> Path:
    # config imports this module, so DATA_DIR is resolved the same way here.
    env = os.environ.get("DATA_DIR")
    if env:
        return Path(env)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]


def setup_logging(log_level: Optional[str] = None, log_file: Optional[Path] = None) -> Path:
    """Install the file and console handlers and return the log file path.

    Args:
        log_level: Console level (DEBUG, INFO, WARNING, ERROR). Falls back to
            KOMIC_LOG_LEVEL, then INFO.
        log_file: Where to write the rotating log. Defaults to DATA_DIR/komic.log.
    """
    level_name = (log_level or os.environ.get("KOMIC_LOG_LEVEL") or "INFO").upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    log_file = Path(log_file) if log_file else _data_dir() / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    for handler in _handlers:
        root_logger.removeHandler(handler)
        handler.close()
    _handlers.clear()

    file_handler = RotatingFileHandler(
        log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    console = Console(theme=Theme({"logging.level.info": "bold magenta"}))
    console_handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    console_handler.setLevel(numeric_level)

    root_logger.setLevel(logging.DEBUG)
    for handler in (file_handler, console_handler):
        root_logger.addHandler(handler)
        _handlers.append(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Alembic logs through the root handlers.
    alembic_logger = logging.getLogger("alembic")
    alembic_logger.handlers = []
    alembic_logger.propagate = True

    return log_file


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the specified module (pass __name__)."""
    return logging.getLogger(name)
