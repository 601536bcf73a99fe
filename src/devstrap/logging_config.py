"""Session log setup shared across devstrap."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from . import __version__

__all__ = ["configure_logging", "flush_logs", "logger", "reset_logging"]

logger = logging.getLogger("devstrap")
logger.setLevel(logging.DEBUG)
logger.addHandler(logging.NullHandler())
logger.propagate = False

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(log_file: Path) -> logging.FileHandler:
    """Attach the append-only session log to the ``devstrap`` logger.

    The file is created when missing and never truncated. Any previously
    attached session handler is replaced so repeated runs in one process
    do not write duplicate records.
    """

    reset_logging()
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    logger.info("==== devstrap %s session started %s ====", __version__, datetime.now().isoformat(timespec="seconds"))
    handler.flush()
    return handler


def reset_logging() -> None:
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()


def flush_logs() -> None:
    for handler in logger.handlers:
        handler.flush()

