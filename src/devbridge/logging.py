"""Logging for devbridge.

Every module logs under the ``devbridge`` logger tree. The console transport
owns stdout and the prompt, so records go to a log file when one is set
(``logging.file`` in config, else the DEVBRIDGE_LOG environment variable)
and to stderr only when stderr is a terminal. Otherwise nothing is emitted.

Verbosity runs from 0 to 4: error, warning, info, verbose, trace.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from devbridge.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_ENV = "DEVBRIDGE_LOG"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATEFMT = "%H:%M:%S"

_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

logger = logging.getLogger("devbridge")

_configured = False


class _BridgeFormatter(logging.Formatter):
    """Lowercase level names and logger names relative to ``devbridge``."""

    def format(self, record: logging.LogRecord) -> str:
        # Other handlers see the same record
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = record.levelname.lower()
        record.name = record.name.removeprefix("devbridge.")
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level for ``config``; ``verbose`` beats ``level``."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = min(max(config.verbose, 0), len(_VERBOSITY_LEVELS) - 1)
        return _VERBOSITY_LEVELS[index]
    if config.level:
        return logging.getLevelNamesMapping().get(config.level.upper(), logging.INFO)
    return logging.INFO


def log_file_path(config: LoggingConfig | None) -> str | None:
    path = (config.file if config is not None else None) or os.environ.get(LOG_ENV)
    return os.path.expanduser(path) if path else None


def setup_logging(config: LoggingConfig | None = None) -> logging.Handler | None:
    """Attach the bridge's handler to the ``devbridge`` logger.

    Only the first call has an effect. An unopenable log file falls back to
    stderr when that is a terminal.

    Returns:
        The handler that was attached, or None if records are discarded.
    """
    global _configured
    if _configured:
        return None
    _configured = True

    level = resolve_level(config)
    logger.setLevel(level)

    handler: logging.Handler | None = None
    open_error: OSError | None = None
    path = log_file_path(config)
    if path:
        try:
            handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        except OSError as e:
            open_error = e
    if handler is None and sys.stderr.isatty():
        handler = logging.StreamHandler(sys.stderr)
    if handler is None:
        return None

    handler.setLevel(level)
    handler.setFormatter(_BridgeFormatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    logger.addHandler(handler)
    if open_error is not None:
        logger.warning("Cannot open log file %s, logging to stderr: %s", path, open_error)
    return handler


def get_logger(name: str | None = None) -> logging.Logger:
    """The ``devbridge`` logger, or its child ``devbridge.<name>``."""
    return logger.getChild(name) if name else logger
