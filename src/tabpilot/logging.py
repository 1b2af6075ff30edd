"""Logging configuration for tabpilot.

Uses Python's standard logging module with support for:
- File logging via config or TABPILOT_LOG environment variable
- Verbosity levels: error(0), warning(1), info(2), verbose(3), trace(4)
- Per-tab loggers whose records carry the tab they concern

Session code logs through a TabLogger so every line can be traced back to
its browser tab:

    12:00:01 info [tabpilot.session tab=3]: planning -> refining
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tabpilot.config.schema import LoggingConfig

# Custom log levels
TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("tabpilot")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s%(tab)s]: %(message)s"

_handlers: list[logging.Handler] = []

_LEVEL_MAP = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# --verbose=N to log levels (0=errors only, 4=everything)
_VERBOSITY_MAP = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: VERBOSE,
    4: TRACE,
}


class TabFormatter(logging.Formatter):
    """Lowercase level names, plus ` tab=<id>` for records bound to a tab."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        tab_id = getattr(record, "tab_id", None)
        record.tab = f" tab={tab_id}" if tab_id is not None else ""
        return super().format(record)


class TabLogger(logging.LoggerAdapter):
    """Logger bound to one tab. Records get a `tab_id` attribute."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("tab_id", self.extra["tab_id"])
        kwargs["extra"] = extra
        return msg, kwargs

    @property
    def tab_id(self) -> int | str:
        return self.extra["tab_id"]


def resolve_level(config: LoggingConfig | None) -> int:
    """Log level for a LoggingConfig; `verbose` wins over `level`."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY_MAP.get(config.verbose, TRACE)
    if config.level:
        return _LEVEL_MAP.get(config.level.upper(), logging.INFO)
    return logging.INFO


def setup_logging(config: LoggingConfig | None = None, *, force: bool = False) -> None:
    """Initialize logging based on configuration.

    Call this once at startup. Later calls are no-ops unless `force` is set,
    in which case the handlers installed by the previous call are replaced.

    Log lines go to the configured file, or to stderr when there is none or
    the file cannot be opened.
    """
    if _handlers and not force:
        return
    reset_logging()

    log_level = resolve_level(config)
    logger.setLevel(log_level)
    formatter = TabFormatter(LOG_FORMAT, datefmt="%H:%M:%S")

    log_path = config.file if config and config.file else os.environ.get("TABPILOT_LOG")
    handler: logging.Handler | None = None
    if log_path:
        try:
            handler = logging.FileHandler(os.path.expanduser(log_path), mode="a", encoding="utf-8")
        except OSError as e:
            print(f"[tabpilot] Failed to open log file: {e}", file=sys.stderr)
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)

    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    _handlers.append(handler)


def reset_logging() -> None:
    """Remove the handlers installed by setup_logging (useful for testing)."""
    for handler in _handlers:
        logger.removeHandler(handler)
        handler.close()
    _handlers.clear()
    logger.setLevel(logging.NOTSET)


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Optional name for a child logger (e.g., "session", "storage").
              If None, returns the root tabpilot logger.
    """
    if name:
        return logger.getChild(name)
    return logger


def get_tab_logger(name: str, tab_id: int | str) -> TabLogger:
    """Child logger `name` bound to `tab_id`."""
    return TabLogger(get_logger(name), {"tab_id": tab_id})
