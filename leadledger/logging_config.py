"""Logging setup for leadledger.

Module loggers live under the ``leadledger`` namespace. ``setup_leadledger_logging``
attaches a dated file handler (``<data dir>/logs/ledger-YYYY-MM-DD.log``) to the
root of that namespace; money-moving events additionally go through
``log_financial_event`` as one ``key=value`` line each, on the
``leadledger.events`` logger, so a day's activity can be grepped.

These logs are operational. The audit trail lives in the database next to the
state it describes.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from leadledger.utils import get_data_dir

LOGGER_NAME = "leadledger"
EVENTS_LOGGER_NAME = "leadledger.events"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

events_logger = logging.getLogger(EVENTS_LOGGER_NAME)


def _resolve_level(level) -> int:
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        return logging.INFO
    return resolved


def setup_leadledger_logging(
    level: str = "INFO", log_dir: Optional[Union[str, Path]] = None
) -> logging.Logger:
    """Configure the ``leadledger`` logger.

    Args:
        level: Level name, case-insensitive. Unknown names fall back to INFO.
        log_dir: Directory for the dated log file. Defaults to ``<data dir>/logs``.

    Returns:
        The configured ``leadledger`` logger. Repeated calls do not add handlers.
    """
    logger = logging.getLogger(LOGGER_NAME)
    resolved = _resolve_level(level)
    logger.setLevel(resolved)

    directory = Path(log_dir) if log_dir is not None else get_data_dir() / "logs"
    directory.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        file_handler = logging.FileHandler(directory / f"ledger-{today}.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in logger.handlers
    )
    if resolved <= logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    return logger


def _format_value(value) -> str:
    if value is None:
        return "-"
    if hasattr(value, "value"):  # enums
        value = value.value
    text = str(value)
    if " " in text:
        return f'"{text}"'
    return text


def format_event(action: str, **fields) -> str:
    """Render ``action | key=value key=value`` with keys in sorted order."""
    parts = " ".join(f"{key}={_format_value(fields[key])}" for key in sorted(fields))
    return f"{action} | {parts}" if parts else action


def log_financial_event(action: str, **fields) -> None:
    """Emit one structured line for a money-moving event."""
    events_logger.info(format_event(action, **fields))
