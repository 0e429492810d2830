"""Logging setup for Celeste.

One stream handler on the root logger, level from CELESTE_LOG_LEVEL.
Supabase queries travel as httpx requests whose URLs carry user ids in
their filters (``user_id=eq.<id>``), so the HTTP client loggers are held at
WARNING regardless of the configured level.
"""

from __future__ import annotations

import logging
import os
from typing import Final

_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

# Log request URLs at INFO/DEBUG
QUIET_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "hpack", "postgrest")

_configured: bool = False


def _resolve_level() -> int:
    level_name = os.getenv("CELESTE_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def configure_logging(level: int | None = None) -> None:
    """Attach the stream handler once and apply the level everywhere."""
    global _configured

    level = _resolve_level() if level is None else level
    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
        root.addHandler(handler)
        _configured = True
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures logging on first use."""
    if not _configured:
        configure_logging()
    return logging.getLogger(name)
