"""Loguru sink configuration."""

from __future__ import annotations

import sys

from loguru import logger

from .config import get_settings

_configured = False


def setup_logging(level: str | None = None) -> None:
    """Replace loguru's default sink with a single stderr sink at the configured level."""
    global _configured
    if _configured:
        return
    logger.remove()
    logger.add(
        sys.stderr,
        level=(level or get_settings().log_level),
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}",
        backtrace=False,
        diagnose=False,
    )
    _configured = True
