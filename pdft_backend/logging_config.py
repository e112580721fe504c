"""Centralized logging setup.

Every module obtains its logger through :func:`get_logger`, which configures the
root logger on first use:

- level from ``LOG_LEVEL`` (WARNING while running under pytest, INFO otherwise)
- format from ``LOG_FORMAT``: ``standard`` (default), ``dev`` or ``json``
- a single stdout handler, so uvicorn and container logs interleave cleanly
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEV_FORMAT = "%(asctime)s [%(levelname)8s] %(name)s:%(lineno)d - %(message)s"
JSON_FORMAT = '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'

_configured = False


def _level_from_env() -> int:
    level_str = os.getenv("LOG_LEVEL")
    if level_str:
        level = logging.getLevelName(level_str.strip().upper())
        if isinstance(level, int):
            return level
        return logging.INFO
    if "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ:
        return logging.WARNING
    return logging.INFO


def _format_from_env() -> str:
    format_type = os.getenv("LOG_FORMAT", "standard").lower()
    if format_type in ("dev", "development"):
        return DEV_FORMAT
    if format_type == "json":
        return JSON_FORMAT
    return DEFAULT_FORMAT


def setup_logging(level: Optional[Union[str, int]] = None, force: bool = False) -> None:
    """Configure the root logger once (or again with ``force=True``)."""
    global _configured
    if _configured and not force:
        return

    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else None
    log_level = level if level is not None else _level_from_env()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(_format_from_env()))
    root_logger.addHandler(handler)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)
