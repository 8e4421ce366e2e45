"""Logging setup shared by every engine stage."""

from __future__ import annotations

import logging
import sys
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from capacity_engine.utils.config import get_settings


_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root handler once per process."""

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    resolved_level = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


@contextmanager
def log_stage(logger: logging.Logger, stage: str, **context: object) -> Iterator[None]:
    """Log start/finish of an engine stage with its wall time in milliseconds."""
    details = " | ".join(f"{key}={value}" for key, value in context.items())
    suffix = f" | {details}" if details else ""
    logger.debug("Stage started | stage=%s%s", stage, suffix)
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.info("Stage completed | stage=%s | elapsed_ms=%.2f%s", stage, elapsed_ms, suffix)
