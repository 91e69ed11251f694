"""Structured logging for pipeline runs; no global state beyond the logging tree."""

from __future__ import annotations

import logging
import sys
from typing import Any

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the given module/component. No side effects."""
    return logging.getLogger(name)


def setup_logging(
    level: str = "INFO",
    format_string: str | None = None,
    stream: Any = None,
) -> None:
    """
    Configure root logger once. Safe to call from an embedding service or tests.
    httpx request lines are demoted to WARNING so document traces stay readable.
    """
    if format_string is None:
        format_string = DEFAULT_FORMAT
    stream = stream or sys.stdout
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=format_string,
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=stream,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_structured(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Emit a log record with extra keys for structured aggregation.
    The keys are also appended to the message so plain-text handlers show them.
    """
    if kwargs:
        rendered = " ".join(f"{k}={v}" for k, v in kwargs.items())
        msg = f"{msg} | {rendered}"
    logger.log(level, msg, extra={f"ctx_{k}": v for k, v in kwargs.items()})
