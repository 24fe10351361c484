"""
Structured logging for the sales Q&A pipeline.

Every stage logs one line per event with ``key=value`` diagnostic context
(elapsed time, row counts, extracted parameters) appended to the message.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

from salesqa.core.config import get_settings


def get_logger(name: str) -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        fmt = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger


def kv(**fields: Any) -> str:
    """Render diagnostic context as ``key=value`` pairs, skipping ``None`` values.

    Long string values are truncated to keep log lines readable.
    """
    parts: list[str] = []
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)):
            value = ",".join(str(v) for v in value) or "-"
        text = str(value)
        if len(text) > 120:
            text = text[:117] + "..."
        parts.append(f"{key}={text}")
    return " ".join(parts)
