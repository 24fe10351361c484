"""
Small shared utilities: timing, business-clock and money helpers.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import datetime
from typing import Generator
from zoneinfo import ZoneInfo

from salesqa.core.config import get_settings

MINOR_UNITS_PER_MAJOR = 100


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def now_local() -> datetime:
    """Current wall-clock time in the business timezone, as a naive datetime.

    Stored order timestamps are naive local times, so every date computation
    in the pipeline works on naive datetimes in the same zone.
    """
    tz = ZoneInfo(get_settings().business_timezone)
    return datetime.now(tz).replace(tzinfo=None)


def minor_to_major(amount: int | None) -> float:
    """Convert an integer amount in minor currency units (cents) to major units."""
    return (amount or 0) / MINOR_UNITS_PER_MAJOR


def safe_ratio(numerator: int | float | None, denominator: int | float | None) -> float:
    """numerator / denominator, or 0.0 when the denominator is zero or missing."""
    if not denominator:
        return 0.0
    return (numerator or 0) / denominator


def format_currency(value: float) -> str:
    """Format a major-unit amount as e.g. ``$1,234.56``."""
    symbol = get_settings().currency_symbol
    if value < 0:
        return f"-{symbol}{abs(value):,.2f}"
    return f"{symbol}{value:,.2f}"
