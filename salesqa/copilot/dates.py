"""
Date range resolver -- natural-language time expressions -> concrete ranges.

Recognised shapes:
  comparison  "august vs september 2024", "compare q1 to q2"   -> several ranges
  relative    today, yesterday, this/last/next week|month|quarter|year,
              last N days|weeks|months, year to date
  absolute    "august", "aug 2024", "q3 2024", "2024", "2024-08-25",
              "august 25", "august 25, 2024"

Ranges start at 00:00:00.000 on their first day and end at 23:59:59.999 on
their last day (inclusive end).  Single-day relative ranges (today, yesterday,
tomorrow) are 24-hour half-open windows starting at midnight instead.

Weeks start on Monday.  A month/day without a year uses the reference year.
``resolve`` never raises for unrecognised input -- it returns ``ParseFailure``.
"""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from salesqa.core.logging import get_logger, kv
from salesqa.core.utils import now_local

logger = get_logger(__name__)

_END_OF_DAY = time(23, 59, 59, 999000)

_MONTHS: dict[str, int] = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}
_MONTH_TOKEN = "|".join(sorted(_MONTHS, key=len, reverse=True))

# ── Patterns ─────────────────────────────────────────────

_SEPARATOR_RE = re.compile(r"\s+(?:vs\.?|versus|against|compared\s+(?:to|with))\s+")
_COMPARE_WORD_RE = re.compile(r"\bcompar(?:e|ing)\b")
_COMPARE_SEPARATOR_RE = re.compile(r"\s+(?:to|with|and)\s+")

_SINGLE_DAY_RE = re.compile(r"\b(today|yesterday|tomorrow)\b")
_ROLLING_RE = re.compile(r"\b(?:last|past|previous)\s+(\d{1,3})\s+(day|week|month)s?\b")
_PERIOD_RE = re.compile(r"\b(this|current|last|previous|past|next)\s+(week|month|quarter|year)\b")
_TO_DATE_RE = re.compile(r"\b(year|month)[\s-]+to[\s-]+date\b|\b(ytd|mtd)\b")

_QUARTER_RE = re.compile(r"\b(?:q([1-4])|quarter\s+([1-4]))\b(?:,?\s+(\d{4})\b)?")
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_MONTH_DAY_RE = re.compile(
    rf"\b({_MONTH_TOKEN})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?\b(?:,?\s+(\d{{4}})\b)?"
)
_MONTH_RE = re.compile(rf"\b({_MONTH_TOKEN})\b\.?(?:,?\s+(\d{{4}})\b)?")
_YEAR_RE = re.compile(r"\b((?:19|20)\d{2})\b")

# "may" is only a month when it carries a year or follows a preposition.
_MAY_CONTEXT_RE = re.compile(r"\b(?:in|of|for|during|since|from|through|until|by)\s+$")

_OFFSETS = {"this": 0, "current": 0, "last": -1, "previous": -1, "past": -1, "next": 1}


# ── Result types ─────────────────────────────────────────

@dataclass(frozen=True)
class DateRange:
    """A resolved period.  ``end`` is inclusive unless ``end_inclusive`` is False."""

    label: str
    start: datetime
    end: datetime
    end_inclusive: bool = True

    @property
    def exclusive_end(self) -> datetime:
        """The same range expressed as a half-open ``[start, exclusive_end)``."""
        if self.end_inclusive:
            return self.end + timedelta(milliseconds=1)
        return self.end

    def describe(self) -> str:
        return f"{self.label}: {self.start.date().isoformat()} to {self.end.date().isoformat()}"


@dataclass(frozen=True)
class ParseFailure:
    """No supported date pattern matched ``expression``."""

    expression: str
    reason: str


# ── Calendar helpers ─────────────────────────────────────

def _span(label: str, first: date, last: date) -> DateRange:
    return DateRange(
        label=label,
        start=datetime.combine(first, time.min),
        end=datetime.combine(last, _END_OF_DAY),
    )


def _single_day(label: str, day: date) -> DateRange:
    start = datetime.combine(day, time.min)
    return DateRange(label=label, start=start, end=start + timedelta(days=1), end_inclusive=False)


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def _month_span(label: str, year: int, month: int) -> DateRange:
    last_day = calendar.monthrange(year, month)[1]
    return _span(label, date(year, month, 1), date(year, month, last_day))


def _quarter_span(year: int, quarter: int) -> DateRange:
    first_month = (quarter - 1) * 3 + 1
    last_month = first_month + 2
    last_day = calendar.monthrange(year, last_month)[1]
    return _span(f"q{quarter}_{year}", date(year, first_month, 1), date(year, last_month, last_day))


def _months_back(day: date, months: int) -> date:
    year, month = _shift_month(day.year, day.month, -months)
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


# ── Relative expressions ─────────────────────────────────

def _parse_relative(text: str, today: date) -> DateRange | None:
    m = _SINGLE_DAY_RE.search(text)
    if m:
        word = m.group(1)
        offset = {"today": 0, "yesterday": -1, "tomorrow": 1}[word]
        return _single_day(word, today + timedelta(days=offset))

    m = _ROLLING_RE.search(text)
    if m:
        n = int(m.group(1))
        unit = m.group(2)
        if n <= 0:
            return None
        if unit == "day":
            first = today - timedelta(days=n - 1)
        elif unit == "week":
            first = today - timedelta(days=7 * n - 1)
        else:
            first = _months_back(today, n) + timedelta(days=1)
        return _span(f"last_{n}_{unit}s", first, today)

    m = _PERIOD_RE.search(text)
    if m:
        offset = _OFFSETS[m.group(1)]
        unit = m.group(2)
        label = f"{m.group(1)}_{unit}"
        if unit == "week":
            monday = today - timedelta(days=today.weekday()) + timedelta(weeks=offset)
            return _span(label, monday, monday + timedelta(days=6))
        if unit == "month":
            year, month = _shift_month(today.year, today.month, offset)
            return _month_span(label, year, month)
        if unit == "quarter":
            year, month = _shift_month(today.year, ((today.month - 1) // 3) * 3 + 1, 3 * offset)
            span = _quarter_span(year, (month - 1) // 3 + 1)
            return DateRange(label=label, start=span.start, end=span.end)
        year = today.year + offset
        return _span(label, date(year, 1, 1), date(year, 12, 31))

    m = _TO_DATE_RE.search(text)
    if m:
        unit = m.group(1) or ("year" if m.group(2) == "ytd" else "month")
        if unit == "year":
            return _span("year_to_date", date(today.year, 1, 1), today)
        return _span("month_to_date", today.replace(day=1), today)

    return None


# ── Absolute expressions ─────────────────────────────────

def _is_month_reference(text: str, match: re.Match, has_suffix: bool) -> bool:
    if match.group(1) != "may" or has_suffix:
        return True
    return bool(_MAY_CONTEXT_RE.search(text[: match.start()]))


def _parse_quarter(text: str, today: date) -> DateRange | None:
    m = _QUARTER_RE.search(text)
    if not m:
        return None
    quarter = int(m.group(1) or m.group(2))
    year = int(m.group(3)) if m.group(3) else today.year
    return _quarter_span(year, quarter)


def _parse_iso_date(text: str) -> DateRange | None:
    for m in _ISO_DATE_RE.finditer(text):
        try:
            day = date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            continue
        return _span(day.isoformat(), day, day)
    return None


def _parse_month_day(text: str, today: date) -> DateRange | None:
    for m in _MONTH_DAY_RE.finditer(text):
        if not _is_month_reference(text, m, has_suffix=True):
            continue
        month = _MONTHS[m.group(1)]
        year = int(m.group(3)) if m.group(3) else today.year
        try:
            day = date(year, month, int(m.group(2)))
        except ValueError:
            continue
        return _span(day.isoformat(), day, day)
    return None


def _parse_month(text: str, today: date) -> DateRange | None:
    for m in _MONTH_RE.finditer(text):
        if not _is_month_reference(text, m, has_suffix=bool(m.group(2))):
            continue
        month = _MONTHS[m.group(1)]
        year = int(m.group(2)) if m.group(2) else today.year
        return _month_span(f"{calendar.month_name[month].lower()}_{year}", year, month)
    return None


def _parse_year(text: str) -> DateRange | None:
    m = _YEAR_RE.search(text)
    if not m:
        return None
    year = int(m.group(1))
    return _span(f"year_{year}", date(year, 1, 1), date(year, 12, 31))


def _parse_single(text: str, today: date) -> DateRange | None:
    return (
        _parse_relative(text, today)
        or _parse_quarter(text, today)
        or _parse_iso_date(text)
        or _parse_month_day(text, today)
        or _parse_month(text, today)
        or _parse_year(text)
    )


# ── Comparison expressions ───────────────────────────────

def _split_comparison(text: str) -> list[str]:
    parts = _SEPARATOR_RE.split(text)
    if len(parts) >= 2:
        return parts
    if _COMPARE_WORD_RE.search(text):
        parts = _COMPARE_SEPARATOR_RE.split(text)
        if len(parts) >= 2:
            return parts
    return []


# ── Public API ───────────────────────────────────────────

def resolve(expression: str, reference: datetime | None = None) -> list[DateRange] | ParseFailure:
    """Resolve *expression* into one or more date ranges relative to *reference*.

    The result depends only on ``(expression, reference)``; *reference*
    defaults to the current business-local time.
    """
    text = " ".join(expression.lower().split())
    today = (reference or now_local()).date()

    parts = _split_comparison(text)
    if parts:
        ranges = [r for r in (_parse_single(p, today) for p in parts) if r is not None]
        if len(ranges) >= 2:
            logger.debug("Resolved comparison | %s", kv(expression=text, periods=[r.label for r in ranges]))
            return ranges

    single = _parse_single(text, today)
    if single is None:
        return ParseFailure(expression=expression, reason="no supported date expression found")
    logger.debug("Resolved date range | %s", kv(expression=text, range=single.describe()))
    return [single]


