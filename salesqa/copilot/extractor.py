"""
Parameter extractor -- converts a natural-language sales question into
validated QueryParameters.

Two modes:
  keyword  -> deterministic keyword/date/location extraction (no model; used
              when the LLM provider is ``mock``)
  model    -> LLM-backed JSON extraction, post-processed by the same rules

Whatever happens, the returned parameters satisfy the QueryParameters
invariants: at least one metric, deduplicated dimensions, start < end.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Sequence

from salesqa.copilot import dates
from salesqa.copilot.llm_client import Completions, LLMError
from salesqa.copilot.locations import LocationResolver
from salesqa.copilot.spec import (
    GROUP_BY_DIMENSIONS,
    METRICS,
    ChatMessage,
    QueryParameters,
    TimeWindow,
    default_parameters,
)
from salesqa.core.config import get_settings
from salesqa.core.logging import get_logger, kv
from salesqa.core.utils import now_local, timer

logger = get_logger(__name__)


# ── Keyword rules ────────────────────────────────────────

_AVERAGE_WORDS = ("average", "avg", "mean")
_TRANSACTION_WORDS = ("transaction", "order", "ticket", "basket", "sale")
_PRICE_WORDS = ("price",)
_COUNT_WORDS = ("transaction", "count", "number of", "orders")
_QUANTITY_WORDS = ("quantity", "how many", "units", "items sold", "sold")

_GROUP_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("item", ("by item", "per item", "each item", "which item", "top", "best",
              "most popular", "items")),
    ("month", ("monthly", "by month", "per month", "each month", "month by month",
               "month over month")),
    ("date", ("daily", "by day", "per day", "each day", "by date", "day by day")),
]

_ASCENDING_WORDS = ("lowest", "least", "worst", "bottom", "slowest", "fewest")

_LIMIT_RE = re.compile(r"\b(?:top|best|bottom|worst|limit|first)\s+(\d{1,4})\b")
_COMPARE_RE = re.compile(r"\bcompar(?:e|ing|ison)\b")
_LOCATION_RE = re.compile(r"\b(?:location|store)s?\b")
# "last week" follows the prompt recipe: the 7 days ending today, inclusive.
_ROLLING_WEEK_RE = re.compile(r"\b(?:last|past)\s+week\b")


def _has(text: str, *phrases: str) -> bool:
    return any(re.search(rf"(?<![a-z0-9]){re.escape(p)}", text) for p in phrases)


def infer_metrics(question: str) -> list[str]:
    """Fallback metric when the model named none."""
    q = question.lower()
    if _has(q, *_AVERAGE_WORDS):
        if _has(q, *_PRICE_WORDS):
            return ["average_item_price"]
        if _has(q, *_TRANSACTION_WORDS):
            return ["average_transaction"]
    if _has(q, *_COUNT_WORDS):
        return ["count"]
    if _has(q, *_QUANTITY_WORDS):
        return ["quantity"]
    return ["revenue"]


def infer_group_by(question: str, comparison: bool = False) -> list[str]:
    """Fallback grouping when the model named none (first match wins)."""
    q = question.lower()
    if _LOCATION_RE.search(q) or (not comparison and _COMPARE_RE.search(q)):
        return ["location"]
    for dim, phrases in _GROUP_KEYWORDS:
        if _has(q, *phrases):
            return [dim]
    return []


def _infer_limit(question: str) -> int | None:
    m = _LIMIT_RE.search(question.lower())
    limit = int(m.group(1)) if m else 0
    return limit if limit > 0 else None


def _infer_direction(question: str) -> str:
    return "asc" if _has(question.lower(), *_ASCENDING_WORDS) else "desc"


# ── Model response parsing ───────────────────────────────

@dataclass(frozen=True)
class ParsedExtraction:
    """Fields the model returned, already filtered to the allowed values."""

    metrics: list[str] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    start_date: date | None = None
    end_date: date | None = None
    location_keywords: list[str] = field(default_factory=list)
    item_names: list[str] = field(default_factory=list)
    limit: int | None = None
    sort_by: str | None = None
    sort_direction: str | None = None
    dropped: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ParseError:
    reason: str
    raw: str = ""


def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)
    return text


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _as_date(value: Any) -> date | None:
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _as_limit(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return None
    return limit if limit > 0 else None


def parse_model_response(text: str) -> ParsedExtraction | ParseError:
    """Parse the model's JSON reply.  Never raises."""
    cleaned = _strip_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        return ParseError(reason=f"invalid JSON: {exc.msg}", raw=text[:200])
    if not isinstance(data, dict):
        return ParseError(reason="expected a JSON object", raw=text[:200])

    dropped: list[str] = []
    metrics: list[str] = []
    for m in _as_list(data.get("metrics")):
        (metrics if m in METRICS else dropped).append(str(m))
    group_by: list[str] = []
    for g in _as_list(data.get("groupBy")):
        (group_by if g in GROUP_BY_DIMENSIONS else dropped).append(str(g))

    direction = data.get("sortDirection")
    return ParsedExtraction(
        metrics=metrics,
        group_by=group_by,
        start_date=_as_date(data.get("startDate")),
        end_date=_as_date(data.get("endDate")),
        location_keywords=[str(k) for k in _as_list(data.get("locationKeywords")) if k],
        item_names=[str(i).strip() for i in _as_list(data.get("itemNames")) if isinstance(i, str) and i.strip()],
        limit=_as_limit(data.get("limit")),
        sort_by=data.get("sortBy") if isinstance(data.get("sortBy"), str) else None,
        sort_direction=direction if direction in ("asc", "desc") else None,
        dropped=dropped,
    )


# ── Prompt ───────────────────────────────────────────────

_SYSTEM_PROMPT = """\
You are a sales data query parameter extractor. Analyze the user's question \
about point-of-sale data and extract structured query parameters.

CURRENT CONTEXT:
- Today's date: {today}
- Current year: {year}
- Timezone: {timezone}

RULES:
- Extract ONLY what is explicitly mentioned or clearly implied.
- Use exact item names when mentioned.
- Compute dates from today's date above. endDate is EXCLUSIVE (the day after the last day included).

1. METRICS (what to calculate), any of: {metrics}
   - "total sales", "revenue", "sales" -> revenue
   - "transactions", "number of orders", "count" -> count
   - "quantity", "how many", "units" -> quantity
   - "average transaction", "average order value" -> average_transaction
   - "average price", "avg item price" -> average_item_price

2. GROUPING (how to break results down), any of: {dimensions}
   - "by location", "compare locations", "which location" -> location
   - "by item", "top items", "which item" -> item
   - "monthly", "by month" -> month
   - "daily", "by date" -> date

3. TIME PERIODS:
   - "today" -> startDate {today}, endDate {tomorrow}
   - "yesterday" -> startDate {yesterday}, endDate {today}
   - "last week" -> the 7 days ending today inclusive: startDate {week_start}, endDate {tomorrow}
   - "last 30 days" -> startDate {month_start}, endDate {tomorrow}
   - "September 2025" -> startDate 2025-09-01, endDate 2025-10-01
   - "Q1 2024" -> startDate 2024-01-01, endDate 2024-04-01
   - "2024" -> startDate 2024-01-01, endDate 2025-01-01
   - No time mentioned -> omit startDate and endDate (all data)

4. LOCATIONS: list the location words used (e.g. "hq", "yonge"); omit for all locations.
5. ITEMS: exact item names mentioned; "top 3" sets limit, it does not filter items.

Respond with valid JSON only, no markdown:
{{"metrics": ["revenue"], "groupBy": ["location"], "startDate": "2024-01-01", \
"endDate": "2025-01-01", "locationKeywords": ["yonge"], "itemNames": ["Latte"], \
"limit": 3, "sortBy": "revenue", "sortDirection": "desc"}}"""


def build_system_prompt(now: datetime) -> str:
    today = now.date()
    return _SYSTEM_PROMPT.format(
        today=today.isoformat(),
        year=today.year,
        timezone=get_settings().business_timezone,
        tomorrow=(today + timedelta(days=1)).isoformat(),
        yesterday=(today - timedelta(days=1)).isoformat(),
        week_start=(today - timedelta(days=6)).isoformat(),
        month_start=(today - timedelta(days=29)).isoformat(),
        metrics=", ".join(METRICS),
        dimensions=", ".join(GROUP_BY_DIMENSIONS),
    )


def build_user_prompt(question: str) -> str:
    return f'Extract parameters from this query: "{question}"'


# ── Extractor ────────────────────────────────────────────

@dataclass
class ParameterExtractionResult:
    success: bool
    parameters: QueryParameters
    confidence: float
    reasoning: str
    error: str | None = None


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _window(label: str, first: date, end_exclusive: date) -> TimeWindow:
    return TimeWindow(label=label, start=_midnight(first), end=_midnight(end_exclusive))


def _from_range(r: dates.DateRange) -> TimeWindow:
    return TimeWindow(label=r.label, start=r.start, end=r.exclusive_end)


class ParameterExtractor:
    """NL question -> QueryParameters.

    Parameters
    ----------
    locations : LocationResolver
        Shared, already-initialised keyword table.
    completions : Completions, optional
        Language-model backend.  ``None`` selects keyword mode.
    item_names : sequence of str, optional
        Catalog item names used to canonicalise / detect items.
    clock : callable, optional
        Returns the reference "now" (business-local, naive).
    """

    def __init__(
        self,
        locations: LocationResolver,
        completions: Completions | None = None,
        item_names: Sequence[str] = (),
        clock: Callable[[], datetime] = now_local,
    ):
        self._locations = locations
        self._completions = completions
        self._items = {name.lower(): name for name in item_names}
        self._clock = clock

    # ── Public API ──────────────────────────────────────

    def extract(
        self,
        question: str,
        recent_history: Sequence[ChatMessage] = (),
    ) -> ParameterExtractionResult:
        logger.info("Parameter extraction started | %s", kv(question=question[:100], history=len(recent_history)))
        with timer() as t:
            try:
                result = self._extract(question, list(recent_history))
            except LLMError as exc:
                logger.warning("Parameter extraction: LLM request failed | %s", kv(error=exc))
                result = ParameterExtractionResult(
                    success=False,
                    parameters=default_parameters(),
                    confidence=0.0,
                    reasoning="Language model request failed",
                    error=str(exc),
                )
            except Exception as exc:
                logger.exception("Parameter extraction failed | %s", kv(question=question[:100]))
                result = ParameterExtractionResult(
                    success=False,
                    parameters=default_parameters(),
                    confidence=0.0,
                    reasoning="Extraction failed with error",
                    error=str(exc),
                )

        p = result.parameters
        logger.info(
            "Parameter extraction finished | %s",
            kv(
                success=result.success,
                elapsed_ms=t["elapsed_ms"],
                metrics=p.metrics,
                group_by=p.group_by,
                locations=len(p.location_ids),
                items=len(p.item_names),
                date_range=p.date_range.describe() if p.date_range else "all",
                periods=len(p.comparison_ranges) or None,
            ),
        )
        return result

    # ── Internals ───────────────────────────────────────

    def _extract(self, question: str, history: list[ChatMessage]) -> ParameterExtractionResult:
        now = self._clock()

        if self._completions is None:
            params = self._finalize(ParsedExtraction(), question, now, keyword_mode=True)
            return ParameterExtractionResult(
                success=True,
                parameters=params,
                confidence=0.6,
                reasoning="Keyword extraction (no language model configured)",
            )

        keep = get_settings().history_turns
        turns = history[-keep:] if history and keep > 0 else []
        raw = self._completions.complete(
            system=build_system_prompt(now),
            user=build_user_prompt(question),
            history=turns,
        )
        outcome = parse_model_response(raw)
        if isinstance(outcome, ParseError):
            logger.warning("Model reply not usable, applying defaults | %s", kv(reason=outcome.reason, raw=outcome.raw))
            params = self._finalize(ParsedExtraction(), question, now, keyword_mode=True)
            return ParameterExtractionResult(
                success=True,
                parameters=params,
                confidence=0.4,
                reasoning=f"Model reply could not be parsed ({outcome.reason}); used keyword defaults",
            )

        if outcome.dropped:
            logger.info("Dropped unknown metric/dimension values | %s", kv(dropped=outcome.dropped))
        params = self._finalize(outcome, question, now, keyword_mode=False)
        inferred = not outcome.metrics
        return ParameterExtractionResult(
            success=True,
            parameters=params,
            confidence=0.7 if inferred else 0.9,
            reasoning="Extracted by language model"
            + ("; metrics inferred from keywords" if inferred else ""),
        )

    def _finalize(
        self,
        parsed: ParsedExtraction,
        question: str,
        now: datetime,
        keyword_mode: bool,
    ) -> QueryParameters:
        """Apply date post-processing, location resolution and business defaults."""
        date_range, comparison = self._resolve_dates(parsed, question, now.date())

        metrics = parsed.metrics or infer_metrics(question)
        group_by = parsed.group_by or infer_group_by(question, comparison=bool(comparison))

        if keyword_mode:
            item_names = self._detect_items(question)
        else:
            item_names = [self._items.get(name.lower(), name) for name in parsed.item_names]

        max_rows = get_settings().max_result_rows
        limit = parsed.limit or _infer_limit(question)
        if limit is not None:
            limit = min(limit, max_rows)

        sort_by = parsed.sort_by
        if sort_by not in set(metrics) | set(group_by):
            sort_by = metrics[0] if group_by and metrics else None
        direction = parsed.sort_direction or _infer_direction(question)

        return QueryParameters(
            metrics=metrics,
            group_by=group_by,
            date_range=date_range,
            comparison_ranges=comparison,
            location_ids=sorted(self._locations.resolve_locations(question)),
            item_names=item_names,
            sort_by=sort_by,
            sort_direction=direction,
            limit=limit,
        )

    def _resolve_dates(
        self,
        parsed: ParsedExtraction,
        question: str,
        today: date,
    ) -> tuple[TimeWindow | None, list[TimeWindow]]:
        resolved = dates.resolve(question, datetime.combine(today, time(12)))

        if isinstance(resolved, list) and len(resolved) >= 2:
            periods = [_from_range(r) for r in resolved]
            span = TimeWindow(
                label="comparison",
                start=min(p.start for p in periods),
                end=max(p.end for p in periods),
            )
            return span, periods

        window = self._model_window(parsed, today)
        if window is not None:
            return window, []

        if _ROLLING_WEEK_RE.search(question.lower()):
            return _window("last_7_days", today - timedelta(days=6), today + timedelta(days=1)), []

        if isinstance(resolved, list) and resolved:
            return _from_range(resolved[0]), []
        return None, []

    @staticmethod
    def _model_window(parsed: ParsedExtraction, today: date) -> TimeWindow | None:
        start, end = parsed.start_date, parsed.end_date
        if start is None:
            return None
        if end is None:
            end = max(today, start) + timedelta(days=1)
        elif end <= start:
            # Same-day or inverted reply: read endDate as the last day included.
            end = max(end, start) + timedelta(days=1)
        return _window(f"{start.isoformat()}_to_{end.isoformat()}", start, end)

    def _detect_items(self, question: str) -> list[str]:
        q = question.lower()
        found = [
            lowered for lowered in self._items
            if re.search(rf"(?<![a-z0-9]){re.escape(lowered)}(?![a-z0-9])", q)
        ]
        # "latte" inside "latte - matcha" is not a separate mention.
        kept = [f for f in found if not any(f != other and f in other for other in found)]
        return [self._items[k] for k in kept]
