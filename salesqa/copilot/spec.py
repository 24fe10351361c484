"""
QueryParameters -- the structured intermediate representation between a
natural-language question and the aggregation queries run against the POS
store -- plus the result types that flow back out of the executor.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Literal, get_args

from pydantic import BaseModel, Field, field_validator, model_validator

Metric = Literal["revenue", "count", "quantity", "average_transaction", "average_item_price"]
GroupBy = Literal["location", "item", "month", "date"]
SortDirection = Literal["asc", "desc"]

METRICS: tuple[str, ...] = get_args(Metric)
GROUP_BY_DIMENSIONS: tuple[str, ...] = get_args(GroupBy)

# Metrics reported in major currency units (everything else is a plain count).
MONEY_METRICS: frozenset[str] = frozenset({"revenue", "average_transaction", "average_item_price"})


def _dedupe(values: list) -> list:
    seen: set = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


class TimeWindow(BaseModel):
    """Half-open interval ``[start, end)`` over naive business-local timestamps."""

    label: str = Field("", description="Human-readable name, e.g. 'august_2024'")
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "TimeWindow":
        if self.start >= self.end:
            raise ValueError(f"time window start {self.start} must be before end {self.end}")
        return self

    def describe(self) -> str:
        """``YYYY-MM-DD to YYYY-MM-DD`` using the last *included* day."""
        last_included = self.end - timedelta(microseconds=1)
        return f"{self.start.date().isoformat()} to {last_included.date().isoformat()}"


class QueryParameters(BaseModel):
    """Validated intent of a sales question."""

    metrics: list[Metric] = Field(..., min_length=1, description="What to calculate")
    group_by: list[GroupBy] = Field(default_factory=list, description="Grouping dimensions")
    date_range: TimeWindow | None = Field(None, description="Absent means all time")
    comparison_ranges: list[TimeWindow] = Field(
        default_factory=list,
        description="Two or more periods to compare side by side",
    )
    location_ids: list[str] = Field(default_factory=list, description="Empty means all locations")
    item_names: list[str] = Field(default_factory=list, description="Empty means all items")
    sort_by: str | None = None
    sort_direction: SortDirection = "desc"
    limit: int | None = Field(None, ge=1)

    @field_validator("metrics", "group_by", "location_ids", "item_names")
    @classmethod
    def _unique(cls, values: list) -> list:
        return _dedupe(values)

    @property
    def is_comparison(self) -> bool:
        return len(self.comparison_ranges) >= 2


def default_parameters() -> QueryParameters:
    """The stable fallback used whenever extraction cannot produce anything better."""
    return QueryParameters(metrics=["revenue"])


class ResultRow(BaseModel):
    """One line of an aggregation result; unpopulated fields stay ``None``."""

    # Dimensions
    location: str | None = None
    location_id: str | None = None
    item: str | None = None
    item_id: str | None = None
    month: str | None = None
    date: str | None = None
    period: str | None = None

    # Metrics
    revenue: float | None = None
    count: int | None = None
    quantity: int | None = None
    average_transaction: float | None = None
    average_item_price: float | None = None

    def dimension_label(self) -> str:
        parts = [
            v for v in (self.period, self.location, self.item, self.month, self.date) if v is not None
        ]
        return " / ".join(parts)

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


class QueryResult(BaseModel):
    """Executed result set, plus everything the formatter needs to describe it."""

    success: bool = True
    rows: list[ResultRow] = Field(default_factory=list)
    record_count: int = 0
    query_plan: str = ""
    parameters: QueryParameters
    summary: str = ""
    error: str | None = None
    elapsed_ms: int = 0


class ChatMessage(BaseModel):
    """One prior conversation turn."""

    role: Literal["user", "assistant", "system"] = "user"
    content: str
