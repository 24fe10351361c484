"""
Unit tests -- parameter extractor: keyword mode, model mode, fallbacks.
"""
from datetime import datetime

import pytest

from conftest import BLOOR, ITEM_IDS, REFERENCE_NOW, YONGE
from salesqa.copilot.extractor import (
    ParameterExtractor,
    ParsedExtraction,
    ParseError,
    build_system_prompt,
    infer_group_by,
    infer_metrics,
    parse_model_response,
)
from salesqa.copilot.llm_client import LLMError
from salesqa.copilot.spec import ChatMessage
from salesqa.core.config import get_settings


@pytest.fixture
def keyword_extractor(resolver):
    return ParameterExtractor(resolver, item_names=list(ITEM_IDS), clock=lambda: REFERENCE_NOW)


@pytest.fixture
def model_extractor(resolver, scripted):
    def make(*replies):
        completions = scripted(*replies)
        extractor = ParameterExtractor(
            resolver,
            completions=completions,
            item_names=list(ITEM_IDS),
            clock=lambda: REFERENCE_NOW,
        )
        return extractor, completions
    return make


# ── Keyword inference ────────────────────────────────────

@pytest.mark.parametrize("question, metric", [
    ("total sales this month", "revenue"),
    ("how many transactions yesterday", "count"),
    ("number of orders at hq", "count"),
    ("how many units of latte", "quantity"),
    ("average transaction value", "average_transaction"),
    ("average order size today", "average_transaction"),
    ("average price of a latte", "average_item_price"),
    ("tell me something", "revenue"),
])
def test_infer_metrics(question, metric):
    assert infer_metrics(question) == [metric]


def test_count_word_needs_boundary():
    assert infer_metrics("revenue with a discount") == ["revenue"]


@pytest.mark.parametrize("question, group", [
    ("revenue by location", ["location"]),
    ("which location sold the most", ["location"]),
    ("compare yonge and bloor", ["location"]),
    ("best location last month", ["location"]),
    ("top store by revenue this year", ["location"]),
    ("items restored to the menu", ["item"]),
    ("top 3 items", ["item"]),
    ("best sellers this week", ["item"]),
    ("monthly revenue", ["month"]),
    ("daily revenue this week", ["date"]),
    ("revenue last month", []),
])
def test_infer_group_by(question, group):
    assert infer_group_by(question) == group


def test_compare_periods_does_not_group_by_location():
    assert infer_group_by("compare august vs september", comparison=True) == []


# ── Model response parsing ───────────────────────────────

def test_parse_strips_fences_and_filters_values():
    parsed = parse_model_response(
        '```json\n{"metrics": ["revenue", "profit"], "groupBy": ["location", "region"],'
        ' "startDate": "2025-09-13T00:00:00Z", "limit": "3", "sortDirection": "up"}\n```'
    )
    assert isinstance(parsed, ParsedExtraction)
    assert parsed.metrics == ["revenue"]
    assert parsed.group_by == ["location"]
    assert parsed.dropped == ["profit", "region"]
    assert parsed.start_date.isoformat() == "2025-09-13"
    assert parsed.limit == 3
    assert parsed.sort_direction is None


def test_parse_invalid_json_is_a_value_not_an_exception():
    result = parse_model_response("Sorry, I cannot help with that.")
    assert isinstance(result, ParseError)
    assert "invalid JSON" in result.reason


def test_parse_non_object():
    assert isinstance(parse_model_response("[1, 2]"), ParseError)


def test_system_prompt_carries_reference_date():
    prompt = build_system_prompt(REFERENCE_NOW)
    assert "Today's date: 2025-09-19" in prompt
    assert "Current year: 2025" in prompt
    assert "America/Toronto" in prompt
    assert "startDate 2025-09-13" in prompt


# ── Keyword mode ─────────────────────────────────────────

def test_keyword_mode_revenue_today(keyword_extractor):
    result = keyword_extractor.extract("What was revenue today?")
    assert result.success
    p = result.parameters
    assert p.metrics == ["revenue"]
    assert p.group_by == []
    assert p.date_range.start == datetime(2025, 9, 19)
    assert p.date_range.end == datetime(2025, 9, 20)


def test_keyword_mode_last_week_is_rolling_seven_days(keyword_extractor):
    p = keyword_extractor.extract("revenue last week").parameters
    assert p.date_range.start == datetime(2025, 9, 13)
    assert p.date_range.end == datetime(2025, 9, 20)


def test_keyword_mode_highest_location(keyword_extractor):
    p = keyword_extractor.extract("Which location had the highest revenue last week?").parameters
    assert p.group_by == ["location"]
    assert p.sort_by == "revenue"
    assert p.sort_direction == "desc"


def test_keyword_mode_lowest_sorts_ascending(keyword_extractor):
    p = keyword_extractor.extract("which location had the lowest revenue this month").parameters
    assert p.sort_direction == "asc"


def test_keyword_mode_locations_sorted(keyword_extractor):
    p = keyword_extractor.extract("average transaction at Bloor and Yonge").parameters
    assert p.metrics == ["average_transaction"]
    assert p.location_ids == sorted([YONGE, BLOOR])
    assert p.date_range is None


def test_keyword_mode_top_n(keyword_extractor):
    p = keyword_extractor.extract("top 3 items this month").parameters
    assert p.group_by == ["item"]
    assert p.limit == 3
    assert p.date_range.start == datetime(2025, 9, 1)


def test_keyword_mode_best_location_ranks_locations(keyword_extractor):
    result = keyword_extractor.extract("what was the best location last month")
    assert result.success
    assert result.parameters.group_by == ["location"]
    assert result.parameters.sort_by == "revenue"


def test_keyword_mode_top_zero_is_ignored(keyword_extractor):
    result = keyword_extractor.extract("top 0 items today")
    assert result.success
    assert result.parameters.limit is None
    assert result.parameters.group_by == ["item"]


def test_limit_clamped_to_max_rows(keyword_extractor):
    p = keyword_extractor.extract("top 5000 items").parameters
    assert p.limit == 200


def test_keyword_mode_detects_catalog_items(keyword_extractor):
    p = keyword_extractor.extract("how many Latte - Matcha sold yesterday").parameters
    assert p.item_names == ["Latte - Matcha"]
    assert p.metrics == ["quantity"]


def test_keyword_mode_comparison(keyword_extractor):
    p = keyword_extractor.extract("compare August 2024 vs September 2024").parameters
    assert p.is_comparison
    assert [w.start for w in p.comparison_ranges] == [datetime(2024, 8, 1), datetime(2024, 9, 1)]
    assert p.date_range.start == datetime(2024, 8, 1)
    assert p.date_range.end == datetime(2024, 10, 1)
    assert p.group_by == []


def test_comparison_without_year_on_one_side(keyword_extractor):
    p = keyword_extractor.extract("compare August vs September 2024").parameters
    assert len(p.comparison_ranges) == 2


# ── Model mode ───────────────────────────────────────────

def test_model_dates_trusted(model_extractor):
    extractor, completions = model_extractor(
        '```json\n{"metrics": ["revenue"], "groupBy": ["location"],'
        ' "startDate": "2025-09-13", "endDate": "2025-09-20"}\n```'
    )
    result = extractor.extract("Which location had the highest revenue last week?")
    assert result.success
    assert result.confidence == pytest.approx(0.9)
    p = result.parameters
    assert p.date_range.start == datetime(2025, 9, 13)
    assert p.date_range.end == datetime(2025, 9, 20)
    assert p.sort_by == "revenue"
    assert len(completions.calls) == 1
    assert "2025-09-19" in completions.calls[0]["system"]


def test_model_same_day_end_treated_as_inclusive(model_extractor):
    extractor, _ = model_extractor('{"metrics": ["count"], "startDate": "2025-09-19", "endDate": "2025-09-19"}')
    p = extractor.extract("transactions today").parameters
    assert p.date_range.start == datetime(2025, 9, 19)
    assert p.date_range.end == datetime(2025, 9, 20)


def test_model_start_only_runs_through_today(model_extractor):
    extractor, _ = model_extractor('{"metrics": ["revenue"], "startDate": "2025-09-01"}')
    p = extractor.extract("revenue since september 1").parameters
    assert p.date_range.end == datetime(2025, 9, 20)


def test_model_without_dates_uses_recipes(model_extractor):
    extractor, _ = model_extractor('{"metrics": ["revenue"], "groupBy": []}')
    p = extractor.extract("revenue last week").parameters
    assert p.date_range.start == datetime(2025, 9, 13)


def test_unknown_values_dropped_and_metrics_inferred(model_extractor):
    extractor, _ = model_extractor('{"metrics": ["profit"], "groupBy": ["region"]}')
    result = extractor.extract("average transaction value today")
    assert result.parameters.metrics == ["average_transaction"]
    assert result.parameters.group_by == []
    assert result.confidence == pytest.approx(0.7)


def test_invalid_sort_by_replaced(model_extractor):
    extractor, _ = model_extractor('{"metrics": ["quantity"], "groupBy": ["item"], "sortBy": "profit"}')
    p = extractor.extract("units by item").parameters
    assert p.sort_by == "quantity"


def test_sort_by_unset_when_ungrouped(model_extractor):
    extractor, _ = model_extractor('{"metrics": ["revenue"], "sortBy": "revenue_total"}')
    p = extractor.extract("revenue").parameters
    assert p.sort_by is None


def test_model_limit_clamped(model_extractor):
    extractor, _ = model_extractor('{"metrics": ["revenue"], "groupBy": ["item"], "limit": 500}')
    assert extractor.extract("items by revenue").parameters.limit == 200


def test_item_names_canonicalised(model_extractor):
    extractor, _ = model_extractor('{"metrics": ["quantity"], "itemNames": ["latte", "Mocha"]}')
    p = extractor.extract("how many latte and mocha").parameters
    assert p.item_names == ["Latte", "Mocha"]


def test_locations_come_from_utterance_not_model(model_extractor):
    extractor, _ = model_extractor('{"metrics": ["revenue"], "locationKeywords": ["kingston"]}')
    p = extractor.extract("revenue at yonge today").parameters
    assert p.location_ids == [YONGE]


def test_comparison_overrides_model_dates(model_extractor):
    extractor, _ = model_extractor(
        '{"metrics": ["revenue"], "startDate": "2024-08-01", "endDate": "2024-10-01"}'
    )
    p = extractor.extract("compare august 2024 vs september 2024").parameters
    assert p.is_comparison
    assert len(p.comparison_ranges) == 2


def test_history_truncated_to_recent_turns(model_extractor):
    extractor, completions = model_extractor('{"metrics": ["revenue"]}')
    history = [
        ChatMessage(role="user" if i % 2 == 0 else "assistant", content=f"turn {i}")
        for i in range(10)
    ]
    extractor.extract("and yesterday?", history)
    sent = completions.calls[0]["history"]
    assert len(sent) == 6
    assert sent[-1].content == "turn 9"


def test_zero_history_turns_sends_no_history(model_extractor, monkeypatch):
    extractor, completions = model_extractor('{"metrics": ["revenue"]}')
    monkeypatch.setattr(get_settings(), "history_turns", 0)
    history = [ChatMessage(role="user", content="turn 0"), ChatMessage(role="assistant", content="turn 1")]
    extractor.extract("and yesterday?", history)
    assert list(completions.calls[0]["history"]) == []


# ── Failures ─────────────────────────────────────────────

def test_unparseable_reply_continues_with_defaults(model_extractor):
    extractor, _ = model_extractor("Sorry, I can't do that")
    result = extractor.extract("revenue today")
    assert result.success
    assert result.confidence == pytest.approx(0.4)
    assert result.parameters.metrics == ["revenue"]
    assert result.parameters.date_range.start == datetime(2025, 9, 19)


def test_llm_error_returns_default_parameters(model_extractor):
    extractor, _ = model_extractor(LLMError("request timed out"))
    result = extractor.extract("revenue by location today")
    assert result.success is False
    assert "timed out" in result.error
    assert result.parameters.metrics == ["revenue"]
    assert result.parameters.group_by == []
    assert result.parameters.date_range is None


def test_unexpected_error_returns_default_parameters(model_extractor):
    extractor, _ = model_extractor(ValueError("boom"))
    result = extractor.extract("revenue today")
    assert result.success is False
    assert result.parameters.metrics == ["revenue"]


@pytest.mark.parametrize("reply", [
    "", "null", "{}", '{"metrics": []}', '{"metrics": "revenue"}', '{"limit": -4}',
    '{"startDate": "not-a-date", "endDate": "2025-13-40"}',
])
def test_metrics_never_empty(model_extractor, reply):
    extractor, _ = model_extractor(reply)
    result = extractor.extract("show me something")
    assert result.parameters.metrics
