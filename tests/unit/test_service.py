"""
Unit tests -- copilot service: end-to-end pipeline over the SQLite store.
"""
import pytest

from conftest import HQ, REFERENCE_NOW, YONGE
from salesqa.copilot import service as service_module
from salesqa.copilot.llm_client import LLMError
from salesqa.copilot.service import (
    EXECUTION_FAILED_MESSAGE,
    EXTRACTION_FAILED_MESSAGE,
    UNEXPECTED_ERROR_MESSAGE,
    CopilotService,
)
from salesqa.copilot.spec import ChatMessage
from salesqa.db.schema import metadata


@pytest.fixture
def keyword_service(pos_engine):
    return CopilotService(engine=pos_engine, completions=None, clock=lambda: REFERENCE_NOW)


def test_revenue_today(keyword_service):
    answer = keyword_service.answer_question("What was revenue today?")
    assert answer.success
    assert answer.record_count == 1
    assert answer.rows == [{"revenue": 20.0}]
    assert "$20.00" in answer.summary
    assert "Found 1 result" in answer.summary
    assert answer.query_plan.startswith("revenue | 2025-09-19 to 2025-09-19")


def test_highest_location_last_week(keyword_service):
    answer = keyword_service.answer_question("Which location had the highest revenue last week?")
    assert answer.success
    assert [r["location_id"] for r in answer.rows] == [HQ, YONGE]
    assert answer.rows[0]["revenue"] == pytest.approx(17.5)
    assert answer.summary == "Found 2 results grouped by location."


def test_reference_data_loaded_lazily_once(keyword_service, monkeypatch):
    assert not keyword_service.locations.is_initialized
    keyword_service.answer_question("revenue today")
    assert keyword_service.locations.is_initialized

    calls = []
    monkeypatch.setattr(service_module, "load_item_names", lambda engine: calls.append(1) or [])
    keyword_service.answer_question("revenue yesterday")
    assert calls == []


def test_model_mode_end_to_end(pos_engine, scripted):
    completions = scripted(
        '{"metrics": ["revenue", "count"], "groupBy": [], "startDate": "2025-09-19", "endDate": "2025-09-20"}',
        "Today you made $20.00 from 2 transactions.",
    )
    svc = CopilotService(engine=pos_engine, completions=completions, clock=lambda: REFERENCE_NOW)
    history = [ChatMessage(role="user", content="hi"), ChatMessage(role="assistant", content="hello")]
    answer = svc.answer_question("How did we do today?", history)
    assert answer.success
    assert answer.summary == "Today you made $20.00 from 2 transactions."
    assert answer.rows == [{"revenue": 20.0, "count": 2}]
    assert len(completions.calls) == 2
    assert len(completions.calls[0]["history"]) == 2


def test_extraction_failure(pos_engine, scripted):
    svc = CopilotService(engine=pos_engine, completions=scripted(LLMError("timeout")), clock=lambda: REFERENCE_NOW)
    answer = svc.answer_question("revenue today")
    assert answer.success is False
    assert answer.summary == EXTRACTION_FAILED_MESSAGE
    assert answer.rows == []
    assert "timeout" in answer.error


def test_store_unavailable(empty_engine):
    svc = CopilotService(engine=empty_engine, clock=lambda: REFERENCE_NOW)
    answer = svc.answer_question("revenue today")
    assert answer.success is False
    assert answer.summary == EXECUTION_FAILED_MESSAGE


def test_execution_failure(keyword_service, pos_engine):
    keyword_service.answer_question("revenue today")
    metadata.drop_all(pos_engine)
    answer = keyword_service.answer_question("revenue today")
    assert answer.success is False
    assert answer.summary == EXECUTION_FAILED_MESSAGE
    assert answer.error


def test_unexpected_error_never_raises(keyword_service, monkeypatch):
    def explode(question, result):
        raise KeyError("surprise")

    monkeypatch.setattr(keyword_service._formatter, "format", explode)
    answer = keyword_service.answer_question("revenue today")
    assert answer.success is False
    assert answer.summary == UNEXPECTED_ERROR_MESSAGE


def test_no_data_message(keyword_service):
    answer = keyword_service.answer_question("revenue by location in 2023")
    assert answer.success
    assert answer.rows == []
    assert answer.summary.startswith("No data found")


def test_to_dict(keyword_service):
    data = keyword_service.answer_question("revenue today").to_dict()
    assert set(data) == {
        "success", "summary", "rows", "record_count", "query_plan",
        "error", "parameters", "confidence", "elapsed_ms",
    }
    assert data["parameters"]["metrics"] == ["revenue"]
    assert data["parameters"]["date_range"]["start"] == "2025-09-19T00:00:00"


def test_module_level_answer_question(keyword_service, monkeypatch):
    monkeypatch.setattr(service_module, "get_service", lambda: keyword_service)
    answer = service_module.answer_question("revenue today")
    assert answer.success
