"""
Unit tests -- LLM client: mock mode, dispatch, provider errors.
"""
import pytest

from salesqa.copilot.llm_client import (
    LLMCompletions,
    LLMError,
    _build_messages,
    build_completions,
    call_llm,
)
from salesqa.copilot.spec import ChatMessage
from salesqa.core.config import get_settings


def test_mock_returns_string():
    result = call_llm("Hello world", provider="mock")
    assert isinstance(result, str)


def test_mock_prefix():
    result = call_llm("Hello world", provider="mock")
    assert result.startswith("[MOCK]")


def test_mock_echoes_prompt():
    prompt = "What was revenue at Yonge last week?"
    result = call_llm(prompt, provider="mock")
    assert prompt[:20] in result


def test_unknown_provider_raises():
    with pytest.raises(NotImplementedError, match="not supported"):
        call_llm("hi", provider="banana")


def test_openai_missing_key_raises(monkeypatch):
    monkeypatch.setattr(get_settings(), "openai_api_key", "")
    with pytest.raises(LLMError, match="openai_api_key"):
        call_llm("hi", provider="openai")


def test_anthropic_missing_key_raises(monkeypatch):
    monkeypatch.setattr(get_settings(), "anthropic_api_key", "")
    with pytest.raises(LLMError, match="anthropic_api_key"):
        call_llm("hi", provider="anthropic")


def test_llm_error_is_runtime_error():
    assert issubclass(LLMError, RuntimeError)


def test_openai_failure_wrapped(monkeypatch):
    import openai

    class _Failing:
        def __init__(self, **kwargs):
            self.kwargs = kwargs
            self.chat = self
            self.completions = self

        def create(self, **kwargs):
            raise openai.OpenAIError("request timed out")

    monkeypatch.setattr(get_settings(), "openai_api_key", "sk-test")
    monkeypatch.setattr(openai, "OpenAI", _Failing)
    with pytest.raises(LLMError, match="timed out"):
        call_llm("hi", provider="openai")


def test_build_messages_orders_history():
    history = [
        ChatMessage(role="user", content="revenue today?"),
        ChatMessage(role="assistant", content="$20.00"),
        ChatMessage(role="system", content="ignored"),
    ]
    messages = _build_messages("sys", "and yesterday?", history)
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[-1]["content"] == "and yesterday?"


def test_build_completions_mock_is_none():
    assert build_completions("mock") is None


def test_build_completions_provider():
    completions = build_completions("openai")
    assert isinstance(completions, LLMCompletions)
    assert completions.provider == "openai"


def test_build_completions_unknown_provider():
    with pytest.raises(NotImplementedError):
        build_completions("banana")
