"""
LLM client abstraction -- provider-agnostic wrapper.

Supported providers:
  mock      -- echo back the prompt (for tests / offline dev)
  openai    -- OpenAI ChatCompletion (gpt-4o default)
  anthropic -- Anthropic Messages (claude-3-haiku default)

Configuration is read from Settings (env / .env).  Every provider call has
an explicit timeout; any provider failure, timeout included, surfaces as
``LLMError``.  No retries are attempted.

Pipeline stages depend on the ``Completions`` protocol rather than on this
module directly, so tests can plug in a stub returning canned text.
"""
from __future__ import annotations

from typing import Any, Protocol, Sequence

from salesqa.copilot.spec import ChatMessage
from salesqa.core.config import get_settings
from salesqa.core.logging import get_logger, kv
from salesqa.core.utils import timer

logger = get_logger(__name__)


class LLMError(RuntimeError):
    """The language-model service was unreachable, timed out or misbehaved."""


class Completions(Protocol):
    """Text-completion port used by the extractor and the formatter."""

    def complete(
        self,
        system: str,
        user: str,
        history: Sequence[ChatMessage] = (),
    ) -> str:
        ...


def _build_messages(system: str, user: str, history: Sequence[ChatMessage]) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": system}]
    for msg in history:
        if msg.role in ("user", "assistant") and msg.content:
            messages.append({"role": msg.role, "content": msg.content})
    messages.append({"role": "user", "content": user})
    return messages


def _call_mock(system: str, user: str, history: Sequence[ChatMessage]) -> str:
    logger.info("LLM mock mode -- returning echo")
    return f"[MOCK] {user[:200]}"


def _call_openai(system: str, user: str, history: Sequence[ChatMessage]) -> str:
    """Call OpenAI ChatCompletion API."""
    settings = get_settings()
    api_key = settings.openai_api_key
    if not api_key:
        raise LLMError(
            "openai_api_key is not set.  "
            "Set OPENAI_API_KEY in your .env file or environment."
        )

    try:
        import openai  # type: ignore[import-untyped]
    except ImportError as exc:
        raise LLMError(
            "The 'openai' package is not installed.  "
            "Run: pip install openai"
        ) from exc

    client = openai.OpenAI(api_key=api_key, timeout=settings.llm_timeout_seconds, max_retries=0)
    try:
        response = client.chat.completions.create(
            model=settings.openai_model,
            messages=_build_messages(system, user, history),
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
    except openai.OpenAIError as exc:
        raise LLMError(f"OpenAI request failed: {exc}") from exc

    text = response.choices[0].message.content or ""
    tokens = response.usage.total_tokens if response.usage else 0
    logger.info("OpenAI response | %s", kv(chars=len(text), tokens=tokens, model=settings.openai_model))
    return text


def _call_anthropic(system: str, user: str, history: Sequence[ChatMessage]) -> str:
    """Call Anthropic Messages API."""
    settings = get_settings()
    api_key = settings.anthropic_api_key
    if not api_key:
        raise LLMError(
            "anthropic_api_key is not set.  "
            "Set ANTHROPIC_API_KEY in your .env file or environment."
        )

    try:
        import anthropic  # type: ignore[import-untyped]
    except ImportError as exc:
        raise LLMError(
            "The 'anthropic' package is not installed.  "
            "Run: pip install anthropic"
        ) from exc

    client = anthropic.Anthropic(api_key=api_key, timeout=settings.llm_timeout_seconds, max_retries=0)
    # Anthropic takes the system prompt separately from the turn list.
    turns = _build_messages(system, user, history)[1:]
    try:
        response = client.messages.create(
            model=settings.anthropic_model,
            system=system,
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
            messages=turns,
        )
    except anthropic.AnthropicError as exc:
        raise LLMError(f"Anthropic request failed: {exc}") from exc

    text = response.content[0].text if response.content else ""
    logger.info("Anthropic response | %s", kv(chars=len(text), model=settings.anthropic_model))
    return text


_PROVIDERS: dict[str, Any] = {
    "mock": _call_mock,
    "openai": _call_openai,
    "anthropic": _call_anthropic,
}


def call_llm(
    prompt: str,
    system: str = "You are a helpful sales analytics assistant.",
    history: Sequence[ChatMessage] = (),
    provider: str | None = None,
) -> str:
    """Send *prompt* to the configured (or overridden) LLM provider.

    Parameters
    ----------
    prompt : str
        The user message.
    system : str
        System instruction sent ahead of the conversation.
    history : sequence of ChatMessage
        Prior conversation turns, oldest first.
    provider : str, optional
        Override the provider from settings.  One of: mock, openai, anthropic.
    """
    if provider is None:
        provider = get_settings().llm_provider.lower()

    fn = _PROVIDERS.get(provider)
    if fn is None:
        raise NotImplementedError(
            f"LLM provider '{provider}' is not supported.  "
            f"Choose from: {', '.join(_PROVIDERS)}"
        )

    logger.info("Calling LLM | %s", kv(provider=provider, prompt_len=len(prompt), history=len(history)))
    with timer() as t:
        text = fn(system, prompt, history)
    logger.debug("LLM call finished | %s", kv(provider=provider, elapsed_ms=t["elapsed_ms"]))
    return text


class LLMCompletions:
    """``Completions`` backed by :func:`call_llm`."""

    def __init__(self, provider: str | None = None):
        self.provider = (provider or get_settings().llm_provider).lower()

    def complete(self, system: str, user: str, history: Sequence[ChatMessage] = ()) -> str:
        return call_llm(user, system=system, history=history, provider=self.provider)


def build_completions(provider: str | None = None) -> Completions | None:
    """Return the configured completions backend, or ``None`` in mock mode.

    ``None`` tells the extractor and formatter to run their deterministic
    keyword/template paths instead of calling a model.
    """
    provider = (provider or get_settings().llm_provider).lower()
    if provider == "mock":
        return None
    if provider not in _PROVIDERS:
        raise NotImplementedError(
            f"LLM provider '{provider}' is not supported.  "
            f"Choose from: {', '.join(_PROVIDERS)}"
        )
    return LLMCompletions(provider)
