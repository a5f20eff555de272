"""Unit tests for the LiteLLM wrapper and reply parsing."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

import llm
from llm import LLMClient, LLMResponseError, TokenUsage, parse_json_response, usage_from_response


def _reply(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def test_parse_plain_json() -> None:
    """Bare JSON documents parse directly."""
    assert parse_json_response('{"answers": {"h1": "x"}}') == {"answers": {"h1": "x"}}


def test_parse_fenced_json() -> None:
    """Markdown fences around the document are tolerated."""
    text = 'Here you go:\n```json\n[{"hash": "h1", "path": "personal.email"}]\n```\n'

    assert parse_json_response(text) == [{"hash": "h1", "path": "personal.email"}]


@pytest.mark.parametrize("text", [None, "", "not json", "```json\n{broken\n```"])
def test_parse_rejects_invalid_replies(text) -> None:
    """Unparseable replies raise LLMResponseError."""
    with pytest.raises(LLMResponseError):
        parse_json_response(text)


def test_complete_sync_passes_settings(monkeypatch) -> None:
    """Synchronous completions forward model, timeout and credentials."""
    captured: dict = {}

    def fake_completion(**kwargs):
        captured.update(kwargs)
        return _reply("hello")

    monkeypatch.setattr(llm, "completion", fake_completion)
    monkeypatch.setattr(llm.settings.llm, "api_key", "test-key")

    client = LLMClient(model="openai/test-model")
    result = client.complete_sync([{"role": "user", "content": "hi"}], temperature=0.0)

    assert result == "hello"
    assert captured["model"] == "openai/test-model"
    assert captured["temperature"] == 0.0
    assert captured["timeout"] == llm.settings.llm.timeout
    assert captured["api_key"] == "test-key"


@pytest.mark.asyncio
async def test_complete_async(monkeypatch) -> None:
    """Async completions return the first choice's content."""

    async def fake_acompletion(**kwargs):
        return _reply("async hello")

    monkeypatch.setattr(llm, "acompletion", fake_acompletion)

    result = await LLMClient().complete([{"role": "user", "content": "hi"}])

    assert result == "async hello"


def test_complete_sync_with_usage_reports_tokens_and_cost(monkeypatch) -> None:
    """Token counts come from the response; cost from LiteLLM's price table."""
    reply = _reply("priced")
    reply.usage = SimpleNamespace(prompt_tokens=120, completion_tokens=30, total_tokens=150)
    priced: dict = {}

    def fake_cost(**kwargs):
        priced.update(kwargs)
        return 0.0021

    monkeypatch.setattr(llm, "completion", lambda **kwargs: reply)
    monkeypatch.setattr(llm.litellm, "completion_cost", fake_cost)

    result = LLMClient(model="openai/test-model").complete_sync_with_usage(
        [{"role": "user", "content": "hi"}]
    )

    assert result.text == "priced"
    assert result.usage == TokenUsage(
        prompt_tokens=120, completion_tokens=30, total_tokens=150, cost_usd=0.0021
    )
    assert priced == {"model": "openai/test-model", "prompt_tokens": 120, "completion_tokens": 30}


def test_usage_for_unpriced_model_costs_nothing(monkeypatch) -> None:
    """Models missing from the price table still report their tokens."""

    def unknown_model(**kwargs):
        raise ValueError("model not mapped")

    monkeypatch.setattr(llm.litellm, "completion_cost", unknown_model)
    reply = SimpleNamespace(usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5))

    usage = usage_from_response("custom/model", reply)

    assert usage == TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)


def test_usage_missing_from_response_is_empty() -> None:
    """Providers that omit usage count as zero tokens."""
    assert usage_from_response("openai/test-model", _reply("x")) == TokenUsage()


def test_token_usage_adds_and_serializes() -> None:
    """Usage sums field by field and rounds cost for storage."""
    total = TokenUsage(1, 2, 3, 0.1) + TokenUsage(4, 5, 9, 0.2)

    assert total.as_dict() == {
        "prompt_tokens": 5,
        "completion_tokens": 7,
        "total_tokens": 12,
        "cost_usd": 0.3,
    }
