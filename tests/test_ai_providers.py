from __future__ import annotations

from types import SimpleNamespace

import pytest
from openai import OpenAIError

from stockai.errors import ProviderUnavailable
from stockai.services import ai_providers
from tests.utils.market import make_snapshot


def _fake_openai_response(content: str | None = None, prompt_tokens=1000, completion_tokens=200) -> SimpleNamespace:
    content = content or (
        '{"score": 83, "signal": "buy", "confidence": "high", '
        '"summary": "Bull flag continuation", "patterns": ["Bull flag"], '
        '"reasons": ["Higher lows", "Volume on breakout", "MA50 rising", "extra"], '
        '"support": "181.2", "resistance": 205, "trend": "uptrend", "riskLevel": "medium"}'
    )
    message = SimpleNamespace(content=content)
    choice = SimpleNamespace(message=message)
    usage = SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return SimpleNamespace(choices=[choice], usage=usage)


def _fake_client(create_fn):
    chat = SimpleNamespace(completions=SimpleNamespace(create=create_fn))
    return SimpleNamespace(chat=chat)


def test_vision_scoring_parses_response(monkeypatch):
    captured: dict = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return _fake_openai_response()

    monkeypatch.setattr(ai_providers, "_get_client", lambda: _fake_client(_create))

    resp = ai_providers.call_vision_scoring(make_snapshot(), "aW1hZ2U=")
    assert resp["score"] == 83
    assert resp["support"] == 181.2
    assert resp["resistance"] == 205.0
    assert resp["trend"] == "uptrend"
    assert len(resp["reasons"]) == 3
    assert resp["usage"]["model"] == "gpt-4o"
    assert resp["usage"]["totalTokens"] == 1200
    # 1000 * 5 / 1M + 200 * 15 / 1M
    assert resp["usage"]["costUsd"] == pytest.approx(0.008)

    image_part = captured["messages"][1]["content"][1]
    assert image_part["image_url"]["url"] == "data:image/png;base64,aW1hZ2U="
    assert captured["timeout"] == ai_providers.settings.provider_timeout_s


def test_text_scoring_handles_fenced_json(monkeypatch):
    fenced = 'Here you go:\n```json\n{"score": 140, "signal": "buy", "summary": "x"}\n```'
    monkeypatch.setattr(
        ai_providers,
        "_get_client",
        lambda: _fake_client(lambda **kwargs: _fake_openai_response(fenced)),
    )
    resp = ai_providers.call_text_scoring(make_snapshot())
    assert resp["score"] == 100
    assert resp["support"] is None
    assert resp["usage"]["model"] == "gpt-4o-mini"


def test_text_scoring_prompt_describes_snapshot(monkeypatch):
    captured: dict = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return _fake_openai_response('{"score": 50}')

    monkeypatch.setattr(ai_providers, "_get_client", lambda: _fake_client(_create))
    ai_providers.call_text_scoring(make_snapshot("NVDA", rsi=61.5))
    user_text = captured["messages"][1]["content"]
    assert "Symbol: NVDA" in user_text
    assert "rsi: 61.5" in user_text
    assert captured["response_format"] == {"type": "json_object"}


@pytest.mark.parametrize(
    "content",
    [
        "not json at all",
        '{"signal": "buy"}',
        '{"score": "high"}',
        "[1, 2, 3]",
        '{"score": 1e999}',
        '{"score": Infinity}',
        '{"score": NaN}',
    ],
)
def test_malformed_output_is_provider_failure(monkeypatch, content):
    monkeypatch.setattr(
        ai_providers,
        "_get_client",
        lambda: _fake_client(lambda **kwargs: _fake_openai_response(content)),
    )
    with pytest.raises(ProviderUnavailable) as exc_info:
        ai_providers.call_text_scoring(make_snapshot())
    assert exc_info.value.stage == "ai-text"


def test_empty_choices_is_provider_failure(monkeypatch):
    monkeypatch.setattr(
        ai_providers,
        "_get_client",
        lambda: _fake_client(lambda **kwargs: SimpleNamespace(choices=[], usage=None)),
    )
    with pytest.raises(ProviderUnavailable):
        ai_providers.call_vision_scoring(make_snapshot(), "aW1hZ2U=")


def test_sdk_error_is_provider_failure(monkeypatch):
    def _create(**kwargs):
        raise OpenAIError("rate limited")

    monkeypatch.setattr(ai_providers, "_get_client", lambda: _fake_client(_create))
    with pytest.raises(ProviderUnavailable, match="rate limited"):
        ai_providers.call_text_scoring(make_snapshot())


def test_get_client_requires_api_key(monkeypatch):
    monkeypatch.setattr(ai_providers.settings, "openai_api_key", None)
    monkeypatch.setattr(ai_providers, "_client", None)
    monkeypatch.setattr(ai_providers, "_http_client", None)
    with pytest.raises(ProviderUnavailable):
        ai_providers._get_client()


def test_client_lazy_init(monkeypatch):
    calls = 0

    class _FakeOpenAI:
        def __init__(self, **kwargs):
            nonlocal calls
            calls += 1
            self.chat = SimpleNamespace(
                completions=SimpleNamespace(create=lambda **kw: _fake_openai_response())
            )

    monkeypatch.setattr(ai_providers.settings, "openai_api_key", "test-key")
    monkeypatch.setattr(ai_providers, "OpenAI", _FakeOpenAI)
    monkeypatch.setattr(ai_providers, "_client", None)

    ai_providers.call_text_scoring(make_snapshot())
    ai_providers.call_text_scoring(make_snapshot())
    assert calls == 1


def test_estimate_cost_unknown_model_uses_vision_price():
    assert ai_providers.estimate_cost("gpt-x", 1_000_000, 0) == pytest.approx(5.0)
