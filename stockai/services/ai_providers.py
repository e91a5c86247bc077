"""OpenAI text and vision scoring providers."""

from __future__ import annotations

import atexit
import json
import math
import os
import re
from typing import Any

import httpx
from openai import OpenAI, OpenAIError

from stockai.config import Settings
from stockai.errors import ProviderUnavailable
from stockai.services.market_data import MarketSnapshot
from stockai.services.scoring import clamp_score

settings = Settings()

_client: OpenAI | None = None
_http_client: httpx.Client | None = None

# USD per 1M tokens: (input, output)
MODEL_PRICES: dict[str, tuple[float, float]] = {
    "gpt-4o": (5.0, 15.0),
    "gpt-4o-mini": (0.15, 0.6),
}


def _get_client() -> OpenAI:
    """Lazily build and cache the OpenAI client."""

    global _client, _http_client
    if _client is None:
        if not settings.openai_api_key:
            raise ProviderUnavailable("openai", "OPENAI_API_KEY is not set")
        mounts: dict[str, httpx.HTTPTransport] = {}
        http_proxy = os.environ.get("HTTP_PROXY")
        https_proxy = os.environ.get("HTTPS_PROXY")
        if http_proxy:
            mounts["http://"] = httpx.HTTPTransport(proxy=http_proxy)
        if https_proxy:
            mounts["https://"] = httpx.HTTPTransport(proxy=https_proxy)

        _http_client = httpx.Client(mounts=mounts) if mounts else None
        _client = OpenAI(api_key=settings.openai_api_key, http_client=_http_client)
    return _client


def _close_client() -> None:
    global _client, _http_client
    if _http_client is not None:
        _http_client.close()
    _http_client = None
    _client = None


atexit.register(_close_client)

_TEXT_PROMPT = (
    "You are a technical analyst with twenty years of experience. "
    "Score the instrument from 1 (strong sell) to 100 (strong buy) using the "
    "indicator data provided: 90-100 strong buy, 70-89 buy, 50-69 neutral, "
    "30-49 sell, 1-29 strong sell. Consider MA50/MA200 crosses, RSI extremes, "
    "MACD crossovers, Bollinger band position, volume, stochastic and ADX. "
    "Respond in JSON with fields score, signal, summary, reasons (max 3), "
    "patterns, support, resistance and riskLevel (low|medium|high)."
)

_VISION_PROMPT = (
    "You are a chart-pattern analyst. Study the candlestick chart image and "
    "score it from 1 to 100 with the same scale as a technical analyst. "
    "Respond in JSON with fields score, signal, confidence (high|medium|low), "
    "summary, patterns, reasons (max 3), support, resistance, "
    "trend (uptrend|downtrend|sideways) and riskLevel (low|medium|high)."
)

_FENCED = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    input_price, output_price = MODEL_PRICES.get(model, MODEL_PRICES["gpt-4o"])
    return round(
        prompt_tokens / 1_000_000 * input_price + completion_tokens / 1_000_000 * output_price,
        6,
    )


def _extract_json(content: str) -> dict[str, Any]:
    match = _FENCED.search(content)
    if match:
        content = match.group(1)
    else:
        match = _OBJECT.search(content)
        if match:
            content = match.group(0)
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("JSON object expected")
    return data


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def _parse(stage: str, response: Any, model: str) -> dict[str, Any]:
    try:
        content = response.choices[0].message.content
        data = _extract_json(content)
        raw_score = float(data["score"])
        if not math.isfinite(raw_score):
            raise ValueError("non-finite score")
        score = clamp_score(raw_score)
        result = {
            "score": score,
            "signal": str(data.get("signal") or ""),
            "summary": str(data.get("summary") or ""),
            "reasons": [str(r) for r in data.get("reasons") or []][:3],
            "patterns": [str(p) for p in data.get("patterns") or []],
            "support": _optional_float(data.get("support")),
            "resistance": _optional_float(data.get("resistance")),
            "riskLevel": data.get("riskLevel"),
            "trend": data.get("trend"),
            "confidence": data.get("confidence"),
        }
    except (KeyError, TypeError, ValueError, OverflowError, IndexError, AttributeError) as exc:
        raise ProviderUnavailable(stage, "malformed response") from exc

    usage = getattr(response, "usage", None)
    prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
    completion_tokens = int(getattr(usage, "completion_tokens", 0) or 0)
    result["usage"] = {
        "model": model,
        "promptTokens": prompt_tokens,
        "completionTokens": completion_tokens,
        "totalTokens": prompt_tokens + completion_tokens,
        "costUsd": estimate_cost(model, prompt_tokens, completion_tokens),
    }
    return result


def _describe(snapshot: MarketSnapshot) -> str:
    lines = [
        f"Symbol: {snapshot.symbol} ({snapshot.asset_type}, {snapshot.timeframe})",
        f"Price: {snapshot.price}",
    ]
    if snapshot.name:
        lines.append(f"Name: {snapshot.name}")
    if snapshot.change24h is not None:
        lines.append(f"24h change: {snapshot.change24h}%")
    for key, value in snapshot.indicators.model_dump(exclude_none=True).items():
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


def call_text_scoring(snapshot: MarketSnapshot) -> dict[str, Any]:
    """Score ``snapshot`` with the text model.

    Raises :class:`ProviderUnavailable` on SDK errors or malformed output.
    """
    client = _get_client()
    model = settings.openai_text_model
    try:
        response = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": _TEXT_PROMPT},
                {"role": "user", "content": _describe(snapshot)},
            ],
            response_format={"type": "json_object"},
            temperature=0.3,
            max_tokens=800,
            timeout=settings.provider_timeout_s,
        )
    except OpenAIError as exc:  # pragma: no cover - network/SDK errors
        raise ProviderUnavailable("ai-text", str(exc)) from exc
    return _parse("ai-text", response, model)


def call_vision_scoring(snapshot: MarketSnapshot, image_b64: str) -> dict[str, Any]:
    """Score a rendered chart image with the vision model."""
    client = _get_client()
    model = settings.openai_vision_model
    try:
        response = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": _VISION_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": _describe(snapshot)},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:image/png;base64,{image_b64}",
                                "detail": "high",
                            },
                        },
                    ],
                },
            ],
            temperature=0.3,
            max_tokens=1500,
            timeout=settings.provider_timeout_s,
        )
    except OpenAIError as exc:  # pragma: no cover - network/SDK errors
        raise ProviderUnavailable("ai-vision", str(exc)) from exc
    return _parse("ai-vision", response, model)


__all__ = ["call_text_scoring", "call_vision_scoring", "estimate_cost", "MODEL_PRICES"]
