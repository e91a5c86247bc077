"""Deterministic rule-based scoring over technical indicators."""

from __future__ import annotations

import math
from typing import Any

from stockai.errors import InsufficientData
from stockai.services.market_data import MarketSnapshot
from stockai.services.timeframes import min_data_points

BASELINE = 50
MAX_REASONS = 3


def clamp_score(value: float) -> int:
    if not math.isfinite(value):
        raise ValueError(f"score must be finite, got {value!r}")
    return int(min(100, max(1, round(value))))


def signal_for(score: int) -> str:
    if score >= 70:
        return "buy"
    if score >= 55:
        return "hold (positive)"
    if score >= 45:
        return "neutral"
    if score >= 30:
        return "hold (negative)"
    return "sell"


def risk_level(score: int) -> str:
    if score >= 60:
        return "low"
    if score >= 40:
        return "medium"
    return "high"


def ensure_enough_data(snapshot: MarketSnapshot) -> None:
    required = min_data_points(snapshot.timeframe)
    if len(snapshot.closes) < required:
        raise InsufficientData(len(snapshot.closes), required)


def rule_based_score(snapshot: MarketSnapshot) -> dict[str, Any]:
    """Score ``snapshot`` from a baseline of 50 and clamp to [1, 100].

    Raises :class:`InsufficientData` when there are fewer closes than the
    timeframe requires.
    """
    ensure_enough_data(snapshot)
    ind = snapshot.indicators
    price = snapshot.price
    score = float(BASELINE)
    reasons: list[str] = []
    patterns: list[str] = []

    if ind.rsi:
        if ind.rsi >= 70:
            score -= 10
            reasons.append("RSI overbought (pullback risk)")
            patterns.append("RSI overbought")
        elif ind.rsi <= 30:
            score += 15
            reasons.append("RSI oversold (rebound potential)")
            patterns.append("RSI oversold")
        elif ind.rsi >= 50:
            score += 5
            reasons.append("RSI in bullish zone")
        else:
            score -= 5
            reasons.append("RSI in bearish zone")

    if ind.macd_histogram is not None:
        if ind.macd_histogram > 0:
            score += 10
            reasons.append("MACD bullish momentum")
            patterns.append("MACD bullish crossover")
        else:
            score -= 10
            reasons.append("MACD bearish momentum")
            patterns.append("MACD bearish crossover")

    if ind.bb_upper is not None and price >= ind.bb_upper:
        score -= 5
        reasons.append("Price at upper Bollinger band (correction possible)")
    elif ind.bb_lower is not None and price <= ind.bb_lower:
        score += 10
        reasons.append("Price at lower Bollinger band (rebound expected)")
        patterns.append("Lower Bollinger band touch")

    if ind.volume_ratio:
        if ind.volume_ratio > 150:
            score += 5
            reasons.append("Volume surge")
            patterns.append("Volume breakout")
        elif ind.volume_ratio < 50:
            score -= 5
            reasons.append("Volume drying up")

    if snapshot.change24h is not None:
        if snapshot.change24h > 5:
            score += 5
            patterns.append("Strong uptrend")
        elif snapshot.change24h < -5:
            score -= 5
            patterns.append("Strong downtrend")

    if ind.sma20 and price > ind.sma20:
        score += 3
    if ind.sma50 and ind.sma200:
        if ind.sma50 > ind.sma200:
            score += 7
            patterns.append("Golden cross (MA50 > MA200)")
            reasons.append("Long-term uptrend")
        elif ind.sma50 < ind.sma200:
            score -= 7
            patterns.append("Death cross (MA50 < MA200)")
            reasons.append("Long-term downtrend")

    final = clamp_score(score)
    return {
        "score": final,
        "signal": signal_for(final),
        "summary": reasons[0] if reasons else "Technical indicator assessment",
        "reasons": reasons[:MAX_REASONS],
        "patterns": patterns,
        "riskLevel": risk_level(final),
    }


__all__ = [
    "BASELINE",
    "clamp_score",
    "signal_for",
    "risk_level",
    "ensure_enough_data",
    "rule_based_score",
]
