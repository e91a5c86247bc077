from __future__ import annotations

import pytest

from stockai.errors import InsufficientData
from stockai.services import scoring
from tests.utils.market import make_snapshot


def test_bullish_snapshot():
    result = scoring.rule_based_score(make_snapshot())
    # 50 + rsi 5 + macd 10 + above sma20 3 + golden cross 7
    assert result["score"] == 75
    assert result["signal"] == "buy"
    assert result["riskLevel"] == "low"
    assert len(result["reasons"]) == 3
    assert "Golden cross (MA50 > MA200)" in result["patterns"]


def test_bearish_snapshot():
    snap = make_snapshot(
        price=100.0,
        change24h=-8.0,
        rsi=78.0,
        macd_histogram=-1.2,
        bb_upper=99.0,
        sma20=105.0,
        sma50=110.0,
        sma200=120.0,
        volume_ratio=30.0,
    )
    result = scoring.rule_based_score(snap)
    # 50 - 10 - 10 - 5 - 5 - 5 - 7
    assert result["score"] == 8
    assert result["signal"] == "sell"
    assert result["riskLevel"] == "high"


def test_oversold_rebound():
    snap = make_snapshot(rsi=25.0, macd_histogram=0.1, bb_lower=195.0, sma50=None, sma200=None)
    result = scoring.rule_based_score(snap)
    # 50 + 15 + 10 + 10 + 3
    assert result["score"] == 88
    assert "RSI oversold" in result["patterns"]


def test_no_indicators_is_neutral():
    snap = make_snapshot(
        change24h=None,
        rsi=None,
        macd_histogram=None,
        sma20=None,
        sma50=None,
        sma200=None,
        volume_ratio=None,
    )
    result = scoring.rule_based_score(snap)
    assert result["score"] == 50
    assert result["signal"] == "neutral"
    assert result["reasons"] == []


@pytest.mark.parametrize("raw, expected", [(-40, 1), (0, 1), (1, 1), (55.4, 55), (100, 100), (140, 100)])
def test_clamp_score(raw, expected):
    assert scoring.clamp_score(raw) == expected


def test_insufficient_data():
    with pytest.raises(InsufficientData) as exc_info:
        scoring.rule_based_score(make_snapshot(points=12, timeframe="1d"))
    assert exc_info.value.available == 12
    assert exc_info.value.required == 30


def test_long_timeframes_need_fewer_points():
    assert scoring.rule_based_score(make_snapshot(points=12, timeframe="1M"))["score"] >= 1


@pytest.mark.parametrize("raw", [float("inf"), float("-inf"), float("nan")])
def test_clamp_score_rejects_non_finite(raw):
    with pytest.raises(ValueError):
        scoring.clamp_score(raw)
