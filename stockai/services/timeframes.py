from __future__ import annotations

from typing import Literal

TIMEFRAMES: dict[str, dict] = {
    "1m": {"label": "1 Minute", "category": "short", "min_data_points": 30},
    "5m": {"label": "5 Minutes", "category": "short", "min_data_points": 30},
    "15m": {"label": "15 Minutes", "category": "short", "min_data_points": 30},
    "1h": {"label": "1 Hour", "category": "short", "min_data_points": 30},
    "4h": {"label": "4 Hours", "category": "medium", "min_data_points": 30},
    "12h": {"label": "12 Hours", "category": "medium", "min_data_points": 30},
    "1d": {"label": "1 Day", "category": "medium", "min_data_points": 30},
    "3d": {"label": "3 Days", "category": "medium", "min_data_points": 30},
    "1w": {"label": "1 Week", "category": "long", "min_data_points": 20},
    "1M": {"label": "1 Month", "category": "long", "min_data_points": 12},
    "1y": {"label": "1 Year", "category": "long", "min_data_points": 12},
}

Timeframe = Literal["1m", "5m", "15m", "1h", "4h", "12h", "1d", "3d", "1w", "1M", "1y"]

DEFAULT_TIMEFRAME = "1d"

# short / medium / long horizons used by the compare endpoint
COMPARE_TIMEFRAMES = {"short": "1h", "medium": "1d", "long": "1w"}


def normalize_timeframe(tf: str | None) -> str:
    return tf if tf in TIMEFRAMES else DEFAULT_TIMEFRAME


def min_data_points(tf: str) -> int:
    return TIMEFRAMES[normalize_timeframe(tf)]["min_data_points"]


def timeframe_labels() -> list[dict]:
    return [
        {"key": key, "label": cfg["label"], "category": cfg["category"]}
        for key, cfg in TIMEFRAMES.items()
    ]


__all__ = [
    "TIMEFRAMES",
    "Timeframe",
    "DEFAULT_TIMEFRAME",
    "COMPARE_TIMEFRAMES",
    "normalize_timeframe",
    "min_data_points",
    "timeframe_labels",
]
