"""HTTP clients for the external market-data and chart-rendering services."""

from __future__ import annotations

import base64
import logging

import httpx
from pydantic import BaseModel, Field, ValidationError

from stockai.config import Settings
from stockai.errors import MarketDataUnavailable, ProviderUnavailable

settings = Settings()
logger = logging.getLogger(__name__)


class Indicators(BaseModel):
    """Precomputed technical indicators; any value may be missing."""

    rsi: float | None = None
    macd: float | None = None
    macd_signal: float | None = None
    macd_histogram: float | None = None
    sma20: float | None = None
    sma50: float | None = None
    sma200: float | None = None
    ema12: float | None = None
    ema26: float | None = None
    bb_upper: float | None = None
    bb_middle: float | None = None
    bb_lower: float | None = None
    stoch_k: float | None = None
    stoch_d: float | None = None
    adx: float | None = None
    atr: float | None = None
    volume_ratio: float | None = None  # current / 20-period average, percent


class MarketSnapshot(BaseModel):
    symbol: str
    asset_type: str = "stock"
    timeframe: str = "1d"
    name: str | None = None
    price: float
    change24h: float | None = None
    change7d: float | None = None
    closes: list[float] = Field(default_factory=list)
    indicators: Indicators = Field(default_factory=Indicators)


class MarketDataClient:
    def __init__(self, base_url: str | None, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout

    async def snapshot(self, symbol: str, asset_type: str, timeframe: str) -> MarketSnapshot:
        if not self.base_url:
            raise MarketDataUnavailable("Market data source is not configured")
        params = {"symbol": symbol, "type": asset_type, "timeframe": timeframe}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(f"{self.base_url}/snapshot", params=params)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as exc:
            logger.error("market data request failed for %s: %s", symbol, exc)
            raise MarketDataUnavailable(f"Market data unavailable for {symbol}") from exc
        except ValueError as exc:
            logger.error("market data response parsing failed: %s", exc)
            raise MarketDataUnavailable("Malformed market data response") from exc

        try:
            return MarketSnapshot.model_validate(
                {"symbol": symbol, "asset_type": asset_type, "timeframe": timeframe, **data}
            )
        except ValidationError as exc:
            raise MarketDataUnavailable("Malformed market data response") from exc


class ChartRenderer:
    """Renders a candlestick chart PNG for the vision stage."""

    def __init__(self, url: str | None, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    async def render(self, snapshot: MarketSnapshot) -> str:
        """Return the chart as base64-encoded PNG."""
        if not self.url:
            raise ProviderUnavailable("chart", "renderer not configured")
        payload = {
            "symbol": snapshot.symbol,
            "timeframe": snapshot.timeframe,
            "closes": snapshot.closes,
            "indicators": snapshot.indicators.model_dump(exclude_none=True),
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProviderUnavailable("chart", str(exc)) from exc
        if not resp.content:
            raise ProviderUnavailable("chart", "empty image")
        return base64.b64encode(resp.content).decode()


_market_client = MarketDataClient(settings.market_data_url, settings.market_data_timeout_s)
_chart_renderer = ChartRenderer(settings.chart_render_url, settings.market_data_timeout_s)


def get_market_data() -> MarketDataClient:
    return _market_client


def get_chart_renderer() -> ChartRenderer:
    return _chart_renderer


__all__ = [
    "Indicators",
    "MarketSnapshot",
    "MarketDataClient",
    "ChartRenderer",
    "get_market_data",
    "get_chart_renderer",
]
