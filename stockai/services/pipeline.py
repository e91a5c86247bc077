"""Composition of plan resolution, cache, quota and the fallback chain."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

from stockai import db as db_module
from stockai.config import Settings
from stockai.errors import AnalyzerError, QuotaExceeded
from stockai.metrics import analysis_latency_seconds, analysis_requests_total
from stockai.services import ad_rewards, plan_catalog, quota, subscriptions
from stockai.services.analysis_chain import AnalysisChain, AnalysisResult
from stockai.services.cache import TieredCache
from stockai.services.market_data import MarketDataClient, MarketSnapshot
from stockai.services.scoring import rule_based_score
from stockai.services.timeframes import COMPARE_TIMEFRAMES, normalize_timeframe

settings = Settings()
logger = logging.getLogger(__name__)

TREND_THRESHOLD = 10


def usage_type_for(level: int) -> str:
    return f"level{level}"


def trend_label(short_score: int | None, long_score: int | None) -> str | None:
    if short_score is None or long_score is None:
        return None
    delta = short_score - long_score
    if delta > TREND_THRESHOLD:
        return "up"
    if delta < -TREND_THRESHOLD:
        return "down"
    return "sideways"


class AnalysisPipeline:
    def __init__(
        self,
        cache: TieredCache,
        market: MarketDataClient,
        chain: AnalysisChain,
    ) -> None:
        self.cache = cache
        self.market = market
        self.chain = chain

    async def _snapshot(self, symbol: str, asset_type: str, timeframe: str) -> MarketSnapshot:
        cached = self.cache.get("market", symbol, asset_type, timeframe)
        if cached.hit:
            return cached.data
        snapshot = await self.market.snapshot(symbol, asset_type, timeframe)
        self.cache.set("market", symbol, asset_type, timeframe, data=snapshot)
        return snapshot

    def _entitlement(self, user_id: str, usage_type: str) -> str:
        """Resolve the plan and reject levels the plan can never reach."""
        with db_module.SessionLocal() as db:
            plan = subscriptions.effective_plan(db, user_id=user_id)
            base = plan_catalog.limits(plan, usage_type)
            if base == 0:
                check = quota.check_limit(db, user_id=user_id, usage_type=usage_type, plan=plan)
                if check.total_limit == 0 and not ad_rewards.unlockable(usage_type):
                    raise quota.quota_error(db, check, user_id=user_id)
            return plan

    def _require(self, user_id: str, usage_type: str, plan: str) -> quota.QuotaCheck:
        with db_module.SessionLocal() as db:
            return quota.require(db, user_id=user_id, usage_type=usage_type, plan=plan)

    def _peek(self, user_id: str, usage_type: str, plan: str) -> quota.QuotaCheck:
        with db_module.SessionLocal() as db:
            return quota.check_limit(db, user_id=user_id, usage_type=usage_type, plan=plan)

    def _bill(self, user_id: str, plan: str, result: AnalysisResult) -> quota.QuotaCheck:
        requested = usage_type_for(result.requested_level)
        with db_module.SessionLocal() as db:
            if result.degraded and settings.degraded_billing == "served":
                served = usage_type_for(result.served_level)
                try:
                    return quota.consume(db, user_id=user_id, usage_type=served, plan=plan)
                except QuotaExceeded:
                    logger.info("served tier %s exhausted, billing %s", served, requested)
            return quota.consume(db, user_id=user_id, usage_type=requested, plan=plan)

    def _log(self, user_id: str, **fields: Any) -> None:
        with db_module.SessionLocal() as db:
            quota.log_api_call(db, user_id=user_id, **fields)

    async def analyze(
        self,
        *,
        user_id: str,
        symbol: str,
        asset_type: str = "stock",
        timeframe: str | None = None,
        level: int = 1,
    ) -> dict[str, Any]:
        """Serve one analysis request.

        Cache hits are returned without billing. Misses are checked against
        the quota, computed, cached and then consumed atomically.
        """
        symbol = symbol.upper()
        timeframe = normalize_timeframe(timeframe)
        usage_type = usage_type_for(level)
        endpoint = "/analysis/quick"

        plan = await asyncio.to_thread(self._entitlement, user_id, usage_type)

        cached = self.cache.get("analysis", symbol, asset_type, timeframe, level)
        if cached.hit:
            check = await asyncio.to_thread(self._peek, user_id, usage_type, plan)
            data = dict(cached.data)
            data["fromCache"] = True
            data["cacheAgeSeconds"] = round(cached.age_s or 0.0, 1)
            data["usage"] = {
                "type": usage_type,
                "plan": plan,
                "remaining": plan_catalog.render_limit(check.remaining),
                "billed": None,
            }
            analysis_requests_total.labels(level=str(level), method="cache").inc()
            return {"success": True, "data": data}

        await asyncio.to_thread(self._require, user_id, usage_type, plan)

        started = time.perf_counter()
        try:
            snapshot = await self._snapshot(symbol, asset_type, timeframe)
            result = await self.chain.analyze(snapshot, level)
        except AnalyzerError as exc:
            await asyncio.to_thread(
                self._log,
                user_id,
                endpoint=endpoint,
                symbol=symbol,
                timeframe=timeframe,
                analysis_level=level,
                success=False,
                response_time_ms=int((time.perf_counter() - started) * 1000),
                error_message=exc.message,
            )
            raise
        elapsed = time.perf_counter() - started
        analysis_latency_seconds.observe(elapsed)

        data = {
            "symbol": symbol,
            "name": snapshot.name,
            "type": asset_type,
            "timeframe": timeframe,
            "level": level,
            **result.to_dict(),
            "price": snapshot.price,
            "change24h": snapshot.change24h,
            "indicators": snapshot.indicators.model_dump(exclude_none=True),
            "analyzedAt": datetime.now(timezone.utc).isoformat(),
        }
        self.cache.set(
            "analysis",
            symbol,
            asset_type,
            timeframe,
            level,
            data=data,
            ttl_level=result.served_level,
        )

        check = await asyncio.to_thread(self._bill, user_id, plan, result)
        await asyncio.to_thread(
            self._log,
            user_id,
            endpoint=endpoint,
            symbol=symbol,
            timeframe=timeframe,
            analysis_level=level,
            method=result.method,
            degraded=result.degraded,
            tokens_used=result.tokens_used,
            cost_usd=result.cost_usd,
            response_time_ms=int(elapsed * 1000),
            success=True,
        )
        analysis_requests_total.labels(level=str(level), method=result.method).inc()

        response = dict(data)
        response["fromCache"] = False
        response["usage"] = {
            "type": usage_type,
            "plan": plan,
            "remaining": plan_catalog.render_limit(check.remaining),
            "billed": check.usage_type,
        }
        return {"success": True, "data": response}

    async def compare(self, *, symbol: str, asset_type: str = "stock") -> dict[str, Any]:
        """Rule-based scores on short, medium and long horizons plus a trend label."""
        symbol = symbol.upper()
        horizons: dict[str, Any] = {}
        scores: dict[str, int] = {}
        for horizon, timeframe in COMPARE_TIMEFRAMES.items():
            try:
                snapshot = await self._snapshot(symbol, asset_type, timeframe)
                scored = rule_based_score(snapshot)
            except AnalyzerError as exc:
                logger.warning("compare %s %s skipped: %s", symbol, timeframe, exc.message)
                horizons[horizon] = {"timeframe": timeframe, "error": exc.message}
                continue
            scores[horizon] = scored["score"]
            display = plan_catalog.score_display(scored["score"], 1)
            horizons[horizon] = {
                "timeframe": timeframe,
                "score": scored["score"],
                **display.model_dump(exclude={"kind"}),
                "reasons": scored["reasons"],
            }
        overall = round(sum(scores.values()) / len(scores)) if scores else None
        return {
            "success": True,
            "data": {
                "symbol": symbol,
                "type": asset_type,
                "horizons": horizons,
                "overall": overall,
                "trend": trend_label(scores.get("short"), scores.get("long")),
            },
        }

    def _charge_refresh(self, user_id: str, plan: str) -> quota.QuotaCheck:
        with db_module.SessionLocal() as db:
            return quota.consume(db, user_id=user_id, usage_type="refresh", plan=plan)

    def _refresh_plan(self, user_id: str) -> str:
        with db_module.SessionLocal() as db:
            plan = subscriptions.effective_plan(db, user_id=user_id)
            quota.require(db, user_id=user_id, usage_type="refresh", plan=plan)
            return plan

    async def indicators(
        self,
        *,
        user_id: str,
        symbol: str,
        asset_type: str = "stock",
        timeframe: str | None = None,
    ) -> dict[str, Any]:
        """Raw indicator snapshot; every request is charged as one refresh."""
        symbol = symbol.upper()
        timeframe = normalize_timeframe(timeframe)
        plan = await asyncio.to_thread(self._refresh_plan, user_id)

        cached = self.cache.get("indicators", symbol, asset_type, timeframe)
        if cached.hit:
            data = {**cached.data, "fromCache": True}
        else:
            snapshot = await self._snapshot(symbol, asset_type, timeframe)
            fresh = {
                "symbol": symbol,
                "type": asset_type,
                "timeframe": timeframe,
                "price": snapshot.price,
                "change24h": snapshot.change24h,
                "dataPoints": len(snapshot.closes),
                "indicators": snapshot.indicators.model_dump(exclude_none=True),
            }
            self.cache.set("indicators", symbol, asset_type, timeframe, data=fresh)
            data = {**fresh, "fromCache": False}

        check = await asyncio.to_thread(self._charge_refresh, user_id, plan)
        data["usage"] = {
            "type": "refresh",
            "plan": plan,
            "remaining": plan_catalog.render_limit(check.remaining),
        }
        return {"success": True, "data": data}


__all__ = ["AnalysisPipeline", "trend_label", "usage_type_for", "TREND_THRESHOLD"]
