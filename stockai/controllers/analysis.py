from __future__ import annotations

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Path, Query

from stockai.dependencies import ErrorResponse, rate_limit, require_admin
from stockai.services import plan_catalog
from stockai.services.analysis_chain import AnalysisChain, get_analysis_chain
from stockai.services.cache import Namespace, TieredCache, get_cache
from stockai.services.market_data import MarketDataClient, get_market_data
from stockai.services.pipeline import AnalysisPipeline
from stockai.services.timeframes import DEFAULT_TIMEFRAME, Timeframe, timeframe_labels

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analysis")

AssetType = Literal["stock", "crypto"]
Symbol = Annotated[str, Path(min_length=1, max_length=32, pattern=r"^[A-Za-z0-9.\-^=]+$")]


def get_pipeline(
    cache: TieredCache = Depends(get_cache),
    market: MarketDataClient = Depends(get_market_data),
    chain: AnalysisChain = Depends(get_analysis_chain),
) -> AnalysisPipeline:
    return AnalysisPipeline(cache, market, chain)


@router.get("/timeframes")
async def list_timeframes():
    return {
        "success": True,
        "data": {"timeframes": timeframe_labels(), "default": DEFAULT_TIMEFRAME},
    }


@router.get("/plans")
async def list_plans():
    return {
        "success": True,
        "data": {
            "plans": plan_catalog.plans_payload(),
            "levels": plan_catalog.ANALYSIS_LEVELS,
        },
    }


@router.get(
    "/quick/{symbol}",
    responses={
        401: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        429: {"description": "Usage limit exceeded"},
        503: {"model": ErrorResponse},
    },
)
async def quick_analysis(
    symbol: Symbol,
    asset_type: AssetType = Query("stock", alias="type"),
    timeframe: Timeframe = Query(DEFAULT_TIMEFRAME),
    level: int = Query(1, ge=1, le=3),
    plan: str | None = Query(None, description="Ignored; the plan is resolved server-side"),
    user_id: str = Depends(rate_limit),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    if plan:
        logger.debug("client-supplied plan %s ignored", plan)
    return await pipeline.analyze(
        user_id=user_id,
        symbol=symbol,
        asset_type=asset_type,
        timeframe=timeframe,
        level=level,
    )


@router.get("/compare/{symbol}")
async def compare(
    symbol: Symbol,
    asset_type: AssetType = Query("stock", alias="type"),
    user_id: str = Depends(rate_limit),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    return await pipeline.compare(symbol=symbol, asset_type=asset_type)


@router.get(
    "/indicators/{symbol}",
    responses={429: {"description": "Refresh limit exceeded"}, 503: {"model": ErrorResponse}},
)
async def indicators(
    symbol: Symbol,
    asset_type: AssetType = Query("stock", alias="type"),
    timeframe: Timeframe = Query(DEFAULT_TIMEFRAME),
    user_id: str = Depends(rate_limit),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    return await pipeline.indicators(
        user_id=user_id, symbol=symbol, asset_type=asset_type, timeframe=timeframe
    )


@router.get("/cache/stats", dependencies=[Depends(require_admin)])
async def cache_stats(cache: TieredCache = Depends(get_cache)):
    return {"success": True, "data": cache.stats()}


@router.get("/cache/keys", dependencies=[Depends(require_admin)])
async def cache_keys(
    namespace: Namespace | None = Query(None),
    cache: TieredCache = Depends(get_cache),
):
    keys = cache.keys(namespace)
    return {"success": True, "data": {"count": len(keys), "keys": keys}}


@router.post("/cache/clear", dependencies=[Depends(require_admin)])
async def cache_clear(cache: TieredCache = Depends(get_cache)):
    removed = cache.clear_all()
    return {"success": True, "data": {"removed": removed}}


@router.post("/cache/invalidate/{symbol}", dependencies=[Depends(require_admin)])
async def cache_invalidate(symbol: Symbol, cache: TieredCache = Depends(get_cache)):
    removed = cache.invalidate_symbol(symbol)
    return {"success": True, "data": {"symbol": symbol.upper(), "removed": removed}}
