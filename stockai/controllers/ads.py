import asyncio
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from stockai import db as db_module
from stockai.dependencies import ErrorResponse, rate_limit
from stockai.services import ad_rewards, quota, subscriptions

router = APIRouter(prefix="/ads")

AdType = Literal["rewarded", "interstitial"]
RewardType = Literal["refresh", "level2", "level3"]


class WatchRequest(BaseModel):
    ad_type: AdType = Field("rewarded", alias="adType")

    model_config = {"populate_by_name": True}


class WatchResponse(BaseModel):
    success: bool = True
    watch_token: str = Field(..., alias="watchToken")
    expires_at: datetime = Field(..., alias="expiresAt")
    expected_rewards: dict[str, int] = Field(..., alias="expectedRewards")
    remaining: int

    model_config = {"populate_by_name": True}


class CompleteRequest(BaseModel):
    watch_token: str = Field(..., alias="watchToken", min_length=1)
    ad_provider: str | None = Field(None, alias="adProvider", max_length=64)
    ad_unit_id: str | None = Field(None, alias="adUnitId", max_length=128)
    reward_type: RewardType | None = Field(None, alias="rewardType")

    model_config = {"populate_by_name": True}


@router.get("/config")
async def ads_config():
    return {"success": True, "data": ad_rewards.config_payload()}


@router.get("/status")
async def ads_status(user_id: str = Depends(rate_limit)):
    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            plan = subscriptions.effective_plan(db, user_id=user_id)
            return ad_rewards.status(db, user_id=user_id, plan=plan)

    return {"success": True, "data": await asyncio.to_thread(_db_call)}


@router.get("/can-unlock")
async def ads_can_unlock(
    usage_type: Literal["refresh", "level1", "level2", "level3"] = Query(..., alias="type"),
    user_id: str = Depends(rate_limit),
):
    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            plan = subscriptions.effective_plan(db, user_id=user_id)
            return ad_rewards.can_unlock(db, user_id=user_id, usage_type=usage_type, plan=plan)

    return {"success": True, "data": await asyncio.to_thread(_db_call)}


@router.post(
    "/watch",
    response_model=WatchResponse,
    response_model_by_alias=True,
    responses={403: {"model": ErrorResponse}, 429: {"description": "Ad limit reached"}},
)
async def ads_watch(body: WatchRequest | None = None, user_id: str = Depends(rate_limit)):
    ad_type = body.ad_type if body else "rewarded"

    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            return ad_rewards.can_watch(db, user_id=user_id, ad_type=ad_type)

    allowance = await asyncio.to_thread(_db_call)
    token, expires_at = ad_rewards.issue_watch_token(user_id, ad_type)
    return WatchResponse(
        watch_token=token,
        expires_at=expires_at,
        expected_rewards=allowance["rewards"],
        remaining=allowance["remaining"],
    )


@router.post(
    "/complete",
    responses={400: {"model": ErrorResponse}, 429: {"description": "Ad limit reached"}},
)
async def ads_complete(body: CompleteRequest, user_id: str = Depends(rate_limit)):
    claims = ad_rewards.verify_watch_token(body.watch_token, user_id=user_id)

    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            return ad_rewards.complete_watch(
                db,
                user_id=user_id,
                ad_type=claims["ad_type"],
                provider=body.ad_provider,
                unit_id=body.ad_unit_id,
                preferred=body.reward_type,
                watch_token_id=claims.get("jti"),
            )

    return {"success": True, "data": await asyncio.to_thread(_db_call)}


@router.get("/usage")
async def ads_usage(user_id: str = Depends(rate_limit)):
    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            plan = subscriptions.effective_plan(db, user_id=user_id)
            return {
                "plan": plan,
                "usage": quota.usage_summary(db, user_id=user_id, plan=plan),
                "earnedToday": ad_rewards.earned_today(db, user_id=user_id),
            }

    return {"success": True, "data": await asyncio.to_thread(_db_call)}


@router.get("/stats")
async def ads_stats(
    days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(rate_limit),
):
    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            return ad_rewards.user_ad_stats(db, user_id=user_id, days=days)

    return {"success": True, "data": await asyncio.to_thread(_db_call)}
