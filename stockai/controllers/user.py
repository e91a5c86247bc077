import asyncio
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from stockai import db as db_module
from stockai.dependencies import ErrorResponse, rate_limit, require_admin
from stockai.services import ad_rewards, plan_catalog, quota, subscriptions
from stockai.services.users import get_user

router = APIRouter(prefix="/user")

UsageType = Literal["refresh", "level1", "level2", "level3"]


class UsageResetRequest(BaseModel):
    user_id: str = Field(..., alias="userId", min_length=1, max_length=128)
    usage_type: UsageType | None = Field(None, alias="usageType")

    model_config = {"populate_by_name": True}


@router.get("/me")
async def me(user_id: str = Depends(rate_limit)):
    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            state = subscriptions.resolve_status(db, user_id=user_id)
            user = get_user(db, user_id)
            return {
                "id": user.id,
                "plan": state.plan,
                "planName": plan_catalog.PLANS[state.plan]["name"],
                "subscription": state.to_dict(),
                "adsEnabled": ad_rewards.is_eligible(state.plan),
                "createdAt": user.created_at.isoformat() if user.created_at else None,
            }

    return {"success": True, "data": await asyncio.to_thread(_db_call)}


@router.get("/usage")
async def usage(user_id: str = Depends(rate_limit)):
    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            plan = subscriptions.effective_plan(db, user_id=user_id)
            record = quota.get_usage(db, user_id=user_id)
            return {
                "plan": plan,
                "date": record.date,
                "usage": quota.usage_summary(db, user_id=user_id, plan=plan),
                "adSummary": ad_rewards.earned_today(db, user_id=user_id),
            }

    return {"success": True, "data": await asyncio.to_thread(_db_call)}


@router.get("/check-limit")
async def check_limit(
    usage_type: UsageType = Query(..., alias="type"),
    user_id: str = Depends(rate_limit),
):
    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            check = quota.check_limit(db, user_id=user_id, usage_type=usage_type)
            data = check.to_dict()
            if not check.allowed:
                data["adUnlock"] = ad_rewards.can_unlock(
                    db, user_id=user_id, usage_type=usage_type, plan=check.plan
                )
                data["upgradeHint"] = {
                    "currentPlan": check.plan,
                    "recommendedPlan": plan_catalog.next_plan(check.plan),
                }
            return data

    return {"success": True, "data": await asyncio.to_thread(_db_call)}


@router.get("/stats")
async def stats(
    days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(rate_limit),
):
    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            return quota.user_stats(db, user_id=user_id, days=days)

    return {"success": True, "data": await asyncio.to_thread(_db_call)}


@router.post(
    "/usage/reset",
    dependencies=[Depends(require_admin)],
    responses={403: {"model": ErrorResponse}},
)
async def reset_usage(body: UsageResetRequest):
    def _db_call() -> None:
        with db_module.SessionLocal() as db:
            quota.reset_usage(db, user_id=body.user_id, usage_type=body.usage_type)

    await asyncio.to_thread(_db_call)
    return {"success": True, "data": {"userId": body.user_id, "usageType": body.usage_type or "all"}}
