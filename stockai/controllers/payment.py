import asyncio
import json
import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from stockai import db as db_module
from stockai.config import Settings
from stockai.dependencies import ErrorResponse, rate_limit
from stockai.errors import AnalyzerError
from stockai.metrics import webhook_forbidden_total
from stockai.models import ErrorCode, Subscription
from stockai.services import plan_catalog, subscriptions
from stockai.services.hmac import verify_hmac
from stockai.services.store_verifiers import (
    StoreEvent,
    StoreVerifier,
    get_store_verifier,
    parse_apple_notification,
    parse_google_notification,
)
from stockai.services.subscriptions import VerifiedPurchase

settings = Settings()
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment")


class AppleVerifyRequest(BaseModel):
    receipt_data: str = Field(..., alias="receiptData", min_length=1)

    model_config = {"populate_by_name": True}


class GoogleVerifyRequest(BaseModel):
    product_id: str = Field(..., alias="productId", min_length=1)
    purchase_token: str = Field(..., alias="purchaseToken", min_length=1)

    model_config = {"populate_by_name": True}


class RestoreRequest(BaseModel):
    platform: Literal["apple", "google"]
    receipt_data: str | None = Field(None, alias="receiptData")
    product_id: str | None = Field(None, alias="productId")
    purchase_token: str | None = Field(None, alias="purchaseToken")

    model_config = {"populate_by_name": True}


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=255)


class SubscriptionOut(BaseModel):
    id: int
    plan: str
    product_id: str = Field(..., serialization_alias="productId")
    platform: str
    status: str
    purchased_at: datetime | None = Field(None, serialization_alias="purchasedAt")
    expires_at: datetime | None = Field(None, serialization_alias="expiresAt")

    @classmethod
    def from_row(cls, row: Subscription) -> "SubscriptionOut":
        return cls(
            id=row.id,
            plan=row.plan_id,
            product_id=row.product_id,
            platform=row.platform,
            status=row.status,
            purchased_at=row.purchased_at,
            expires_at=row.expires_at,
        )


def _subscription_payload(row: Subscription) -> dict:
    return SubscriptionOut.from_row(row).model_dump(by_alias=True, mode="json")


@router.get("/products")
async def products():
    items = []
    for product_id, plan_id in plan_catalog.PRODUCT_TO_PLAN.items():
        plan = plan_catalog.PLANS[plan_id]
        yearly = product_id.endswith("yearly")
        items.append(
            {
                "productId": product_id,
                "plan": plan_id,
                "name": plan["name"],
                "period": "year" if yearly else "month",
                "monthlyPrice": plan["price"],
            }
        )
    return {"success": True, "data": items}


@router.get("/subscription")
async def subscription_status(user_id: str = Depends(rate_limit)):
    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            state = subscriptions.resolve_status(db, user_id=user_id)
            data = state.to_dict()
            data["limits"] = {
                k: plan_catalog.render_limit(v)
                for k, v in plan_catalog.PLANS[state.plan]["limits"].items()
            }
            return data

    return {"success": True, "data": await asyncio.to_thread(_db_call)}


async def _activate(user_id: str, purchase: VerifiedPurchase, *, restore: bool = False) -> dict:
    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            if restore:
                row = subscriptions.restore(db, user_id=user_id, purchase=purchase)
            else:
                row = subscriptions.process_purchase(db, user_id=user_id, purchase=purchase)
            return _subscription_payload(row)

    return {"success": True, "data": {"subscription": await asyncio.to_thread(_db_call)}}


@router.post(
    "/verify/apple",
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
async def verify_apple(
    body: AppleVerifyRequest,
    user_id: str = Depends(rate_limit),
    verifier: StoreVerifier = Depends(get_store_verifier),
):
    purchase = await verifier.verify_apple(body.receipt_data)
    return await _activate(user_id, purchase)


@router.post(
    "/verify/google",
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
async def verify_google(
    body: GoogleVerifyRequest,
    user_id: str = Depends(rate_limit),
    verifier: StoreVerifier = Depends(get_store_verifier),
):
    purchase = await verifier.verify_google(body.product_id, body.purchase_token)
    return await _activate(user_id, purchase)


@router.post("/restore", responses={400: {"model": ErrorResponse}})
async def restore(
    body: RestoreRequest,
    user_id: str = Depends(rate_limit),
    verifier: StoreVerifier = Depends(get_store_verifier),
):
    if body.platform == "apple":
        if not body.receipt_data:
            err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message="receiptData is required")
            raise HTTPException(status_code=400, detail=err.model_dump())
        purchase = await verifier.verify_apple(body.receipt_data)
    else:
        if not body.product_id or not body.purchase_token:
            err = ErrorResponse(
                code=ErrorCode.BAD_REQUEST, message="productId and purchaseToken are required"
            )
            raise HTTPException(status_code=400, detail=err.model_dump())
        purchase = await verifier.verify_google(body.product_id, body.purchase_token)
    return await _activate(user_id, purchase, restore=True)


@router.post("/cancel", responses={404: {"model": ErrorResponse}})
async def cancel(body: CancelRequest | None = None, user_id: str = Depends(rate_limit)):
    reason = body.reason if body else None

    def _db_call() -> dict:
        with db_module.SessionLocal() as db:
            row = subscriptions.cancel(db, user_id=user_id, reason=reason)
            return _subscription_payload(row)

    data = await asyncio.to_thread(_db_call)
    return {
        "success": True,
        "data": {
            "subscription": data,
            "message": "Subscription cancelled; access remains until the current period ends",
        },
    }


@router.get("/history")
async def payment_history(user_id: str = Depends(rate_limit)):
    def _db_call() -> list[dict]:
        with db_module.SessionLocal() as db:
            return [_subscription_payload(r) for r in subscriptions.history(db, user_id=user_id)]

    return {"success": True, "data": await asyncio.to_thread(_db_call)}


async def _read_webhook(request: Request, signature: str | None, source: str) -> dict:
    raw_body = await request.body()
    secret = settings.webhook_hmac_secret
    if secret and not verify_hmac(signature or "", raw_body, secret):
        webhook_forbidden_total.inc()
        ip = request.client.host if request.client else ""
        logger.warning("audit: %s webhook with bad signature from %s", source, ip)
        raise HTTPException(status_code=403, detail="FORBIDDEN")
    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError as exc:
        err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message="Malformed JSON")
        raise HTTPException(status_code=400, detail=err.model_dump()) from exc
    if not isinstance(payload, dict):
        err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message="Invalid payload")
        raise HTTPException(status_code=400, detail=err.model_dump())
    return payload


async def _apply_event(event: StoreEvent) -> bool:
    def _db_call() -> bool:
        with db_module.SessionLocal() as db:
            row = subscriptions.apply_store_event(
                db,
                platform=event.platform,
                transaction_id=event.transaction_id,
                target_status=event.target_status,
                expires_at=event.expires_at,
                action=event.action,
            )
            return row is not None

    return await asyncio.to_thread(_db_call)


@router.post("/webhook/apple")
async def webhook_apple(
    request: Request,
    x_signature: str | None = Header(None, alias="X-Signature"),
):
    payload = await _read_webhook(request, x_signature, "apple")
    event = parse_apple_notification(payload)
    applied = await _apply_event(event) if event else False
    return {"received": True, "applied": applied}


@router.post("/webhook/google")
async def webhook_google(
    request: Request,
    x_signature: str | None = Header(None, alias="X-Signature"),
    verifier: StoreVerifier = Depends(get_store_verifier),
):
    payload = await _read_webhook(request, x_signature, "google")
    event = parse_google_notification(payload)
    if event and event.target_status == "active" and event.product_id:
        # RTDN carries no expiry; renewals take it from a fresh verification
        try:
            renewed = await verifier.verify_google(event.product_id, event.transaction_id)
            event.expires_at = renewed.expires_at
        except AnalyzerError as exc:
            logger.warning("google renewal verification failed: %s", exc.message)
    applied = await _apply_event(event) if event else False
    return {"received": True, "applied": applied}
