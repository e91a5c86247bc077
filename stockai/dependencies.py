from __future__ import annotations

import hmac
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError
from fastapi import Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from stockai.config import Settings
from stockai.errors import AnalyzerError
from stockai.models import ErrorCode

settings = Settings()
redis_client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)


logger = logging.getLogger(__name__)

MAX_USER_ID_LEN = 128


class ErrorResponse(BaseModel):
    code: str
    message: str


async def require_api_headers(
    x_api_key: str = Header(..., alias="X-API-Key"),
    x_api_ver: str | None = Header(None, alias="X-API-Ver"),
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> str:
    if x_api_ver is None:
        err = ErrorResponse(code=ErrorCode.UPGRADE_REQUIRED, message="Missing API version")
        raise HTTPException(status_code=426, detail=err.model_dump())

    if x_api_ver != "v1":
        err = ErrorResponse(code=ErrorCode.UPGRADE_REQUIRED, message="Invalid API version")
        raise HTTPException(status_code=426, detail=err.model_dump())

    if not hmac.compare_digest(x_api_key, settings.api_key):
        err = ErrorResponse(code=ErrorCode.UNAUTHORIZED, message="Invalid API key")
        raise HTTPException(status_code=401, detail=err.model_dump())

    user_id = (x_user_id or "").strip()
    if not user_id or len(user_id) > MAX_USER_ID_LEN:
        err = ErrorResponse(code=ErrorCode.UNAUTHORIZED, message="Missing user ID")
        raise HTTPException(status_code=401, detail=err.model_dump())

    return user_id


async def rate_limit(request: Request, user_id: str = Depends(require_api_headers)) -> str:
    """Throttle requests by IP and user via Redis."""
    client_host = request.client.host if request.client else ""
    ip = client_host
    xff = request.headers.get("X-Forwarded-For")
    if xff and client_host in settings.trusted_proxies:
        forwarded = [h.strip() for h in xff.split(",") if h.strip()]
        proxies = forwarded[1:] + [client_host]
        if forwarded and all(p in settings.trusted_proxies for p in proxies):
            ip = forwarded[0]
    ip_key = f"rate:ip:{ip}"
    user_key = f"rate:user:{user_id}"

    try:
        pipe = redis_client.pipeline()
        pipe.incr(ip_key)
        pipe.expire(ip_key, 60)
        pipe.incr(user_key)
        pipe.expire(user_key, 60)
        ip_count, _, user_count, _ = await pipe.execute()
    except RedisError as exc:
        logger.exception("Redis unavailable for rate limiting: %s", exc)
        err = ErrorResponse(
            code=ErrorCode.SERVICE_UNAVAILABLE, message="Rate limiter unavailable"
        )
        raise HTTPException(status_code=503, detail=err.model_dump()) from exc
    if ip_count > settings.rate_limit_ip_per_min or user_count > settings.rate_limit_user_per_min:
        err = ErrorResponse(code=ErrorCode.TOO_MANY_REQUESTS, message="Rate limit exceeded")
        raise HTTPException(status_code=429, detail=err.model_dump())

    return user_id


async def require_admin(
    x_admin_key: str | None = Header(None, alias="X-Admin-Key"),
) -> None:
    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.admin_api_key):
        logger.warning("audit: rejected admin request")
        err = ErrorResponse(code=ErrorCode.FORBIDDEN, message="Admin key required")
        raise HTTPException(status_code=403, detail=err.model_dump())


def error_response(exc: AnalyzerError) -> JSONResponse:
    """Render a domain error; quota and ad-limit errors keep their payload shape."""
    payload = exc.to_payload()
    if "success" not in payload:
        payload = {"detail": ErrorResponse(**payload).model_dump()}
    return JSONResponse(status_code=exc.status_code, content=payload)
