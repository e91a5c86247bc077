"""App Store / Google Play receipt verification and notification parsing."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import jwt

from stockai.config import Settings
from stockai.errors import InvalidReceipt, VerificationFailed
from stockai.metrics import payment_verify_fail_total
from stockai.services.subscriptions import VerifiedPurchase

settings = Settings()
logger = logging.getLogger(__name__)

APPLE_SANDBOX_RECEIPT = 21007
SIMULATED_PERIOD = timedelta(days=30)


def _from_ms(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class StoreVerifier:
    def __init__(self, cfg: Settings | None = None, timeout: float = 10.0) -> None:
        self.cfg = cfg or settings
        self.timeout = timeout

    async def _post_apple(self, url: str, receipt: str) -> dict[str, Any]:
        payload = {
            "receipt-data": receipt,
            "password": self.cfg.apple_shared_secret,
            "exclude-old-transactions": True,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(url, json=payload)
            resp.raise_for_status()
            return resp.json()

    async def verify_apple(self, receipt: str) -> VerifiedPurchase:
        """Verify an App Store receipt, retrying sandbox receipts in sandbox."""
        if not receipt:
            raise InvalidReceipt("Receipt data is required")
        try:
            data = await self._post_apple(self.cfg.apple_verify_url, receipt)
            if data.get("status") == APPLE_SANDBOX_RECEIPT:
                data = await self._post_apple(self.cfg.apple_sandbox_url, receipt)
        except httpx.HTTPError as exc:
            payment_verify_fail_total.labels(platform="apple").inc()
            logger.error("Apple verification request failed: %s", exc)
            raise VerificationFailed("App Store verification unavailable") from exc
        except ValueError as exc:
            payment_verify_fail_total.labels(platform="apple").inc()
            raise VerificationFailed("Malformed App Store response") from exc

        status = data.get("status")
        if status != 0:
            payment_verify_fail_total.labels(platform="apple").inc()
            raise InvalidReceipt(f"App Store rejected receipt (status {status})")
        infos = data.get("latest_receipt_info") or []
        if not infos:
            raise InvalidReceipt("Receipt has no subscription transactions")
        latest = max(infos, key=lambda i: int(i.get("expires_date_ms") or 0))
        try:
            return VerifiedPurchase(
                product_id=latest["product_id"],
                transaction_id=str(latest["transaction_id"]),
                original_transaction_id=str(
                    latest.get("original_transaction_id") or latest["transaction_id"]
                ),
                platform="apple",
                purchased_at=_from_ms(latest.get("purchase_date_ms")),
                expires_at=_from_ms(latest.get("expires_date_ms")),
                receipt=receipt,
            )
        except (KeyError, ValueError) as exc:
            raise InvalidReceipt("Malformed receipt transaction") from exc

    async def verify_google(self, product_id: str, purchase_token: str) -> VerifiedPurchase:
        """Verify a Play purchase token.

        Outside production, or without a verification endpoint, the purchase is
        simulated as valid for 30 days.
        """
        if not product_id or not purchase_token:
            raise InvalidReceipt("productId and purchaseToken are required")
        if self.cfg.app_env.lower() != "production" or not self.cfg.google_verify_url:
            now = datetime.now(timezone.utc)
            return VerifiedPurchase(
                product_id=product_id,
                transaction_id=purchase_token,
                original_transaction_id=purchase_token,
                platform="google",
                purchased_at=now,
                expires_at=now + SIMULATED_PERIOD,
                receipt=purchase_token,
            )

        params = {
            "packageName": self.cfg.google_package_name,
            "subscriptionId": product_id,
            "token": purchase_token,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(self.cfg.google_verify_url, params=params)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as exc:
            payment_verify_fail_total.labels(platform="google").inc()
            logger.error("Google verification request failed: %s", exc)
            raise VerificationFailed("Google Play verification unavailable") from exc
        except ValueError as exc:
            payment_verify_fail_total.labels(platform="google").inc()
            raise VerificationFailed("Malformed Google Play response") from exc

        expires_at = _from_ms(data.get("expiryTimeMillis"))
        if expires_at is None:
            payment_verify_fail_total.labels(platform="google").inc()
            raise InvalidReceipt("Purchase token is not valid")
        return VerifiedPurchase(
            product_id=product_id,
            transaction_id=str(data.get("orderId") or purchase_token),
            original_transaction_id=purchase_token,
            platform="google",
            purchased_at=_from_ms(data.get("startTimeMillis")),
            expires_at=expires_at,
            receipt=purchase_token,
        )


_verifier = StoreVerifier()


def get_store_verifier() -> StoreVerifier:
    return _verifier


@dataclass
class StoreEvent:
    platform: str
    transaction_id: str
    target_status: str
    action: str
    expires_at: datetime | None = None
    product_id: str | None = None


# notificationType[/subtype] -> (status, action)
APPLE_EVENTS: dict[str, tuple[str, str]] = {
    "DID_RENEW": ("active", "renew"),
    "SUBSCRIBED/RESUBSCRIBE": ("active", "renew"),
    "DID_FAIL_TO_RENEW/GRACE_PERIOD": ("grace_period", "grace_period"),
    "DID_FAIL_TO_RENEW": ("grace_period", "grace_period"),
    "DID_CHANGE_RENEWAL_STATUS/AUTO_RENEW_DISABLED": ("cancelled", "cancel"),
    "GRACE_PERIOD_EXPIRED": ("expired", "expire"),
    "EXPIRED": ("expired", "expire"),
    "REFUND": ("expired", "refund"),
    "REVOKE": ("expired", "revoke"),
}

GOOGLE_EVENTS: dict[int, tuple[str, str]] = {
    1: ("active", "recover"),
    2: ("active", "renew"),
    3: ("cancelled", "cancel"),
    4: ("active", "purchase"),
    5: ("grace_period", "on_hold"),
    6: ("grace_period", "grace_period"),
    7: ("active", "restart"),
    12: ("expired", "expire"),
    13: ("expired", "revoke"),
}


def _unverified_claims(token: str) -> dict[str, Any]:
    # Store JWS chains are validated by the platform; only the claims are read here.
    return jwt.decode(token, options={"verify_signature": False})


def parse_apple_notification(body: dict[str, Any]) -> StoreEvent | None:
    signed = body.get("signedPayload")
    if not signed:
        return None
    try:
        payload = _unverified_claims(signed)
        data = payload.get("data") or {}
        tx = _unverified_claims(data["signedTransactionInfo"]) if data.get("signedTransactionInfo") else {}
    except (jwt.InvalidTokenError, KeyError, TypeError) as exc:
        logger.warning("audit: undecodable Apple notification: %s", exc)
        return None

    kind = payload.get("notificationType")
    subtype = payload.get("subtype")
    mapped = APPLE_EVENTS.get(f"{kind}/{subtype}") or APPLE_EVENTS.get(kind or "")
    transaction_id = tx.get("originalTransactionId") or tx.get("transactionId")
    if mapped is None or not transaction_id:
        logger.info("ignored Apple notification %s/%s", kind, subtype)
        return None
    status, action = mapped
    return StoreEvent(
        platform="apple",
        transaction_id=str(transaction_id),
        target_status=status,
        action=action,
        expires_at=_from_ms(tx.get("expiresDate")) if status == "active" else None,
    )


def parse_google_notification(body: dict[str, Any]) -> StoreEvent | None:
    try:
        raw = base64.b64decode(body["message"]["data"])
        data = json.loads(raw)
        note = data["subscriptionNotification"]
        kind = int(note["notificationType"])
        token = note["purchaseToken"]
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("audit: undecodable Google notification: %s", exc)
        return None

    mapped = GOOGLE_EVENTS.get(kind)
    if mapped is None:
        logger.info("ignored Google notification type %s", kind)
        return None
    status, action = mapped
    return StoreEvent(
        platform="google",
        transaction_id=token,
        target_status=status,
        action=action,
        product_id=note.get("subscriptionId"),
    )


__all__ = [
    "StoreVerifier",
    "get_store_verifier",
    "StoreEvent",
    "APPLE_EVENTS",
    "GOOGLE_EVENTS",
    "parse_apple_notification",
    "parse_google_notification",
]
