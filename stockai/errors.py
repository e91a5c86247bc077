"""Domain exceptions raised by the service layer.

Controllers translate them into HTTP responses; quota and ad-limit errors
carry structured payloads so the client can offer an ad or an upgrade.
"""

from __future__ import annotations

from typing import Any

from stockai.models import ErrorCode


class AnalyzerError(Exception):
    code: ErrorCode = ErrorCode.BAD_REQUEST
    status_code: int = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code.value)
        self.message = message or self.code.value

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message}


class QuotaExceeded(AnalyzerError):
    code = ErrorCode.USAGE_LIMIT_EXCEEDED
    status_code = 429

    def __init__(
        self,
        usage_type: str,
        *,
        base_limit: int,
        ad_bonus: int,
        total_limit: int,
        current: int,
        ad_unlock: dict[str, Any] | None = None,
        upgrade_hint: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Daily {usage_type} limit reached")
        self.usage_type = usage_type
        self.base_limit = base_limit
        self.ad_bonus = ad_bonus
        self.total_limit = total_limit
        self.current = current
        self.ad_unlock = ad_unlock
        self.upgrade_hint = upgrade_hint

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.code.value,
            "message": self.message,
            "usageType": self.usage_type,
            "baseLimit": self.base_limit,
            "adBonus": self.ad_bonus,
            "totalLimit": self.total_limit,
            "current": self.current,
            "remaining": max(0, self.total_limit - self.current),
            "adUnlock": self.ad_unlock,
            "upgradeHint": self.upgrade_hint,
        }


class ProviderUnavailable(AnalyzerError):
    """A fallback-chain stage failed; recovered by the next stage."""

    code = ErrorCode.SERVICE_UNAVAILABLE
    status_code = 503

    def __init__(self, stage: str, reason: str) -> None:
        super().__init__(f"{stage}: {reason}")
        self.stage = stage
        self.reason = reason


class InsufficientData(AnalyzerError):
    code = ErrorCode.INSUFFICIENT_DATA
    status_code = 422

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"Not enough data points: {available} available, {required} required"
        )
        self.available = available
        self.required = required


class InvalidReceipt(AnalyzerError):
    code = ErrorCode.INVALID_RECEIPT


class VerificationFailed(AnalyzerError):
    code = ErrorCode.VERIFICATION_FAILED


class UnknownProduct(AnalyzerError):
    code = ErrorCode.UNKNOWN_PRODUCT

    def __init__(self, product_id: str) -> None:
        super().__init__(f"Unknown product: {product_id}")
        self.product_id = product_id


class NoActiveSubscription(AnalyzerError):
    code = ErrorCode.NO_ACTIVE_SUBSCRIPTION
    status_code = 404


class NothingToRestore(AnalyzerError):
    code = ErrorCode.NOTHING_TO_RESTORE


class DailyCapReached(AnalyzerError):
    code = ErrorCode.DAILY_LIMIT_REACHED
    status_code = 429

    def __init__(self, ad_type: str, cap: int, watched: int) -> None:
        super().__init__(f"Daily {ad_type} ad limit reached")
        self.ad_type = ad_type
        self.cap = cap
        self.watched = watched

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.code.value,
            "message": self.message,
            "adType": self.ad_type,
            "dailyLimit": self.cap,
            "watched": self.watched,
        }


class Cooldown(AnalyzerError):
    code = ErrorCode.COOLDOWN
    status_code = 429

    def __init__(self, ad_type: str, remaining_seconds: int) -> None:
        super().__init__(f"Wait {remaining_seconds}s before the next {ad_type} ad")
        self.ad_type = ad_type
        self.remaining_seconds = remaining_seconds

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.code.value,
            "message": self.message,
            "adType": self.ad_type,
            "remainingSeconds": self.remaining_seconds,
        }


class AdsNotEligible(AnalyzerError):
    code = ErrorCode.ADS_NOT_ELIGIBLE
    status_code = 403

    def __init__(self, plan: str) -> None:
        super().__init__(f"Plan {plan} cannot redeem ad rewards")
        self.plan = plan


class InvalidWatchToken(AnalyzerError):
    code = ErrorCode.INVALID_TOKEN


class MarketDataUnavailable(AnalyzerError):
    code = ErrorCode.MARKET_DATA_UNAVAILABLE
    status_code = 503


__all__ = [
    "AnalyzerError",
    "QuotaExceeded",
    "ProviderUnavailable",
    "InsufficientData",
    "InvalidReceipt",
    "VerificationFailed",
    "UnknownProduct",
    "NoActiveSubscription",
    "NothingToRestore",
    "DailyCapReached",
    "Cooldown",
    "AdsNotEligible",
    "InvalidWatchToken",
    "MarketDataUnavailable",
]
