import enum


class ErrorCode(str, enum.Enum):
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    UPGRADE_REQUIRED = "UPGRADE_REQUIRED"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    USAGE_LIMIT_EXCEEDED = "USAGE_LIMIT_EXCEEDED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    INVALID_RECEIPT = "INVALID_RECEIPT"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    UNKNOWN_PRODUCT = "UNKNOWN_PRODUCT"
    NO_ACTIVE_SUBSCRIPTION = "NO_ACTIVE_SUBSCRIPTION"
    NOTHING_TO_RESTORE = "NOTHING_TO_RESTORE"
    DAILY_LIMIT_REACHED = "DAILY_LIMIT_REACHED"
    COOLDOWN = "COOLDOWN"
    ADS_NOT_ELIGIBLE = "ADS_NOT_ELIGIBLE"
    INVALID_TOKEN = "INVALID_TOKEN"
    MARKET_DATA_UNAVAILABLE = "MARKET_DATA_UNAVAILABLE"


__all__ = ["ErrorCode"]
