from .base import Base
from .user import User
from .daily_usage import DailyUsage
from .ad_reward import AdReward, DailyAdSummary
from .subscription import Subscription, SubscriptionHistory, SubscriptionStatus
from .api_log import ApiLog
from .error_code import ErrorCode

__all__ = [
    "Base",
    "User",
    "DailyUsage",
    "AdReward",
    "DailyAdSummary",
    "Subscription",
    "SubscriptionHistory",
    "SubscriptionStatus",
    "ApiLog",
    "ErrorCode",
]
