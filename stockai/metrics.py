from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Analysis requests by requested level and the method that served them
analysis_requests_total = Counter(
    "analysis_requests_total",
    "Total analysis requests",
    ["level", "method"],
)

# provider calls dominate; buckets sized for multi-second vision calls
_analysis_latency_buckets = (
    0.1,
    0.5,
    1.0,
    2.0,
    5.0,
    10.0,
    20.0,
)

analysis_latency_seconds = Histogram(
    "analysis_latency_seconds",
    "Analysis latency on cache miss",
    buckets=_analysis_latency_buckets,
)

# Failed fallback-chain stages (timeout, quota, malformed response)
provider_failure_total = Counter(
    "provider_failure_total", "Provider stage failures", ["stage"]
)

# Quota rejects per usage type
quota_reject_total = Counter(
    "quota_reject_total", "Number of quota rejected requests", ["usage_type"]
)

cache_hit_total = Counter("cache_hit_total", "Cache hits", ["namespace"])
cache_miss_total = Counter("cache_miss_total", "Cache misses", ["namespace"])

ad_reward_total = Counter(
    "ad_reward_total", "Completed rewarded ad views", ["ad_type"]
)

subscription_transition_total = Counter(
    "subscription_transition_total",
    "Subscription status transitions",
    ["status"],
)

payment_verify_fail_total = Counter(
    "payment_verify_fail_total",
    "Failed store receipt verifications",
    ["platform"],
)

# Webhook rejects (signature)
webhook_forbidden_total = Counter(
    "webhook_forbidden_total", "Total forbidden webhook requests"
)

__all__ = [
    "analysis_requests_total",
    "analysis_latency_seconds",
    "provider_failure_total",
    "quota_reject_total",
    "cache_hit_total",
    "cache_miss_total",
    "ad_reward_total",
    "subscription_transition_total",
    "payment_verify_fail_total",
    "webhook_forbidden_total",
]
