from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

APPLE_PRODUCTION_URL = "https://buy.itunes.apple.com/verifyReceipt"
APPLE_SANDBOX_URL = "https://sandbox.itunes.apple.com/verifyReceipt"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    api_key: str = "test-api-key"
    admin_api_key: str = Field("test-admin-key", alias="ADMIN_API_KEY")
    app_env: str = Field("development", alias="APP_ENV")

    database_url: str = Field("sqlite:////tmp/stockai_test.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    redis_url: str = Field("redis://localhost:6379", alias="REDIS_URL")
    trusted_proxies: list[str] = Field(
        default_factory=lambda: ["127.0.0.1", "testclient"]
    )
    rate_limit_ip_per_min: int = 60
    rate_limit_user_per_min: int = 240

    usage_timezone: str = Field("UTC", alias="USAGE_TIMEZONE")
    subscription_grace_days: int = Field(3, alias="SUBSCRIPTION_GRACE_DAYS")
    degraded_billing: Literal["requested", "served"] = Field(
        "requested", alias="DEGRADED_BILLING"
    )

    ad_token_secret: str = Field("test-ad-token-secret-change-me-in-production", alias="AD_TOKEN_SECRET")
    ad_watch_token_ttl_s: int = Field(300, alias="AD_WATCH_TOKEN_TTL_S")

    openai_api_key: str | None = Field(None, alias="OPENAI_API_KEY")
    openai_text_model: str = Field("gpt-4o-mini", alias="OPENAI_TEXT_MODEL")
    openai_vision_model: str = Field("gpt-4o", alias="OPENAI_VISION_MODEL")
    provider_timeout_s: float = Field(20.0, alias="PROVIDER_TIMEOUT_S")

    market_data_url: str | None = Field(None, alias="MARKET_DATA_URL")
    market_data_timeout_s: float = Field(10.0, alias="MARKET_DATA_TIMEOUT_S")
    chart_render_url: str | None = Field(None, alias="CHART_RENDER_URL")

    apple_shared_secret: str | None = Field(None, alias="APPLE_SHARED_SECRET")
    apple_verify_url: str = Field(APPLE_PRODUCTION_URL, alias="APPLE_VERIFY_URL")
    apple_sandbox_url: str = Field(APPLE_SANDBOX_URL, alias="APPLE_SANDBOX_URL")
    google_verify_url: str | None = Field(None, alias="GOOGLE_VERIFY_URL")
    google_package_name: str = Field(
        "com.stockai.analyzer", alias="GOOGLE_PACKAGE_NAME"
    )
    webhook_hmac_secret: str | None = Field(None, alias="WEBHOOK_HMAC_SECRET")

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
    )
