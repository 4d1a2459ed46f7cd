from functools import lru_cache
import json
from typing import Optional

from pydantic_settings import BaseSettings


def parse_cors_origins(value: str) -> list[str]:
    if not value:
        return []

    parsed: list[str]
    raw = value.strip()
    if raw.startswith("["):
        try:
            items = json.loads(raw)
            parsed = [str(item).strip() for item in items if str(item).strip()]
        except (TypeError, ValueError):
            parsed = []
    else:
        parsed = [origin.strip() for origin in raw.split(",") if origin.strip()]

    # Preserve order and remove duplicates.
    return list(dict.fromkeys(parsed))


def parse_csv(value: str) -> list[str]:
    return [item.strip().lower() for item in str(value or "").split(",") if item.strip()]


class Settings(BaseSettings):
    app_name: str = "Movie Payments"
    environment: str = "development"
    api_v1_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Security
    secret_key: str
    access_token_expire_minutes: int = 30

    # Database
    database_url: str
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_timeout: int = 15
    db_pool_recycle: int = 1200
    db_pool_pre_ping: bool = True

    # Fastlipa mobile-money gateway
    fastlipa_base_url: str = "https://api.fastlipa.com/api"
    fastlipa_api_key: Optional[str] = None
    fastlipa_timeout_seconds: int = 15
    fastlipa_retry_count: int = 2
    fastlipa_test_mode: bool = False

    # Gateway status vocabulary. Vendors drift, so keep these configurable.
    gateway_success_statuses: str = "success,completed,paid,successful"
    gateway_pending_statuses: str = "pending,processing,initiated"
    gateway_failed_statuses: str = "failed,cancelled,canceled,reversed,rejected"

    # Payments
    topup_min_amount: int = 500
    subscription_default_price: int = 5000
    subscription_min_price: int = 100
    subscription_period_days: int = 30

    # Reconciliation
    reconcile_poll_interval_seconds: float = 5
    reconcile_max_attempts: int = 24
    reconcile_max_workers: int = 8
    reconcile_resume_on_startup: bool = True

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:8080"
    auto_create_tables: bool = False
    rate_limit_enabled: bool = True

    # Ops: bootstrap admin users (comma-separated emails).
    bootstrap_admin_emails: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
