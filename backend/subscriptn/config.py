from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./subscriptn.db"

    # Application
    app_name: str = "SubscriptN"
    environment: str = "development"
    api_prefix: str = ""
    log_level: str = "INFO"

    # Session cookie (JWT signed with secret_key)
    secret_key: str = "change-this-in-production"
    session_cookie_name: str = "session"
    session_cookie_secure: bool = False
    session_expire_minutes: int = 60 * 24 * 7  # 7 days

    # NWC connection strings are encrypted with a key derived from this
    nwc_encryption_key: str | None = None  # 64 hex chars

    # Payment backend (NWC wallet service)
    payment_backend_url: str | None = None
    payment_backend_api_key: str | None = None
    payment_timeout_seconds: float = 30.0

    # Rate limiting
    rate_limit_redis_url: str | None = None  # memory store when unset
    rate_limit_cleanup_minutes: int = 5
    auth_rate_limit_max_requests: int = 5
    auth_rate_limit_window_ms: int = 15 * 60 * 1000
    api_rate_limit_max_requests: int = 100
    api_rate_limit_window_ms: int = 60 * 1000
    webhook_rate_limit_max_requests: int = 10
    webhook_rate_limit_window_ms: int = 60 * 1000
    shop_rate_limit_max_requests: int = 20
    shop_rate_limit_window_ms: int = 60 * 1000
    subscription_rate_limit_max_requests: int = 10
    subscription_rate_limit_window_ms: int = 60 * 1000
    server_rate_limit_max_requests: int = 15
    server_rate_limit_window_ms: int = 60 * 1000

    # Background payment sweep (off by default, GET /payments/nwc/process triggers it on demand)
    payment_sweep_enabled: bool = False
    payment_sweep_minutes: int = 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
