"""Application configuration from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_name: str = "StayBook"
    debug: bool = True
    secret_key: str = "dev-secret-change-in-production"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    # Database
    database_url: str = "postgresql+asyncpg://staybook:staybook@db:5432/staybook"
    database_echo: bool = False

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://redis:6379/0"

    # Auth (tokens are issued by the identity service; we only verify them)
    access_token_expire_minutes: int = 60
    jwt_algorithm: str = "HS256"

    # Email / SMTP
    smtp_host: str = "localhost"
    smtp_port: int = 1025
    smtp_from: str = "noreply@staybook.in"

    # Razorpay
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    currency: str = "INR"
    payment_order_ttl_minutes: int = 15

    # Fee schedule (paise / percent)
    tax_percent: float = 12.0
    platform_fee_paise: int = 5000

    # Notification outbox retry policy
    notification_max_attempts: int = 5
    notification_base_delay_seconds: int = 30
    notification_max_delay_seconds: int = 3600
    notification_batch_size: int = 50

    # No-show sweep: minutes after check-in before a confirmed booking is auto-cancelled
    no_show_buffer_minutes: int = 60

    model_config = {"env_prefix": "SB_", "env_file": ".env", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
