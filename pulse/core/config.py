from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ---------------------------
    # Meta / Pydantic settings
    # ---------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # Ignore unexpected env vars instead of erroring
    )

    # ---------------------------
    # Project / Logging
    # ---------------------------
    PROJECT_NAME: str = "Pulse Ticketing Core"
    ENVIRONMENT: str = "development"  # development | staging | production
    LOG_LEVEL: str = "INFO"

    # ---------------------------
    # Reminder scheduler
    # ---------------------------
    REMINDER_TICK_SECONDS: float = 60
    SCHEDULER_AUTOSTART: bool = False
    # all_users keeps the broadcast policy; participants limits to registered users
    REMINDER_RECIPIENTS: Literal["all_users", "participants"] = "all_users"

    # ---------------------------
    # Registration / Payments
    # ---------------------------
    # 0 disables the cleanup of abandoned PENDING registrations
    PENDING_PAYMENT_TTL_MINUTES: int = 0
    DEFAULT_CURRENCY: str = "EUR"
    # disabled refuses payments; memory is a fake that never charges (development and tests only)
    PAYMENT_PROVIDER: Literal["disabled", "memory", "stripe"] = "disabled"
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    # Development only: accept Stripe webhooks unverified when no webhook secret is set
    PAYMENT_WEBHOOK_ALLOW_UNSIGNED: bool = False

    # ---------------------------
    # Email (SMTP)
    # ---------------------------
    SEND_EMAILS: bool = False
    SMTP_SERVER: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    FROM_EMAIL: str = "noreply@pulse.local"
    FROM_NAME: str = "Pulse"
    EMAIL_TIMEOUT: int = 10


@lru_cache
def get_settings() -> Settings:
    return Settings()
