# backend/app/core/config.py

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from pydantic_settings import BaseSettings, SettingsConfigDict


def _strip_asyncpg_unsupported_params(url: str) -> str:
    """
    asyncpg does NOT accept sslmode or channel_binding as connect kwargs.
    If these appear in the URL query, SQLAlchemy can end up passing them to
    asyncpg.connect(), causing:
      TypeError: connect() got an unexpected keyword argument 'sslmode'
    """
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = parse_qsl(parts.query, keep_blank_values=True)
    filtered = [(k, v) for (k, v) in params if k not in {"sslmode", "channel_binding"}]
    new_query = urlencode(filtered, doseq=True)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, new_query, parts.fragment))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -----------------------------
    # Environment
    # -----------------------------
    # Use: development | staging | production
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # -----------------------------
    # DB
    # -----------------------------
    DATABASE_URL_ASYNC: str
    DATABASE_URL_SYNC: str

    # -----------------------------
    # JWT
    # -----------------------------
    # Keep a dev default, but enforce stronger requirements outside dev.
    JWT_SECRET: str = "dev-secret-change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # -----------------------------
    # Payments (Stripe)
    # -----------------------------
    # Unset => payment provider not configured; payout runs short-circuit.
    STRIPE_API_KEY: Optional[str] = None
    STRIPE_TIMEOUT_SECONDS: int = 30
    # Signing secret of the webhook endpoint (whsec_...); unset => webhook disabled.
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    PAYOUT_CURRENCY: str = "usd"

    # -----------------------------
    # Settlement / payouts
    # -----------------------------
    DEFAULT_RAKE_PERCENTAGE: Decimal = Decimal("2.0")
    PAYOUT_MAX_RETRIES: int = 3
    PAYOUT_PROCESSING_TIMEOUT_MINUTES: int = 30
    COMMISSION_AUTO_CHARGE_DAYS: int = 7
    COMMISSION_LOCK_DAYS: int = 14
    NOTIFICATION_MAX_ATTEMPTS: int = 3

    # -----------------------------
    # Scheduler / cron trigger
    # -----------------------------
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_TIMEZONE: str = "UTC"
    PAYOUT_CRON_HOUR: int = 9
    CRON_SECRET: Optional[str] = None

    @property
    def DATABASE_URL_ASYNC_CLEAN(self) -> str:
        return _strip_asyncpg_unsupported_params(self.DATABASE_URL_ASYNC)

    @property
    def stripe_configured(self) -> bool:
        return bool((self.STRIPE_API_KEY or "").strip())

    def model_post_init(self, __context) -> None:  # pydantic v2 hook
        env = (self.ENVIRONMENT or "").strip().lower()

        # Enforce that we never run staging/production with a placeholder secret.
        if env in {"staging", "production"}:
            if not self.JWT_SECRET or self.JWT_SECRET.strip() == "dev-secret-change-me":
                raise ValueError("JWT_SECRET must be set to a strong value in staging/production.")
            if len(self.JWT_SECRET.strip()) < 32:
                raise ValueError("JWT_SECRET is too short; use at least 32 characters in staging/production.")

        # Light sanity checks (all envs)
        if self.JWT_ALGORITHM not in {"HS256"}:
            raise ValueError(f"Unsupported JWT_ALGORITHM={self.JWT_ALGORITHM!r}. Allowed: HS256")
        if self.PAYOUT_MAX_RETRIES < 1:
            raise ValueError("PAYOUT_MAX_RETRIES must be at least 1.")
        if not 0 <= self.PAYOUT_CRON_HOUR <= 23:
            raise ValueError("PAYOUT_CRON_HOUR must be between 0 and 23.")


settings = Settings()


@dataclass(frozen=True)
class PayoutConfig:
    """
    Explicit settlement/payout knobs handed to services and jobs,
    so business code never reads the global settings object.
    """

    currency: str = "usd"
    max_retries: int = 3
    processing_timeout_minutes: int = 30
    notification_max_attempts: int = 3
    auto_charge_days: int = 7
    lock_days: int = 14
    default_rake_percentage: Decimal = Decimal("2.0")

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> "PayoutConfig":
        s = s or settings
        return cls(
            currency=s.PAYOUT_CURRENCY.strip().lower(),
            max_retries=s.PAYOUT_MAX_RETRIES,
            processing_timeout_minutes=s.PAYOUT_PROCESSING_TIMEOUT_MINUTES,
            notification_max_attempts=s.NOTIFICATION_MAX_ATTEMPTS,
            auto_charge_days=s.COMMISSION_AUTO_CHARGE_DAYS,
            lock_days=s.COMMISSION_LOCK_DAYS,
            default_rake_percentage=s.DEFAULT_RAKE_PERCENTAGE,
        )
