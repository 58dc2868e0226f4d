# backend/consultdesk/core/config.py
from decimal import Decimal
import logging
import os
from pathlib import Path
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.info(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "environment"),
    )

    # Database
    database_url: str = Field(
        default="sqlite+pysqlite:///./consultdesk.db",
        validation_alias=AliasChoices("DATABASE_URL", "database_url"),
    )
    database_echo: bool = False

    # Cache / broker
    redis_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_URL", "redis_url"),
    )
    cache_ttl_seconds: int = 300
    celery_broker_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CELERY_BROKER_URL", "celery_broker_url"),
    )
    celery_result_backend: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CELERY_RESULT_BACKEND", "celery_result_backend"),
    )

    # Payment gateway (Razorpay)
    razorpay_key_id: str = Field(
        default="",
        validation_alias=AliasChoices("RAZORPAY_KEY_ID", "razorpay_key_id"),
    )
    razorpay_key_secret: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("RAZORPAY_KEY_SECRET", "razorpay_key_secret"),
    )
    razorpay_webhook_secret: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("RAZORPAY_WEBHOOK_SECRET", "razorpay_webhook_secret"),
    )
    razorpay_base_url: str = "https://api.razorpay.com/v1"
    payment_gateway_timeout_seconds: float = 10.0

    # Payment limits (major currency units)
    payment_min_amount: Decimal = Decimal("1.00")
    payment_max_amount: Decimal = Decimal("500000.00")
    payment_daily_limit: Decimal = Decimal("1000000.00")
    payment_default_currency: str = "INR"
    payment_supported_currencies_raw: str = Field(
        default="INR,USD,EUR",
        validation_alias=AliasChoices("PAYMENT_SUPPORTED_CURRENCIES", "payment_supported_currencies"),
    )
    refund_window_days: int = 180

    # Booking
    booking_timezone: str = "Asia/Kolkata"
    public_booking_enforce_price: bool = Field(
        default=False,
        description="Reject (instead of warn on) price mismatches in the public booking flow",
    )
    price_tolerance: Decimal = Decimal("0.01")

    # Meeting providers
    google_calendar_base_url: str = "https://www.googleapis.com/calendar/v3"
    microsoft_graph_base_url: str = "https://graph.microsoft.com/v1.0"
    zoom_api_base_url: str = "https://api.zoom.us/v2"
    zoom_oauth_url: str = "https://zoom.us/oauth/token"
    zoom_account_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ZOOM_ACCOUNT_ID", "zoom_account_id"),
    )
    zoom_client_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ZOOM_CLIENT_ID", "zoom_client_id"),
    )
    zoom_client_secret: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("ZOOM_CLIENT_SECRET", "zoom_client_secret"),
    )
    meeting_provider_timeout_seconds: float = 10.0

    # Session lifecycle jobs
    session_auto_start_window_minutes: int = 30
    session_auto_complete_after_minutes: int = 60

    @field_validator("payment_default_currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def payment_supported_currencies(self) -> List[str]:
        return [
            item.strip().upper()
            for item in self.payment_supported_currencies_raw.split(",")
            if item.strip()
        ]

    def secret_value(self, secret: Optional[SecretStr]) -> str:
        """Return the plain value of an optional secret ('' when unset)."""
        if secret is None:
            return ""
        return secret.get_secret_value()


settings = Settings()
