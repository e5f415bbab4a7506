# app/core/config.py
import os
from decimal import Decimal
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict
from typing import Optional, List
from functools import lru_cache

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application Settings
    APP_NAME: str = "Clinic Booking API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    DOCS_ENABLED: bool = True

    # Database Settings
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///./app/clinic.db")

    # CORS Settings
    ALLOWED_ORIGINS: str = os.environ.get("ALLOWED_ORIGINS", "*")
    CORS_ALLOW_CREDENTIALS: bool = True

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Clinic Settings
    CLINIC_TIMEZONE: str = "Africa/Nairobi"
    CONSULTATION_FEE: Decimal = Decimal("6500.00")
    CURRENCY: str = "KES"
    SLOT_CATALOG: str = "standard"  # standard | extended
    SLOT_DURATION_MINUTES: int = 30

    # Payment reconciliation
    PAYMENT_POLL_INTERVAL_SECONDS: float = 5.0
    PAYMENT_TIMEOUT_SECONDS: float = 300.0
    PAYMENT_INITIATE_MAX_REQUESTS: int = 5
    PAYMENT_INITIATE_WINDOW_SECONDS: int = 300
    REDIS_URL: Optional[str] = os.environ.get("REDIS_URL", None)

    # Stripe (redirect checkout)
    STRIPE_SECRET_KEY: str = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_SUCCESS_URL: str = "http://localhost:5173/payment-success?session_id={CHECKOUT_SESSION_ID}"
    STRIPE_CANCEL_URL: str = "http://localhost:5173/payment-cancelled"

    # M-Pesa Daraja (STK push)
    MPESA_BASE_URL: str = os.environ.get("MPESA_BASE_URL", "https://sandbox.safaricom.co.ke")
    MPESA_CONSUMER_KEY: str = os.environ.get("MPESA_CONSUMER_KEY", "")
    MPESA_CONSUMER_SECRET: str = os.environ.get("MPESA_CONSUMER_SECRET", "")
    MPESA_SHORTCODE: str = os.environ.get("MPESA_SHORTCODE", "174379")
    MPESA_PASSKEY: str = os.environ.get("MPESA_PASSKEY", "")
    MPESA_CALLBACK_URL: str = os.environ.get("MPESA_CALLBACK_URL", "http://localhost:8000/payments/mpesa/callback")
    MPESA_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Phone numbers
    PHONE_COUNTRY_CODE: str = "254"

    # Video consultations
    VIDEO_BASE_URL: str = os.environ.get("VIDEO_BASE_URL", "https://meet.jit.si")
    VIDEO_ROOM_PREFIX: str = "clinic"
    CONSULTATION_OPENS_BEFORE_MINUTES: int = 10
    CONSULTATION_CLOSES_AFTER_MINUTES: int = 45
    CONSULTATION_RECHECK_SECONDS: int = 30

    def _split_csv(self, value: str) -> List[str]:
        if value is None:
            return []
        value = value.strip()
        if value == "":
            return []
        return [item.strip() for item in value.split(",")]

    @property
    def allowed_origins_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_ORIGINS)

@lru_cache()
def get_settings() -> Settings:
    return Settings()

settings: Settings = get_settings()
