"""
Application configuration management
"""

from typing import Dict, List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "SkyPark"
    APP_VERSION: str = "1.0.0"
    APP_ENV: str = "development"
    DEBUG: bool = False  # Default to production-safe
    SECRET_KEY: str  # Must be provided via environment
    API_PREFIX: str = "/api/v1"

    @field_validator('SECRET_KEY')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if not v or v == "your-secret-key-change-this-in-production":
            raise ValueError("SECRET_KEY must be set to a secure value in production")
        if len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str  # Must be provided via environment

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if v.startswith('postgresql://'):
            v = v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # JWT (tokens are issued by the auth service, only verified here)
    JWT_SECRET_KEY: str  # Must be provided via environment
    JWT_ALGORITHM: str = "HS256"

    # Payment
    PAYMENT_API_KEY: str = ""
    PAYMENT_WEBHOOK_SECRET: str = ""
    PAYMENT_CURRENCY: str = "KGS"
    # Provider fee rates per payment method, fraction of the amount
    PAYMENT_FEE_RATES: Dict[str, float] = {
        "bank_card": 0.025,
        "elcart": 0.02,
        "elqr": 0.015,
        "odengi": 0.015,
        "mbank": 0.01,
        "wallet": 0.01,
        "cash": 0.0,
        "loyalty_points": 0.0,
    }
    AUTO_CONFIRM_ON_PAYMENT: bool = True

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_BOOKING_PER_MINUTE: int = 10

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Monitoring
    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    # Booking
    BOOKING_LEAD_TIME_MINUTES: int = 60
    MODIFICATION_CUTOFF_HOURS: int = 24
    MAX_GUESTS_PER_BOOKING: int = 20
    CHILD_DISCOUNT_PERCENT: int = 50
    DEFAULT_COUNTRY_CODE: str = "KG"
    PHONE_PATTERNS: Dict[str, str] = {
        "KG": r"^\+996[0-9]{9}$",
        "KZ": r"^\+7[0-9]{10}$",
    }

    # Tickets
    TICKET_SIGNING_KEY: str  # Must be provided via environment
    TICKET_EARLY_ENTRY_MINUTES: int = 30
    QR_SCHEME: str = "skypark"

    # Loyalty
    LOYALTY_FRIEND_MIN_SPENT: int = 5000
    LOYALTY_FRIEND_MIN_VISITS: int = 5
    LOYALTY_VIP_MIN_SPENT: int = 15000
    LOYALTY_VIP_MIN_VISITS: int = 20
    LOYALTY_POINTS_MULTIPLIERS: Dict[str, float] = {
        "beginner": 1.0,
        "friend": 1.5,
        "vip": 2.0,
    }

    # Background tasks
    TASK_MAX_RETRIES: int = 3
    TASK_RETRY_BACKOFF_CAP_SECONDS: float = 10.0

    @field_validator('TICKET_SIGNING_KEY')
    @classmethod
    def validate_signing_key(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("TICKET_SIGNING_KEY must be at least 32 characters long")
        return v

    @field_validator("CORS_ORIGINS", mode="before")
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def is_testing(self) -> bool:
        return self.APP_ENV == "testing"

    def phone_pattern(self, country_code: Optional[str]) -> str:
        return self.PHONE_PATTERNS.get(
            country_code or self.DEFAULT_COUNTRY_CODE,
            self.PHONE_PATTERNS[self.DEFAULT_COUNTRY_CODE]
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Create global settings instance
settings = Settings()
