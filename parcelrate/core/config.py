"""
Application configuration

Carrier credentials decide which carriers get registered at startup:
a carrier with an empty client id or secret is simply left out.
"""
import logging
from functools import lru_cache
from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

RATE_CRITERIA = ("price", "time", "value")
POSTAL_RANGE_MODES = ("string", "numeric")


class Settings(BaseSettings):
    # App
    APP_NAME: str = "parcelrate"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"
    LOG_LEVEL: str = "INFO"

    # Database (zone / method / rate tables)
    DATABASE_URL: str = ""
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def convert_database_url(cls, v):
        """Railway-style postgres:// URLs need the asyncpg driver."""
        if isinstance(v, str):
            if v.startswith("postgres://"):
                return v.replace("postgres://", "postgresql+asyncpg://", 1)
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # UPS
    UPS_CLIENT_ID: str = ""
    UPS_CLIENT_SECRET: str = ""
    UPS_ACCOUNT_NUMBER: str = ""
    UPS_USE_SANDBOX: bool = False

    # FedEx
    FEDEX_CLIENT_ID: str = ""
    FEDEX_CLIENT_SECRET: str = ""
    FEDEX_ACCOUNT_NUMBER: str = ""
    FEDEX_USE_SANDBOX: bool = False

    # Default ship-from address
    SHIPPING_ORIGIN_NAME: str = "Warehouse"
    SHIPPING_ORIGIN_ADDRESS: str = ""
    SHIPPING_ORIGIN_ADDRESS2: str = ""
    SHIPPING_ORIGIN_CITY: str = ""
    SHIPPING_ORIGIN_STATE: str = ""
    SHIPPING_ORIGIN_ZIP: str = ""
    SHIPPING_ORIGIN_COUNTRY: str = "US"
    SHIPPING_ORIGIN_PHONE: str = ""

    # Best-rate selection
    SHIPPING_DEFAULT_RATE_CRITERIA: str = "price"
    SHIPPING_TIME_MISSING_DAYS: int = 999
    SHIPPING_VALUE_MISSING_DAYS: int = 5

    # Carrier HTTP
    CARRIER_HTTP_TIMEOUT_SECONDS: float = 30.0
    CARRIER_QUOTE_TIMEOUT_SECONDS: float = 20.0
    RATE_AGGREGATION_BUDGET_SECONDS: float = 25.0
    CARRIER_TOKEN_EXPIRY_BUFFER_SECONDS: int = 300

    # Zone matching
    ZONE_POSTAL_RANGE_MODE: str = "string"
    SHIPPING_TIMEZONE: str = "UTC"

    @field_validator("SHIPPING_DEFAULT_RATE_CRITERIA")
    @classmethod
    def validate_rate_criteria(cls, v):
        v = v.lower()
        if v not in RATE_CRITERIA:
            raise ValueError(f"SHIPPING_DEFAULT_RATE_CRITERIA must be one of {RATE_CRITERIA}")
        return v

    @field_validator("ZONE_POSTAL_RANGE_MODE")
    @classmethod
    def validate_range_mode(cls, v):
        v = v.lower()
        if v not in POSTAL_RANGE_MODES:
            raise ValueError(f"ZONE_POSTAL_RANGE_MODE must be one of {POSTAL_RANGE_MODES}")
        return v

    @property
    def ups_configured(self) -> bool:
        return bool(self.UPS_CLIENT_ID and self.UPS_CLIENT_SECRET)

    @property
    def fedex_configured(self) -> bool:
        return bool(self.FEDEX_CLIENT_ID and self.FEDEX_CLIENT_SECRET)

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
