import os
from datetime import time
from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AnyUrl, Field
from typing import List

from hms.config.constants import StockPolicy

env = os.getenv("APP_ENV", "development")
env_file = f".env.{env}"

class Settings(BaseSettings):
    database_url: AnyUrl
    # CORS origins can be overridden via CORS_ORIGINS env var (JSON list or comma-separated)
    cors_origins: List[str] = Field(default=["http://localhost:3000"])
    # JWT configuration
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_days: int = 7

    log_level: str = "INFO"

    # Default working day used when a doctor's day has no slots yet
    slot_day_start: time = time(9, 0)
    slot_day_end: time = time(17, 0)
    slot_minutes: int = 30

    # Billing / pharmacy
    consultation_fee: Decimal = Decimal("1000.00")
    stock_deduction_policy: StockPolicy = StockPolicy.ON_PAYMENT
    low_stock_alert_ratio: Decimal = Decimal("0.1")

    model_config = SettingsConfigDict(
        env_file=env_file,
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
