"""
Application Configuration
All settings are read from the environment (.env supported)
"""
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the marketplace payments service"""
    app_name: str = "CoachMarketplacePayments"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # MongoDB
    mongodb_url: str = "mongodb://localhost:27017"
    database_name: str = "coach_marketplace"

    # Razorpay credentials (never stored in the database)
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_webhook_secret: Optional[str] = None
    razorpay_api_url: str = "https://api.razorpay.com/v1"
    razorpay_timeout_seconds: float = 15.0

    frontend_url: str = "http://localhost:8080"

    # Settlement reconciliation
    scheduler_enabled: bool = True
    reconcile_interval_minutes: int = 10
    reconcile_batch_size: int = 100


@lru_cache()
def get_settings() -> Settings:
    """Build settings from environment variables (cached)"""
    return Settings(
        app_name=os.getenv("APP_NAME", "CoachMarketplacePayments"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        debug=_env_bool("DEBUG", "false"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        mongodb_url=os.getenv("MONGODB_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "coach_marketplace"),
        razorpay_key_id=os.getenv("RAZORPAY_KEY_ID"),
        razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET"),
        razorpay_webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET"),
        razorpay_api_url=os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1"),
        razorpay_timeout_seconds=float(os.getenv("RAZORPAY_TIMEOUT_SECONDS", "15")),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:8080"),
        scheduler_enabled=_env_bool("SCHEDULER_ENABLED", "true"),
        reconcile_interval_minutes=int(os.getenv("RECONCILE_INTERVAL_MINUTES", "10")),
        reconcile_batch_size=int(os.getenv("RECONCILE_BATCH_SIZE", "100")),
    )
