"""Configuration management for the provider integration and sync service"""

import os
import logging
from decimal import Decimal

logger = logging.getLogger(__name__)


def _mask_database_url(url: str) -> str:
    """Hide the password part of a database URL for logging"""
    if not url or "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


class Config:
    """Application configuration"""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./panel.db")

    # Reconciliation run limits
    PROVIDER_SYNC_MAX_SECONDS = float(os.getenv("PROVIDER_SYNC_MAX_SECONDS", "25"))
    PROVIDER_SYNC_MAX_ORDERS = int(os.getenv("PROVIDER_SYNC_MAX_ORDERS", "100"))
    PROVIDER_SYNC_MAX_CANDIDATES = int(os.getenv("PROVIDER_SYNC_MAX_CANDIDATES", "200"))

    # Scheduler intervals
    PROVIDER_SYNC_INTERVAL_SECONDS = int(os.getenv("PROVIDER_SYNC_INTERVAL_SECONDS", "300"))
    REFILL_SYNC_INTERVAL_SECONDS = int(os.getenv("REFILL_SYNC_INTERVAL_SECONDS", "600"))

    # Outbound provider calls
    PROVIDER_DEFAULT_TIMEOUT_SECONDS = int(os.getenv("PROVIDER_DEFAULT_TIMEOUT_SECONDS", "30"))
    PROVIDER_DEFAULT_HTTP_METHOD = os.getenv("PROVIDER_DEFAULT_HTTP_METHOD", "POST").upper()
    HTTP_USER_AGENT = os.getenv("HTTP_USER_AGENT", "SMMPanel-ProviderSync/1.0")

    # Fallback USD -> user currency rate for users without their own dollar_rate
    DEFAULT_DOLLAR_RATE = Decimal(os.getenv("DEFAULT_DOLLAR_RATE", "121.52"))

    # Shared secret for the cron and admin trigger routes
    CRON_SECRET = os.getenv("CRON_SECRET")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @staticmethod
    def log_environment_config():
        """Log current environment configuration for debugging"""
        logger.info(f"🔧 Provider Sync Configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Database: {_mask_database_url(Config.DATABASE_URL)}")
        logger.info(
            f"   Sync limits: {Config.PROVIDER_SYNC_MAX_SECONDS}s budget, "
            f"{Config.PROVIDER_SYNC_MAX_ORDERS} orders, {Config.PROVIDER_SYNC_MAX_CANDIDATES} candidates"
        )
        logger.info(
            f"   Intervals: orders every {Config.PROVIDER_SYNC_INTERVAL_SECONDS}s, "
            f"refills every {Config.REFILL_SYNC_INTERVAL_SECONDS}s"
        )
        logger.info(f"   Default provider timeout: {Config.PROVIDER_DEFAULT_TIMEOUT_SECONDS}s")
        logger.info(f"   Default dollar rate: {Config.DEFAULT_DOLLAR_RATE}")
        if not Config.CRON_SECRET:
            logger.warning("⚠️ CRON_SECRET not set - trigger routes accept unauthenticated calls")
