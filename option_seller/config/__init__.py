"""
Application Settings
Load from environment variables
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Application settings from environment"""

    # ======================
    # Application
    # ======================
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ======================
    # Broker (Kite Connect)
    # ======================
    KITE_API_KEY: Optional[str] = None
    KITE_ACCESS_TOKEN: Optional[str] = None
    KITE_API_BASE_URL: str = "https://api.kite.trade"
    KITE_REQUEST_TIMEOUT_SECONDS: float = 15.0

    # ======================
    # Strategy
    # ======================
    CONFIG_DIR: str = "config"
    STRATEGY_PROFILE: Optional[str] = None

    # ======================
    # Telegram
    # ======================
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    TELEGRAM_CHAT_ID: Optional[str] = None
    TELEGRAM_ENABLED: bool = False

    # ======================
    # Logging
    # ======================
    LOG_FILE: Optional[str] = "logs/option_seller.log"
    LOG_MAX_BYTES: int = 10_485_760
    LOG_BACKUP_COUNT: int = 5

    # ======================
    # Output
    # ======================
    TRADE_LOG_DIR: str = "data/trades"

    # ======================
    # Pydantic v2 config
    # ======================
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="forbid",
    )


settings = Settings()
