"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Provides WebSocket session defaults (lifetime, heartbeat, reconnect backoff)
- Holds per-exchange credentials for the private clients
- Handles optional settings with sensible defaults

Usage:
    from core.config import settings

    print(settings.ws_session_lifetime)
    print(settings.has_binance_credentials)
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Application Settings

    Values are automatically loaded from environment variables or .env file.

    Attributes:
        log_level: Logging level name
        ws_session_lifetime: Seconds before a session is proactively re-established
        ws_heartbeat: Seconds between transport-level pings
        ws_connect_timeout: Seconds allowed for the WebSocket handshake
        ws_reconnect_delay: Base delay of the automatic reconnect backoff
        ws_max_reconnect_delay: Upper bound of the automatic reconnect backoff
        ws_max_reconnect_attempts: Attempts per automatic recovery before giving up
        connect_retry_attempts: Bounded retries clients make around connect()
        connect_retry_delay: Fixed delay between those retries
        order_timeout: Wall-clock limit clients put around order requests
        event_queue_size: Per-subscriber queue bound on the event bus
        use_testnet: Route clients to exchange test environments where available
    """

    # ============================================
    # Application Configuration
    # ============================================

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # ============================================
    # WebSocket Session Configuration
    # ============================================

    ws_session_lifetime: float = Field(
        default=23 * 3600 + 50 * 60,
        description="Seconds before the session reconnects ahead of the exchange's 24h expiry"
    )

    ws_heartbeat: float = Field(
        default=20.0,
        description="Seconds between WebSocket pings (pongs are answered automatically)"
    )

    ws_connect_timeout: float = Field(
        default=10.0,
        description="WebSocket handshake timeout in seconds"
    )

    ws_reconnect_delay: float = Field(
        default=1.0,
        description="Base delay between automatic reconnection attempts (seconds)"
    )

    ws_max_reconnect_delay: float = Field(
        default=30.0,
        description="Maximum delay between automatic reconnection attempts (seconds)"
    )

    ws_max_reconnect_attempts: int = Field(
        default=10,
        description="Maximum automatic reconnection attempts per recovery"
    )

    # ============================================
    # Client Behaviour
    # ============================================

    connect_retry_attempts: int = Field(
        default=3,
        description="How many times clients try connect() before failing"
    )

    connect_retry_delay: float = Field(
        default=3.0,
        description="Fixed delay between client connect() retries (seconds)"
    )

    order_timeout: float = Field(
        default=5.0,
        description="Seconds to wait for an order acknowledgement"
    )

    event_queue_size: int = Field(
        default=1000,
        description="Maximum queued events per event bus subscriber"
    )

    use_testnet: bool = Field(
        default=False,
        description="Use exchange testnet endpoints where available"
    )

    # ============================================
    # Exchange Credentials
    # ============================================

    binance_api_key: str = Field(default="", description="Binance API key")

    binance_private_key: str = Field(
        default="",
        description="Binance Ed25519 private key (PEM text or path to a PEM file)"
    )

    bybit_api_key: str = Field(default="", description="Bybit API key")

    bybit_api_secret: str = Field(default="", description="Bybit API secret")

    okx_api_key: str = Field(default="", description="OKX API key")

    okx_secret_key: str = Field(default="", description="OKX secret key")

    okx_passphrase: str = Field(default="", description="OKX API passphrase")

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    # ============================================
    # Properties
    # ============================================

    @property
    def has_binance_credentials(self) -> bool:
        return bool(self.binance_api_key and self.binance_private_key)

    @property
    def has_bybit_credentials(self) -> bool:
        return bool(self.bybit_api_key and self.bybit_api_secret)

    @property
    def has_okx_credentials(self) -> bool:
        return bool(self.okx_api_key and self.okx_secret_key and self.okx_passphrase)


# ============================================
# Global Settings Instance
# ============================================

settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration() -> None:
    """
    Validate critical configuration settings on startup.

    Raises:
        ValueError: If a setting is out of range or unknown
    """
    # logging.py imports config.py, so import here
    from core.logging import logger

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if settings.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{settings.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    if settings.ws_session_lifetime <= 0:
        raise ValueError(f"WS_SESSION_LIFETIME must be positive, got {settings.ws_session_lifetime}")

    if settings.ws_heartbeat <= 0 or settings.ws_connect_timeout <= 0:
        raise ValueError("WS_HEARTBEAT and WS_CONNECT_TIMEOUT must be positive")

    if settings.ws_reconnect_delay < 0 or settings.ws_max_reconnect_delay < settings.ws_reconnect_delay:
        raise ValueError(
            f"Invalid reconnect backoff: delay={settings.ws_reconnect_delay}, "
            f"max={settings.ws_max_reconnect_delay}"
        )

    if settings.ws_max_reconnect_attempts < 1 or settings.connect_retry_attempts < 1:
        raise ValueError("Reconnect and connect retry attempts must be at least 1")

    if settings.order_timeout <= 0:
        raise ValueError(f"ORDER_TIMEOUT must be positive, got {settings.order_timeout}")

    logger.info("Configuration validated successfully")
    logger.info(f"Session lifetime: {settings.ws_session_lifetime:.0f}s")
    logger.info(f"Reconnect backoff: {settings.ws_reconnect_delay}s..{settings.ws_max_reconnect_delay}s "
                f"x{settings.ws_max_reconnect_attempts}")
    logger.info(f"Log level: {settings.log_level.upper()}")
    logger.info(f"Testnet: {settings.use_testnet}")
