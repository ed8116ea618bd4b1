"""
Unified Logging Configuration

This module sets up a centralized logging system for the entire library.
All modules should import and use the logger from this module instead of
using print() statements.

Usage:
    from core.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Connected to Binance")

Log Levels (from most to least verbose):
    DEBUG    - Frame-level diagnostics (e.g., "Push frame routed to handler")
    INFO     - Lifecycle transitions (e.g., "Session ready")
    WARNING  - Recoverable trouble (e.g., "Reconnecting in 2s")
    ERROR    - Failures surfaced to callers or that stop recovery

Configuration:
    Log level is controlled by the LOG_LEVEL setting in .env file.
"""

import logging
import sys
from typing import Optional


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the library logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include logger name in log messages

    Returns:
        logging.Logger: Configured "quickex" logger

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Session ready")
        2024-01-01 12:00:00 [INFO] quickex: Session ready
    """
    if log_format is None:
        format_parts = []

        if include_timestamp:
            format_parts.append("%(asctime)s")

        format_parts.append("[%(levelname)s]")

        if include_module:
            format_parts.append("%(name)s")

        format_parts.append("%(message)s")

        log_format = " ".join(format_parts)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True
    )

    logger = logging.getLogger("quickex")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    return logger


# ============================================
# Initialize Logger with Settings
# ============================================

from core.config import settings  # noqa: E402

logger = setup_logging(log_level=settings.log_level)


# ============================================
# Convenience Functions
# ============================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module or component.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        logging.Logger: Child of the "quickex" logger

    Example:
        >>> logger = get_logger("core.ws_session")  # "quickex.core.ws_session"
    """
    return logging.getLogger(f"quickex.{name}")


def set_log_level(level: str) -> None:
    """
    Change the log level at runtime.

    Args:
        level: New log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


# ============================================
# Log Helper Functions
# ============================================

def log_websocket_event(exchange: str, event: str, details: str = None) -> None:
    """
    Log a WebSocket session event with consistent formatting.

    Args:
        exchange: Exchange or session name
        event: Event type (e.g., "connected", "reconnecting", "closed", "error")
        details: Additional details (optional)

    Example:
        >>> log_websocket_event("binance", "connected", "offset=-12ms")
        [INFO] WebSocket: binance connected | offset=-12ms

        >>> log_websocket_event("bybit", "error", "read failed")
        [ERROR] WebSocket: bybit error | read failed
    """
    details_str = f" | {details}" if details else ""

    level = logging.ERROR if event == "error" else logging.INFO
    logger.log(level, f"WebSocket: {exchange} {event}{details_str}")


logger.debug("Logging system initialized")
