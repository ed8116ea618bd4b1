"""
Core Utilities Package

Modules:
    - time: Timestamp conversion and request timestamps
"""

from core.utils.time import current_utc_datetime, current_utc_timestamp, to_utc_datetime

__all__ = ["current_utc_datetime", "current_utc_timestamp", "to_utc_datetime"]
