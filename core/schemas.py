"""
Normalized Account and Order Schemas

This module defines Pydantic models for the account data private clients
keep in memory and publish on the event bus.

Key Principle:
    Regardless of which exchange a balance or order update comes from, it gets
    normalized into these schemas so consumers handle one shape.

Models:
    - Wallet: Free / locked / total balance of one asset
    - BalanceEvent: A pushed balance change
    - OrderResponse: Snapshot of an order as last reported by the exchange
    - OrderEvent: A pushed order state change
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from core.utils.time import current_utc_datetime


class OrderStatus(str, Enum):
    OPEN = "OPEN"
    FILLED = "FILLED"
    CANCELED = "CANCELLED"
    ERROR = "ERROR"


class TimeInForce(str, Enum):
    GTC = "GTC"  # Good til cancel
    IOC = "IOC"  # Immediate or cancel
    FOK = "FOK"  # Fill or kill


# ============================================
# Balances
# ============================================

class Wallet(BaseModel):
    """
    Balance of a single asset.

    Example:
        >>> Wallet(asset="usdt", free=Decimal("90"), locked=Decimal("10"))
        Wallet(asset='USDT', free=Decimal('90'), locked=Decimal('10'), total=Decimal('100'))
    """

    asset: str = Field(..., description="Asset ticker in uppercase", examples=["BTC", "USDT"])
    free: Decimal = Field(default=Decimal("0"), description="Available balance")
    locked: Decimal = Field(default=Decimal("0"), description="Balance reserved by open orders")
    total: Optional[Decimal] = Field(default=None, description="free + locked unless reported")

    @field_validator("asset")
    @classmethod
    def validate_asset(cls, v: str) -> str:
        return v.upper()

    def model_post_init(self, __context) -> None:
        if self.total is None:
            self.total = self.free + self.locked


class BalanceEvent(Wallet):
    """A balance change pushed by the exchange."""

    exchange: str = Field(..., description="Source exchange identifier (lowercase)")
    timestamp: datetime = Field(default_factory=current_utc_datetime)


# ============================================
# Orders
# ============================================

class OrderResponse(BaseModel):
    """
    Order state as last reported by the exchange.

    Notes:
        - ``quantity`` is in the base asset unless ``is_quote_quantity`` is set
        - ``status`` is normalized across exchanges
    """

    order_id: str
    symbol: str
    side: str
    status: OrderStatus = OrderStatus.OPEN
    price: Decimal = Decimal("0")
    quantity: Decimal = Decimal("0")
    executed_qty: Decimal = Decimal("0")
    tif: Optional[TimeInForce] = None
    is_quote_quantity: bool = False
    create_time: datetime = Field(default_factory=current_utc_datetime)

    @field_validator("side")
    @classmethod
    def validate_side(cls, v: str) -> str:
        return v.upper()


class OrderEvent(OrderResponse):
    """An order update pushed by the exchange."""

    exchange: str
    timestamp: datetime = Field(default_factory=current_utc_datetime)
