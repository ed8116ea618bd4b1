"""
Private Client Interface — Abstract Contract for Exchange Trading Clients

This module defines the abstract base class every private (authenticated)
exchange client implements. Each client owns exactly one WebSocketSession and
one AccountState; the session carries orders and receives account pushes,
the state caches what the pushes report.

Design Philosophy:
    "Program to an interface, not an implementation"

    Callers place and cancel orders through PrivateClient without knowing
    whether the request travels as a Binance ``order.place``, a Bybit
    ``order.create`` or an OKX ``order`` op.

Example:
    client = manager.get_client("binance")
    await client.connect()
    order = await client.limit_buy("BTCUSDT", Decimal("0.001"), Decimal("50000"))
    await client.cancel_order("BTCUSDT", order.order_id)
    await client.close()
"""

import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional

from core.account_state import AccountState
from core.config import settings
from core.errors import AuthenticationError, SessionError
from core.logging import get_logger
from core.schemas import OrderResponse, OrderStatus, TimeInForce
from core.ws_session import WebSocketSession


logger = get_logger(__name__)


class PrivateClient(ABC):
    """
    Abstract Base Class for authenticated exchange clients.

    Class Attributes:
        name: Unique identifier for the exchange (lowercase, e.g., "binance")

    Instance Attributes:
        session: The persistent WebSocketSession used for trading and pushes
        state: Balance and order caches fed by push events

    Abstract Methods (MUST be implemented by all exchanges):
        - limit_buy / limit_sell: Place a limit order
        - cancel_order: Cancel one order

    Provided Methods:
        - connect / close: Session lifecycle with bounded connect retries
        - fetch_balance / fetch_order: Reads from the push-fed caches
        - cancel_all: Cancel every open order of a symbol
    """

    name: str
    session: WebSocketSession
    state: AccountState

    # ============================================
    # Lifecycle
    # ============================================

    async def connect(self) -> int:
        """
        Connect the session, retrying transient failures a bounded number of times.

        Authentication failures are not retried: new credentials or a fresh
        timestamp are the caller's call.

        Returns:
            int: Clock offset in milliseconds (local minus server)

        Raises:
            AuthenticationError: If the exchange rejects the credentials
            SessionError: If every attempt fails
        """
        attempts = settings.connect_retry_attempts
        last_error: Optional[SessionError] = None

        for attempt in range(1, attempts + 1):
            try:
                offset = await self.session.connect()
                logger.info(f"{self.name} connected (clock offset {offset}ms)")
                return offset
            except AuthenticationError:
                raise
            except SessionError as e:
                last_error = e
                logger.warning(f"{self.name} connect failed (attempt {attempt}/{attempts}): {e}")
                if attempt < attempts:
                    await asyncio.sleep(settings.connect_retry_delay)

        raise last_error

    async def close(self) -> None:
        await self.session.close()

    async def health_check(self) -> bool:
        return self.session.is_ready

    # ============================================
    # Account Reads
    # ============================================

    async def fetch_balance(self, asset: str, include_locked: bool = False) -> Decimal:
        """
        Return the cached balance of ``asset``.

        Args:
            asset: Asset ticker (e.g., "USDT")
            include_locked: Include the amount reserved by open orders

        Returns:
            Decimal: Balance, zero if the exchange never reported the asset
        """
        return self.state.balance_amount(asset, include_locked)

    async def fetch_order(self, symbol: str, order_id: str) -> Optional[OrderResponse]:
        order = self.state.get_order(order_id)
        if order is None or order.symbol != symbol:
            return None
        return order

    # ============================================
    # Orders
    # ============================================

    @abstractmethod
    async def limit_buy(
        self,
        symbol: str,
        quantity: Decimal,
        price: Decimal,
        tif: TimeInForce = TimeInForce.GTC
    ) -> OrderResponse:
        """Place a limit buy order and return the exchange's acknowledgement."""
        ...

    @abstractmethod
    async def limit_sell(
        self,
        symbol: str,
        quantity: Decimal,
        price: Decimal,
        tif: TimeInForce = TimeInForce.GTC
    ) -> OrderResponse:
        """Place a limit sell order and return the exchange's acknowledgement."""
        ...

    @abstractmethod
    async def cancel_order(self, symbol: str, order_id: str) -> OrderResponse:
        """Cancel one order."""
        ...

    async def cancel_all(self, symbol: str) -> Dict[str, Optional[Exception]]:
        """
        Cancel every open order of ``symbol``.

        Works from a snapshot of open order ids, since fills and cancels keep
        arriving while the cancels are in flight.

        Returns:
            Dict mapping order id to None on success or the error raised
        """
        order_ids = self.state.open_order_ids(symbol)
        results: Dict[str, Optional[Exception]] = {}

        for order_id in order_ids:
            try:
                await self.cancel_order(symbol, order_id)
                results[order_id] = None
            except SessionError as e:
                logger.warning(f"{self.name}: failed to cancel {order_id} on {symbol}: {e}")
                results[order_id] = e

        return results

    # ============================================
    # Helpers
    # ============================================

    def _record_order(self, order: OrderResponse) -> OrderResponse:
        if order.status is OrderStatus.OPEN:
            self.state.upsert_order(order)
        else:
            self.state.remove_order(order.order_id)
        return order

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name}', state='{self.session.state.value}')>"
