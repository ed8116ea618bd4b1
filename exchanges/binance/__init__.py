"""
Binance Exchange Connector

This module implements the PrivateClient for Binance Spot over the
WebSocket API. Orders, cancels and account events all travel over one
persistent, Ed25519-authenticated session.

API Documentation:
    https://developers.binance.com/docs/binance-spot-api-docs/web-socket-api

Endpoints Used:
    WebSocket API:
        - wss://ws-api.binance.com:443/ws-api/v3 (production)
        - wss://ws-api.testnet.binance.vision/ws-api/v3 (testnet)

    Methods:
        - session.logon - Authenticate the connection
        - userDataStream.subscribe - Receive account events on the session
        - account.status - Balance snapshot
        - order.place / order.cancel - Trading

Structure:
    exchanges/binance/
    ├── __init__.py          # This file (BinanceClient class)
    └── protocol.py          # Session callbacks: logon, ids, errors, user data events
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from core.account_state import AccountState
from core.config import settings
from core.exchange_interface import PrivateClient
from core.logging import get_logger
from core.schemas import OrderResponse, TimeInForce
from core.utils.time import current_utc_timestamp
from core.ws_session import WebSocketSession
from services.event_bus import EventBus, bus as default_bus
from .protocol import BinanceProtocol, parse_order_result


logger = get_logger(__name__)

BINANCE_WS_URL = "wss://ws-api.binance.com:443/ws-api/v3"
BINANCE_TESTNET_WS_URL = "wss://ws-api.testnet.binance.vision/ws-api/v3"


class BinanceClient(PrivateClient):
    """
    Binance Spot trading client.

    Attributes:
        name: Exchange identifier ("binance")
        session: Persistent WebSocketSession to the WebSocket API
        state: Balances and open orders fed by user data events

    Example:
        >>> client = BinanceClient(api_key, "/path/to/ed25519.pem")
        >>> await client.connect()
        >>> usdt = await client.fetch_balance("USDT")
        >>> order = await client.limit_buy("BTCUSDT", Decimal("0.001"), Decimal("50000"))
        >>> await client.close()

    Notes:
        - Order placement waits at most ``settings.order_timeout`` seconds;
          on expiry the outcome is unknown and must be reconciled
        - The session re-authenticates before Binance's 24h connection limit
    """

    name = "binance"

    def __init__(
        self,
        api_key: str,
        private_key: Any,
        testnet: Optional[bool] = None,
        bus: Optional[EventBus] = None
    ):
        if testnet is None:
            testnet = settings.use_testnet

        self.state = AccountState()
        self.protocol = BinanceProtocol(
            api_key,
            private_key,
            self.state,
            bus or default_bus
        )
        self.url = BINANCE_TESTNET_WS_URL if testnet else BINANCE_WS_URL
        self.session = WebSocketSession(self.url, self.protocol, name=self.name)

        logger.debug(f"BinanceClient created (url={self.url})")

    # ============================================
    # Orders
    # ============================================

    async def limit_buy(
        self,
        symbol: str,
        quantity: Decimal,
        price: Decimal,
        tif: TimeInForce = TimeInForce.GTC
    ) -> OrderResponse:
        return await self._place_order(symbol, "BUY", quantity, price, tif)

    async def limit_sell(
        self,
        symbol: str,
        quantity: Decimal,
        price: Decimal,
        tif: TimeInForce = TimeInForce.GTC
    ) -> OrderResponse:
        return await self._place_order(symbol, "SELL", quantity, price, tif)

    async def cancel_order(self, symbol: str, order_id: str) -> OrderResponse:
        resp = await self.session.send_request({
            "method": "order.cancel",
            "params": {
                "symbol": symbol,
                "orderId": int(order_id),
                "timestamp": current_utc_timestamp(milliseconds=True),
            },
        })
        return self._record_order(parse_order_result(resp["result"]))

    async def _place_order(
        self,
        symbol: str,
        side: str,
        quantity: Decimal,
        price: Decimal,
        tif: TimeInForce
    ) -> OrderResponse:
        params: Dict[str, Any] = {
            "symbol": symbol,
            "side": side,
            "type": "LIMIT",
            "timeInForce": TimeInForce(tif).value,
            "quantity": format(quantity, "f"),
            "price": format(price, "f"),
            "timestamp": current_utc_timestamp(milliseconds=True),
        }
        resp = await self.session.send_request(
            {"method": "order.place", "params": params},
            timeout=settings.order_timeout
        )

        order = parse_order_result(resp["result"])
        logger.info(f"binance: {side} {order.quantity} {symbol} @ {order.price} -> {order.order_id} ({order.status.value})")
        return self._record_order(order)
