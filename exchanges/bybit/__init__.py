"""
Bybit Exchange Connector

PrivateClient for Bybit Spot over the v5 trade stream. Orders are placed
and cancelled with ``order.create`` / ``order.cancel`` ops on one
HMAC-authenticated WebSocket session.

API Documentation:
    https://bybit-exchange.github.io/docs/v5/websocket/trade/guideline

Endpoints Used:
    WebSocket:
        - wss://stream.bybit.com/v5/trade (production)
        - wss://stream-testnet.bybit.com/v5/trade (testnet)
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from core.account_state import AccountState
from core.config import settings
from core.exchange_interface import PrivateClient
from core.logging import get_logger
from core.schemas import OrderResponse, OrderStatus, TimeInForce
from core.utils.time import current_utc_timestamp
from core.ws_session import WebSocketSession
from services.event_bus import EventBus, bus as default_bus
from .protocol import BybitProtocol


logger = get_logger(__name__)

BYBIT_WS_URL = "wss://stream.bybit.com/v5/trade"
BYBIT_TESTNET_WS_URL = "wss://stream-testnet.bybit.com/v5/trade"
RECV_WINDOW = "8000"


class BybitClient(PrivateClient):
    """
    Bybit Spot trading client.

    Example:
        >>> client = BybitClient(api_key, api_secret)
        >>> await client.connect()
        >>> order = await client.limit_sell("BTCUSDT", Decimal("0.001"), Decimal("90000"))
        >>> await client.cancel_order("BTCUSDT", order.order_id)

    Notes:
        - Bybit only acknowledges an order with its id, so the returned
          OrderResponse is completed from the request parameters
        - Balances are filled by ``wallet`` pushes; an asset never pushed reads as zero
    """

    name = "bybit"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: Optional[bool] = None,
        bus: Optional[EventBus] = None
    ):
        if testnet is None:
            testnet = settings.use_testnet

        self.state = AccountState()
        self.protocol = BybitProtocol(api_key, api_secret, self.state, bus or default_bus)
        self.url = BYBIT_TESTNET_WS_URL if testnet else BYBIT_WS_URL
        self.session = WebSocketSession(self.url, self.protocol, name=self.name)

    async def close(self) -> None:
        await self.protocol.stop()
        await super().close()

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
        return await self._place_order(symbol, "Buy", quantity, price, tif)

    async def limit_sell(
        self,
        symbol: str,
        quantity: Decimal,
        price: Decimal,
        tif: TimeInForce = TimeInForce.GTC
    ) -> OrderResponse:
        return await self._place_order(symbol, "Sell", quantity, price, tif)

    async def cancel_order(self, symbol: str, order_id: str) -> OrderResponse:
        resp = await self.session.send_request(
            self._build_request("order.cancel", {"category": "spot", "symbol": symbol, "orderId": order_id})
        )
        data = resp.get("data") or {}
        cached = self.state.get_order(order_id)

        order = OrderResponse(
            order_id=str(data.get("orderId") or order_id),
            symbol=symbol,
            side=cached.side if cached else "",
            status=OrderStatus.CANCELED,
            price=cached.price if cached else Decimal("0"),
            quantity=cached.quantity if cached else Decimal("0"),
        )
        return self._record_order(order)

    async def _place_order(
        self,
        symbol: str,
        side: str,
        quantity: Decimal,
        price: Decimal,
        tif: TimeInForce
    ) -> OrderResponse:
        params = {
            "category": "spot",
            "symbol": symbol,
            "side": side,
            "orderType": "Limit",
            "qty": format(quantity, "f"),
            "price": format(price, "f"),
            "timeInForce": TimeInForce(tif).value,
        }
        resp = await self.session.send_request(
            self._build_request("order.create", params),
            timeout=settings.order_timeout
        )

        data = resp.get("data") or {}
        order = OrderResponse(
            order_id=str(data["orderId"]),
            symbol=symbol,
            side=side,
            status=OrderStatus.OPEN,
            price=price,
            quantity=quantity,
            tif=TimeInForce(tif),
        )
        logger.info(f"bybit: {side} {quantity} {symbol} @ {price} -> {order.order_id}")
        return self._record_order(order)

    @staticmethod
    def _build_request(op: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "header": {
                "X-BAPI-TIMESTAMP": str(current_utc_timestamp(milliseconds=True)),
                "X-BAPI-RECV-WINDOW": RECV_WINDOW,
            },
            "op": op,
            "args": [params],
        }
