"""
OKX Exchange Connector

PrivateClient for OKX Spot (cash mode) over the v5 private WebSocket.
Orders use the ``order`` / ``cancel-order`` ops; balances and order
updates arrive on the ``account`` and ``orders`` channels.

API Documentation:
    https://www.okx.com/docs-v5/en/#order-book-trading-trade-ws-place-order

Endpoints Used:
    WebSocket:
        - wss://ws.okx.com:8443/ws/v5/private (production)
        - wss://wspap.okx.com:8443/ws/v5/private (demo trading)
"""

from decimal import Decimal
from typing import Optional

from core.account_state import AccountState
from core.config import settings
from core.exchange_interface import PrivateClient
from core.logging import get_logger
from core.schemas import OrderResponse, OrderStatus, TimeInForce
from core.ws_session import WebSocketSession
from services.event_bus import EventBus, bus as default_bus
from .protocol import OKXProtocol


logger = get_logger(__name__)

OKX_WS_URL = "wss://ws.okx.com:8443/ws/v5/private"
OKX_DEMO_WS_URL = "wss://wspap.okx.com:8443/ws/v5/private"

# OKX encodes time in force in the order type
ORDER_TYPES = {
    TimeInForce.GTC: "limit",
    TimeInForce.IOC: "ioc",
    TimeInForce.FOK: "fok",
}


class OKXClient(PrivateClient):
    """
    OKX Spot trading client.

    Symbols are OKX instrument ids (e.g., "BTC-USDT").

    Example:
        >>> client = OKXClient(api_key, secret_key, passphrase)
        >>> await client.connect()
        >>> order = await client.limit_buy("BTC-USDT", Decimal("0.001"), Decimal("50000"))
    """

    name = "okx"

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        passphrase: str,
        testnet: Optional[bool] = None,
        bus: Optional[EventBus] = None
    ):
        if testnet is None:
            testnet = settings.use_testnet

        self.state = AccountState()
        self.protocol = OKXProtocol(api_key, secret_key, passphrase, self.state, bus or default_bus)
        self.url = OKX_DEMO_WS_URL if testnet else OKX_WS_URL
        # Demo trading is selected by header on the same protocol
        headers = {"x-simulated-trading": "1"} if testnet else None
        self.session = WebSocketSession(self.url, self.protocol, headers=headers, name=self.name)

    async def limit_buy(
        self,
        symbol: str,
        quantity: Decimal,
        price: Decimal,
        tif: TimeInForce = TimeInForce.GTC
    ) -> OrderResponse:
        return await self._place_order(symbol, "buy", quantity, price, tif)

    async def limit_sell(
        self,
        symbol: str,
        quantity: Decimal,
        price: Decimal,
        tif: TimeInForce = TimeInForce.GTC
    ) -> OrderResponse:
        return await self._place_order(symbol, "sell", quantity, price, tif)

    async def cancel_order(self, symbol: str, order_id: str) -> OrderResponse:
        cached = self.state.get_order(order_id)
        await self.session.send_request({
            "op": "cancel-order",
            "args": [{"instId": symbol, "ordId": order_id}],
        })

        order = OrderResponse(
            order_id=order_id,
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
        resp = await self.session.send_request(
            {
                "op": "order",
                "args": [{
                    "instId": symbol,
                    "tdMode": "cash",
                    "side": side,
                    "ordType": ORDER_TYPES[TimeInForce(tif)],
                    "sz": format(quantity, "f"),
                    "px": format(price, "f"),
                }],
            },
            timeout=settings.order_timeout
        )

        data = resp.get("data") or [{}]
        order = OrderResponse(
            order_id=str(data[0]["ordId"]),
            symbol=symbol,
            side=side,
            status=OrderStatus.OPEN,
            price=price,
            quantity=quantity,
            tif=TimeInForce(tif),
        )
        logger.info(f"okx: {side} {quantity} {symbol} @ {price} -> {order.order_id}")
        return self._record_order(order)
