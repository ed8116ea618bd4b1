"""
Binance WebSocket API Protocol

Frame layout for the Binance Spot WebSocket API (``ws-api/v3``).

Requests and responses share one JSON-RPC-like shape:

    -> {"id": "R1", "method": "order.place", "params": {...}}
    <- {"id": "R1", "status": 200, "result": {...}, "rateLimits": [...]}
    <- {"id": "R1", "status": 400, "error": {"code": -2010, "msg": "..."}}

Once the session is logged on, user data events arrive on the same socket:

    <- {"subscriptionId": 0, "event": {"e": "executionReport", ...}}

API Documentation:
    https://developers.binance.com/docs/binance-spot-api-docs/web-socket-api
"""

import base64
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from core.account_state import AccountState
from core.errors import ApplicationError, AuthenticationError
from core.logging import get_logger
from core.protocol import JsonRpcProtocol, new_request_id, receive_json_frame
from core.schemas import BalanceEvent, OrderEvent, OrderResponse, OrderStatus, TimeInForce, Wallet
from core.utils.time import current_utc_timestamp, to_utc_datetime
from services.event_bus import EventBus


logger = get_logger(__name__)

AUTH_TIMEOUT = 10.0

# Binance order status -> normalized status
ORDER_STATUS_MAP = {
    "NEW": OrderStatus.OPEN,
    "PARTIALLY_FILLED": OrderStatus.OPEN,
    "PENDING_CANCEL": OrderStatus.OPEN,
    "FILLED": OrderStatus.FILLED,
    "CANCELED": OrderStatus.CANCELED,
    "REJECTED": OrderStatus.ERROR,
    "EXPIRED": OrderStatus.ERROR,
    "EXPIRED_IN_MATCH": OrderStatus.ERROR,
}


def load_ed25519_key(key: Union[str, bytes]) -> Ed25519PrivateKey:
    """
    Load an Ed25519 private key from PEM text or from a path to a PEM file.

    Raises:
        ValueError: If the data is not an unencrypted Ed25519 PEM key
    """
    if isinstance(key, str):
        if "-----BEGIN" not in key and os.path.isfile(key):
            with open(key, "rb") as f:
                key = f.read()
        else:
            key = key.encode("utf-8")

    private_key = serialization.load_pem_private_key(key, password=None)
    if not isinstance(private_key, Ed25519PrivateKey):
        raise ValueError("Binance API key must be an Ed25519 private key")
    return private_key


def parse_order_status(status: Optional[str]) -> OrderStatus:
    return ORDER_STATUS_MAP.get(status or "", OrderStatus.ERROR)


def parse_order_result(result: Dict[str, Any]) -> OrderResponse:
    """
    Normalize an ``order.place`` / ``order.cancel`` result.

    Quote-quantity market orders report a zero ``origQty``; their size is
    taken from ``origQuoteOrderQty`` instead.
    """
    orig_qty = Decimal(result.get("origQty") or "0")
    quote_qty = Decimal(result.get("origQuoteOrderQty") or "0")
    is_quote = orig_qty == 0 and quote_qty > 0
    quantity = quote_qty if is_quote else orig_qty

    tif = result.get("timeInForce")
    transact_time = result.get("transactTime") or result.get("workingTime")

    order = OrderResponse(
        order_id=str(result["orderId"]),
        symbol=result.get("symbol", ""),
        side=result.get("side", ""),
        status=parse_order_status(result.get("status")),
        price=Decimal(result.get("price") or "0"),
        quantity=quantity,
        executed_qty=Decimal(result.get("executedQty") or "0"),
        tif=TimeInForce(tif) if tif in TimeInForce.__members__ else None,
        is_quote_quantity=is_quote,
    )
    if transact_time:
        order.create_time = to_utc_datetime(transact_time)
    return order


class BinanceProtocol(JsonRpcProtocol):
    """
    Session callbacks for Binance.

    - Logs in with an Ed25519-signed ``session.logon``
    - Subscribes to the user data stream and primes balances after login
    - Applies account and order events to ``state`` and republishes them on ``bus``

    Args:
        api_key: Binance API key bound to the Ed25519 public key
        private_key: Ed25519 private key (object, PEM text or path)
        state: Account caches the push handler writes to
        bus: Event bus the normalized events are published on
    """

    name = "binance"
    id_key = "id"

    def __init__(
        self,
        api_key: str,
        private_key: Union[Ed25519PrivateKey, str, bytes],
        state: AccountState,
        bus: EventBus
    ):
        self.api_key = api_key
        self.private_key = (
            private_key if isinstance(private_key, Ed25519PrivateKey) else load_ed25519_key(private_key)
        )
        self.state = state
        self.bus = bus
        self._session = None

    # ============================================
    # Authentication
    # ============================================

    def sign(self, payload: str) -> str:
        return base64.b64encode(self.private_key.sign(payload.encode("utf-8"))).decode("ascii")

    def build_logon(self, timestamp: int) -> Dict[str, Any]:
        payload = f"apiKey={self.api_key}&timestamp={timestamp}"
        return {
            "id": new_request_id(),
            "method": "session.logon",
            "params": {
                "apiKey": self.api_key,
                "signature": self.sign(payload),
                "timestamp": timestamp,
            },
        }

    async def authenticate(self, ws) -> int:
        """
        Send ``session.logon`` and read the reply.

        Returns:
            int: Local timestamp minus ``result.serverTime``, in milliseconds
        """
        timestamp = current_utc_timestamp(milliseconds=True)
        await ws.send_json(self.build_logon(timestamp))

        frame = await receive_json_frame(ws, timeout=AUTH_TIMEOUT)
        error = self.extract_error(frame)
        if error is not None:
            raise AuthenticationError(f"binance session.logon rejected: {error}") from error

        server_time = (frame.get("result") or {}).get("serverTime")
        if server_time is None:
            raise AuthenticationError(f"binance session.logon returned no serverTime: {frame}")

        return timestamp - int(server_time)

    # ============================================
    # Responses
    # ============================================

    def extract_error(self, frame: Dict[str, Any]) -> Optional[Exception]:
        error = super().extract_error(frame)
        if error is not None:
            return error

        status = frame.get("status")
        if isinstance(status, int) and status >= 400:
            return ApplicationError(None, "request failed", status=status, frame=frame, exchange=self.name)
        return None

    # ============================================
    # After Connect
    # ============================================

    async def after_connect(self, session) -> None:
        """Subscribe to the user data stream, then load the balance snapshot."""
        self._session = session

        await session.send_request({"method": "userDataStream.subscribe"})

        resp = await session.send_request({
            "method": "account.status",
            "params": {"timestamp": current_utc_timestamp(milliseconds=True)},
        })
        balances = (resp.get("result") or {}).get("balances") or []
        self.state.replace_balances([
            Wallet(asset=b["asset"], free=Decimal(b["free"]), locked=Decimal(b["locked"]))
            for b in balances
        ])
        logger.info(f"binance: loaded {len(balances)} balances")

    # ============================================
    # User Data Events
    # ============================================

    def handle_push(self, frame: Any) -> None:
        if not isinstance(frame, dict):
            logger.debug(f"binance: ignoring non-object frame {frame!r}")
            return

        event = frame.get("event")
        if not isinstance(event, dict):
            self.bus.publish_nowait(f"{self.name}.raw", frame)
            return

        event_type = event.get("e")

        if event_type == "outboundAccountPosition":
            self._on_account_position(event)
        elif event_type == "executionReport":
            self._on_execution_report(event)
        elif event_type == "eventStreamTerminated":
            logger.warning("binance: user data stream terminated, re-authenticating")
            if self._session is not None:
                self._session.request_recovery("user data stream terminated")
        else:
            self.bus.publish_nowait(f"{self.name}.raw", event)

    def _on_account_position(self, event: Dict[str, Any]) -> None:
        timestamp = to_utc_datetime(event["E"]) if event.get("E") else None
        balances: List[Dict[str, str]] = event.get("B") or []

        for b in balances:
            wallet = Wallet(asset=b["a"], free=Decimal(b["f"]), locked=Decimal(b["l"]))
            self.state.set_balance(wallet)

            balance_event = BalanceEvent(exchange=self.name, **wallet.model_dump())
            if timestamp is not None:
                balance_event.timestamp = timestamp
            self.bus.publish_nowait(f"{self.name}.balance", balance_event)

    def _on_execution_report(self, event: Dict[str, Any]) -> None:
        tif = event.get("f")
        order_event = OrderEvent(
            exchange=self.name,
            order_id=str(event["i"]),
            symbol=event.get("s", ""),
            side=event.get("S", ""),
            status=parse_order_status(event.get("X")),
            price=Decimal(event.get("p") or "0"),
            quantity=Decimal(event.get("q") or "0"),
            executed_qty=Decimal(event.get("z") or "0"),
            tif=TimeInForce(tif) if tif in TimeInForce.__members__ else None,
        )
        if event.get("O"):
            order_event.create_time = to_utc_datetime(event["O"])
        if event.get("E"):
            order_event.timestamp = to_utc_datetime(event["E"])

        if order_event.status is OrderStatus.OPEN:
            self.state.upsert_order(OrderResponse(**order_event.model_dump(exclude={"exchange", "timestamp"})))
        else:
            self.state.remove_order(order_event.order_id)

        self.bus.publish_nowait(f"{self.name}.order", order_event)
