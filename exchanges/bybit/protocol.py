"""
Bybit v5 Trade Stream Protocol

Frame layout for ``wss://stream.bybit.com/v5/trade``:

    -> {"op": "auth", "args": ["<key>", "<expires>", "<signature>"]}
    <- {"retCode": 0, "retMsg": "OK", "op": "auth", "connId": "..."}

    -> {"reqId": "R1", "header": {...}, "op": "order.create", "args": [{...}]}
    <- {"reqId": "R1", "retCode": 0, "retMsg": "OK", "op": "order.create", "data": {"orderId": "..."}}

Topic pushes (wallet, order, execution) carry a ``topic`` key and no ``reqId``.

API Documentation:
    https://bybit-exchange.github.io/docs/v5/websocket/trade/guideline
"""

import asyncio
import hashlib
import hmac
from decimal import Decimal
from typing import Any, Dict, Optional

from core.account_state import AccountState
from core.errors import ApplicationError, AuthenticationError, SessionError
from core.logging import get_logger
from core.protocol import ExchangeProtocol, assign_id, normalize_id, receive_json_frame
from core.schemas import BalanceEvent, OrderEvent, OrderResponse, OrderStatus, TimeInForce, Wallet
from core.utils.time import current_utc_timestamp, to_utc_datetime
from services.event_bus import EventBus


logger = get_logger(__name__)

AUTH_TIMEOUT = 10.0
AUTH_EXPIRY_MS = 1000
PING_INTERVAL = 20.0

# retCode values returned by the auth op
RET_ALREADY_AUTHED = 20001
RET_INVALID_SIGN = 10004
RET_PARAM_ERROR = 10001

ORDER_STATUS_MAP = {
    "New": OrderStatus.OPEN,
    "PartiallyFilled": OrderStatus.OPEN,
    "Untriggered": OrderStatus.OPEN,
    "Filled": OrderStatus.FILLED,
    "Cancelled": OrderStatus.CANCELED,
    "PartiallyFilledCanceled": OrderStatus.CANCELED,
    "Rejected": OrderStatus.ERROR,
    "Deactivated": OrderStatus.ERROR,
}


def hmac_sha256_hex(message: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def _ret_code(frame: Dict[str, Any]) -> Optional[int]:
    code = frame.get("retCode", frame.get("ret_code"))
    if code is None:
        return None
    return int(code)


class BybitProtocol(ExchangeProtocol):
    """
    Session callbacks for Bybit.

    Correlation ids live in ``reqId``. Any response with a non-zero
    ``retCode`` is an ApplicationError.

    After login a keepalive task sends ``{"op": "ping"}`` every 20 seconds;
    the task belongs to one connection and is replaced on reconnect.
    """

    name = "bybit"
    id_key = "reqId"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        state: AccountState,
        bus: EventBus,
        ping_interval: float = PING_INTERVAL
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.state = state
        self.bus = bus
        self.ping_interval = ping_interval
        self._ping_task: Optional[asyncio.Task] = None

    # ============================================
    # Authentication
    # ============================================

    def build_auth(self, expires: int) -> Dict[str, Any]:
        signature = hmac_sha256_hex(f"GET/realtime{expires}", self.api_secret)
        return {"op": "auth", "args": [self.api_key, str(expires), signature]}

    async def authenticate(self, ws) -> int:
        """
        Send the ``auth`` op. Bybit reports no server time, so the offset is 0.

        Raises:
            AuthenticationError: On invalid signature, bad parameters or any other rejection
        """
        expires = current_utc_timestamp(milliseconds=True) + AUTH_EXPIRY_MS
        await ws.send_json(self.build_auth(expires))

        frame = await receive_json_frame(ws, timeout=AUTH_TIMEOUT)
        code = _ret_code(frame)
        message = frame.get("retMsg") or frame.get("ret_msg") or ""

        if code is None:
            if frame.get("success") is False:
                raise AuthenticationError(f"bybit auth failed: {message}")
            return 0

        if code in (0, RET_ALREADY_AUTHED):
            return 0
        if code == RET_INVALID_SIGN:
            raise AuthenticationError(f"bybit auth invalid sign: {message}")
        if code == RET_PARAM_ERROR:
            raise AuthenticationError(f"bybit auth param error: {message}")
        raise AuthenticationError(f"bybit auth error {code}: {message}")

    # ============================================
    # Correlation
    # ============================================

    def assign_request_id(self, request: Dict[str, Any]) -> Optional[str]:
        return assign_id(request, self.id_key)

    def extract_id(self, frame: Dict[str, Any]) -> Optional[str]:
        return normalize_id(frame.get(self.id_key))

    def extract_error(self, frame: Dict[str, Any]) -> Optional[Exception]:
        code = _ret_code(frame)
        if not code:
            return None
        return ApplicationError(code, frame.get("retMsg") or "", frame=frame, exchange=self.name)

    # ============================================
    # Keepalive
    # ============================================

    async def after_connect(self, session) -> None:
        if self._ping_task is not None and not self._ping_task.done():
            self._ping_task.cancel()
        self._ping_task = asyncio.create_task(self._keepalive(session), name="bybit-keepalive")

    async def _keepalive(self, session) -> None:
        """Send pings until the session stops accepting frames."""
        while True:
            await asyncio.sleep(self.ping_interval)
            try:
                await session.send_frame({"op": "ping"})
            except SessionError as e:
                logger.debug(f"bybit: keepalive stopped: {e}")
                return

    async def stop(self) -> None:
        task, self._ping_task = self._ping_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    # ============================================
    # Topic Pushes
    # ============================================

    def handle_push(self, frame: Any) -> None:
        if not isinstance(frame, dict):
            return

        if frame.get("op") in ("pong", "ping"):
            return

        topic = frame.get("topic") or ""
        data = frame.get("data") or []

        if topic.startswith("wallet"):
            for account in data:
                for coin in account.get("coin") or []:
                    self._on_wallet_coin(coin)
        elif topic.startswith("order"):
            for item in data:
                self._on_order(item)
        elif topic.startswith("execution"):
            self.bus.publish_nowait(f"{self.name}.raw", frame)
        else:
            logger.debug(f"bybit: unhandled push {frame}")

    def _on_wallet_coin(self, coin: Dict[str, Any]) -> None:
        total = Decimal(coin.get("walletBalance") or "0")
        locked = Decimal(coin.get("locked") or "0")
        wallet = Wallet(asset=coin["coin"], free=total - locked, locked=locked, total=total)
        self.state.set_balance(wallet)
        self.bus.publish_nowait(f"{self.name}.balance", BalanceEvent(exchange=self.name, **wallet.model_dump()))

    def _on_order(self, item: Dict[str, Any]) -> None:
        tif = item.get("timeInForce")
        order_event = OrderEvent(
            exchange=self.name,
            order_id=str(item["orderId"]),
            symbol=item.get("symbol", ""),
            side=item.get("side", ""),
            status=ORDER_STATUS_MAP.get(item.get("orderStatus", ""), OrderStatus.ERROR),
            price=Decimal(item.get("price") or "0"),
            quantity=Decimal(item.get("qty") or "0"),
            executed_qty=Decimal(item.get("cumExecQty") or "0"),
            tif=TimeInForce(tif) if tif in TimeInForce.__members__ else None,
        )
        if item.get("createdTime"):
            order_event.create_time = to_utc_datetime(item["createdTime"])

        if order_event.status is OrderStatus.OPEN:
            self.state.upsert_order(OrderResponse(**order_event.model_dump(exclude={"exchange", "timestamp"})))
        else:
            self.state.remove_order(order_event.order_id)

        self.bus.publish_nowait(f"{self.name}.order", order_event)
