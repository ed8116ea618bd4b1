"""
OKX v5 Private Stream Protocol

Frame layout for ``wss://ws.okx.com:8443/ws/v5/private``:

    -> {"op": "login", "args": [{"apiKey", "passphrase", "timestamp", "sign"}]}
    <- {"event": "login", "code": "0", "msg": "", "connId": "..."}

    -> {"id": "R1", "op": "order", "args": [{...}]}
    <- {"id": "R1", "op": "order", "code": "0", "msg": "", "data": [{"ordId": "...", "sCode": "0", "sMsg": ""}]}

Channel pushes carry ``arg.channel`` and ``data``:

    <- {"arg": {"channel": "orders", "instType": "SPOT"}, "data": [{...}]}

API Documentation:
    https://www.okx.com/docs-v5/en/#overview-websocket
"""

import base64
import hashlib
import hmac
from decimal import Decimal
from typing import Any, Dict, Optional

from core.account_state import AccountState
from core.errors import ApplicationError, AuthenticationError
from core.logging import get_logger
from core.protocol import JsonRpcProtocol, new_request_id, normalize_id, receive_json_frame
from core.schemas import BalanceEvent, OrderEvent, OrderResponse, OrderStatus, Wallet
from core.utils.time import current_utc_timestamp, to_utc_datetime
from services.event_bus import EventBus


logger = get_logger(__name__)

AUTH_TIMEOUT = 10.0

ORDER_STATE_MAP = {
    "live": OrderStatus.OPEN,
    "partially_filled": OrderStatus.OPEN,
    "filled": OrderStatus.FILLED,
    "canceled": OrderStatus.CANCELED,
    "mmp_canceled": OrderStatus.CANCELED,
}

SUBSCRIPTIONS = [
    {"channel": "account"},
    {"channel": "orders", "instType": "SPOT"},
]


def login_signature(timestamp: str, secret_key: str) -> str:
    """Base64 HMAC-SHA256 of ``{timestamp}GET/users/self/verify``."""
    message = f"{timestamp}GET/users/self/verify"
    digest = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class OKXProtocol(JsonRpcProtocol):
    """
    Session callbacks for OKX.

    OKX ids must be alphanumeric and at most 32 characters, so generated
    ids drop the separator of ``new_request_id()``.
    """

    name = "okx"
    id_key = "id"

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        passphrase: str,
        state: AccountState,
        bus: EventBus
    ):
        self.api_key = api_key
        self.secret_key = secret_key
        self.passphrase = passphrase
        self.state = state
        self.bus = bus

    # ============================================
    # Authentication
    # ============================================

    def build_login(self, timestamp: str) -> Dict[str, Any]:
        return {
            "op": "login",
            "args": [{
                "apiKey": self.api_key,
                "passphrase": self.passphrase,
                "timestamp": timestamp,
                "sign": login_signature(timestamp, self.secret_key),
            }],
        }

    async def authenticate(self, ws) -> int:
        timestamp = str(current_utc_timestamp())
        await ws.send_json(self.build_login(timestamp))

        frame = await receive_json_frame(ws, timeout=AUTH_TIMEOUT)
        code = str(frame.get("code", ""))
        if frame.get("event") == "error" or code != "0":
            raise AuthenticationError(f"okx login failed ({code}): {frame.get('msg', '')}")
        return 0

    # ============================================
    # Correlation
    # ============================================

    def assign_request_id(self, request: Dict[str, Any]) -> Optional[str]:
        existing = normalize_id(request.get(self.id_key))
        if existing is not None:
            return existing
        request_id = new_request_id().replace("-", "")[:32]
        request[self.id_key] = request_id
        return request_id

    def extract_error(self, frame: Dict[str, Any]) -> Optional[Exception]:
        """
        Detect a rejection.

        Batch ops report per-item results, so a failing ``sCode`` is
        preferred over the generic top-level ``code``.
        """
        for item in frame.get("data") or []:
            if isinstance(item, dict) and str(item.get("sCode", "0")) != "0":
                return ApplicationError(item["sCode"], item.get("sMsg", ""), frame=frame, exchange=self.name)

        code = frame.get("code")
        if code is not None and str(code) != "0":
            return ApplicationError(code, frame.get("msg", ""), frame=frame, exchange=self.name)
        return None

    # ============================================
    # Subscriptions
    # ============================================

    async def after_connect(self, session) -> None:
        # Subscription acks carry no id and arrive as pushes
        await session.send_frame({"op": "subscribe", "args": SUBSCRIPTIONS})

    def handle_push(self, frame: Any) -> None:
        if not isinstance(frame, dict):
            return

        event = frame.get("event")
        if event == "error":
            logger.error(f"okx: {frame.get('code')} {frame.get('msg')}")
            return
        if event is not None:
            logger.debug(f"okx: {event} {frame.get('arg')}")
            return

        channel = (frame.get("arg") or {}).get("channel")
        data = frame.get("data") or []

        if channel == "account":
            for account in data:
                for detail in account.get("details") or []:
                    self._on_balance(detail)
        elif channel == "orders":
            for item in data:
                self._on_order(item)
        else:
            self.bus.publish_nowait(f"{self.name}.raw", frame)

    def _on_balance(self, detail: Dict[str, Any]) -> None:
        wallet = Wallet(
            asset=detail["ccy"],
            free=Decimal(detail.get("availBal") or "0"),
            locked=Decimal(detail.get("frozenBal") or "0"),
        )
        self.state.set_balance(wallet)
        self.bus.publish_nowait(f"{self.name}.balance", BalanceEvent(exchange=self.name, **wallet.model_dump()))

    def _on_order(self, item: Dict[str, Any]) -> None:
        order_event = OrderEvent(
            exchange=self.name,
            order_id=str(item["ordId"]),
            symbol=item.get("instId", ""),
            side=item.get("side", ""),
            status=ORDER_STATE_MAP.get(item.get("state", ""), OrderStatus.ERROR),
            price=Decimal(item.get("px") or "0"),
            quantity=Decimal(item.get("sz") or "0"),
            executed_qty=Decimal(item.get("accFillSz") or "0"),
        )
        if item.get("cTime"):
            order_event.create_time = to_utc_datetime(item["cTime"])
        if item.get("uTime"):
            order_event.timestamp = to_utc_datetime(item["uTime"])

        if order_event.status is OrderStatus.OPEN:
            self.state.upsert_order(OrderResponse(**order_event.model_dump(exclude={"exchange", "timestamp"})))
        else:
            self.state.remove_order(order_event.order_id)

        self.bus.publish_nowait(f"{self.name}.order", order_event)
