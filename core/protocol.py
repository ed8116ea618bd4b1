"""
Exchange Protocol — the per-exchange half of a WebSocket session

The session core knows nothing about any exchange's frame layout. Each
exchange supplies an ExchangeProtocol that tells the session how to:

    authenticate      - perform the login handshake over a freshly dialed socket
    handle_push       - consume one unsolicited frame (order fill, balance update)
    assign_request_id - read or inject the correlation id of an outgoing request
    extract_id        - pull the correlation id out of an inbound frame
    extract_error     - detect an application-level rejection in a response
    after_connect     - run post-login setup (subscribe, prime caches)

Protocols are supplied once at construction and never mutated by the session.

Two ready-made building blocks are provided:

    JsonRpcProtocol   - id in a fixed key, {"error": {"code", "msg"}} errors
    CallbackProtocol  - assemble a protocol from six plain callables
"""

import inspect
import json
import random
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Union

from core.errors import ApplicationError

if TYPE_CHECKING:
    from core.ws_session import WebSocketSession


def new_request_id() -> str:
    """
    Generate a correlation id from the current time plus a random suffix.

    Example:
        >>> new_request_id()
        '20240101120000123456-4821937712'
    """
    return time.strftime("%Y%m%d%H%M%S") + f"{time.time_ns() % 1_000_000:06d}-{random.getrandbits(40)}"


def normalize_id(raw: Any) -> Optional[str]:
    """
    Normalize a correlation id read from a frame.

    Strings are used as-is, numbers (some exchanges echo numeric ids) are
    rendered as integers, anything else means "no id".
    """
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, str):
        return raw or None
    if isinstance(raw, (int, float)):
        return str(int(raw))
    return None


def assign_id(request: Dict[str, Any], key: str = "id") -> str:
    """Return the id stored under ``key`` in ``request``, injecting a fresh one if absent."""
    existing = normalize_id(request.get(key))
    if existing is not None:
        return existing
    request_id = new_request_id()
    request[key] = request_id
    return request_id


async def receive_json_frame(ws, timeout: Optional[float] = None) -> Dict[str, Any]:
    """
    Read one JSON object directly from the socket.

    Only for use inside ``authenticate``, before the session's reader starts.
    """
    msg = await ws.receive(timeout=timeout)
    data = msg.data
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    if not isinstance(data, str):
        raise ConnectionError(f"Unexpected frame during authentication: {msg.type}")
    frame = json.loads(data)
    if not isinstance(frame, dict):
        raise ValueError(f"Expected a JSON object, got: {data[:100]}")
    return frame


class ExchangeProtocol(ABC):
    """
    Abstract contract between the WebSocket session and one exchange.

    Subclasses implement the five required hooks; ``after_connect`` is optional.
    ``handle_push`` and ``after_connect`` may be coroutines.
    """

    name: str = "exchange"

    @abstractmethod
    async def authenticate(self, ws) -> int:
        """
        Log in over a live socket.

        Args:
            ws: The freshly dialed aiohttp WebSocket (the session reader has not started)

        Returns:
            int: Clock offset in milliseconds (local time minus server time)

        Raises:
            AuthenticationError: If the exchange rejects the credentials
        """
        ...

    @abstractmethod
    def handle_push(self, frame: Any) -> Optional[Awaitable[None]]:
        """
        Consume one unsolicited frame. Runs on the session's reader task.

        ``frame`` is usually a dict; JSON frames that are not objects are passed as-is.
        Slow work should be offloaded (e.g. to the event bus) so the reader is not held up.
        """
        ...

    @abstractmethod
    def assign_request_id(self, request: Dict[str, Any]) -> Optional[str]:
        """Return the id already in ``request`` or inject a new one. None means failure."""
        ...

    @abstractmethod
    def extract_id(self, frame: Dict[str, Any]) -> Optional[str]:
        """Return the correlation id carried by ``frame``, or None."""
        ...

    @abstractmethod
    def extract_error(self, frame: Dict[str, Any]) -> Optional[Exception]:
        """Return an error if ``frame`` is an explicit rejection, else None."""
        ...

    async def after_connect(self, session: "WebSocketSession") -> None:
        """Post-login setup. Runs once per successful connect or reconnect."""
        return None


class JsonRpcProtocol(ExchangeProtocol):
    """
    Base for exchanges whose frames carry the id in one key and errors as
    ``{"error": {"code": ..., "msg": ...}}``.

    Subclasses still provide ``authenticate`` and ``handle_push``.

    Example:
        >>> proto.extract_error({"id": "R1", "error": {"code": 400, "msg": "bad"}})
        ApplicationError('error 400: bad')
    """

    id_key: str = "id"

    def assign_request_id(self, request: Dict[str, Any]) -> Optional[str]:
        return assign_id(request, self.id_key)

    def extract_id(self, frame: Dict[str, Any]) -> Optional[str]:
        return normalize_id(frame.get(self.id_key))

    def extract_error(self, frame: Dict[str, Any]) -> Optional[Exception]:
        error = frame.get("error")
        if not error:
            return None
        if isinstance(error, dict):
            return ApplicationError(
                error.get("code"),
                str(error.get("msg") or error.get("message") or ""),
                status=frame.get("status"),
                frame=frame,
                exchange=self.name
            )
        return ApplicationError(None, str(error), status=frame.get("status"), frame=frame, exchange=self.name)


AuthFn = Callable[[Any], Awaitable[int]]
PushHandlerFn = Callable[[Any], Optional[Awaitable[None]]]
RequestIdFn = Callable[[Dict[str, Any]], Optional[str]]
ExtractIdFn = Callable[[Dict[str, Any]], Optional[str]]
ExtractErrFn = Callable[[Dict[str, Any]], Optional[Exception]]
AfterConnectFn = Callable[["WebSocketSession"], Union[Awaitable[None], None]]


class CallbackProtocol(ExchangeProtocol):
    """
    Build a protocol out of plain callables.

    Any callable left as None falls back to a permissive default: no login,
    pushes ignored, ids handled as in JsonRpcProtocol, no error detection.

    Example:
        >>> proto = CallbackProtocol(push_handler=queue.put_nowait)
        >>> session = WebSocketSession("wss://example.com/ws", proto)
    """

    def __init__(
        self,
        auth: Optional[AuthFn] = None,
        push_handler: Optional[PushHandlerFn] = None,
        request_id: Optional[RequestIdFn] = None,
        extract_id: Optional[ExtractIdFn] = None,
        extract_error: Optional[ExtractErrFn] = None,
        after_connect: Optional[AfterConnectFn] = None,
        name: str = "custom"
    ):
        self.name = name
        self._auth = auth
        self._push_handler = push_handler
        self._request_id = request_id
        self._extract_id = extract_id
        self._extract_error = extract_error
        self._after_connect = after_connect

    async def authenticate(self, ws) -> int:
        if self._auth is None:
            return 0
        return await self._auth(ws)

    def handle_push(self, frame: Any) -> Optional[Awaitable[None]]:
        if self._push_handler is None:
            return None
        return self._push_handler(frame)

    def assign_request_id(self, request: Dict[str, Any]) -> Optional[str]:
        if self._request_id is None:
            return assign_id(request)
        return self._request_id(request)

    def extract_id(self, frame: Dict[str, Any]) -> Optional[str]:
        if self._extract_id is None:
            return normalize_id(frame.get("id"))
        return self._extract_id(frame)

    def extract_error(self, frame: Dict[str, Any]) -> Optional[Exception]:
        if self._extract_error is None:
            return None
        return self._extract_error(frame)

    async def after_connect(self, session: "WebSocketSession") -> None:
        if self._after_connect is None:
            return
        result = self._after_connect(session)
        if inspect.isawaitable(result):
            await result
