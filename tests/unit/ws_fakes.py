"""
In-memory stand-ins for aiohttp's ClientWebSocketResponse.

FakeWebSocket implements the surface WebSocketSession and the exchange
protocols touch: send_json, receive, async iteration, close, exception.
Tests feed inbound frames with push()/push_raw() and simulate a dropped
connection with drop().
"""

import asyncio
import inspect
import json
from typing import Any, Callable, List, Optional

from aiohttp import WSMsgType

from core.protocol import CallbackProtocol
from core.ws_session import WebSocketSession


class FakeMessage:
    """Mock aiohttp WebSocket message"""

    def __init__(self, msg_type, data=None):
        self.type = msg_type
        self.data = data


class FakeWebSocket:
    """
    Scriptable WebSocket.

    Args:
        on_send: Optional callback ``(ws, frame)`` run after each send_json;
                 used to answer requests automatically
    """

    def __init__(self, on_send: Optional[Callable[["FakeWebSocket", Any], Any]] = None):
        self.sent: List[Any] = []
        self.closed = False
        self.fail_send: Optional[BaseException] = None
        self.on_send = on_send
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._exception: Optional[BaseException] = None

    # ---- inbound scripting ----

    def push(self, frame: Any) -> None:
        self.push_raw(json.dumps(frame))

    def push_raw(self, text: str) -> None:
        self._inbox.put_nowait(FakeMessage(WSMsgType.TEXT, text))

    def push_bytes(self, frame: Any) -> None:
        self._inbox.put_nowait(FakeMessage(WSMsgType.BINARY, json.dumps(frame).encode("utf-8")))

    def drop(self, error: Optional[BaseException] = None) -> None:
        """Simulate the peer going away, optionally with a read error."""
        if error is not None:
            self._exception = error
            self._inbox.put_nowait(FakeMessage(WSMsgType.ERROR, None))
        else:
            self._inbox.put_nowait(FakeMessage(WSMsgType.CLOSED, None))

    async def wait_sent(self, count: int = 1, timeout: float = 1.0) -> None:
        """Wait until at least ``count`` frames were written."""
        async def _poll():
            while len(self.sent) < count:
                await asyncio.sleep(0)
        await asyncio.wait_for(_poll(), timeout)

    # ---- aiohttp surface ----

    async def send_json(self, data: Any) -> None:
        if self.fail_send is not None:
            raise self.fail_send
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)
        if self.on_send is not None:
            result = self.on_send(self, data)
            if inspect.isawaitable(result):
                await result

    async def receive(self, timeout: Optional[float] = None) -> FakeMessage:
        return await asyncio.wait_for(self._inbox.get(), timeout)

    def __aiter__(self):
        return self

    async def __anext__(self) -> FakeMessage:
        msg = await self._inbox.get()
        if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
            raise StopAsyncIteration
        return msg

    async def close(self) -> bool:
        if self.closed:
            return False
        self.closed = True
        self._inbox.put_nowait(FakeMessage(WSMsgType.CLOSED, None))
        return True

    def exception(self) -> Optional[BaseException]:
        return self._exception


def make_session(protocol=None, sockets=None, **kwargs) -> WebSocketSession:
    """
    Build a session whose dialer hands out ``sockets`` in order.

    Backoff and lifetime defaults are shrunk so recovery runs quickly.
    """
    if protocol is None:
        protocol = CallbackProtocol()
    if sockets is None:
        sockets = [FakeWebSocket()]

    options = {
        "lifetime": 3600,
        "reconnect_delay": 0.01,
        "max_reconnect_delay": 0.05,
        "max_reconnect_attempts": 3,
        "name": "test",
    }
    options.update(kwargs)

    session = WebSocketSession("wss://example.invalid/ws", protocol, **options)
    remaining = list(sockets)

    async def fake_dial():
        if not remaining:
            raise ConnectionRefusedError("no more sockets")
        item = remaining.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    session._dial = fake_dial
    return session


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(_poll(), timeout)


async def wait_for_state(session: WebSocketSession, state, timeout: float = 1.0) -> None:
    await wait_until(lambda: session.state is state, timeout)
