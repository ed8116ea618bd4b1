"""
Persistent WebSocket Session

This module provides the long-lived, authenticated WebSocket connection that
every private exchange client is built on. One session owns one socket and:

- Dials, authenticates and primes the connection (Connect)
- Multiplexes concurrent request/response pairs by correlation id (send_request)
- Routes unsolicited frames (fills, balance updates) to the exchange's push handler
- Re-establishes itself before the exchange force-expires the session (~24h)
- Recovers automatically with exponential backoff when the socket drops

Lifecycle:

    DISCONNECTED -> DIALING -> AUTHENTICATING -> READY -> RECONNECTING -> ...
                                                   \\
                                                    -> CLOSED

Only READY accepts requests from callers; anything else fails fast with
NotConnectedError instead of blocking.

Usage:
    session = WebSocketSession("wss://ws-api.binance.com:443/ws-api/v3", BinanceProtocol(...))
    offset_ms = await session.connect()
    resp = await session.send_request({"method": "account.status", "params": {...}})
    await session.close()
"""

import asyncio
import inspect
import json
import time
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import aiohttp

from core.config import settings
from core.correlation import CorrelationTable
from core.errors import (
    AuthenticationError,
    ConnectionLostError,
    InvalidStateError,
    NotConnectedError,
    RequestIdError,
    RequestTimeoutError,
    SessionError,
    TransportError,
    WriteError,
)
from core.logging import get_logger, log_websocket_event
from core.protocol import ExchangeProtocol


logger = get_logger(__name__)


class SessionState(str, Enum):
    """Lifecycle states of a WebSocketSession."""

    DISCONNECTED = "disconnected"
    DIALING = "dialing"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


def _consume_result(future: asyncio.Future) -> None:
    """Mark an abandoned future's exception as retrieved."""
    if not future.cancelled():
        future.exception()


class WebSocketSession:
    """
    Authenticated, multiplexed WebSocket connection to one exchange endpoint.

    The session owns the socket exclusively. A single reader task is the only
    code that reads from it; writers are serialized by a write lock. The
    correlation table has its own lock so unrelated requests never queue
    behind socket I/O.

    Attributes:
        url: WebSocket endpoint
        protocol: Exchange-specific callbacks (auth, ids, errors, pushes)
        lifetime: Seconds after which the session reconnects proactively
        headers: Extra HTTP headers sent with the upgrade request
        name: Label used in log messages

    Example:
        >>> async with WebSocketSession(url, protocol) as session:
        ...     resp = await session.send_request({"method": "ping"})
    """

    def __init__(
        self,
        url: str,
        protocol: ExchangeProtocol,
        *,
        lifetime: Optional[float] = None,
        headers: Optional[Mapping[str, str]] = None,
        heartbeat: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        reconnect_delay: Optional[float] = None,
        max_reconnect_delay: Optional[float] = None,
        max_reconnect_attempts: Optional[int] = None,
        name: Optional[str] = None
    ):
        self.url = url
        self.protocol = protocol
        self.lifetime = lifetime if lifetime is not None else settings.ws_session_lifetime
        self.headers = dict(headers) if headers else None
        self.heartbeat = heartbeat if heartbeat is not None else settings.ws_heartbeat
        self.connect_timeout = connect_timeout if connect_timeout is not None else settings.ws_connect_timeout
        self.reconnect_delay = reconnect_delay if reconnect_delay is not None else settings.ws_reconnect_delay
        self.max_reconnect_delay = (
            max_reconnect_delay if max_reconnect_delay is not None else settings.ws_max_reconnect_delay
        )
        self.max_reconnect_attempts = (
            max_reconnect_attempts if max_reconnect_attempts is not None else settings.ws_max_reconnect_attempts
        )
        self.name = name or getattr(protocol, "name", "session")

        # Connection state
        self._state = SessionState.DISCONNECTED
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._time_offset = 0
        self._connected_at: Optional[float] = None
        self._has_connected = False
        self._priming = False

        self._requests = CorrelationTable()
        self._write_lock = asyncio.Lock()
        self._lifecycle_lock = asyncio.Lock()

        # Background tasks
        self._reader_task: Optional[asyncio.Task] = None
        self._lifetime_task: Optional[asyncio.Task] = None
        self._recovery_task: Optional[asyncio.Task] = None

    # ============================================
    # Properties
    # ============================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is SessionState.READY

    @property
    def time_offset(self) -> int:
        """Local minus server clock, in milliseconds, from the last login."""
        return self._time_offset

    @property
    def pending_count(self) -> int:
        return len(self._requests)

    @property
    def uptime(self) -> Optional[float]:
        if self._connected_at is None:
            return None
        return time.monotonic() - self._connected_at

    # ============================================
    # Context Manager
    # ============================================

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ============================================
    # Public Lifecycle API
    # ============================================

    async def connect(self) -> int:
        """
        Dial, authenticate and prime the session.

        Valid from DISCONNECTED or after close(). No retries happen here;
        callers that want them loop around connect() themselves.

        Returns:
            int: Clock offset in milliseconds reported by the login handshake

        Raises:
            InvalidStateError: If the session is already connected or connecting
            TransportError: If the socket cannot be dialed or drops before READY
            AuthenticationError: If the exchange rejects the login
            SessionError: If the after-connect setup fails
        """
        async with self._lifecycle_lock:
            if self._state not in (SessionState.DISCONNECTED, SessionState.CLOSED):
                raise InvalidStateError(f"connect() is not valid while {self._state.value}")
            return await self._establish()

    async def reconnect(self) -> None:
        """
        Tear down the current socket and run Dial -> Auth -> AfterConnect again.

        Outstanding requests fail with ConnectionLostError. Makes one attempt.

        Raises:
            InvalidStateError: If the session never connected or is closed
            SessionError: If the new connection cannot be established
        """
        async with self._lifecycle_lock:
            if self._state is SessionState.CLOSED:
                raise InvalidStateError("reconnect() is not valid on a closed session")
            if not self._has_connected:
                raise InvalidStateError("reconnect() requires a prior successful connect()")
            await self._reestablish("requested by caller")

    async def close(self) -> None:
        """
        Stop the reader and lifetime timer, fail outstanding requests, close the socket.

        Idempotent: closing a closed session does nothing.
        """
        if self._state is SessionState.CLOSED:
            return

        recovery, self._recovery_task = self._recovery_task, None
        if recovery is not None and recovery is not asyncio.current_task() and not recovery.done():
            recovery.cancel()
            await asyncio.gather(recovery, return_exceptions=True)

        async with self._lifecycle_lock:
            if self._state is SessionState.CLOSED:
                return
            await self._teardown(ConnectionLostError(f"{self.name} session closed"))
            self._set_state(SessionState.CLOSED)

        log_websocket_event(self.name, "closed")

    def request_recovery(self, reason: str) -> None:
        """
        Ask the session to reconnect in the background.

        Safe to call from a push handler: it never blocks the reader task.
        """
        self._schedule_recovery(reason)

    # ============================================
    # Request / Response
    # ============================================

    async def send_request(self, request: Dict[str, Any], timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Send a request and wait for the response carrying the same correlation id.

        Args:
            request: Exchange-specific request object; the protocol may inject an id
            timeout: Optional seconds to wait. On expiry the request is abandoned,
                     not cancelled: a late response is simply dropped.

        Returns:
            Dict[str, Any]: The matched response frame

        Raises:
            NotConnectedError: Session is not READY
            RequestIdError: The protocol could not assign an id
            DuplicateRequestIdError: The id is already outstanding
            WriteError: The frame never reached the exchange (retryable)
            ConnectionLostError: The connection dropped before the response arrived
            ApplicationError: The exchange rejected the request
            RequestTimeoutError: ``timeout`` expired (outcome unknown)

        Note:
            Completions are not FIFO. Concurrent requests finish in whatever
            order the exchange answers them.
        """
        if not self._can_send():
            raise NotConnectedError(f"{self.name} session is {self._state.value}")

        request_id = self.protocol.assign_request_id(request)
        if request_id is None:
            raise RequestIdError(f"{self.name}: could not assign a request id")
        request_id = str(request_id)

        ws = self._ws
        pending = self._requests.register(request_id)

        try:
            async with self._write_lock:
                await ws.send_json(request)
        except asyncio.CancelledError:
            self._requests.discard(request_id, pending)
            raise
        except Exception as e:
            self._requests.discard(request_id, pending)
            pending.future.add_done_callback(_consume_result)
            raise WriteError(f"{self.name}: failed to write request {request_id}: {e}") from e

        logger.debug(f"{self.name}: sent request {request_id}")

        if timeout is None:
            try:
                return await pending.future
            except asyncio.CancelledError:
                self._requests.discard(request_id, pending)
                raise

        try:
            return await asyncio.wait_for(asyncio.shield(pending.future), timeout)
        except asyncio.TimeoutError:
            pending.future.add_done_callback(_consume_result)
            raise RequestTimeoutError(
                f"{self.name}: no response to request {request_id} within {timeout}s"
            ) from None

    async def send_frame(self, frame: Any) -> None:
        """
        Write one frame without registering a waiter.

        For keepalives and subscriptions whose acknowledgements arrive as pushes.

        Raises:
            NotConnectedError: Session is not READY
            WriteError: The frame could not be written
        """
        if not self._can_send():
            raise NotConnectedError(f"{self.name} session is {self._state.value}")

        ws = self._ws
        try:
            async with self._write_lock:
                await ws.send_json(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise WriteError(f"{self.name}: failed to write frame: {e}") from e

    def _can_send(self) -> bool:
        if self._ws is None:
            return False
        # after_connect may issue requests before the session is READY
        return self._state is SessionState.READY or self._priming

    # ============================================
    # Connection Establishment
    # ============================================

    async def _dial(self) -> aiohttp.ClientWebSocketResponse:
        """
        Open the socket. aiohttp answers server pings and sends our own
        every ``heartbeat`` seconds.
        """
        self._http = aiohttp.ClientSession()
        return await asyncio.wait_for(
            self._http.ws_connect(self.url, headers=self.headers, heartbeat=self.heartbeat),
            timeout=self.connect_timeout
        )

    async def _establish(self) -> int:
        """Dial -> Auth -> AfterConnect -> READY. Caller holds the lifecycle lock."""
        self._set_state(SessionState.DIALING)
        logger.info(f"{self.name}: connecting to {self.url}")

        try:
            ws = await self._dial()
        except asyncio.CancelledError:
            await self._abort("connect cancelled while dialing")
            raise
        except Exception as e:
            await self._abort(f"dial failed: {e}")
            raise TransportError(f"{self.name}: failed to connect to {self.url}: {e}") from e

        self._ws = ws
        self._set_state(SessionState.AUTHENTICATING)

        try:
            offset = await self.protocol.authenticate(ws)
        except asyncio.CancelledError:
            await self._abort("connect cancelled during authentication")
            raise
        except SessionError as e:
            await self._abort(f"authentication failed: {e}")
            raise
        except (aiohttp.ClientError, ConnectionError, asyncio.TimeoutError, OSError) as e:
            await self._abort(f"socket failed during authentication: {e}")
            raise TransportError(f"{self.name}: socket failed during authentication: {e}") from e
        except Exception as e:
            await self._abort(f"authentication failed: {e}")
            raise AuthenticationError(f"{self.name}: authentication failed: {e}") from e

        self._time_offset = int(offset or 0)
        self._reader_task = asyncio.create_task(self._read_loop(ws), name=f"{self.name}-reader")

        self._priming = True
        try:
            await self.protocol.after_connect(self)
        except asyncio.CancelledError:
            await self._abort("connect cancelled during after-connect setup")
            raise
        except Exception as e:
            await self._abort(f"after-connect setup failed: {e}")
            if isinstance(e, SessionError):
                raise
            raise SessionError(f"{self.name}: after-connect setup failed: {e}") from e
        finally:
            self._priming = False

        # Reader already gone: the socket dropped while priming
        if self._reader_task is None or self._reader_task.done():
            await self._abort("connection lost during after-connect setup")
            raise TransportError(f"{self.name}: connection lost during after-connect setup")

        self._connected_at = time.monotonic()
        self._has_connected = True
        self._set_state(SessionState.READY)
        self._lifetime_task = asyncio.create_task(self._lifetime_watch(), name=f"{self.name}-lifetime")

        log_websocket_event(self.name, "connected", f"clock offset {self._time_offset}ms")
        return self._time_offset

    async def _reestablish(self, reason: str) -> None:
        """Tear down and connect again. Caller holds the lifecycle lock."""
        self._set_state(SessionState.RECONNECTING)
        log_websocket_event(self.name, "reconnecting", reason)
        await self._teardown(ConnectionLostError(f"{self.name} session reconnecting: {reason}"))
        await self._establish()

    async def _abort(self, reason: str) -> None:
        logger.warning(f"{self.name}: connect aborted ({reason})")
        await self._teardown(ConnectionLostError(f"{self.name} connection aborted: {reason}"))
        self._set_state(SessionState.DISCONNECTED)

    async def _teardown(self, error: BaseException) -> None:
        """
        Release the socket and every task bound to it.

        Outstanding requests are failed with ``error``. Close errors are ignored.
        """
        current = asyncio.current_task()

        lifetime, self._lifetime_task = self._lifetime_task, None
        if lifetime is not None and lifetime is not current:
            lifetime.cancel()

        # Clear _ws first so the reader treats its own exit as intentional
        ws, self._ws = self._ws, None
        http, self._http = self._http, None
        reader, self._reader_task = self._reader_task, None
        self._connected_at = None

        failed = self._requests.fail_all(error)
        if failed:
            logger.warning(f"{self.name}: failed {failed} outstanding request(s): {error}")

        if reader is not None and reader is not current:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"{self.name}: ignoring error while closing socket: {e}")

        if http is not None:
            try:
                await http.close()
            except Exception as e:
                logger.debug(f"{self.name}: ignoring error while closing HTTP session: {e}")

    # ============================================
    # Inbound Dispatcher
    # ============================================

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """
        Single reader for ``ws``. Frames are handled strictly in arrival order.

        Message Types:
            - TEXT / BINARY: JSON frame, dispatched
            - ERROR: read failure, triggers recovery
            - CLOSE / CLOSED: iteration ends, triggers recovery
            - PING / PONG: answered by aiohttp
        """
        error: Optional[BaseException] = None
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    await self._dispatch(msg.data.decode("utf-8", errors="replace"))
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = ws.exception() or TransportError(f"WebSocket error: {msg.data}")
                    break
                else:
                    logger.debug(f"{self.name}: received message type {msg.type}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        if ws is not self._ws or self._state is SessionState.CLOSED:
            return

        self._on_connection_lost(error)

    def _on_connection_lost(self, error: Optional[BaseException]) -> None:
        reason = f"read failed: {error}" if error is not None else "closed by peer"
        log_websocket_event(self.name, "error", reason)

        self._requests.fail_all(ConnectionLostError(f"{self.name} connection lost: {reason}"))

        if self._state is SessionState.READY:
            self._set_state(SessionState.RECONNECTING)
            self._schedule_recovery(reason)

    async def _dispatch(self, raw: str) -> None:
        """Classify one frame as a correlated response or a push event."""
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"{self.name}: failed to parse JSON: {raw[:100]}... Error: {e}")
            return

        if isinstance(frame, dict):
            try:
                request_id = self.protocol.extract_id(frame)
            except Exception as e:
                logger.error(f"{self.name}: extract_id failed: {e}")
                request_id = None

            if request_id is not None:
                pending = self._requests.take(request_id)
                if pending is not None:
                    try:
                        error = self.protocol.extract_error(frame)
                    except Exception as e:
                        error = e
                    pending.complete(frame, error)
                    return
                logger.debug(f"{self.name}: no waiter for id {request_id}, routing as push")

        await self._deliver_push(frame)

    async def _deliver_push(self, frame: Any) -> None:
        try:
            result = self.protocol.handle_push(frame)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self.name}: push handler failed: {e}", exc_info=True)

    # ============================================
    # Recovery and Session Lifetime
    # ============================================

    async def _lifetime_watch(self) -> None:
        await asyncio.sleep(self.lifetime)
        logger.info(f"{self.name}: session lifetime of {self.lifetime:.0f}s reached, reconnecting")
        self._schedule_recovery("session lifetime reached")

    def _schedule_recovery(self, reason: str) -> None:
        if self._state is SessionState.CLOSED:
            return
        if self._recovery_task is not None and not self._recovery_task.done():
            return
        self._recovery_task = asyncio.create_task(self._recover(reason), name=f"{self.name}-recovery")

    async def _recover(self, reason: str) -> None:
        """
        Reconnect with exponential backoff.

        Reconnection Strategy:
            - Attempt N waits min(reconnect_delay * 2^(N-1), max_reconnect_delay)
            - Gives up after max_reconnect_attempts and settles in DISCONNECTED
        """
        attempt = 0
        while True:
            attempt += 1
            async with self._lifecycle_lock:
                if self._state is SessionState.CLOSED:
                    return
                try:
                    await self._reestablish(reason)
                    return
                except SessionError as e:
                    logger.error(f"{self.name}: reconnect attempt {attempt} failed: {e}")

                if attempt >= self.max_reconnect_attempts:
                    log_websocket_event(self.name, "error", f"giving up after {attempt} reconnect attempts")
                    return
                self._set_state(SessionState.RECONNECTING)

            delay = min(self.reconnect_delay * 2 ** (attempt - 1), self.max_reconnect_delay)
            logger.warning(f"{self.name}: reconnecting in {delay:.1f}s... (attempt {attempt + 1})")
            await asyncio.sleep(delay)

    # ============================================
    # Helpers
    # ============================================

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug(f"{self.name}: {self._state.value} -> {state.value}")
            self._state = state
