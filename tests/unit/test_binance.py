"""
Unit Tests for the Binance Protocol and Client

These tests verify that:
- session.logon is Ed25519-signed and yields the clock offset
- Logon rejections surface as AuthenticationError
- Error frames map to ApplicationError, including bare 4xx statuses
- After login the user data stream is subscribed and balances are primed
- Account and order events update the caches and reach the event bus
- eventStreamTerminated triggers a background re-authentication
- Orders are sent with the expected parameters

Run with:
    pytest tests/unit/test_binance.py -v
"""

import asyncio
import base64
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from core.account_state import AccountState
from core.errors import ApplicationError, AuthenticationError
from core.schemas import OrderStatus, TimeInForce
from core.ws_session import SessionState
from exchanges.binance import BINANCE_TESTNET_WS_URL, BinanceClient
from exchanges.binance.protocol import BinanceProtocol, load_ed25519_key, parse_order_result
from services.event_bus import EventBus
from tests.unit.ws_fakes import FakeWebSocket, make_session, wait_until


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def private_key():
    return Ed25519PrivateKey.generate()


@pytest.fixture
def event_bus():
    return EventBus(max_queue_size=100)


@pytest.fixture
def protocol(private_key, event_bus):
    return BinanceProtocol("test-api-key", private_key, AccountState(), event_bus)


def pem_text(key) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def binance_responder(ws, frame):
    """Answer logon, subscribe and account.status like the exchange does."""
    method = frame.get("method")
    if method == "session.logon":
        server_time = frame["params"]["timestamp"] - 25
        ws.push({"id": frame["id"], "status": 200, "result": {"apiKey": "test-api-key", "serverTime": server_time}})
    elif method == "userDataStream.subscribe":
        ws.push({"id": frame["id"], "status": 200, "result": {"subscriptionId": 0}})
    elif method == "account.status":
        ws.push({
            "id": frame["id"],
            "status": 200,
            "result": {
                "balances": [
                    {"asset": "BTC", "free": "0.5", "locked": "0.1"},
                    {"asset": "USDT", "free": "1000", "locked": "0"},
                ]
            },
        })


EXECUTION_REPORT = {
    "e": "executionReport",
    "E": 1704110400123,
    "s": "BTCUSDT",
    "S": "BUY",
    "o": "LIMIT",
    "f": "GTC",
    "q": "0.00100000",
    "p": "50000.00000000",
    "X": "NEW",
    "i": 4293153,
    "z": "0.00000000",
    "O": 1704110400100,
}


# ============================================
# Tests for Key Loading and Signing
# ============================================

class TestKeys:
    """Tests for Ed25519 key handling"""

    def test_load_from_pem_text(self, private_key):
        """Verify a PEM string is loaded"""
        loaded = load_ed25519_key(pem_text(private_key))

        assert isinstance(loaded, Ed25519PrivateKey)

    def test_load_from_file(self, private_key, tmp_path):
        """Verify a path to a PEM file is loaded"""
        path = tmp_path / "binance.pem"
        path.write_text(pem_text(private_key))

        assert isinstance(load_ed25519_key(str(path)), Ed25519PrivateKey)

    def test_reject_non_ed25519_key(self):
        """Verify an EC key is refused"""
        ec_key = ec.generate_private_key(ec.SECP256R1())

        with pytest.raises(ValueError, match="Ed25519"):
            load_ed25519_key(pem_text(ec_key))

    def test_logon_signature_verifies(self, protocol, private_key):
        """Verify the logon signature covers apiKey and timestamp"""
        logon = protocol.build_logon(1704110400000)
        params = logon["params"]

        assert logon["method"] == "session.logon"
        assert params["apiKey"] == "test-api-key"
        assert params["timestamp"] == 1704110400000
        # Raises InvalidSignature on mismatch
        private_key.public_key().verify(
            base64.b64decode(params["signature"]),
            b"apiKey=test-api-key&timestamp=1704110400000",
        )


# ============================================
# Tests for Authentication and Errors
# ============================================

class TestAuthentication:
    """Tests for authenticate() and extract_error()"""

    @pytest.mark.asyncio
    async def test_offset_from_server_time(self, protocol):
        """Verify the offset is local timestamp minus serverTime"""
        ws = FakeWebSocket()
        ws.push({"id": "x", "status": 200, "result": {"serverTime": 1704110400000}})

        with patch("exchanges.binance.protocol.current_utc_timestamp", return_value=1704110400040):
            offset = await protocol.authenticate(ws)

        assert offset == 40
        assert ws.sent[0]["method"] == "session.logon"

    @pytest.mark.asyncio
    async def test_rejected_logon(self, protocol):
        """Verify an error frame fails authentication"""
        ws = FakeWebSocket()
        ws.push({"id": "x", "status": 401, "error": {"code": -1022, "msg": "Signature for this request is not valid."}})

        with pytest.raises(AuthenticationError, match="-1022"):
            await protocol.authenticate(ws)

    @pytest.mark.asyncio
    async def test_missing_server_time(self, protocol):
        """Verify a success without serverTime is still a failed login"""
        ws = FakeWebSocket()
        ws.push({"id": "x", "status": 200, "result": {}})

        with pytest.raises(AuthenticationError, match="serverTime"):
            await protocol.authenticate(ws)

    def test_error_object(self, protocol):
        """Verify error objects keep code and status"""
        err = protocol.extract_error({"id": "1", "status": 400, "error": {"code": -2010, "msg": "insufficient"}})

        assert isinstance(err, ApplicationError)
        assert err.code == -2010
        assert err.status == 400
        assert err.exchange == "binance"

    def test_bare_error_status(self, protocol):
        """Verify a 4xx status without an error object is still a rejection"""
        err = protocol.extract_error({"id": "1", "status": 429})

        assert err.is_rate_limited

    def test_success(self, protocol):
        """Verify a 200 response is not an error"""
        assert protocol.extract_error({"id": "1", "status": 200, "result": {}}) is None


# ============================================
# Tests for Session Integration
# ============================================

class TestSessionIntegration:
    """Tests running the protocol inside a WebSocketSession"""

    @pytest.mark.asyncio
    async def test_connect_subscribes_and_primes_balances(self, protocol):
        """Verify login, subscription and balance snapshot happen in order"""
        ws = FakeWebSocket(on_send=binance_responder)
        session = make_session(protocol, sockets=[ws])

        offset = await session.connect()

        assert offset == 25
        assert session.state is SessionState.READY
        assert [f["method"] for f in ws.sent] == ["session.logon", "userDataStream.subscribe", "account.status"]
        assert protocol.state.balance_amount("BTC") == Decimal("0.5")
        assert protocol.state.balance_amount("BTC", include_locked=True) == Decimal("0.6")
        assert protocol.state.balance_amount("USDT") == Decimal("1000")

        await session.close()

    @pytest.mark.asyncio
    async def test_push_reaches_state_and_bus(self, protocol, event_bus):
        """Verify a pushed execution report is cached and published"""
        orders = await event_bus.subscribe("binance.order")
        ws = FakeWebSocket(on_send=binance_responder)
        session = make_session(protocol, sockets=[ws])
        await session.connect()

        ws.push({"subscriptionId": 0, "event": EXECUTION_REPORT})
        event = await asyncio.wait_for(orders.get(), 1)

        assert event.order_id == "4293153"
        assert protocol.state.open_order_ids("BTCUSDT") == ["4293153"]

        await session.close()

    @pytest.mark.asyncio
    async def test_stream_terminated_reauthenticates(self, protocol):
        """Verify eventStreamTerminated reconnects the session"""
        first = FakeWebSocket(on_send=binance_responder)
        second = FakeWebSocket(on_send=binance_responder)
        session = make_session(protocol, sockets=[first, second])
        await session.connect()

        first.push({"subscriptionId": 0, "event": {"e": "eventStreamTerminated", "E": 1704110400000}})

        await wait_until(lambda: len(second.sent) == 3 and session.state is SessionState.READY)
        assert second.sent[0]["method"] == "session.logon"

        await session.close()


# ============================================
# Tests for Push Handling
# ============================================

class TestPushHandling:
    """Tests for handle_push() in isolation"""

    @pytest.mark.asyncio
    async def test_account_position(self, protocol, event_bus):
        """Verify outboundAccountPosition updates balances and publishes them"""
        balances = await event_bus.subscribe("binance.balance")

        protocol.handle_push({"subscriptionId": 0, "event": {
            "e": "outboundAccountPosition",
            "E": 1704110400000,
            "B": [{"a": "ETH", "f": "10000.000000", "l": "0.000000"}],
        }})

        assert protocol.state.balance_amount("ETH") == Decimal("10000")
        event = balances.get_nowait()
        assert event.asset == "ETH"
        assert event.exchange == "binance"
        assert event.timestamp.year == 2024

    @pytest.mark.asyncio
    async def test_final_execution_report_removes_order(self, protocol, event_bus):
        """Verify a filled order leaves the open order cache"""
        protocol.handle_push({"event": EXECUTION_REPORT})
        protocol.handle_push({"event": dict(EXECUTION_REPORT, X="FILLED", z="0.00100000")})

        assert protocol.state.get_order("4293153") is None

    @pytest.mark.asyncio
    async def test_unknown_event_published_raw(self, protocol, event_bus):
        """Verify events without a normalized form go to the raw topic"""
        raw = await event_bus.subscribe("binance.raw")

        protocol.handle_push({"event": {"e": "balanceUpdate", "a": "BTC", "d": "1"}})

        assert raw.get_nowait()["e"] == "balanceUpdate"

    def test_stream_terminated_requests_recovery(self, protocol):
        """Verify the handler asks the session for recovery without blocking"""
        protocol._session = MagicMock()

        protocol.handle_push({"event": {"e": "eventStreamTerminated", "E": 1}})

        protocol._session.request_recovery.assert_called_once()

    def test_non_object_frame_ignored(self, protocol):
        """Verify non-object frames are dropped quietly"""
        assert protocol.handle_push([1, 2]) is None


# ============================================
# Tests for Order Results and Client
# ============================================

class TestOrders:
    """Tests for order parsing and BinanceClient requests"""

    def test_parse_limit_order(self):
        """Verify an order.place result is normalized"""
        order = parse_order_result({
            "symbol": "BTCUSDT",
            "orderId": 12569099453,
            "transactTime": 1704110400000,
            "price": "23416.10000000",
            "origQty": "0.00847000",
            "executedQty": "0.00000000",
            "origQuoteOrderQty": "0.000000",
            "status": "NEW",
            "timeInForce": "GTC",
            "type": "LIMIT",
            "side": "SELL",
        })

        assert order.order_id == "12569099453"
        assert order.status is OrderStatus.OPEN
        assert order.quantity == Decimal("0.00847")
        assert order.tif is TimeInForce.GTC
        assert order.is_quote_quantity is False

    def test_parse_quote_quantity_order(self):
        """Verify quote-sized orders take their size from origQuoteOrderQty"""
        order = parse_order_result({
            "symbol": "BTCUSDT",
            "orderId": 1,
            "origQty": "0.00000000",
            "origQuoteOrderQty": "100.00000000",
            "status": "FILLED",
            "side": "BUY",
        })

        assert order.is_quote_quantity is True
        assert order.quantity == Decimal("100")
        assert order.status is OrderStatus.FILLED

    @pytest.mark.asyncio
    async def test_limit_buy_request(self, private_key, event_bus):
        """Verify limit_buy sends order.place with the order timeout and caches the order"""
        client = BinanceClient("test-api-key", private_key, testnet=True, bus=event_bus)
        client.session.send_request = AsyncMock(return_value={"id": "1", "status": 200, "result": {
            "symbol": "BTCUSDT", "orderId": 77, "price": "50000", "origQty": "0.001",
            "executedQty": "0", "status": "NEW", "timeInForce": "IOC", "side": "BUY",
        }})

        order = await client.limit_buy("BTCUSDT", Decimal("0.001"), Decimal("50000"), TimeInForce.IOC)

        request = client.session.send_request.call_args.args[0]
        assert request["method"] == "order.place"
        assert request["params"]["type"] == "LIMIT"
        assert request["params"]["timeInForce"] == "IOC"
        assert request["params"]["quantity"] == "0.001"
        assert request["params"]["price"] == "50000"
        assert "timeout" in client.session.send_request.call_args.kwargs
        assert order.order_id == "77"
        assert client.state.open_order_ids() == ["77"]
        assert client.url == BINANCE_TESTNET_WS_URL

    @pytest.mark.asyncio
    async def test_cancel_order_request(self, private_key, event_bus):
        """Verify cancel_order sends a numeric order id and drops the cached order"""
        client = BinanceClient("test-api-key", private_key, bus=event_bus)
        client.state.upsert_order(parse_order_result({"symbol": "BTCUSDT", "orderId": 77, "status": "NEW", "side": "BUY"}))
        client.session.send_request = AsyncMock(return_value={"id": "1", "status": 200, "result": {
            "symbol": "BTCUSDT", "orderId": 77, "status": "CANCELED", "side": "BUY",
        }})

        order = await client.cancel_order("BTCUSDT", "77")

        request = client.session.send_request.call_args.args[0]
        assert request["method"] == "order.cancel"
        assert request["params"]["orderId"] == 77
        assert order.status is OrderStatus.CANCELED
        assert client.state.get_order("77") is None
