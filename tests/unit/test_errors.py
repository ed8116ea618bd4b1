"""
Unit Tests for the Session Error Taxonomy

Run with:
    pytest tests/unit/test_errors.py -v
"""

import pytest

from core.errors import (
    ApplicationError,
    AuthenticationError,
    ConnectionLostError,
    DuplicateRequestIdError,
    NotConnectedError,
    RequestTimeoutError,
    SessionError,
    TransportError,
    WriteError,
    is_temporary,
)


class TestHierarchy:
    """Tests for class relationships and default messages"""

    @pytest.mark.parametrize("error_cls", [
        NotConnectedError, TransportError, WriteError, AuthenticationError,
        ConnectionLostError, RequestTimeoutError,
    ])
    def test_all_errors_are_session_errors(self, error_cls):
        """Verify every error can be caught as SessionError"""
        assert issubclass(error_cls, SessionError)

    def test_write_error_is_transport_error(self):
        """Verify write failures are a kind of transport failure"""
        assert issubclass(WriteError, TransportError)

    def test_default_messages(self):
        """Verify errors raised without arguments still describe themselves"""
        assert "not connected" in str(NotConnectedError())
        assert "lost" in str(ConnectionLostError())

    def test_duplicate_id_keeps_id(self):
        """Verify the offending id is available on the exception"""
        err = DuplicateRequestIdError("R1")

        assert err.request_id == "R1"
        assert "R1" in str(err)


class TestApplicationError:
    """Tests for ApplicationError"""

    def test_message_format(self):
        """Verify the message carries exchange, code, status and text"""
        err = ApplicationError(-2010, "Account has insufficient balance", status=400, exchange="binance")

        assert str(err) == "binance error -2010 (status 400): Account has insufficient balance"
        assert err.code == -2010
        assert err.status == 400

    def test_rate_limit_is_temporary(self):
        """Verify 429 and 418 are treated as rate limits"""
        assert ApplicationError(-1003, status=429).is_rate_limited
        assert ApplicationError(-1003, status=418).is_rate_limited
        assert ApplicationError(-1003, status=429).temporary

    def test_server_error_is_temporary(self):
        """Verify 5xx statuses are retryable"""
        assert ApplicationError(-1001, status=503).is_server_error
        assert ApplicationError(-1001, status=503).temporary

    def test_rejection_is_not_temporary(self):
        """Verify a plain rejection or a missing status is final"""
        assert not ApplicationError(-2010, status=400).temporary
        assert not ApplicationError(10001).temporary


class TestIsTemporary:
    """Tests for is_temporary()"""

    def test_write_error(self):
        """Verify a failed write is retryable"""
        assert is_temporary(WriteError("broken pipe"))

    def test_ambiguous_outcomes_are_not_temporary(self):
        """Verify lost connections and timeouts are never blindly retryable"""
        assert not is_temporary(ConnectionLostError())
        assert not is_temporary(RequestTimeoutError("timed out"))
        assert not is_temporary(AuthenticationError("bad key"))

    def test_walks_cause_chain(self):
        """Verify a wrapped temporary error is detected through __cause__"""
        try:
            try:
                raise WriteError("broken pipe")
            except WriteError as inner:
                raise RuntimeError("order failed") from inner
        except RuntimeError as outer:
            assert is_temporary(outer)

    def test_none(self):
        """Verify None is not temporary"""
        assert not is_temporary(None)
