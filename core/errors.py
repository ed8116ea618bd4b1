"""
Session Error Taxonomy

Every failure the WebSocket session surfaces is one of these classes, so
callers can tell apart outcomes that need different handling:

    TransportError       - dial/read/write failed at the socket level
      WriteError         - the request never reached the exchange (retryable)
    AuthenticationError  - the exchange refused the login handshake
    ApplicationError     - the exchange answered and rejected the request
    ConnectionLostError  - the connection dropped while a request was in flight;
                           the request may or may not have been executed
    RequestTimeoutError  - a caller-imposed wait expired (also ambiguous)

Usage:
    try:
        resp = await session.send_request(req)
    except ApplicationError as e:
        if e.is_rate_limited:
            ...
    except ConnectionLostError:
        # reconcile with a state query before retrying
        ...
"""

from typing import Any, Optional


class SessionError(Exception):
    """Base class for all WebSocket session errors."""


class NotConnectedError(SessionError):
    """Raised when a request is made while the session is not ready."""

    def __init__(self, message: str = "WebSocket session is not connected"):
        super().__init__(message)


class InvalidStateError(SessionError):
    """Raised when a lifecycle operation is not valid in the current state."""


class TransportError(SessionError):
    """Socket-level failure while dialing, reading or writing."""


class WriteError(TransportError):
    """The request frame could not be written; it never reached the exchange."""

    temporary = True


class AuthenticationError(SessionError):
    """The exchange rejected the authentication handshake."""


class ConnectionLostError(SessionError):
    """The connection dropped while the request was outstanding."""

    def __init__(self, message: str = "WebSocket connection lost"):
        super().__init__(message)


class RequestTimeoutError(SessionError):
    """No response arrived within the caller's timeout."""


class RequestIdError(SessionError):
    """The protocol could not assign a correlation id to a request."""


class DuplicateRequestIdError(SessionError):
    """A request with the same correlation id is already outstanding."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request id '{request_id}' is already outstanding")


class ApplicationError(SessionError):
    """
    The exchange explicitly rejected a request.

    Attributes:
        code: Exchange error code (e.g., -2010 on Binance, 10001 on Bybit)
        message: Exchange error message
        status: HTTP-like status carried by the frame, when the exchange sends one
        frame: The full response frame
    """

    def __init__(
        self,
        code: Any,
        message: str = "",
        status: Optional[int] = None,
        frame: Optional[dict] = None,
        exchange: str = ""
    ):
        self.code = code
        self.message = message
        self.status = status
        self.frame = frame
        self.exchange = exchange

        prefix = f"{exchange} " if exchange else ""
        status_str = f" (status {status})" if status is not None else ""
        super().__init__(f"{prefix}error {code}{status_str}: {message}")

    @property
    def is_rate_limited(self) -> bool:
        return self.status in (429, 418)

    @property
    def is_server_error(self) -> bool:
        return self.status is not None and self.status >= 500

    @property
    def temporary(self) -> bool:
        return self.is_rate_limited or self.is_server_error


def is_temporary(err: BaseException) -> bool:
    """
    Check whether an error is worth retrying as-is.

    Walks the ``__cause__`` chain so wrapped errors are classified by their root.
    """
    while err is not None:
        if getattr(err, "temporary", False):
            return True
        err = err.__cause__
    return False
