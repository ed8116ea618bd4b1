"""
Correlation Table

Maps the correlation id of every outstanding request to the future its caller
is awaiting. A request lives in the table from registration until exactly one
of {matching response, connection failure} completes it.

Invariant: at most one PendingRequest per id at any instant.

The table is guarded by its own lock, separate from the socket write lock,
so registering or resolving one request never waits behind unrelated I/O.
None of its methods await, so the lock is never held across a suspension.
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from core.errors import DuplicateRequestIdError


def _clone_error(error: BaseException) -> BaseException:
    """Shallow copy of an exception that keeps args and attributes without re-running __init__."""
    clone = type(error).__new__(type(error), *error.args)
    clone.__dict__.update(error.__dict__)
    return clone


@dataclass
class PendingRequest:
    """One in-flight correlated call."""

    request_id: str
    future: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)

    def complete(self, payload: Optional[dict], error: Optional[BaseException] = None) -> bool:
        """
        Signal the completion slot. Returns False if it was already signaled.
        """
        if self.future.done():
            return False
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(payload)
        return True

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at


class CorrelationTable:
    """
    Thread-safe mapping from correlation id to PendingRequest.

    Example:
        >>> table = CorrelationTable()
        >>> pending = table.register("R1")
        >>> table.resolve("R1", {"id": "R1", "result": {}})
        True
        >>> table.resolve("R1", {"id": "R1"})  # late duplicate is dropped
        False
    """

    def __init__(self):
        self._pending: Dict[str, PendingRequest] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._pending

    def register(self, request_id: str, loop: Optional[asyncio.AbstractEventLoop] = None) -> PendingRequest:
        """
        Register a waiter for ``request_id``.

        Raises:
            DuplicateRequestIdError: If the id is already outstanding
        """
        loop = loop or asyncio.get_running_loop()
        with self._lock:
            if request_id in self._pending:
                raise DuplicateRequestIdError(request_id)
            pending = PendingRequest(request_id=request_id, future=loop.create_future())
            self._pending[request_id] = pending
        return pending

    def take(self, request_id: str) -> Optional[PendingRequest]:
        """Remove and return the waiter for ``request_id``, if any."""
        with self._lock:
            return self._pending.pop(request_id, None)

    def discard(self, request_id: str, pending: Optional[PendingRequest] = None) -> None:
        """
        Drop a waiter without signaling it.

        If ``pending`` is given, only that exact registration is removed, so a
        newer request that reused the id is left alone.
        """
        with self._lock:
            current = self._pending.get(request_id)
            if current is not None and (pending is None or current is pending):
                del self._pending[request_id]

    def resolve(self, request_id: str, payload: Optional[dict], error: Optional[BaseException] = None) -> bool:
        """
        Complete the waiter for ``request_id``.

        Returns:
            True if a waiter was found and signaled; False if the id is unknown
            (a late response after the request was already failed).
        """
        pending = self.take(request_id)
        if pending is None:
            return False
        return pending.complete(payload, error)

    def fail_all(self, error: BaseException) -> int:
        """
        Fail every outstanding request with ``error`` and clear the table.

        Each waiter gets its own copy of ``error`` so callers re-raising it do
        not share one traceback.

        Returns:
            Number of waiters that were signaled
        """
        with self._lock:
            drained = list(self._pending.values())
            self._pending.clear()

        failed = 0
        for pending in drained:
            if pending.complete(None, _clone_error(error)):
                failed += 1
        return failed
