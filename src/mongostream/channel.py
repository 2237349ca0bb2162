"""
Delivery channel between the ingestion pump and the connector's read path.
"""

import threading
import time
from collections import deque
from typing import Deque, Generic, Optional, TypeVar

from .errors import EndOfInput, ReadTimeoutError

T = TypeVar("T")


class DeliveryChannel(Generic[T]):
    """
    FIFO handoff with close and failure signalling.

    One producer thread calls `put`, one consumer calls `get`. The channel
    ends in one of three ways:
    - `close()`: buffered items are discarded, every waiter is released and
      all later `get` calls raise EndOfInput
    - `finish()`: the producer ran out of input; `get` drains what is
      buffered, then raises EndOfInput
    - `fail(error)`: the producer died; `get` drains what is buffered, then
      raises `error`

    Thread Safety: YES (single Condition guards all state)
    """

    def __init__(self, capacity: int = 0):
        """
        Args:
            capacity: Max buffered items; 0 means unbounded
        """
        if capacity < 0:
            raise ValueError("capacity must be non-negative")
        self.capacity = capacity
        self._items: Deque[T] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._finished = False
        self._error: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def _is_full(self) -> bool:
        return self.capacity > 0 and len(self._items) >= self.capacity

    def _is_ended(self) -> bool:
        return self._closed or self._finished or self._error is not None

    def put(self, item: T, timeout: Optional[float] = None) -> bool:
        """
        Append an item, blocking while a bounded channel is full.

        Returns:
            True if the item was accepted, False if the channel ended before
            there was room (or the timeout expired)
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._is_ended() and self._is_full():
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            if self._is_ended():
                return False
            self._items.append(item)
            self._cond.notify_all()
            return True

    def get(self, timeout: Optional[float] = None) -> T:
        """
        Remove and return the oldest item, blocking while the channel is empty.

        Raises:
            EndOfInput: Channel closed, or finished and drained
            ReadTimeoutError: Nothing arrived within `timeout` seconds
            BaseException: The producer's error, once drained
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._closed:
                    raise EndOfInput("channel closed")
                if self._items:
                    item = self._items.popleft()
                    self._cond.notify_all()
                    return item
                if self._error is not None:
                    # Reset so repeated reads do not stack tracebacks on one instance
                    raise self._error.with_traceback(None)
                if self._finished:
                    raise EndOfInput("input exhausted")
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise ReadTimeoutError(f"no event within {timeout}s")
                self._cond.wait(remaining)

    def finish(self) -> None:
        with self._cond:
            self._finished = True
            self._cond.notify_all()

    def fail(self, error: BaseException) -> None:
        with self._cond:
            if self._error is None:
                self._error = error
            self._cond.notify_all()

    def close(self) -> None:
        """Discard buffered items and release all waiters. Idempotent."""
        with self._cond:
            self._closed = True
            self._items.clear()
            self._cond.notify_all()
