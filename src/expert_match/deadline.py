"""Request deadline and cooperative cancellation."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

from expert_match.errors import DeadlineExceededError

_POLL_SECONDS = 0.05


class Deadline:
    """Wall-clock budget shared by every step of one request.

    `wait` distinguishes two outcomes: a per-call timeout that is shorter than
    the remaining budget raises `concurrent.futures.TimeoutError`, while expiry
    of the budget itself (or `cancel`) raises `DeadlineExceededError`.
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._expires_at = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return self.cancelled or (remaining is not None and remaining <= 0.0)

    def check(self) -> None:
        if self.cancelled:
            raise DeadlineExceededError("request was cancelled")
        if self.expired():
            raise DeadlineExceededError("request deadline exceeded")

    def bound(self, timeout: float | None) -> float | None:
        """Clamp a per-call timeout to the remaining request budget."""
        remaining = self.remaining()
        if remaining is None:
            return timeout
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    def wait(self, future: Future[Any], timeout: float | None = None) -> Any:
        started = time.monotonic()
        while True:
            self.check()
            if future.done():
                return future.result()
            slice_seconds = _POLL_SECONDS
            if timeout is not None:
                left = timeout - (time.monotonic() - started)
                if left <= 0.0:
                    raise FutureTimeoutError()
                slice_seconds = min(slice_seconds, left)
            remaining = self.remaining()
            if remaining is not None:
                slice_seconds = min(slice_seconds, max(remaining, 0.001))
            try:
                return future.result(timeout=slice_seconds)
            except FutureTimeoutError:
                if future.done():
                    raise
                continue
