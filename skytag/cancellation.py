"""Cooperative cancellation for provisioning and teardown calls.

A token is threaded through every suspension point (poll sleeps, launch-cycle
backoff, worker-pool barriers). Cancelling it makes the next suspension point
raise CancelledError.

Example:
    token = CancellationToken.with_timeout(600)
    service.run_nodes_with_tag("web", 3, template, token=token)
"""

from __future__ import annotations

import threading
import time

from skytag.core.exceptions import CancelledError


class CancellationToken:
    __slots__ = ("_event", "_deadline", "_reason")

    def __init__(self, deadline: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = deadline
        self._reason = "cancelled"

    @classmethod
    def with_timeout(cls, seconds: float) -> CancellationToken:
        """Token that cancels itself ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._reason = "deadline exceeded"
            self._event.set()
            return True
        return False

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError(self._reason)

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``, waking early and raising if cancelled."""
        end = time.monotonic() + seconds
        while True:
            self.raise_if_cancelled()
            remaining = end - time.monotonic()
            if remaining <= 0:
                return
            if self._deadline is not None:
                remaining = min(remaining, max(0.0, self._deadline - time.monotonic()))
            self._event.wait(remaining)
