"""Cooperative cancellation and deadlines for streaming reads.

Streams poll a context between storage calls. A transport adapter binds
the context to its own cancellation callbacks and deadlines.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from core.errors import ExportCancelledError, ExportDeadlineExceededError


class StreamContext:
    """Caller-owned cancellation flag and optional monotonic deadline."""

    def __init__(
        self,
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create a stream context.

        Args:
            timeout_seconds: Optional time budget from now.
            clock: Monotonic clock, injectable for tests.
        """
        self._clock = clock
        self._cancelled = threading.Event()
        self._deadline = None if timeout_seconds is None else clock() + timeout_seconds

    def cancel(self) -> None:
        """Signal cancellation to the stream polling this context."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        """Return whether cancellation was requested."""
        return self._cancelled.is_set()

    def time_remaining(self) -> float | None:
        """Return seconds left before the deadline, or ``None`` without one."""
        if self._deadline is None:
            return None
        return max(self._deadline - self._clock(), 0.0)

    def is_active(self) -> bool:
        """Return whether the stream may keep running."""
        remaining = self.time_remaining()
        return not self.cancelled and (remaining is None or remaining > 0.0)

    def raise_if_inactive(self) -> None:
        """Abort the current stream when cancelled or past the deadline.

        Raises:
            ExportCancelledError: If the caller cancelled.
            ExportDeadlineExceededError: If the deadline has passed.
        """
        if self.cancelled:
            raise ExportCancelledError("Stream cancelled by caller.")
        remaining = self.time_remaining()
        if remaining is not None and remaining <= 0.0:
            raise ExportDeadlineExceededError(
                "Stream deadline exceeded. Retry the whole read with a longer deadline."
            )


def check_active(context: StreamContext | None) -> None:
    """Poll an optional stream context."""
    if context is not None:
        context.raise_if_inactive()
