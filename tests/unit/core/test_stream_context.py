"""Unit tests for cooperative stream cancellation."""

from __future__ import annotations

import pytest

from core.errors import ExportCancelledError, ExportDeadlineExceededError
from core.stream_context import StreamContext, check_active


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_context_without_deadline_stays_active() -> None:
    """A fresh context without timeout should be active."""
    context = StreamContext()

    assert context.is_active() and context.time_remaining() is None


def test_cancel_raises_cancelled_error() -> None:
    """Cancellation should abort the next poll."""
    context = StreamContext()
    context.cancel()

    with pytest.raises(ExportCancelledError):
        check_active(context)

    assert context.cancelled


def test_deadline_raises_after_clock_passes() -> None:
    """Polling past the deadline should raise deadline exceeded."""
    clock = _FakeClock()
    context = StreamContext(timeout_seconds=5.0, clock=clock)
    clock.now += 6.0

    with pytest.raises(ExportDeadlineExceededError):
        context.raise_if_inactive()

    assert context.time_remaining() == 0.0


def test_check_active_accepts_missing_context() -> None:
    """Polling without a context should be a no-op."""
    check_active(None)

    assert True
