"""Polling helpers that block until a condition is met."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

DEFAULT_POLL_TIMEOUT = 5 * 60.0
DEFAULT_POLL_INTERVAL = 5.0

ConditionFunc = Callable[[], bool]


class WaitTimeoutError(TimeoutError):
    """Raised when a condition was not met in the time allowed."""

    def __init__(self, message: str = "timed out waiting for the condition") -> None:
        super().__init__(message)


class WaitStoppedError(WaitTimeoutError):
    """Raised when the stop event was set before the condition was met."""


def wait_for(
    condition: ConditionFunc,
    *,
    interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float = DEFAULT_POLL_TIMEOUT,
    stop_event: threading.Event | None = None,
    immediate: bool = False,
) -> None:
    """Poll ``condition`` every ``interval`` seconds until it returns true.

    Without a ``stop_event`` polling ends with :class:`WaitTimeoutError` once
    ``timeout`` seconds have passed. With a ``stop_event`` the timeout is
    ignored and polling ends with :class:`WaitStoppedError` once the event is
    set. When ``immediate`` is true the condition is checked once before the
    first interval elapses. Exceptions raised by the condition propagate.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")
    if stop_event is not None:
        _poll_until(condition, interval, stop_event, immediate)
    else:
        _poll(condition, interval, timeout, immediate)


def _poll_until(
    condition: ConditionFunc,
    interval: float,
    stop_event: threading.Event,
    immediate: bool,
) -> None:
    if immediate:
        if condition():
            return
        if stop_event.is_set():
            raise WaitStoppedError()
    while True:
        if stop_event.wait(interval):
            raise WaitStoppedError()
        if condition():
            return


def _poll(condition: ConditionFunc, interval: float, timeout: float, immediate: bool) -> None:
    deadline = time.monotonic() + timeout
    if immediate and condition():
        return
    while True:
        remaining = deadline - time.monotonic()
        if remaining < interval:
            if remaining > 0:
                time.sleep(remaining)
            raise WaitTimeoutError()
        time.sleep(interval)
        if condition():
            return