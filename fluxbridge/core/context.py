"""Cancellable call context and fixed-interval polling.

A ``Context`` couples a cancellation flag with an optional monotonic
deadline.  Children created with ``with_timeout`` share the parent's
cancellation but may carry a tighter deadline, so cancelling the caller
aborts every wait below it.

``poll_until`` is the single blocking primitive used by the drivers.  It
sleeps on the context between attempts, so cancellation wakes it
immediately and it never runs faster than the configured interval.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from fluxbridge.errors import CancelledError, ConvergenceTimeoutError, FluxBridgeError


class Context:
    """Cancellation and deadline carrier passed to every blocking call.

    Parameters
    ----------
    deadline:
        Absolute ``time.monotonic()`` value after which the context is
        expired, or ``None`` for no deadline.
    """

    def __init__(
        self,
        *,
        deadline: float | None = None,
        _event: threading.Event | None = None,
    ) -> None:
        self._event = _event or threading.Event()
        self._deadline = deadline

    @classmethod
    def background(cls) -> Context:
        """Return a context that is never cancelled and has no deadline."""
        return cls()

    def with_timeout(self, seconds: float) -> Context:
        """Derive a child context expiring ``seconds`` from now."""
        deadline = time.monotonic() + seconds
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        return Context(deadline=deadline, _event=self._event)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds until the deadline, or ``None`` when unbounded."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def check(self) -> None:
        """Raise ``CancelledError`` if the context has been cancelled."""
        if self.cancelled:
            raise CancelledError("context cancelled")

    def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``, waking early on cancel or deadline.

        Returns ``False`` if the context is done when the wait ends.
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            self._event.wait(seconds)
        return not self.done


def poll_until(
    ctx: Context,
    interval: float,
    condition: Callable[[], bool],
    *,
    immediate: bool = True,
    on_deadline: type[FluxBridgeError] = ConvergenceTimeoutError,
) -> None:
    """Call ``condition`` every ``interval`` seconds until it returns True.

    Exceptions raised by ``condition`` abort the poll unchanged.  Waits that
    are bounded only by the caller pass ``on_deadline=CancelledError`` so an
    expired caller deadline reads as a cancellation.

    Raises
    ------
    CancelledError
        If ``ctx`` is cancelled before the condition is met.
    ConvergenceTimeoutError
        If ``ctx`` reaches its deadline before the condition is met, unless
        ``on_deadline`` names another error class.
    """
    if interval <= 0:
        raise ValueError("poll interval must be positive")

    if not immediate and not ctx.sleep(interval):
        _raise_done(ctx, on_deadline)

    while True:
        ctx.check()
        if ctx.expired:
            _raise_done(ctx, on_deadline)
        if condition():
            return
        if not ctx.sleep(interval):
            _raise_done(ctx, on_deadline)


def _raise_done(ctx: Context, on_deadline: type[FluxBridgeError]) -> None:
    if ctx.cancelled:
        raise CancelledError("context cancelled")
    if on_deadline is CancelledError:
        raise CancelledError("context deadline exceeded")
    raise on_deadline("timed out waiting for the condition")
