"""Cancellation scope — the token that binds every process of one execution."""

from __future__ import annotations

import itertools
import threading
from typing import Callable, Optional


class CancelScope:
    """Thread-safe cancellation token with parent → child propagation.

    Cancelling a scope runs its registered callbacks exactly once and
    cancels every scope derived from it.  Cancelling a child never affects
    its parent.

    Use as a context manager to guarantee cancellation on exit::

        with CancelScope(parent) as scope:
            ...  # every process bound to ``scope`` is terminated on exit

    ``timeout`` arms a daemon timer that cancels the scope with reason
    ``"deadline exceeded"``.
    """

    def __init__(
        self, parent: Optional["CancelScope"] = None, *, timeout: float | None = None
    ) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._ids = itertools.count()
        self._reason: str | None = None
        self._parent = parent
        self._parent_handle: int | None = None
        self._timer: threading.Timer | None = None

        if parent is not None:
            self._parent_handle = parent.on_cancel(self._cancel_from_parent)
        if timeout is not None and not self.cancelled:
            self._timer = threading.Timer(
                timeout, self.cancel, kwargs={"reason": "deadline exceeded"}
            )
            self._timer.daemon = True
            self._timer.start()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Why the scope was cancelled, or ``None`` while still live."""
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled; return ``False`` if *timeout* elapsed first."""
        return self._event.wait(timeout)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def on_cancel(self, callback: Callable[[], None]) -> int | None:
        """Register *callback* to run on cancellation.

        Returns a handle for ``remove_callback``.  If the scope is already
        cancelled the callback runs immediately and ``None`` is returned.
        """
        with self._lock:
            if not self._event.is_set():
                handle = next(self._ids)
                self._callbacks[handle] = callback
                return handle
        callback()
        return None

    def remove_callback(self, handle: int | None) -> None:
        if handle is None:
            return
        with self._lock:
            self._callbacks.pop(handle, None)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel the scope.  Idempotent; only the first reason is kept."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        if self._timer is not None:
            self._timer.cancel()
        if self._parent is not None:
            self._parent.remove_callback(self._parent_handle)

        for callback in callbacks:
            callback()

    def _cancel_from_parent(self) -> None:
        self.cancel(reason=self._parent.reason or "cancelled")

    def child(self, timeout: float | None = None) -> "CancelScope":
        """Derive a scope that is cancelled whenever this one is."""
        return CancelScope(self, timeout=timeout)

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "CancelScope":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()

    def __repr__(self) -> str:
        state = f"cancelled={self._reason!r}" if self.cancelled else "live"
        return f"CancelScope({state})"


def background() -> CancelScope:
    """Return a fresh root scope that nothing else cancels."""
    return CancelScope()
