"""Push-based cancellation tokens.

A token is cancelled at most once. Listeners registered on it run
synchronously at cancellation time, which lets a consumer abort a pending
network read immediately instead of polling. Child tokens are linked to
their parent: cancelling a session cancels every request derived from it,
while releasing a child detaches it without touching the parent.
"""
import asyncio
from typing import Callable, List, Optional
import structlog

logger = structlog.get_logger()

Listener = Callable[[], None]


class CancellationToken:
    """Cancellation signal with listener registration and parent linking."""

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._listeners: List[Listener] = []
        self._parent = parent
        self._timer: Optional[asyncio.TimerHandle] = None
        self.reason: Optional[str] = None

        if parent is not None:
            if parent.cancelled:
                self.cancel(parent.reason)
            else:
                parent.add_listener(self._on_parent_cancelled)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = "cancelled") -> None:
        """Fire the token. Later calls are no-ops."""
        if self.cancelled:
            return

        self.reason = reason
        self._event.set()
        self._clear_timer()

        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(
                    "cancellation_listener_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def child(self) -> "CancellationToken":
        """Derive a token that is cancelled whenever this one is."""
        return CancellationToken(parent=self)

    def cancel_after(self, seconds: float) -> None:
        """Cancel with reason ``timeout`` after ``seconds`` on the running loop."""
        self._clear_timer()
        if self.cancelled or seconds <= 0:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(seconds, self.cancel, "timeout")

    async def wait(self) -> None:
        await self._event.wait()

    def release(self) -> None:
        """Detach from the parent and drop any pending timer."""
        self._clear_timer()
        if self._parent is not None:
            self._parent.remove_listener(self._on_parent_cancelled)
            self._parent = None

    def _on_parent_cancelled(self) -> None:
        self.cancel(self._parent.reason if self._parent else "cancelled")

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def __enter__(self) -> "CancellationToken":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
