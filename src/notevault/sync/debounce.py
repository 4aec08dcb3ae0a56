"""
Debounced calls -- only the trailing trigger after a quiet period fires.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger("notevault.sync.debounce")

DEFAULT_DELAY = 1.0


class Debouncer:
    """Cancellable trailing-edge timer around a callback.

    Each :meth:`trigger` replaces the pending call and restarts the
    delay. :meth:`cancel` drops the pending call; :meth:`flush` runs it
    right away on the calling thread, after any call the timer already
    started has finished.
    """

    def __init__(self, callback: Callable[..., Any], delay: float = DEFAULT_DELAY):
        self.callback = callback
        self.delay = delay
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._timer: Optional[threading.Timer] = None
        self._args: tuple = ()
        self._generation = 0
        self._running = 0

    @property
    def pending(self) -> bool:
        """True while a call is waiting for its quiet period."""
        with self._lock:
            return self._timer is not None

    @property
    def running(self) -> bool:
        """True while a timer-fired call is executing."""
        with self._lock:
            return self._running > 0

    def trigger(self, *args: Any) -> None:
        """Schedule ``callback(*args)``, replacing any pending call."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._args = args
            self._timer = threading.Timer(
                self.delay, self._fire, args=(self._generation,)
            )
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> bool:
        """Drop the pending call.

        A call the timer already started keeps running.

        Returns:
            True if a call was pending.
        """
        with self._lock:
            return self._take() is not None

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for timer-fired calls to finish.

        Must not be called from inside the callback.

        Returns:
            False if ``timeout`` expired first.
        """
        with self._lock:
            return self._idle.wait_for(lambda: self._running == 0, timeout)

    def flush(self) -> Any:
        """Wait for an in-flight call, then run the pending call now.

        Returns:
            The pending callback's return value, or None if nothing was
            pending.
        """
        with self._lock:
            args = self._take()
            self._idle.wait_for(lambda: self._running == 0)
        if args is None:
            return None
        return self.callback(*args)

    def _take(self) -> Optional[tuple]:
        # caller holds self._lock
        if self._timer is None:
            return None
        self._timer.cancel()
        self._timer = None
        self._generation += 1
        args, self._args = self._args, ()
        return args

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._timer is None:
                return
            self._timer = None
            args, self._args = self._args, ()
            self._running += 1
        try:
            self.callback(*args)
        except Exception:
            logger.exception("Debounced callback failed")
        finally:
            with self._lock:
                self._running -= 1
                self._idle.notify_all()
