"""
Timers and cancellation for the client-side flows.

The viewer countdown, the time-up grace period, the devtools heuristic and
the subscription poll all run on a Scheduler so that tests can drive them
with a manual clock instead of real time.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class CancelToken:
    """Cancellation signal threaded through network calls and timers."""

    def __init__(self):
        self._event = threading.Event()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Run callback when cancelled (immediately if already cancelled)."""
        if self._event.is_set():
            callback()
        else:
            self._callbacks.append(callback)


class Scheduler(ABC):
    """Schedules one-shot and repeating callbacks; returns a timer id."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> int:
        ...

    @abstractmethod
    def call_every(self, interval: float, callback: Callable[[], None]) -> int:
        ...

    @abstractmethod
    def cancel(self, timer_id: int) -> None:
        ...


class ThreadingScheduler(Scheduler):
    """Real-time scheduler backed by threading.Timer."""

    def __init__(self):
        self._lock = threading.Lock()
        self._timers: Dict[int, threading.Timer] = {}
        self._repeating: Dict[int, bool] = {}
        self._next_id = 0

    def _allocate(self) -> int:
        with self._lock:
            self._next_id += 1
            return self._next_id

    def call_later(self, delay: float, callback: Callable[[], None]) -> int:
        timer_id = self._allocate()

        def fire():
            with self._lock:
                self._timers.pop(timer_id, None)
            callback()

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        with self._lock:
            self._timers[timer_id] = timer
        timer.start()
        return timer_id

    def call_every(self, interval: float, callback: Callable[[], None]) -> int:
        timer_id = self._allocate()
        with self._lock:
            self._repeating[timer_id] = True

        def arm():
            timer = threading.Timer(interval, fire)
            timer.daemon = True
            with self._lock:
                if not self._repeating.get(timer_id):
                    return
                self._timers[timer_id] = timer
            timer.start()

        def fire():
            with self._lock:
                active = self._repeating.get(timer_id, False)
            if not active:
                return
            try:
                callback()
            except Exception:
                logger.exception("Repeating timer %s raised", timer_id)
            arm()

        arm()
        return timer_id

    def cancel(self, timer_id: int) -> None:
        with self._lock:
            self._repeating.pop(timer_id, None)
            timer = self._timers.pop(timer_id, None)
        if timer is not None:
            timer.cancel()


def interruptible_sleep(seconds: float, token: Optional[CancelToken] = None) -> bool:
    """
    Sleep for the given time unless cancelled first.

    Returns:
        True when the full delay elapsed, False when cancelled.
    """
    if token is None:
        threading.Event().wait(seconds)
        return True
    return not token._event.wait(seconds)
