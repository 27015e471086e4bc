"""Countdown timer for a timed assessment session."""

import math
import threading
import time
from typing import Callable, Iterable, Optional

import config


class Timer:
    """Wall-clock countdown with a one-shot expiry callback.

    Runs in a daemon thread that wakes once a second. Remaining time is
    derived from a fixed deadline rather than by counting ticks, so a
    thread that was starved or a machine that slept catches up in one step
    and still fires ``on_expire`` exactly once.

    ``threaded=False`` skips the thread; the owner then calls :meth:`tick`
    itself (tests drive a fake clock this way).
    """

    def __init__(
        self,
        total_seconds: int,
        on_expire: Optional[Callable[[], None]] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        on_warning: Optional[Callable[[int], None]] = None,
        warning_seconds: Iterable[int] = config.TIMER_WARNING_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        threaded: bool = True,
    ):
        self.total_seconds = max(0, int(total_seconds))
        self.remaining = self.total_seconds
        self.time_up = threading.Event()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._on_warning = on_warning
        self._pending_warnings = sorted(set(warning_seconds), reverse=True)
        self._clock = clock
        self._threaded = threaded
        self._deadline: Optional[float] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        if self._deadline is not None:
            return
        self._deadline = self._clock() + self.total_seconds
        # Drop warnings the countdown already starts below.
        self._pending_warnings = [w for w in self._pending_warnings if w < self.total_seconds]
        if self.total_seconds <= 0:
            self._expire()
            return
        if self._threaded:
            self._thread = threading.Thread(target=self._run, name="countdown", daemon=True)
            self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(1):
            self.tick()
            if self.time_up.is_set():
                break

    def tick(self) -> int:
        """Recompute remaining seconds from the clock and fire callbacks."""
        if self._deadline is None or self._stop_event.is_set() or self.time_up.is_set():
            return self.get_remaining()

        current = self.get_remaining()

        if self._on_tick:
            self._on_tick(current)

        crossed = [w for w in self._pending_warnings if current <= w]
        if crossed and current > 0:
            self._pending_warnings = [w for w in self._pending_warnings if current > w]
            if self._on_warning:
                self._on_warning(min(crossed))

        if current <= 0:
            self._expire()
        return current

    def _expire(self) -> None:
        with self._lock:
            if self.time_up.is_set():
                return
            self.remaining = 0
            self.time_up.set()
        if self._on_expire:
            self._on_expire()

    def stop(self) -> None:
        # Freeze remaining at the moment of stopping.
        self.get_remaining()
        self._stop_event.set()
        if (
            self._thread
            and self._thread.is_alive()
            and self._thread is not threading.current_thread()
        ):
            self._thread.join(timeout=2)

    def is_running(self) -> bool:
        return self._deadline is not None and not self._stop_event.is_set() and not self.time_up.is_set()

    def is_time_up(self) -> bool:
        return self.time_up.is_set()

    def get_remaining(self) -> int:
        with self._lock:
            if self._deadline is not None and not self.time_up.is_set() and not self._stop_event.is_set():
                left = max(0, math.floor(self._deadline - self._clock()))
                # Never count back up, even if the clock misbehaves.
                self.remaining = min(self.remaining, left)
            return self.remaining

    def get_formatted_remaining(self) -> str:
        return format_seconds(self.get_remaining())

    def get_elapsed(self) -> int:
        return self.total_seconds - self.get_remaining()


def format_seconds(seconds: int) -> str:
    """``MM:SS``, or ``HH:MM:SS`` once an hour or more is left."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    mins, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{mins:02d}:{secs:02d}"
    return f"{mins:02d}:{secs:02d}"
