"""Per-client sliding window request limiter.

Design:
- One RateWindow per client identifier, holding request timestamps inside the
  trailing window and its own lock. Checks for different identifiers never
  contend on the same lock.
- The registry lock only guards lookup, creation and removal of windows.
- A background sweep drops identifiers whose window has emptied. A window
  removed by the sweep is marked retired so a check that raced with the sweep
  retries against a fresh window instead of writing into a dropped one.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import logging
import math
import threading
import time
from typing import Callable, Mapping

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_in: int


@dataclass
class RateWindow:
    timestamps: deque[float] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)
    retired: bool = False

    def prune(self, now: float, window_seconds: float) -> None:
        while self.timestamps and now - self.timestamps[0] >= window_seconds:
            self.timestamps.popleft()


class RateLimiter:
    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60,
        sweep_interval_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max(1, max_requests)
        self.window_seconds = window_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}
        self._registry_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def _window_for(self, identifier: str) -> RateWindow:
        with self._registry_lock:
            window = self._windows.get(identifier)
            if window is None:
                window = RateWindow()
                self._windows[identifier] = window
            return window

    def check(self, identifier: str) -> RateLimitDecision:
        while True:
            window = self._window_for(identifier)
            with window.lock:
                if window.retired:
                    continue
                now = self._clock()
                window.prune(now, self.window_seconds)
                if len(window.timestamps) >= self.max_requests:
                    oldest = window.timestamps[0]
                    reset_in = max(1, math.ceil(self.window_seconds - (now - oldest)))
                    return RateLimitDecision(allowed=False, remaining=0, reset_in=reset_in)
                window.timestamps.append(now)
                return RateLimitDecision(
                    allowed=True,
                    remaining=self.max_requests - len(window.timestamps),
                    reset_in=0,
                )

    def sweep(self) -> int:
        """Remove identifiers with no requests left in the window; returns how many."""
        removed = 0
        with self._registry_lock:
            now = self._clock()
            for identifier in list(self._windows):
                window = self._windows[identifier]
                with window.lock:
                    window.prune(now, self.window_seconds)
                    if window.timestamps:
                        continue
                    window.retired = True
                    del self._windows[identifier]
                    removed += 1
        if removed:
            logger.debug("Rate limiter sweep removed %d idle clients", removed)
        return removed

    def tracked_clients(self) -> int:
        with self._registry_lock:
            return len(self._windows)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="rate-limit-sweep", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.sweep_interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception("Rate limiter sweep failed")


def client_identifier(headers: Mapping[str, str], socket_address: str | None = None) -> str:
    forwarded = (headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    return socket_address or UNKNOWN_CLIENT
