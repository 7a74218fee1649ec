"""Admission gate: fixed-window run-creation allowance per caller.

Each caller key (for the HTTP API, the client address) may create ``limit``
runs per ``window_seconds``. The window starts at the caller's first attempt
and is not sliding: a burst at the end of one window followed by a burst at
the start of the next is accepted.

The counter store is handed in by whoever owns the gate (the API app keeps
one per process), and every read-modify-write of a key happens under a lock
so concurrent submissions from the same caller cannot undercount.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, MutableMapping

from .config import DEFAULT_RATE_LIMIT_REQUESTS, DEFAULT_RATE_LIMIT_WINDOW_SECONDS
from .exceptions import AdmissionRejected
from .logging_config import get_logger

logger = get_logger("admission")


@dataclass(slots=True)
class WindowCounter:
    """Attempts seen for one caller in its current window."""

    count: int
    reset_at: float


@dataclass(slots=True)
class AdmissionDecision:
    admitted: bool
    count: int
    retry_after: int = 0


class AdmissionGate:
    """Per-caller fixed-window limiter guarding run creation."""

    def __init__(
        self,
        limit: int = DEFAULT_RATE_LIMIT_REQUESTS,
        window_seconds: float = DEFAULT_RATE_LIMIT_WINDOW_SECONDS,
        counters: MutableMapping[str, WindowCounter] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.limit = limit
        self.window_seconds = window_seconds
        self._counters: MutableMapping[str, WindowCounter] = counters if counters is not None else {}
        self._clock = clock
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def check(self, key: str) -> AdmissionDecision:
        """Count one attempt for ``key`` and decide whether it is admitted."""
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            record = self._counters.get(key)
            if record is None or now >= record.reset_at:
                self._counters[key] = WindowCounter(count=1, reset_at=now + self.window_seconds)
                return AdmissionDecision(admitted=True, count=1)

            record.count += 1
            if record.count > self.limit:
                retry_after = max(1, math.ceil(record.reset_at - now))
                return AdmissionDecision(admitted=False, count=record.count, retry_after=retry_after)
            return AdmissionDecision(admitted=True, count=record.count)

    def _sweep(self, now: float) -> None:
        """Drop callers whose window has ended. At most once per window; caller holds the lock."""
        expired = [k for k, record in self._counters.items() if now >= record.reset_at]
        for k in expired:
            del self._counters[k]
        if expired:
            logger.debug("Dropped %d expired admission windows", len(expired))
        self._next_sweep = now + self.window_seconds

    def admit(self, key: str) -> None:
        """Like check, but raises AdmissionRejected instead of returning a refusal."""
        decision = self.check(key)
        if not decision.admitted:
            logger.info("Run creation rejected for %s (retry in %ds)", key, decision.retry_after)
            raise AdmissionRejected(
                f"Maximum {self.limit} test runs per window. Please try again in {decision.retry_after} seconds.",
                retry_after=decision.retry_after,
                caller=key,
            )

    def reset(self, key: str | None = None) -> None:
        """Forget one caller's window, or all of them."""
        with self._lock:
            if key is None:
                self._counters.clear()
            else:
                self._counters.pop(key, None)
