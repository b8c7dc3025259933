"""
rate_limit.py — Fixed-Window Request Rate Limiting

This module provides the per-client throttling guard placed in front of the
cost-incurring endpoints (order SMS, contact form, order tracking, ...).

Components:
    • RateLimitRecord — counter and window end for one client
    • InMemoryRateLimitStore — process-local record map guarded by a lock
    • RateLimiter — fixed-window policy (limit, window) applied to a store
    • RateLimitSweeper — background thread removing expired records
    • client_identity() — derives the client key from proxy headers

The limiter is best-effort and single-process: every instance of the service
enforces its own limits. A shared store only has to implement `update`,
`sweep` and `clear` to replace the in-memory one.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping, Optional, Tuple

from .config import RateLimitPolicy

log = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"

Clock = Callable[[], float]


@dataclass
class RateLimitRecord:
    count: int
    reset_time: float


class InMemoryRateLimitStore:
    """
    Holds RateLimitRecords in a dict for the lifetime of the process.

    All access goes through a single lock, so the read-modify-write of one
    check is atomic with respect to other requests and to the sweeper.
    """

    def __init__(self):
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def update(self, key: str,
               fn: Callable[[Optional[RateLimitRecord]], Tuple[RateLimitRecord, bool]]) -> bool:
        """
        Atomically replaces the record of `key` with the one computed by `fn`.

        Args:
            key (str): Client identity.
            fn (Callable): Receives the current record (or None) and returns
                the new record and the decision to report.

        Returns:
            bool: The decision returned by `fn`.
        """
        with self._lock:
            record, allowed = fn(self._records.get(key))
            self._records[key] = record
            return allowed

    def get(self, key: str) -> Optional[RateLimitRecord]:
        with self._lock:
            return self._records.get(key)

    def sweep(self, now: float) -> int:
        """Deletes every record whose window has ended. Returns how many were removed."""
        with self._lock:
            expired = [key for key, record in self._records.items() if now > record.reset_time]
            for key in expired:
                del self._records[key]
            return len(expired)

    def clear(self):
        with self._lock:
            self._records.clear()

    def __len__(self):
        with self._lock:
            return len(self._records)


class RateLimiter:
    """
    Fixed-window counter keyed by client identity.

    Behavior of `check(client_id)`:
        - No record, or the window has ended → start a new window with
          count 1 and allow.
        - count already at the limit → deny, count unchanged.
        - Otherwise → increment and allow.
    """

    def __init__(self, limit: int, window_seconds: float, store: InMemoryRateLimitStore = None,
                 clock: Clock = time.monotonic, message: str = "Rate limit exceeded. Please try again later."):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock
        self.message = message

    @classmethod
    def from_policy(cls, policy: RateLimitPolicy, store: InMemoryRateLimitStore = None,
                    clock: Clock = time.monotonic) -> "RateLimiter":
        return cls(policy.limit, policy.window_seconds, store=store, clock=clock, message=policy.message)

    def check(self, client_id: str) -> bool:
        """
        Registers one request of `client_id`.

        Returns:
            bool: True if the request is allowed, False if it is rate limited.
        """
        now = self.clock()

        def apply(record: Optional[RateLimitRecord]):
            if record is None or now > record.reset_time:
                return RateLimitRecord(count=1, reset_time=now + self.window_seconds), True
            if record.count >= self.limit:
                return record, False
            record.count += 1
            return record, True

        return self.store.update(client_id, apply)

    def sweep(self) -> int:
        return self.store.sweep(self.clock())


class RateLimitSweeper:
    """
    Periodically removes expired records from a set of limiters, and from any
    other in-memory state exposing `sweep() -> int` (delivery notifications).

    Runs on its own daemon thread so request handling never waits for it,
    except for the short store lock held during a sweep.
    """

    def __init__(self, limiters: Iterable, interval_seconds: float = 60.0):
        self.limiters = list(limiters)
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep_once(self) -> int:
        removed = 0
        for limiter in self.limiters:
            removed += limiter.sweep()
        if removed:
            log.info(f"[RATE-LIMIT] {removed} expired record(s) removed.")
        return removed

    def _run(self):
        while not self._stop.wait(self.interval_seconds):
            try:
                self.sweep_once()
            except Exception as e:
                log.error(f"[RATE-LIMIT] Sweep failed: {e}", exc_info=True)

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="rate-limit-sweeper", daemon=True)
        self._thread.start()
        log.info(f"[RATE-LIMIT] Sweeper started (interval {self.interval_seconds}s).")

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        log.info("[RATE-LIMIT] Sweeper stopped.")


def client_identity(headers: Mapping[str, str]) -> str:
    """
    Derives the rate limiting key of a request.

    Order of precedence:
        1. First address of the X-Forwarded-For chain
        2. X-Real-IP
        3. "unknown" (one bucket shared by every client without these headers)

    Args:
        headers (Mapping[str, str]): Request headers (case-insensitive lookup
            expected, as provided by Starlette).
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return UNKNOWN_CLIENT


def build_rate_limiters(policies: Mapping[str, RateLimitPolicy],
                        clock: Clock = time.monotonic) -> Dict[str, RateLimiter]:
    """Creates one limiter with its own store per configured policy."""
    return {
        name: RateLimiter.from_policy(policy, store=InMemoryRateLimitStore(), clock=clock)
        for name, policy in policies.items()
    }
