"""
Circuit breaker for the watch page fetch.

Failures move the breaker OK -> DEGRADED -> OFFLINE. While OFFLINE the
extractor skips the network entirely, so the session reaches the fallback
track at once instead of waiting on a timeout for every track. After the
backoff for the current failure streak has passed, exactly one request is
let through as a trial; its outcome either closes the breaker or restarts
the wait.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Optional

logger = logging.getLogger(__name__)

# Consecutive failures before the network is reported as degraded
DEGRADED_AFTER = 2


class NetworkState(Enum):
    OK = "ok"
    DEGRADED = "degraded"
    OFFLINE = "offline"


@dataclass
class NetworkFailure:
    timestamp: float
    error_type: str
    message: str


@dataclass
class BreakerCounters:
    state: NetworkState = NetworkState.OK
    consecutive_failures: int = 0
    total_failures: int = 0
    total_successes: int = 0
    last_success_time: Optional[float] = None
    last_failure_time: Optional[float] = None
    last_failure_message: Optional[str] = None
    failures: Deque[NetworkFailure] = field(default_factory=lambda: deque(maxlen=50))


class NetworkHealth:
    def __init__(
        self,
        backoff_base_sec: float = 2.0,
        backoff_max_sec: float = 300.0,
        fail_window_sec: float = 120.0,
        fail_threshold: int = 5,
    ):
        """
        Args:
            backoff_base_sec: Wait after the first failure of a streak
            backoff_max_sec: Upper bound for the wait
            fail_window_sec: Window in which failures are counted
            fail_threshold: Failures inside the window that open the breaker
        """
        self.backoff_base_sec = backoff_base_sec
        self.backoff_max_sec = backoff_max_sec
        self.fail_window_sec = fail_window_sec
        self.fail_threshold = fail_threshold

        self.counters = BreakerCounters()
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> NetworkState:
        return self.counters.state

    def retry_delay(self) -> float:
        return backoff_delay(
            self.counters.consecutive_failures,
            base_sec=self.backoff_base_sec,
            max_sec=self.backoff_max_sec,
        )

    async def allow_request(self) -> bool:
        """
        Whether an outbound request may go out now.

        Always True unless OFFLINE. While OFFLINE, True for a single caller
        once the retry delay has elapsed; later callers are refused until that
        trial request reports back through record_success, record_failure or
        abandon_trial.
        """
        async with self._lock:
            counters = self.counters
            if counters.state != NetworkState.OFFLINE:
                return True
            if self._trial_in_flight:
                return False
            if counters.last_failure_time is not None:
                if time.time() - counters.last_failure_time < self.retry_delay():
                    return False
            self._trial_in_flight = True
            logger.info(
                "Network offline for %d failures, letting one request through",
                counters.consecutive_failures,
            )
            return True

    def abandon_trial(self) -> None:
        """The trial request ended without an outcome (e.g. it was cancelled)."""
        self._trial_in_flight = False

    async def record_success(self) -> None:
        async with self._lock:
            counters = self.counters
            self._trial_in_flight = False
            counters.last_success_time = time.time()
            counters.total_successes += 1

            if counters.consecutive_failures:
                logger.info(
                    "Network recovered after %d consecutive failures",
                    counters.consecutive_failures,
                )
                counters.consecutive_failures = 0
            self._move_to(NetworkState.OK)

    async def record_failure(self, error: BaseException, error_type: str = "unknown") -> None:
        async with self._lock:
            counters = self.counters
            now = time.time()
            message = str(error) or type(error).__name__

            self._trial_in_flight = False
            counters.consecutive_failures += 1
            counters.total_failures += 1
            counters.last_failure_time = now
            counters.last_failure_message = message
            counters.failures.append(NetworkFailure(now, error_type, message))

            in_window = len(self._failures_since(now - self.fail_window_sec))
            if in_window >= self.fail_threshold:
                self._move_to(NetworkState.OFFLINE)
            elif counters.consecutive_failures >= DEGRADED_AFTER:
                self._move_to(NetworkState.DEGRADED)

            logger.warning(
                "Fetch failure (%s, %d in a row, %d in %ds): %s",
                error_type,
                counters.consecutive_failures,
                in_window,
                int(self.fail_window_sec),
                message,
            )

    def get_diagnostics(self) -> Dict[str, object]:
        """Snapshot for /info; synchronous so command handlers can call it."""
        counters = self.counters
        now = time.time()
        diagnostics: Dict[str, object] = {
            "state": counters.state.value,
            "consecutive_failures": counters.consecutive_failures,
            "total_failures": counters.total_failures,
            "total_successes": counters.total_successes,
        }
        if counters.last_success_time:
            diagnostics["seconds_since_success"] = int(now - counters.last_success_time)
        if counters.last_failure_time:
            diagnostics["seconds_since_failure"] = int(now - counters.last_failure_time)
            diagnostics["last_failure"] = counters.last_failure_message

        recent = self._failures_since(now - self.fail_window_sec)
        if recent:
            by_type: Dict[str, int] = {}
            for failure in recent:
                by_type[failure.error_type] = by_type.get(failure.error_type, 0) + 1
            diagnostics["recent_failure_types"] = by_type
        return diagnostics

    def _failures_since(self, cutoff: float) -> list:
        return [f for f in self.counters.failures if f.timestamp >= cutoff]

    def _move_to(self, state: NetworkState) -> None:
        old = self.counters.state
        if old != state:
            self.counters.state = state
            logger.warning("Network state %s -> %s", old.value, state.value)


def backoff_delay(attempt: int, base_sec: float = 2.0, max_sec: float = 300.0) -> float:
    """Exponential delay for the attempt-th failure in a row (1-indexed)."""
    if attempt <= 0:
        return 0.0
    return min(base_sec * (2 ** min(attempt - 1, 10)), max_sec)


def is_dns_error(error: BaseException) -> bool:
    """Check if error is a DNS resolution failure."""
    text = f"{type(error).__name__} {error}".lower()
    return any(marker in text for marker in (
        "clientconnectordnserror",
        "dns",
        "nodename nor servname",
        "name or service not known",
        "temporary failure in name resolution",
        "getaddrinfo failed",
    ))


def classify_error(error: BaseException) -> str:
    """Short label used when recording a failure."""
    if isinstance(error, asyncio.TimeoutError):
        return "timeout"
    if is_dns_error(error):
        return "dns"
    if getattr(error, "status", None) is not None:
        return "http"
    return "network"
