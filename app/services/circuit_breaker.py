# =============================================================================
# Circuit Breaker — Stop Hammering a Failing Model Endpoint
# =============================================================================
#
# STATES:
#   CLOSED     normal operation; service faults are counted
#   OPEN       every call is rejected with CircuitOpenError, no network I/O
#   HALF_OPEN  exactly one trial call is admitted at a time
#
# TRANSITIONS:
#   CLOSED    -> OPEN       failures inside the rolling window reach threshold
#   OPEN      -> HALF_OPEN  reset_timeout elapses (threading.Timer, fires
#                           whether or not any call arrives)
#   HALF_OPEN -> CLOSED     trial call succeeds (failure counter cleared)
#   HALF_OPEN -> OPEN       trial call fails
#
# Only service faults count (network, timeout, HTTP 5xx, HTTP 429). Caller
# errors such as a bad request or an auth failure pass through untouched.
#
# One breaker per remote endpoint, shared across concurrent runs, so all
# state is guarded by a threading.Lock.
# =============================================================================

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from app.services.errors import CircuitOpenError, ClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Thread-safe circuit breaker with a rolling failure window.

    Args:
        failure_threshold: Failures within the window that open the circuit.
        reset_timeout: Seconds spent OPEN before moving to HALF_OPEN.
        failure_window: Rolling window (seconds) over which failures count.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        failure_window: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failure_window = failure_window
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: float | None = None
        self._trial_in_flight = False
        self._timer: threading.Timer | None = None
        self._open_count = 0

    # -----------------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._failures)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            self._prune(self._clock())
            return {
                "state": self._state.value,
                "failure_count": len(self._failures),
                "failure_threshold": self.failure_threshold,
                "opened_at": self._opened_at,
                "open_count": self._open_count,
            }

    # -----------------------------------------------------------------------
    # Call protocol
    # -----------------------------------------------------------------------

    def before_call(self) -> None:
        """Admit a call or raise CircuitOpenError."""
        with self._lock:
            if self._state is CircuitState.OPEN:
                raise CircuitOpenError("Circuit breaker is open")
            if self._state is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError("Circuit breaker trial call in progress")
                self._trial_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                logger.info("Circuit breaker trial succeeded, closing circuit")
            self._close_locked()

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state is CircuitState.HALF_OPEN:
                logger.warning("Circuit breaker trial failed, reopening circuit")
                self._trial_in_flight = False
                self._open_locked(now)
                return

            self._failures.append(now)
            self._prune(now)
            if (
                self._state is CircuitState.CLOSED
                and len(self._failures) >= self.failure_threshold
            ):
                logger.warning(
                    "Circuit breaker opened after %d failures in %.0fs",
                    len(self._failures),
                    self.failure_window,
                )
                self._open_locked(now)

    def release(self) -> None:
        """End a call that was neither a success nor a service fault."""
        with self._lock:
            self._trial_in_flight = False

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run `operation` under the breaker."""
        self.before_call()
        try:
            result = await operation()
        except ClientError as exc:
            if exc.trips_breaker:
                self.record_failure()
            else:
                self.release()
            raise
        except BaseException:
            self.release()
            raise
        self.record_success()
        return result

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    def reset(self) -> None:
        """Force the circuit closed and clear the failure history."""
        with self._lock:
            self._close_locked()
        logger.info("Circuit breaker manually reset")

    def close(self) -> None:
        """Cancel any pending OPEN -> HALF_OPEN timer."""
        with self._lock:
            self._cancel_timer_locked()

    # -----------------------------------------------------------------------
    # Internals (caller holds the lock)
    # -----------------------------------------------------------------------

    def _prune(self, now: float) -> None:
        cutoff = now - self.failure_window
        while self._failures and self._failures[0] <= cutoff:
            self._failures.popleft()

    def _open_locked(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._open_count += 1
        self._cancel_timer_locked()
        self._timer = threading.Timer(self.reset_timeout, self._half_open)
        self._timer.daemon = True
        self._timer.start()

    def _close_locked(self) -> None:
        self._cancel_timer_locked()
        self._state = CircuitState.CLOSED
        self._failures.clear()
        self._opened_at = None
        self._trial_in_flight = False

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _half_open(self) -> None:
        with self._lock:
            if self._state is CircuitState.OPEN:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                self._timer = None
                logger.info("Circuit breaker half-open, admitting one trial call")
