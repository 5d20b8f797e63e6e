"""Per-key circuit breaker with exponential-backoff retry.

Every remote call made by the reconciler goes through ``CircuitBreaker``.
Keys are logical operations (``session_<id>``, ``start_workspace_<id>``...),
so one unhealthy session or workspace never throttles the others.

States per key:
  CLOSED    -- calls pass, failures are counted
  OPEN      -- threshold reached, calls are rejected without a remote call
  HALF_OPEN -- reset timeout elapsed, exactly one trial call is let through
"""
from __future__ import annotations

import random
import threading
import time
from typing import Callable, TypeVar

from executor.core.errors import CircuitOpenError, RemoteCallError
from executor.core.logging import get_logger
from executor.domain import CircuitPhase, CircuitState

logger = get_logger("resilience")

T = TypeVar("T")

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIMEOUT = 60.0
BACKOFF_BASE = 1.0
STALE_AFTER_TIMEOUTS = 10


def backoff_delay(
    attempt: int,
    *,
    base: float = BACKOFF_BASE,
    max_delay: float | None = None,
    rand: Callable[[], float] = random.random,
) -> float:
    """Seconds to wait after failed ``attempt`` (1-based): ``base * 2**attempt`` plus up to 50% jitter."""

    delay = base * (2 ** attempt)
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay + rand() * (delay / 2)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RemoteCallError) and exc.retryable


class CircuitBreaker:
    """Process-local circuit breaker keyed by string."""

    def __init__(
        self,
        *,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
        max_backoff: float | None = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.max_backoff = max_backoff
        self._clock = clock
        self._sleep = sleep
        self._rand = rand
        self._states: dict[str, CircuitState] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # state transitions
    # ------------------------------------------------------------------
    def is_open(self, key: str) -> bool:
        """Return True when calls for ``key`` must be rejected.

        Once the reset timeout has elapsed an OPEN key flips to HALF_OPEN and
        this returns False for that single call. While the trial is
        outstanding later calls are still rejected.
        """

        with self._lock:
            state = self._states.get(key)
            if state is None or state.phase is CircuitPhase.CLOSED:
                return False
            if state.phase is CircuitPhase.HALF_OPEN:
                return True
            if self._clock() - state.last_failure_at >= self.reset_timeout:
                state.phase = CircuitPhase.HALF_OPEN
                logger.info("Circuit half-open, allowing trial call: key=%s", key)
                return False
            return True

    def record_success(self, key: str) -> None:
        with self._lock:
            state = self._states.pop(key, None)
        if state is not None and state.phase is not CircuitPhase.CLOSED:
            logger.info("Circuit closed: key=%s", key)

    def record_failure(self, key: str) -> None:
        with self._lock:
            state = self._states.setdefault(key, CircuitState())
            state.failure_count += 1
            state.last_failure_at = self._clock()
            reopened = state.failure_count >= self.failure_threshold
            previous = state.phase
            if reopened:
                state.phase = CircuitPhase.OPEN
            count = state.failure_count
        if reopened and previous is not CircuitPhase.OPEN:
            logger.warning("Circuit opened: key=%s failures=%d", key, count)

    def state_of(self, key: str) -> CircuitState | None:
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return None
            return CircuitState(state.failure_count, state.last_failure_at, state.phase)

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            return {key: state.to_dict() for key, state in self._states.items()}

    def reset(self) -> None:
        with self._lock:
            self._states.clear()

    def prune(self) -> int:
        """Forget keys with no failure in ``STALE_AFTER_TIMEOUTS`` reset timeouts; returns how many."""

        cutoff = self._clock() - self.reset_timeout * STALE_AFTER_TIMEOUTS
        with self._lock:
            stale = [key for key, state in self._states.items() if state.last_failure_at <= cutoff]
            for key in stale:
                del self._states[key]
        if stale:
            logger.debug("Pruned %d idle circuit entries", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # retry
    # ------------------------------------------------------------------
    def backoff(self, attempt: int) -> float:
        return backoff_delay(attempt, max_delay=self.max_backoff, rand=self._rand)

    def execute_with_retry(self, operation_key: str, max_attempts: int, operation: Callable[[], T]) -> T:
        """Run ``operation`` up to ``max_attempts`` times under the circuit for ``operation_key``.

        Only retryable failures (server and network errors) are retried; any
        other exception is recorded and re-raised at once. After the final
        attempt the last exception propagates.
        """

        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_error: BaseException | None = None
        for attempt in range(1, max_attempts + 1):
            if self.is_open(operation_key):
                logger.warning("Circuit open, skipping attempt %d: key=%s", attempt, operation_key)
                raise CircuitOpenError(operation_key) from last_error
            try:
                result = operation()
            except Exception as exc:
                self.record_failure(operation_key)
                last_error = exc
                logger.warning("Attempt %d/%d failed: key=%s error=%s", attempt, max_attempts, operation_key, exc)
                if not is_retryable(exc):
                    raise
                if attempt < max_attempts:
                    delay = self.backoff(attempt)
                    logger.debug("Retrying in %.2fs: key=%s", delay, operation_key)
                    self._sleep(delay)
                    continue
                raise
            self.record_success(operation_key)
            return result

        # unreachable: the loop either returns or raises
        raise AssertionError("retry loop exited without result")


__all__ = ["CircuitBreaker", "backoff_delay", "is_retryable"]
