"""Circuit breaker for external calls.

States:
- closed: calls pass through, outcomes are recorded in a rolling window
- open: calls are rejected immediately with CircuitOpenError
- half_open: after the reset timeout one trial call is let through;
  success closes the circuit, failure opens it again

The circuit opens when the rolling window holds at least `minimum_requests`
outcomes and the error rate reaches `error_threshold_percent`.
"""

import logging
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from bandhub_worker.config import get_settings
from bandhub_worker.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Rolling error-rate circuit breaker for one external dependency."""

    def __init__(
        self,
        name: str,
        error_threshold_percent: Optional[float] = None,
        reset_timeout_seconds: Optional[float] = None,
        rolling_window_seconds: Optional[float] = None,
        minimum_requests: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.name = name
        self.error_threshold_percent = (
            error_threshold_percent
            if error_threshold_percent is not None
            else settings.circuit_error_threshold_percent
        )
        self.reset_timeout = (
            reset_timeout_seconds
            if reset_timeout_seconds is not None
            else settings.circuit_reset_timeout_seconds
        )
        self.rolling_window = (
            rolling_window_seconds
            if rolling_window_seconds is not None
            else settings.circuit_rolling_window_seconds
        )
        self.minimum_requests = (
            minimum_requests
            if minimum_requests is not None
            else settings.circuit_minimum_requests
        )
        self._clock = clock

        self.state = CircuitState.CLOSED
        self._outcomes: deque[tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.rejected_requests = 0
        self.consecutive_failures = 0
        self.last_failure_time: Optional[float] = None

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run `func` through the breaker.

        Raises:
            CircuitOpenError: The circuit is open (or a half-open trial is already running)
        """
        self._before_call()

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise
        except BaseException:
            # Cancelled or interrupted: no outcome to record, but a half-open
            # trial must not keep the circuit blocked.
            self._abandon_trial()
            raise

        self._record_success()
        return result

    def _before_call(self) -> None:
        now = self._clock()

        if self.state == CircuitState.OPEN:
            if self._opened_at is not None and now - self._opened_at >= self.reset_timeout:
                self.state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.info(f"Circuit {self.name} half-open, admitting a trial call")
            else:
                self.rejected_requests += 1
                raise CircuitOpenError(self.name)

        if self.state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                self.rejected_requests += 1
                raise CircuitOpenError(self.name)
            self._trial_in_flight = True

        self.total_requests += 1

    def _prune(self, now: float) -> None:
        while self._outcomes and now - self._outcomes[0][0] > self.rolling_window:
            self._outcomes.popleft()

    def _record_success(self) -> None:
        now = self._clock()
        self.successful_requests += 1
        self.consecutive_failures = 0

        if self.state == CircuitState.HALF_OPEN:
            self._close()
            return

        self._outcomes.append((now, True))
        self._prune(now)

    def _record_failure(self) -> None:
        now = self._clock()
        self.failed_requests += 1
        self.consecutive_failures += 1
        self.last_failure_time = now

        if self.state == CircuitState.HALF_OPEN:
            self._open(now)
            return

        self._outcomes.append((now, False))
        self._prune(now)

        if len(self._outcomes) >= self.minimum_requests and self.error_rate >= self.error_threshold_percent:
            self._open(now)

    def _abandon_trial(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit {self.name} trial call abandoned, reopening")
            self._open(self._clock())

    def _open(self, now: float) -> None:
        self.state = CircuitState.OPEN
        self._opened_at = now
        self._trial_in_flight = False
        logger.warning(
            f"Circuit {self.name} opened after {self.consecutive_failures} consecutive failures "
            f"({self.error_rate:.0f}% errors in window)"
        )

    def _close(self) -> None:
        self.state = CircuitState.CLOSED
        self._opened_at = None
        self._trial_in_flight = False
        self._outcomes.clear()
        logger.info(f"Circuit {self.name} closed")

    @property
    def error_rate(self) -> float:
        """Error rate in the rolling window, in percent."""
        if not self._outcomes:
            return 0.0
        failures = sum(1 for _, ok in self._outcomes if not ok)
        return failures / len(self._outcomes) * 100

    def metrics(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "rejected_requests": self.rejected_requests,
            "consecutive_failures": self.consecutive_failures,
            "error_rate_percent": round(self.error_rate, 1),
        }
