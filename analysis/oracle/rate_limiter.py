"""
ORACLE - Rate Limiter

Serializes every outbound call to one provider through a single FIFO queue.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Optional, TypeVar

from shared import AgentLogger, ProviderTimeoutError, RateLimitedError

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RateLimiter:
    """
    Per-provider call spacing with adaptive backoff.

    Before each task: delay = max(0, interval - elapsed_since_last_dispatch).
    Failures push the interval to 2x once they exceed ``failure_threshold``;
    successes decay the failure count back toward zero. A rate-limit
    signal from the provider pushes the next slot out by
    ``rate_limit_penalty_ms`` on top of normal spacing.

    Tasks cannot be removed once queued. Callers that want to give up
    early must ignore the result.
    """

    def __init__(
        self,
        name: str,
        base_interval_ms: int = 2500,
        failure_threshold: int = 2,
        rate_limit_penalty_ms: int = 5000,
        task_timeout_s: float = 30.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.logger = AgentLogger("ORACLE-RATE-LIMITER").bind(provider=name)
        self.name = name
        self.base_interval_ms = base_interval_ms
        self.failure_threshold = failure_threshold
        self.rate_limit_penalty_ms = rate_limit_penalty_ms
        self.task_timeout_s = task_timeout_s
        self._clock = clock
        self._sleep = sleep

        # asyncio.Lock wakes waiters in arrival order
        self._lock = asyncio.Lock()
        self._last_dispatch: Optional[float] = None

        # Statistics
        self.request_count = 0
        self.failure_count = 0
        self.rate_limited_count = 0
        self.timeout_count = 0
        self.dispatch_log: deque[float] = deque(maxlen=256)

    @property
    def current_interval_ms(self) -> int:
        """Spacing applied to the next task."""
        if self.failure_count > self.failure_threshold:
            return self.base_interval_ms * 2
        return self.base_interval_ms

    async def execute(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` in its turn, after the required spacing."""
        async with self._lock:
            self.request_count += 1
            request_no = self.request_count
            interval_s = self.current_interval_ms / 1000

            if self._last_dispatch is not None:
                delay = max(0.0, interval_s - (self._clock() - self._last_dispatch))
                if delay > 0:
                    self.logger.debug(
                        "Waiting for slot",
                        request=request_no,
                        delay_ms=round(delay * 1000),
                        interval_ms=self.current_interval_ms,
                    )
                    await self._sleep(delay)

            self._last_dispatch = self._clock()
            self.dispatch_log.append(self._last_dispatch)

            try:
                result = await asyncio.wait_for(task(), timeout=self.task_timeout_s)
            except asyncio.TimeoutError as e:
                self.timeout_count += 1
                self._record_failure(request_no, "timeout")
                raise ProviderTimeoutError(
                    f"Task exceeded {self.task_timeout_s}s", provider=self.name
                ) from e
            except RateLimitedError:
                self.rate_limited_count += 1
                self._record_failure(request_no, "rate_limited")
                # Next slot opens penalty + interval after this failure
                self._last_dispatch = self._clock() + self.rate_limit_penalty_ms / 1000
                self.logger.warning(
                    "Provider rate limit hit, extending next slot",
                    penalty_ms=self.rate_limit_penalty_ms,
                )
                raise
            except Exception as e:
                self._record_failure(request_no, type(e).__name__)
                raise

            if self.failure_count > 0:
                self.failure_count -= 1
            return result

    def _record_failure(self, request_no: int, reason: str) -> None:
        self.failure_count += 1
        self.logger.warning(
            "Provider call failed",
            request=request_no,
            reason=reason,
            failure_count=self.failure_count,
            next_interval_ms=self.current_interval_ms,
        )

    def get_stats(self) -> dict:
        """Get limiter statistics."""
        since_last = None
        if self._last_dispatch is not None:
            since_last = max(0.0, self._clock() - self._last_dispatch)
        return {
            "provider": self.name,
            "total_requests": self.request_count,
            "failure_count": self.failure_count,
            "rate_limited": self.rate_limited_count,
            "timeouts": self.timeout_count,
            "current_interval_ms": self.current_interval_ms,
            "seconds_since_last_dispatch": since_last,
        }
