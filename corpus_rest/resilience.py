# corpus_rest/resilience.py
# SPDX-License-Identifier: Apache-2.0
"""
Resilience policies and the per-operation decorator that applies them.

Layering for one call, innermost first:

    attempt (transport + decode)  <- retried by RetryPolicy
    retried outcome               <- guarded by CircuitBreaker

so a call rejected by an open breaker (CircuitOpenError) never reaches the
transport and is never retried.

Policies are consumed through two narrow protocols. Reference
implementations are intentionally small and in-process:

    NoopBreaker           never trips (thin mode)
    SimpleCircuitBreaker  consecutive-failure threshold, open duration,
                          single half-open probe
    RetryPolicy           max attempts, exponential backoff with cap,
                          retryable error types / predicate

Breaker state and the retry scheduler belong to one operation and are
shared by all concurrent invocations of it; both are lock-protected.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Awaitable, Callable, Optional, Protocol, Set, Tuple, Type, TypeVar

from corpus_rest.core.error_context import attach_context
from corpus_rest.core.errors import (
    CircuitOpenError,
    ConfigurationError,
    DecodeError,
    EncodeError,
    TransportError,
)
from corpus_rest.core.metrics import COMPONENT, MetricsSink, NoopMetrics, safe_counter

LOG = logging.getLogger(__name__)

T = TypeVar("T")

# Never retried regardless of policy configuration.
NON_RETRYABLE: Tuple[Type[BaseException], ...] = (
    DecodeError,
    EncodeError,
    CircuitOpenError,
    ConfigurationError,
)


class CircuitBreaker(Protocol):
    """Minimal circuit breaker interface for gating upstream calls."""
    def allow(self) -> bool: ...
    def on_success(self) -> None: ...
    def on_error(self, err: Exception) -> None: ...


class Retry(Protocol):
    """Minimal retry interface: decide and pace re-attempts."""
    def should_retry(self, attempt: int, err: Exception) -> bool: ...
    def delay_s(self, attempt: int) -> float: ...


class NoopBreaker:
    """Breaker that never trips; safe default for thin mode."""
    def allow(self) -> bool: return True
    def on_success(self) -> None: ...
    def on_error(self, err: Exception) -> None: ...


class SimpleCircuitBreaker:
    """
    Tiny per-process circuit breaker.

    Not distributed. Opens after N consecutive failures; once
    `recovery_after_s` has elapsed a single half-open probe is let through.
    A successful probe closes the circuit, a failed one re-opens it. A probe
    that never reports back (e.g. cancelled) stops blocking after another
    recovery window.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        recovery_after_s: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = max(1, int(failure_threshold))
        self._recovery_after_s = max(0.001, float(recovery_after_s))
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._probe_started_at: Optional[float] = None

    @property
    def state(self) -> str:
        with self._lock:
            if self._opened_at is None:
                return "closed"
            if self._probe_started_at is not None:
                return "half_open"
            return "open"

    def allow(self) -> bool:
        with self._lock:
            if self._opened_at is None:
                return True
            now = self._clock()
            if self._probe_started_at is not None:
                if now - self._probe_started_at < self._recovery_after_s:
                    return False
            elif now - self._opened_at < self._recovery_after_s:
                return False
            self._probe_started_at = now
            return True

    def on_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None
            self._probe_started_at = None

    def on_error(self, err: Exception) -> None:
        with self._lock:
            if self._opened_at is not None:
                # Failed probe (or a straggler from before opening).
                self._opened_at = self._clock()
                self._probe_started_at = None
                return
            self._failures += 1
            if self._failures >= self._failure_threshold:
                self._opened_at = self._clock()
                LOG.warning("circuit opened after %d consecutive failures", self._failures)


class RetryPolicy:
    """
    Bounded exponential-backoff retry.

    Attributes:
        max_attempts:
            Total attempts including the first one.
        initial_backoff_s / multiplier / max_backoff_s:
            Delay before attempt n+1 is
            min(max_backoff_s, initial_backoff_s * multiplier ** (n - 1)).
        retry_on:
            Error types that qualify for a retry.
        retry_if:
            Optional extra predicate `(err) -> bool` consulted for errors
            that are not in `retry_on`.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        initial_backoff_s: float = 0.1,
        max_backoff_s: float = 2.0,
        multiplier: float = 2.0,
        retry_on: Tuple[Type[BaseException], ...] = (TransportError,),
        retry_if: Optional[Callable[[Exception], bool]] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if initial_backoff_s < 0 or max_backoff_s < 0:
            raise ValueError("backoff must be non-negative")
        if multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        self.max_attempts = int(max_attempts)
        self.initial_backoff_s = float(initial_backoff_s)
        self.max_backoff_s = float(max_backoff_s)
        self.multiplier = float(multiplier)
        self.retry_on = tuple(retry_on)
        self.retry_if = retry_if

    def should_retry(self, attempt: int, err: Exception) -> bool:
        if attempt >= self.max_attempts:
            return False
        if isinstance(err, NON_RETRYABLE):
            return False
        if isinstance(err, self.retry_on):
            return True
        if self.retry_if is not None:
            try:
                return bool(self.retry_if(err))
            except Exception:  # noqa: BLE001
                LOG.debug("retry predicate failed; not retrying", exc_info=True)
        return False

    def delay_s(self, attempt: int) -> float:
        return min(self.max_backoff_s, self.initial_backoff_s * self.multiplier ** (attempt - 1))

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"initial_backoff_s={self.initial_backoff_s}, max_backoff_s={self.max_backoff_s})"
        )


class RetryScheduler:
    """
    Paces the retries of one operation.

    Delays are event-loop timers rather than a worker thread. After
    `close()`, waiting delays end immediately and no further retries are
    scheduled; the call then fails with its last error.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._waiters: Set["asyncio.Future[None]"] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def sleep(self, delay_s: float) -> None:
        loop = asyncio.get_running_loop()
        waiter: "asyncio.Future[None]" = loop.create_future()
        with self._lock:
            if self._closed:
                return
            self._waiters.add(waiter)
        handle = loop.call_later(max(0.0, delay_s), _wake, waiter)
        try:
            await waiter
        finally:
            handle.cancel()
            with self._lock:
                self._waiters.discard(waiter)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            waiters = list(self._waiters)
            self._waiters.clear()
        for waiter in waiters:
            waiter.get_loop().call_soon_threadsafe(_wake, waiter)


def _wake(waiter: "asyncio.Future[None]") -> None:
    if not waiter.done():
        waiter.set_result(None)


class ResilienceDecorator:
    """
    Applies retry and circuit breaking to the attempts of one operation.
    """

    def __init__(
        self,
        config_key: str,
        *,
        breaker: Optional[CircuitBreaker] = None,
        retry: Optional[Retry] = None,
        scheduler: Optional[RetryScheduler] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        if retry is not None and scheduler is None:
            scheduler = RetryScheduler(config_key)
        self.config_key = config_key
        self._breaker = breaker
        self._retry = retry
        self._scheduler = scheduler
        self._metrics = metrics or NoopMetrics()

    @property
    def breaker(self) -> Optional[CircuitBreaker]:
        return self._breaker

    @property
    def scheduler(self) -> Optional[RetryScheduler]:
        return self._scheduler

    async def run(self, attempt: Callable[[], Awaitable[T]]) -> T:
        if self._breaker is None:
            return await self._with_retry(attempt)

        if not self._breaker.allow():
            safe_counter(self._metrics, "circuit_open_rejections", self.config_key)
            err = CircuitOpenError(
                f"circuit open for {self.config_key}",
                details={"config_key": self.config_key},
            )
            attach_context(err, COMPONENT, config_key=self.config_key, stage="circuit_breaker")
            raise err

        try:
            result = await self._with_retry(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            self._breaker.on_error(e)
            raise
        self._breaker.on_success()
        return result

    async def _with_retry(self, attempt: Callable[[], Awaitable[T]]) -> T:
        if self._retry is None:
            return await attempt()
        assert self._scheduler is not None

        n = 1
        while True:
            try:
                return await attempt()
            except asyncio.CancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                if self._scheduler.closed or not self._retry.should_retry(n, e):
                    attach_context(e, COMPONENT, attempts=n)
                    raise
                delay = self._retry.delay_s(n)
                LOG.debug(
                    "retrying %s after %s (attempt %d, delay %.3fs)",
                    self.config_key,
                    type(e).__name__,
                    n,
                    delay,
                )
                safe_counter(self._metrics, "retry_attempts", self.config_key)
                await self._scheduler.sleep(delay)
                if self._scheduler.closed:
                    raise
                n += 1

    def close(self) -> None:
        if self._scheduler is not None:
            self._scheduler.close()


__all__ = [
    "NON_RETRYABLE",
    "CircuitBreaker",
    "Retry",
    "NoopBreaker",
    "SimpleCircuitBreaker",
    "RetryPolicy",
    "RetryScheduler",
    "ResilienceDecorator",
]
