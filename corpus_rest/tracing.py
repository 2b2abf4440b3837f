# corpus_rest/tracing.py
# SPDX-License-Identifier: Apache-2.0
"""
Pending results and execution tracing.

Every operation call returns a `PendingResult`, an `asyncio.Future` that is
resolved exactly once by the execution tracer. The tracer runs the rest of
the pipeline (execute, decode, resilience, fallback) as a task, measures
wall-clock time from submission to resolution and attaches an immutable
`ExecutionContext` before resolving.

Cancellation
------------
Cancelling a PendingResult cancels the pipeline task. The task forwards the
cancellation to whatever it is awaiting at that moment: the in-flight
transport call, a retry delay, or a fallback. Completed retry attempts are
not affected.

Slow calls
----------
Calls taking >= 2000 ms are logged at WARNING, >= 4000 ms at ERROR, using:

    Slow network call execution detected: method=[GET],
    url=[https://api/orders/1], timeMs=[2150], timeSec=[2.15], exception=[False]
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Optional

from corpus_rest.core.errors import ClientError
from corpus_rest.core.metrics import COMPONENT, MetricsSink, NoopMetrics
from corpus_rest.http.models import Request

LOG = logging.getLogger(__name__)

LOG_WARN_THRESHOLD_MS = 2000
LOG_ERROR_THRESHOLD_MS = 4000

_SLOW_CALL_MSG = (
    "Slow network call execution detected: method=[%s], url=[%s], "
    "timeMs=[%d], timeSec=[%.2f], exception=[%s]"
)


@dataclass(frozen=True)
class ExecutionContext:
    """
    Facts about one finished invocation.

    Attributes:
        request:
            The finalized request that was submitted; None when the call
            failed before a request could be built.
        elapsed_ms:
            Milliseconds from submission to resolution.
        failed:
            True when the call resolved with an exception.
        config_key:
            Operation identity, "Api#op(params)".
    """
    request: Optional[Request]
    elapsed_ms: int
    failed: bool = False
    config_key: Optional[str] = None


class PendingResult(asyncio.Future):
    """
    Future handed to callers of generated client operations.

    `context` is None until the call resolves; it is then set exactly once,
    before any done-callback runs.
    """

    def __init__(self, *, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        super().__init__(loop=loop)
        self.context: Optional[ExecutionContext] = None
        self._pipeline: Optional["asyncio.Task[Any]"] = None

    @classmethod
    def failed(
        cls,
        exc: BaseException,
        *,
        config_key: Optional[str] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> "PendingResult":
        """An already-failed result, for calls that fail before submission."""
        pending = cls(loop=loop)
        pending.context = ExecutionContext(request=None, elapsed_ms=0, failed=True, config_key=config_key)
        pending.set_exception(exc)
        return pending

    def _attach(self, task: "asyncio.Task[Any]") -> None:
        self._pipeline = task

    def cancel(self, msg: Any = None) -> bool:
        cancelled = super().cancel() if msg is None else super().cancel(msg)
        task = self._pipeline
        if cancelled and task is not None and not task.done():
            task.cancel()
        return cancelled


def _code_of(err: BaseException) -> str:
    if isinstance(err, ClientError):
        return err.code
    return type(err).__name__


def execution_tracer_if_any(
    request: Request,
    awaitable: Awaitable[Any],
    *,
    config_key: Optional[str] = None,
    metrics: Optional[MetricsSink] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> PendingResult:
    """
    Run `awaitable` as a task and return a PendingResult mirroring its outcome.

    Must be called with a running event loop (or an explicit `loop`).
    The outcome is never altered; tracing failures are logged and ignored.
    """
    loop = loop or asyncio.get_running_loop()
    sink = metrics or NoopMetrics()
    pending = PendingResult(loop=loop)
    t0 = time.monotonic()

    async def _run() -> None:
        failure: Optional[BaseException] = None
        value: Any = None
        try:
            value = await awaitable
        except asyncio.CancelledError:
            if not pending.done():
                pending.cancel()
            raise
        except Exception as e:  # noqa: BLE001
            failure = e

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        failed = failure is not None
        if pending.done():
            return

        pending.context = ExecutionContext(
            request=request,
            elapsed_ms=elapsed_ms,
            failed=failed,
            config_key=config_key,
        )
        if elapsed_ms >= LOG_WARN_THRESHOLD_MS:
            level = logging.ERROR if elapsed_ms >= LOG_ERROR_THRESHOLD_MS else logging.WARNING
            LOG.log(
                level,
                _SLOW_CALL_MSG,
                request.method.value,
                request.url,
                elapsed_ms,
                elapsed_ms / 1000.0,
                failed,
            )
        try:
            sink.observe(
                component=COMPONENT,
                op=config_key or request.method.value,
                ms=float(elapsed_ms),
                ok=not failed,
                code=_code_of(failure) if failure is not None else "OK",
            )
        except Exception:  # noqa: BLE001
            LOG.debug("metrics sink failed on observe", exc_info=True)

        if failure is not None:
            pending.set_exception(failure)
        else:
            pending.set_result(value)

    def _discard_unstarted(_: "asyncio.Task[Any]") -> None:
        # cancelled before the first step: `awaitable` was never entered
        if inspect.iscoroutine(awaitable) and inspect.getcoroutinestate(awaitable) == inspect.CORO_CREATED:
            awaitable.close()

    task = loop.create_task(_run())
    task.add_done_callback(_discard_unstarted)
    pending._attach(task)
    return pending


__all__ = [
    "LOG_WARN_THRESHOLD_MS",
    "LOG_ERROR_THRESHOLD_MS",
    "ExecutionContext",
    "PendingResult",
    "execution_tracer_if_any",
]
