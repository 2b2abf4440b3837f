# corpus_rest/fallback.py
# SPDX-License-Identifier: Apache-2.0
"""
Fallback resolution.

A `FallbackHandler` binds an operation to one of the API's default methods.
When the (possibly retried and circuit-guarded) call fails, the handler
decides with `should_fallback(err)` whether the fallback runs:

    - err matches the ignore set (exception class or taxonomy code) -> False
    - the ignore predicate returns True                            -> False
    - the ignore predicate itself raises                           -> logged,
                                                                      treated
                                                                      as False
    - otherwise                                                     -> True

The fallback is called with the original arguments plus the failure, and
its outcome, success or failure, becomes the outcome of the call.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple, Type, Union

from corpus_rest.core.error_context import attach_context
from corpus_rest.core.metrics import COMPONENT, MetricsSink, NoopMetrics, safe_counter

LOG = logging.getLogger(__name__)

IgnoreRule = Union[Type[BaseException], str]


@dataclass(frozen=True)
class FallbackHandler:
    """
    Binding of an operation (by config key) to a fallback default method.

    `fn` is the unbound default method; its first parameter receives the
    client, set through `bind()` once the client object exists.
    """
    config_key: str
    name: str
    fn: Callable[..., Any]
    ignore: Tuple[IgnoreRule, ...] = ()
    ignore_predicate: Optional[Callable[[BaseException], bool]] = None
    client: Any = None

    def bind(self, client: Any) -> "FallbackHandler":
        return replace(self, client=client)

    def is_ignorable(self, err: BaseException) -> bool:
        for rule in self.ignore:
            if isinstance(rule, str):
                if getattr(err, "code", None) == rule:
                    return True
            elif isinstance(err, rule):
                return True
        return False

    def is_ignorable_predicate(self, err: BaseException) -> bool:
        if self.ignore_predicate is None:
            return False
        try:
            return bool(self.ignore_predicate(err))
        except Exception:  # noqa: BLE001
            LOG.error(
                "Exception evaluating fallback ignore predicate for %s; suppressed",
                self.config_key,
                exc_info=True,
            )
            return False

    def should_fallback(self, err: BaseException) -> bool:
        return not (self.is_ignorable(err) or self.is_ignorable_predicate(err))

    def invoke(self, argv: Sequence[Any], err: BaseException) -> Any:
        if self.client is None:
            raise RuntimeError(f"fallback {self.name!r} is not bound to a client")
        return self.fn(self.client, *argv, err)

    def __str__(self) -> str:
        return f"FallbackHandler(fallback={self.name}, operation={self.config_key})"


def fallback_if_any(
    fallback: Optional[FallbackHandler],
    awaitable: Awaitable[Any],
    argv: Sequence[Any],
    *,
    metrics: Optional[MetricsSink] = None,
) -> Awaitable[Any]:
    """
    Return an awaitable that substitutes the fallback outcome on failure.

    Without a fallback, `awaitable` is returned unchanged.
    """
    if fallback is None:
        return awaitable
    sink = metrics or NoopMetrics()

    async def _resolve() -> Any:
        try:
            return await awaitable
        except Exception as err:  # noqa: BLE001
            if not fallback.should_fallback(err):
                raise
            LOG.warning("Attempt to execute fallback [%s] after %s", fallback, type(err).__name__)
            safe_counter(sink, "fallback_invocations", fallback.config_key)
            try:
                result = fallback.invoke(argv, err)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as fth:  # noqa: BLE001
                LOG.warning("Fallback completed exceptionally [%s]: %s", fallback, fth)
                attach_context(fth, COMPONENT, config_key=fallback.config_key, stage="fallback")
                raise
            LOG.debug("Fallback executed successfully [%s]", fallback)
            return result

    return _resolve()


__all__ = [
    "FallbackHandler",
    "fallback_if_any",
]
