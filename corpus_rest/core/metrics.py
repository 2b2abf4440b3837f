# corpus_rest/core/metrics.py
# SPDX-License-Identifier: Apache-2.0
"""
Metrics hooks exposed by the invocation pipeline.

The pipeline never keeps process-wide counters. Anything a test or an
operator wants to observe (call latency, fallback invocations, breaker
rejections, retry attempts) is reported through a `MetricsSink` supplied
on the client builder.

Implementations MUST:
    - Avoid PII (no bodies, no query strings).
    - Keep labels low-cardinality (the operation config key is the finest
      grain the pipeline emits).
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol

LOG = logging.getLogger(__name__)

COMPONENT = "rest"


class MetricsSink(Protocol):
    """Metrics collection protocol."""

    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...


class NoopMetrics:
    """No-op metrics sink for tests or minimal deployments."""
    def observe(self, **_: Any) -> None: ...
    def counter(self, **_: Any) -> None: ...


def safe_counter(metrics: MetricsSink, name: str, op: str, value: int = 1) -> None:
    """
    Emit a counter keyed by operation; sink failures are swallowed.
    """
    try:
        metrics.counter(component=COMPONENT, name=name, value=value, extra={"op": op})
    except Exception:  # noqa: BLE001
        LOG.debug("metrics sink failed on counter %s", name, exc_info=True)


__all__ = [
    "COMPONENT",
    "MetricsSink",
    "NoopMetrics",
    "safe_counter",
]
