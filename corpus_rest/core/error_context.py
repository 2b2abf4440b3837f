# corpus_rest/core/error_context.py
# SPDX-License-Identifier: Apache-2.0

"""
Error context utilities for generated REST clients.

Failures travel a long way before a caller sees them: transport, decode,
retry, circuit breaker, fallback. This module lets each stage attach the
invocation metadata it knows about (operation config key, HTTP method, URL,
pipeline stage, attempt number) without changing the exception's type,
message, or traceback.

Typical usage
-------------

    try:
        value = await client.find_order(42)
    except Exception as exc:
        ctx = get_context(exc)
        LOG.error(
            "order lookup failed",
            extra={
                "config_key": ctx.get("config_key"),
                "stage": ctx.get("stage"),
                "url": ctx.get("url"),
            },
        )

Context is stored on two attributes:

- `__corpus_context__` (canonical, shared with the rest of the SDK)
- `__<component>_context__` (e.g. `__rest_context__`) for discoverability

Multiple calls merge rather than overwrite, so an inner stage ("decode")
and an outer stage ("fallback") can both contribute. The first `component`
recorded is preserved.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional

logger = logging.getLogger(__name__)

_CANONICAL_ATTR = "__corpus_context__"


def attach_context(
    exc: BaseException,
    component: str,
    **context: Any,
) -> None:
    """
    Attach invocation context to an exception.

    Parameters
    ----------
    exc:
        Exception to enrich. Any BaseException is accepted, including
        built-ins raised by user-supplied codecs or fallbacks.

    component:
        Origin of the context, e.g. "rest". Used as a context key and to
        build the component-specific attribute name.

    **context:
        Keys commonly used by the invocation pipeline:
            - config_key: str   operation identity, "Api#op(params)"
            - method: str       HTTP method
            - url: str          request URL (no body, no headers)
            - stage: str        "encode", "transport", "decode", "fallback"
            - status: int       response status, when known

    Attachment is best-effort: failures are logged at DEBUG and never
    replace the original exception.
    """
    try:
        merged: MutableMapping[str, Any] = {}

        existing = getattr(exc, _CANONICAL_ATTR, None)
        if isinstance(existing, Mapping):
            merged.update(existing)

        merged.setdefault("component", component)
        for key, value in context.items():
            # Inner stages know more than outer ones; keep their values.
            merged.setdefault(key, value)

        setattr(exc, _CANONICAL_ATTR, merged)
        setattr(exc, f"__{component}_context__", merged)

    except Exception as attachment_error:  # noqa: BLE001
        logger.debug(
            "Failed to attach error context to %s: %s",
            type(exc).__name__,
            attachment_error,
            extra={"component": component},
        )


def get_context(
    exc: BaseException,
    *,
    component: Optional[str] = None,
) -> Mapping[str, Any]:
    """
    Retrieve attached context from an exception.

    If `component` is given, the component-specific attribute is consulted
    first. Returns an empty mapping when nothing was attached.
    """
    try:
        if component:
            ctx = getattr(exc, f"__{component}_context__", None)
            if isinstance(ctx, Mapping):
                return ctx

        ctx = getattr(exc, _CANONICAL_ATTR, None)
        if isinstance(ctx, Mapping):
            return ctx

    except Exception as retrieval_error:  # noqa: BLE001
        logger.debug(
            "Failed to retrieve error context from %s: %s",
            type(exc).__name__,
            retrieval_error,
        )

    return {}


__all__ = [
    "attach_context",
    "get_context",
]
