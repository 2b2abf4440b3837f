# corpus_rest/core/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Core building blocks shared by every Corpus REST client: the error taxonomy,
error-context helpers and metrics hooks.
"""

from corpus_rest.core.error_context import attach_context, get_context
from corpus_rest.core.errors import (
    CircuitOpenError,
    ClientError,
    ConfigurationError,
    ConnectTimeoutError,
    DecodeError,
    EncodeError,
    HttpStatusError,
    InvocationError,
    ReadTimeoutError,
    TransportError,
)
from corpus_rest.core.metrics import MetricsSink, NoopMetrics

__all__ = [
    "attach_context",
    "get_context",
    "ClientError",
    "ConfigurationError",
    "TransportError",
    "ConnectTimeoutError",
    "ReadTimeoutError",
    "DecodeError",
    "HttpStatusError",
    "CircuitOpenError",
    "EncodeError",
    "InvocationError",
    "MetricsSink",
    "NoopMetrics",
]
