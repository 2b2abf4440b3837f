# corpus_rest/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Corpus REST: declarative, asynchronous REST clients.

Describe an API as data (`ApiType`, `OperationSpec`), build a client with
`AsyncClient.builder()`, and every operation call returns a `PendingResult`
resolved by the invocation pipeline: template resolution, transport,
decoding, optional retry and circuit breaking, optional fallback, and
execution tracing.
"""

from corpus_rest.client import AsyncClient, Builder, ClientConfig, DispatchProxy
from corpus_rest.codec import (
    DefaultDecoder,
    DefaultEncoder,
    DefaultErrorDecoder,
    Decoder,
    Encoder,
    ErrorDecoder,
)
from corpus_rest.contract import (
    ApiType,
    AsyncContract,
    Body,
    DeclarativeContract,
    DefaultMethod,
    Fallback,
    HeaderMap,
    OperationDescriptor,
    OperationSpec,
    Param,
    QueryMap,
    Url,
)
from corpus_rest.core import (
    CircuitOpenError,
    ClientError,
    ConfigurationError,
    ConnectTimeoutError,
    DecodeError,
    EncodeError,
    HttpStatusError,
    InvocationError,
    MetricsSink,
    NoopMetrics,
    ReadTimeoutError,
    TransportError,
    attach_context,
    get_context,
)
from corpus_rest.fallback import FallbackHandler
from corpus_rest.http import HttpLogger, HttpxTransport, Level, Options, Request, Response
from corpus_rest.resilience import (
    NoopBreaker,
    RetryPolicy,
    SimpleCircuitBreaker,
)
from corpus_rest.tracing import ExecutionContext, PendingResult

__version__ = "0.1.0"

__all__ = [
    "AsyncClient",
    "Builder",
    "ClientConfig",
    "DispatchProxy",
    "Decoder",
    "Encoder",
    "ErrorDecoder",
    "DefaultDecoder",
    "DefaultEncoder",
    "DefaultErrorDecoder",
    "ApiType",
    "AsyncContract",
    "Body",
    "DeclarativeContract",
    "DefaultMethod",
    "Fallback",
    "HeaderMap",
    "OperationDescriptor",
    "OperationSpec",
    "Param",
    "QueryMap",
    "Url",
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
    "attach_context",
    "get_context",
    "FallbackHandler",
    "HttpLogger",
    "HttpxTransport",
    "Level",
    "Options",
    "Request",
    "Response",
    "NoopBreaker",
    "RetryPolicy",
    "SimpleCircuitBreaker",
    "ExecutionContext",
    "PendingResult",
]
