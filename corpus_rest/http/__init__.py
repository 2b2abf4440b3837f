# corpus_rest/http/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
HTTP value types, request templates, logging and transports used by the
invocation pipeline.
"""

from corpus_rest.http.logger import HttpLogger, Level, NoopHttpLogger
from corpus_rest.http.models import (
    Body,
    BytesBody,
    HttpMethod,
    Options,
    Request,
    Response,
    StreamBody,
)
from corpus_rest.http.template import HardCodedTarget, RequestTemplate, Target
from corpus_rest.http.transport import HttpxTransport, Transport

__all__ = [
    "HttpLogger",
    "Level",
    "NoopHttpLogger",
    "Body",
    "BytesBody",
    "HttpMethod",
    "Options",
    "Request",
    "Response",
    "StreamBody",
    "HardCodedTarget",
    "RequestTemplate",
    "Target",
    "HttpxTransport",
    "Transport",
]
