# corpus_rest/http/models.py
# SPDX-License-Identifier: Apache-2.0
"""
HTTP value types shared by the template builder, transports and codecs.

- `Request` is immutable: it is produced once per invocation by freezing a
  RequestTemplate and is safe to resubmit on retry.
- `Response` is produced once per attempt by the transport. Its `Body` may be
  fully buffered (`BytesBody`) or a lazily-read stream (`StreamBody`); whoever
  keeps a streamed body is responsible for closing it.
- `Options` carries per-call transport settings (timeouts, redirects).
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    Mapping,
    Optional,
    Tuple,
)

LOG = logging.getLogger(__name__)

Headers = Mapping[str, Tuple[str, ...]]


def _env_seconds(name: str, default: float) -> float:
    """
    Read a positive float from the environment; invalid values fall back.
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        LOG.warning("ignoring invalid %s=%r", name, raw)
        return default
    if value <= 0:
        LOG.warning("ignoring non-positive %s=%r", name, raw)
        return default
    return value


DEFAULT_CONNECT_TIMEOUT_S: float = _env_seconds("CORPUS_REST_CONNECT_TIMEOUT_S", 10.0)
DEFAULT_READ_TIMEOUT_S: float = _env_seconds("CORPUS_REST_READ_TIMEOUT_S", 60.0)


class HttpMethod(str, enum.Enum):
    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"

    @classmethod
    def parse(cls, value: str) -> "HttpMethod":
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"unsupported HTTP method: {value!r}") from None


@dataclass(frozen=True)
class Options:
    """
    Per-call transport options.

    Attributes:
        connect_timeout_s:
            Budget for establishing the connection.
        read_timeout_s:
            Budget for receiving response data.
        follow_redirects:
            Whether the transport should follow 3xx responses.
    """
    connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S
    read_timeout_s: float = DEFAULT_READ_TIMEOUT_S
    follow_redirects: bool = True

    def __post_init__(self) -> None:
        if self.connect_timeout_s <= 0:
            raise ValueError("connect_timeout_s must be positive")
        if self.read_timeout_s <= 0:
            raise ValueError("read_timeout_s must be positive")


def header_values(headers: Headers, name: str) -> Tuple[str, ...]:
    """Case-insensitive header lookup."""
    lname = name.lower()
    for key, values in headers.items():
        if key.lower() == lname:
            return tuple(values)
    return ()


def first_header(headers: Headers, name: str) -> Optional[str]:
    values = header_values(headers, name)
    return values[0] if values else None


@dataclass(frozen=True)
class Request:
    """
    Finalized HTTP request. Never mutated after construction.
    """
    method: HttpMethod
    url: str
    headers: Headers = field(default_factory=dict)
    body: Optional[bytes] = None
    charset: str = "utf-8"

    def header(self, name: str) -> Optional[str]:
        return first_header(self.headers, name)

    def body_text(self) -> Optional[str]:
        if self.body is None:
            return None
        return self.body.decode(self.charset, errors="replace")

    def __repr__(self) -> str:
        size = len(self.body) if self.body is not None else 0
        return f"Request({self.method.value} {self.url}, body_bytes={size})"


class Body:
    """
    Response body.

    `length` is the number of bytes when known up front, else None.
    """

    length: Optional[int] = None

    async def read(self) -> bytes:  # pragma: no cover - interface
        raise NotImplementedError

    async def aclose(self) -> None:  # pragma: no cover - interface
        return None

    @property
    def closed(self) -> bool:  # pragma: no cover - interface
        return False


class BytesBody(Body):
    """Fully buffered body. Closing is a no-op besides bookkeeping."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self.length = len(self._data)
        self._closed = False

    @property
    def data(self) -> bytes:
        return self._data

    async def read(self) -> bytes:
        return self._data

    async def aclose(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class StreamBody(Body):
    """
    Lazily read body backed by an async byte iterator.

    `read()` drains the stream once and caches the bytes; `aclose()` invokes
    the closer supplied by the transport exactly once.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        *,
        length: Optional[int] = None,
        closer: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self._chunks = chunks
        self._closer = closer
        self._buffer: Optional[bytes] = None
        self._closed = False
        self.length = length

    async def read(self) -> bytes:
        if self._buffer is None:
            if self._closed:
                raise RuntimeError("response body already closed")
            parts = []
            async for chunk in self._chunks:
                parts.append(chunk)
            self._buffer = b"".join(parts)
        return self._buffer

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._closer is not None:
            await self._closer()

    @property
    def closed(self) -> bool:
        return self._closed


@dataclass
class Response:
    """
    HTTP response produced by a transport.

    The body may hold a network stream; call `aclose()` when done unless the
    response was handed over fully buffered.
    """
    status: int
    reason: Optional[str] = None
    headers: Headers = field(default_factory=dict)
    body: Optional[Body] = None
    request: Optional[Request] = None

    def header(self, name: str) -> Optional[str]:
        return first_header(self.headers, name)

    @property
    def charset(self) -> str:
        ctype = self.header("Content-Type") or ""
        for part in ctype.split(";")[1:]:
            key, _, value = part.strip().partition("=")
            if key.lower() == "charset" and value:
                return value.strip('"')
        return "utf-8"

    async def read(self) -> bytes:
        """Body bytes, or b"" when there is no body."""
        if self.body is None:
            return b""
        return await self.body.read()

    async def aclose(self) -> None:
        if self.body is not None:
            await self.body.aclose()

    async def buffered(self) -> "Response":
        """
        Copy of this response with the body read fully into memory.

        The original body is closed.
        """
        if self.body is None or isinstance(self.body, BytesBody):
            return self
        try:
            data = await self.body.read()
        finally:
            await self.body.aclose()
        return Response(
            status=self.status,
            reason=self.reason,
            headers=self.headers,
            body=BytesBody(data),
            request=self.request,
        )

    def text(self) -> str:
        """
        Decoded text of a buffered body ("" when absent).

        Raises RuntimeError for a body that has not been buffered yet.
        """
        if self.body is None:
            return ""
        if not isinstance(self.body, BytesBody):
            raise RuntimeError("response body is not buffered; await buffered() first")
        return self.body.data.decode(self.charset, errors="replace")


__all__ = [
    "DEFAULT_CONNECT_TIMEOUT_S",
    "DEFAULT_READ_TIMEOUT_S",
    "HttpMethod",
    "Options",
    "Request",
    "Response",
    "Body",
    "BytesBody",
    "StreamBody",
    "header_values",
    "first_header",
]
