# corpus_rest/http/transport.py
# SPDX-License-Identifier: Apache-2.0
"""
Transport contract and the httpx-backed reference transport.

A transport accepts a finalized `Request` plus per-call `Options` and
asynchronously produces a `Response` or raises a `TransportError`. It must
honor cancellation: cancelling the awaiting task aborts the exchange on a
best-effort basis (httpx does so natively).

Usage
-----
    import httpx
    from corpus_rest.http.transport import HttpxTransport

    transport = HttpxTransport(httpx.AsyncClient(http2=False))
    client = AsyncClient.builder().transport(transport).build().target(API, URL)
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from corpus_rest.core.errors import ConnectTimeoutError, ReadTimeoutError, TransportError
from corpus_rest.http.models import Options, Request, Response, StreamBody

LOG = logging.getLogger(__name__)


@runtime_checkable
class Transport(Protocol):
    """Minimal async transport interface consumed by method handlers."""

    async def execute(self, request: Request, options: Options) -> Response: ...


def _translate(err: httpx.HTTPError, request: Request) -> TransportError:
    details = {"method": request.method.value, "url": request.url}
    if isinstance(err, httpx.ConnectTimeout):
        return ConnectTimeoutError(f"connect timed out: {err}", details=details)
    if isinstance(err, httpx.TimeoutException):
        return ReadTimeoutError(f"read timed out: {err}", details=details)
    return TransportError(f"{type(err).__name__}: {err}", details=details)


class HttpxTransport:
    """
    Transport backed by `httpx.AsyncClient`.

    Responses are streamed: the body is exposed as a `StreamBody` whose
    length comes from Content-Length (None when absent), so the method
    handler can decide whether to buffer it.

    Parameters
    ----------
    client:
        Pre-configured `httpx.AsyncClient` (proxies, limits, auth). When
        omitted, one is created and owned by this transport.
    transport:
        Optional low-level httpx transport for an owned client, e.g.
        `httpx.MockTransport` in tests.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if client is not None and transport is not None:
            raise ValueError("pass either client or transport, not both")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(transport=transport)

    async def execute(self, request: Request, options: Options) -> Response:
        timeout = httpx.Timeout(options.read_timeout_s, connect=options.connect_timeout_s)
        headers: List[tuple] = [(k, v) for k, vs in request.headers.items() for v in vs]
        outbound = self._client.build_request(
            request.method.value,
            request.url,
            headers=headers,
            content=request.body,
            timeout=timeout,
        )
        try:
            resp = await self._client.send(
                outbound,
                stream=True,
                follow_redirects=options.follow_redirects,
            )
        except httpx.HTTPError as e:
            raise _translate(e, request) from e

        grouped: Dict[str, List[str]] = {}
        for name, value in resp.headers.multi_items():
            grouped.setdefault(name, []).append(value)

        length: Optional[int] = None
        raw_length = resp.headers.get("content-length")
        if raw_length is not None:
            try:
                length = int(raw_length)
            except ValueError:
                LOG.debug("ignoring invalid Content-Length %r from %s", raw_length, request.url)

        async def _chunks() -> AsyncIterator[bytes]:
            try:
                async for chunk in resp.aiter_bytes():
                    yield chunk
            except httpx.HTTPError as e:
                raise _translate(e, request) from e

        return Response(
            status=resp.status_code,
            reason=resp.reason_phrase or None,
            headers={k: tuple(v) for k, v in grouped.items()},
            body=StreamBody(_chunks(), length=length, closer=resp.aclose),
            request=request,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


__all__ = [
    "Transport",
    "HttpxTransport",
]
