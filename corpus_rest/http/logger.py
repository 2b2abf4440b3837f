# corpus_rest/http/logger.py
# SPDX-License-Identifier: Apache-2.0
"""
Request/response logging for generated clients.

Verbosity levels:

    NONE     no logging (default)
    BASIC    request line, response status and elapsed time
    HEADERS  BASIC plus request and response headers
    FULL     HEADERS plus bodies; the response body is read into memory
             and the response is re-buffered so decoding still sees it

Lines are emitted at DEBUG through a standard `logging.Logger`
(`corpus_rest.http` unless one is supplied). Logging never changes the
decoded outcome of a call.
"""

from __future__ import annotations

import enum
import logging
from typing import Optional

from corpus_rest.http.models import Headers, Request, Response


class Level(enum.IntEnum):
    NONE = 0
    BASIC = 1
    HEADERS = 2
    FULL = 3


class HttpLogger:
    """
    Formats request/response lines tagged with the operation config key.
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._log = logger or logging.getLogger("corpus_rest.http")

    def _emit(self, config_key: str, fmt: str, *args: object) -> None:
        self._log.debug("[%s] " + fmt, config_key, *args)

    def _emit_headers(self, config_key: str, headers: Headers) -> None:
        for name, values in headers.items():
            for value in values:
                self._emit(config_key, "%s: %s", name, value)

    def log_request(self, config_key: str, level: Level, request: Request) -> None:
        if level < Level.BASIC:
            return
        self._emit(config_key, "---> %s %s", request.method.value, request.url)
        if level >= Level.HEADERS:
            self._emit_headers(config_key, request.headers)
            body_len = len(request.body) if request.body is not None else 0
            if level >= Level.FULL and request.body is not None:
                self._emit(config_key, "%s", request.body_text())
            self._emit(config_key, "---> END HTTP (%d-byte body)", body_len)

    async def log_and_rebuffer_response(
        self,
        config_key: str,
        level: Level,
        response: Response,
        elapsed_ms: float,
    ) -> Response:
        """
        Log the response and, at FULL, return a buffered copy of it.
        """
        if level < Level.BASIC:
            return response
        reason = f" {response.reason}" if response.reason else ""
        self._emit(config_key, "<--- HTTP %d%s (%dms)", response.status, reason, int(elapsed_ms))
        if level < Level.HEADERS:
            return response

        self._emit_headers(config_key, response.headers)
        if level >= Level.FULL and response.body is not None:
            response = await response.buffered()
            data = await response.read()
            if data:
                self._emit(config_key, "%s", response.text())
            self._emit(config_key, "<--- END HTTP (%d-byte body)", len(data))
        else:
            self._emit(config_key, "<--- END HTTP")
        return response

    def log_error(self, config_key: str, level: Level, err: BaseException, elapsed_ms: float) -> None:
        if level < Level.BASIC:
            return
        self._emit(
            config_key,
            "<--- ERROR %s: %s (%dms)",
            type(err).__name__,
            err,
            int(elapsed_ms),
        )


class NoopHttpLogger(HttpLogger):
    """Logger that discards everything regardless of level."""

    def log_request(self, config_key: str, level: Level, request: Request) -> None:
        return None

    async def log_and_rebuffer_response(
        self,
        config_key: str,
        level: Level,
        response: Response,
        elapsed_ms: float,
    ) -> Response:
        return response

    def log_error(self, config_key: str, level: Level, err: BaseException, elapsed_ms: float) -> None:
        return None


__all__ = [
    "Level",
    "HttpLogger",
    "NoopHttpLogger",
]
