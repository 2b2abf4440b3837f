# corpus_rest/core/errors.py
# SPDX-License-Identifier: Apache-2.0
"""
Normalized error taxonomy for Corpus REST clients.

Every failure a generated client can surface is a subclass of `ClientError`
so callers can make consistent, machine-actionable decisions:

    ConfigurationError  malformed contract / fallback binding / builder options.
                        Raised at client construction; never retried.
    TransportError      connection refused, connect/read timeouts, I/O failures.
                        Eligible for retry and fallback.
    DecodeError         codec or error decoder failed unexpectedly. Carries
                        the response status. Eligible for fallback only.
    HttpStatusError     the error decoder's deliberate result for a non-2xx
                        response (the "domain" failure). Passed through verbatim.
    CircuitOpenError    synthetic; raised without a transport call when the
                        operation's breaker is open. Never retried.
    EncodeError         template resolution could not encode a body or form.
    InvocationError     synchronous wrapper used by the dispatch proxy when a
                        non-pending operation fails before returning.

Each error carries an UPPER_SNAKE_CASE `code`, an optional HTTP `status`,
an optional `retry_after_ms` backoff hint and JSON-safe `details`.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional


class ClientError(Exception):
    """
    Base exception for all Corpus REST client errors.

    Attributes:
        message:
            Human-readable description (safe for logs).
        code:
            Upper-snake-case machine code; defaults per subclass.
        status:
            HTTP status associated with the failure, when one exists.
        retry_after_ms:
            Optional backoff hint (e.g. parsed from a Retry-After header).
        details:
            Additional JSON-safe context (never include secrets).
    """

    default_code = "CLIENT_ERROR"

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        status: Optional[int] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status
        self.retry_after_ms = retry_after_ms
        self.details = dict(details or {})

    def __str__(self) -> str:
        base = self.message or self.__class__.__name__
        if self.code:
            base += f" [code={self.code}]"
        if self.status is not None:
            base += f" status={self.status}"
        if self.retry_after_ms is not None:
            base += f" retry_after_ms={self.retry_after_ms}"
        if self.details:
            base += f" details={self.details}"
        return base


class ConfigurationError(ClientError):
    """
    Malformed contract, fallback binding, or client options.

    Fatal at construction time; a client is never produced.
    """

    default_code = "CONFIGURATION_ERROR"


class TransportError(ClientError):
    """
    Retryable transport failure (connection refused, reset, I/O error).
    """

    default_code = "TRANSPORT_ERROR"


class ConnectTimeoutError(TransportError):
    """Connection could not be established within Options.connect_timeout_s."""

    default_code = "CONNECT_TIMEOUT"


class ReadTimeoutError(TransportError):
    """No response data arrived within Options.read_timeout_s."""

    default_code = "READ_TIMEOUT"


class DecodeError(ClientError):
    """
    The decoder (or error decoder) raised unexpectedly.

    `status` is the status of the response that was being decoded.
    """

    default_code = "DECODE_ERROR"


class HttpStatusError(ClientError):
    """
    Non-2xx response, produced by the error decoder.

    Attributes:
        reason:
            Reason phrase from the response, when present.
        body:
            Bounded excerpt of the response body (decoded text).
        config_key:
            Operation that produced the response.
    """

    default_code = "HTTP_STATUS"

    def __init__(
        self,
        message: str,
        *,
        status: int,
        reason: Optional[str] = None,
        body: Optional[str] = None,
        config_key: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, status=status, **kwargs)
        self.reason = reason
        self.body = body
        self.config_key = config_key


class CircuitOpenError(ClientError):
    """
    Raised when the operation's circuit breaker rejects a call.

    No transport call is attempted.
    """

    default_code = "CIRCUIT_OPEN"


class EncodeError(ClientError):
    """Body or form parameters could not be encoded into the request template."""

    default_code = "ENCODE_ERROR"


class InvocationError(ClientError):
    """
    Synchronous failure of a proxy call that does not return a PendingResult.
    """

    default_code = "INVOCATION_ERROR"

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("status", 500)
        super().__init__(message, **kwargs)


__all__ = [
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
]
