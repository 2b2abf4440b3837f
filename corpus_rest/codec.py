# corpus_rest/codec.py
# SPDX-License-Identifier: Apache-2.0
"""
Codec contracts consumed by the template builder and method handlers.

- `Encoder.encode(value, body_type, template)` writes a body into a mutable
  request template. Form parameters are encoded by passing a dict with
  `body_type=FORM_MAP`.
- `Decoder.decode(response, type_)` turns a buffered response into a value
  of the operation's unwrapped result type.
- `ErrorDecoder.decode(config_key, response)` returns the exception that
  becomes the terminal failure of a non-2xx call.

Only trivial defaults live here. Real codecs (JSON, form, protobuf) are
supplied by callers on the client builder.
"""

from __future__ import annotations

import email.utils
import logging
import time
from typing import Any, Dict, Optional, Protocol

from corpus_rest.core.errors import DecodeError, EncodeError, HttpStatusError
from corpus_rest.http.models import Response
from corpus_rest.http.template import RequestTemplate

LOG = logging.getLogger(__name__)

#: Declared type handed to the encoder for form parameters.
FORM_MAP = Dict[str, Any]

#: Maximum number of characters of a response body kept on HttpStatusError.
MAX_ERROR_BODY_CHARS = 2048


class Encoder(Protocol):
    """Writes a request body into a template."""
    def encode(self, value: Any, body_type: Any, template: RequestTemplate) -> None: ...


class Decoder(Protocol):
    """Decodes a buffered response into the declared result type."""
    def decode(self, response: Response, type_: Any) -> Any: ...


class ErrorDecoder(Protocol):
    """Maps a non-2xx response to the exception the call fails with."""
    def decode(self, config_key: str, response: Response) -> BaseException: ...


class DefaultEncoder:
    """
    Accepts `str` (encoded with the template charset) and `bytes`.
    """

    def encode(self, value: Any, body_type: Any, template: RequestTemplate) -> None:
        if isinstance(value, bytes):
            template.set_body(value)
        elif isinstance(value, str):
            template.set_body(value.encode(template.charset))
        else:
            raise EncodeError(
                f"{type(value).__name__} is not a type supported by this encoder",
                details={"body_type": repr(body_type)},
            )


class DefaultDecoder:
    """
    Decodes to `Response`, `bytes`, `str` or `None`.
    """

    def decode(self, response: Response, type_: Any) -> Any:
        if type_ is Response:
            return response
        if type_ is None or type_ is type(None):
            return None
        if response.body is None:
            return None
        if type_ is bytes:
            return response.body.data  # type: ignore[attr-defined]
        if type_ is str:
            return response.text()
        raise DecodeError(
            f"{getattr(type_, '__name__', type_)} is not a type supported by this decoder",
            status=response.status,
        )


def parse_retry_after_ms(value: Optional[str], *, now: Optional[float] = None) -> Optional[int]:
    """
    Parse a Retry-After header (delta-seconds or HTTP-date) into milliseconds.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value) * 1000
    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        LOG.debug("unparseable Retry-After header: %r", value)
        return None
    if when is None:
        return None
    delta = when.timestamp() - (time.time() if now is None else now)
    return max(0, int(delta * 1000))


class DefaultErrorDecoder:
    """
    Produces an HttpStatusError carrying status, reason, a bounded body
    excerpt and the Retry-After hint.
    """

    def decode(self, config_key: str, response: Response) -> BaseException:
        body: Optional[str] = None
        try:
            body = response.text()[:MAX_ERROR_BODY_CHARS] or None
        except RuntimeError:
            # Body is still a stream; the excerpt is best-effort.
            body = None
        message = f"status {response.status} reading {config_key}"
        if body:
            message += f"; content:\n{body}"
        return HttpStatusError(
            message,
            status=response.status,
            reason=response.reason,
            body=body,
            config_key=config_key,
            retry_after_ms=parse_retry_after_ms(response.header("Retry-After")),
        )


__all__ = [
    "FORM_MAP",
    "MAX_ERROR_BODY_CHARS",
    "Encoder",
    "Decoder",
    "ErrorDecoder",
    "DefaultEncoder",
    "DefaultDecoder",
    "DefaultErrorDecoder",
    "parse_retry_after_ms",
]
