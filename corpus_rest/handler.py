# corpus_rest/handler.py
# SPDX-License-Identifier: Apache-2.0
"""
Per-operation invocation pipeline.

One `AsyncMethodHandler` exists per operation of a generated client. Each
`invoke(argv)` runs:

    BUILT       template resolved from the arguments, interceptors applied
                in registration order, target applied -> frozen Request
    IN-FLIGHT   transport.execute(request, options)
    DECODING    response decoded per the rules below
    RESOLVED |  FAILED

with the IN-FLIGHT/DECODING part re-run by the resilience decorator on
qualifying failures, then fallback resolution, then execution tracing.

Decode rules
------------
- Result type `Response`: no body -> returned as is; body longer than
  MAX_RESPONSE_BUFFER_SIZE or of unknown length -> returned unbuffered and
  the caller must close it; otherwise buffered and the original closed.
- 2xx: `None` result type resolves with None, else the decoder's value.
- 404 with decode404: the decoder runs regardless of status.
- Anything else: the error decoder's exception is the failure.
- Unexpected exceptions while decoding become `DecodeError` carrying the
  response status.

The response is closed on every path except the unbuffered raw one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Sequence

from corpus_rest.codec import Decoder, ErrorDecoder
from corpus_rest.contract import OperationDescriptor
from corpus_rest.core.error_context import attach_context
from corpus_rest.core.errors import ClientError, DecodeError, ReadTimeoutError, TransportError
from corpus_rest.core.metrics import COMPONENT, MetricsSink, NoopMetrics
from corpus_rest.fallback import FallbackHandler, fallback_if_any
from corpus_rest.http.logger import HttpLogger, Level
from corpus_rest.http.models import Options, Request, Response
from corpus_rest.http.template import RequestTemplate, Target
from corpus_rest.http.transport import Transport
from corpus_rest.resilience import CircuitBreaker, ResilienceDecorator, Retry
from corpus_rest.resolving import BuildTemplateByResolvingArgs
from corpus_rest.tracing import PendingResult, execution_tracer_if_any

LOG = logging.getLogger(__name__)

MAX_RESPONSE_BUFFER_SIZE = 8192

Interceptor = Callable[[RequestTemplate], None]


async def _ensure_closed(response: Response) -> None:
    try:
        await response.aclose()
    except Exception:  # noqa: BLE001
        LOG.debug("failed to close response body", exc_info=True)


class AsyncMethodHandler:
    """
    Orchestrates execute -> decode -> resilience -> fallback -> trace for
    one operation. Immutable once built.
    """

    def __init__(
        self,
        *,
        target: Target,
        descriptor: OperationDescriptor,
        build_template: BuildTemplateByResolvingArgs,
        transport: Transport,
        options: Options,
        decoder: Decoder,
        error_decoder: ErrorDecoder,
        decode404: bool = False,
        interceptors: Sequence[Interceptor] = (),
        logger: Optional[HttpLogger] = None,
        log_level: Level = Level.NONE,
        fallback: Optional[FallbackHandler] = None,
        resilience: Optional[ResilienceDecorator] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        self._target = target
        self._descriptor = descriptor
        self._build_template = build_template
        self._transport = transport
        self._options = options
        self._decoder = decoder
        self._error_decoder = error_decoder
        self._decode404 = bool(decode404)
        self._interceptors = tuple(interceptors)
        self._logger = logger or HttpLogger()
        self._log_level = log_level
        self._fallback = fallback
        self._resilience = resilience
        self._metrics = metrics or NoopMetrics()

    @property
    def descriptor(self) -> OperationDescriptor:
        return self._descriptor

    @property
    def fallback(self) -> Optional[FallbackHandler]:
        return self._fallback

    @property
    def resilience(self) -> Optional[ResilienceDecorator]:
        return self._resilience

    def invoke(self, argv: Sequence[Any]) -> PendingResult:
        """
        Start one call and return its PendingResult.

        Template resolution errors (e.g. EncodeError, a null body) are raised
        synchronously; every later failure is the PendingResult's outcome.
        """
        loop = asyncio.get_running_loop()
        template = self._build_template.create(argv)
        request = self._target_request(template)

        def attempt() -> Awaitable[Any]:
            return self._execute_and_decode(request)

        async def pipeline() -> Any:
            if self._resilience is not None:
                execution: Awaitable[Any] = self._resilience.run(attempt)
            else:
                execution = attempt()
            return await fallback_if_any(self._fallback, execution, tuple(argv), metrics=self._metrics)

        return execution_tracer_if_any(
            request,
            pipeline(),
            config_key=self._descriptor.config_key,
            metrics=self._metrics,
            loop=loop,
        )

    def _target_request(self, template: RequestTemplate) -> Request:
        for interceptor in self._interceptors:
            interceptor(template)
        return self._target.apply(template)

    async def _execute_and_decode(self, request: Request) -> Any:
        key = self._descriptor.config_key
        if self._log_level != Level.NONE:
            self._logger.log_request(key, self._log_level, request)

        t0 = time.monotonic()
        try:
            response = await self._transport.execute(request, self._options)
        except ClientError as e:
            self._log_transport_error(e, t0)
            attach_context(e, COMPONENT, **self._ctx(request, "transport"))
            raise
        except (asyncio.TimeoutError, TimeoutError) as e:
            self._log_transport_error(e, t0)
            err = ReadTimeoutError(
                f"timed out after {self._options.read_timeout_s}s: {type(e).__name__}",
                details={"read_timeout_s": self._options.read_timeout_s},
            )
            attach_context(err, COMPONENT, **self._ctx(request, "transport"))
            raise err from e
        except OSError as e:
            self._log_transport_error(e, t0)
            err = TransportError(f"{type(e).__name__}: {e}")
            attach_context(err, COMPONENT, **self._ctx(request, "transport"))
            raise err from e
        elapsed_ms = (time.monotonic() - t0) * 1000.0

        original = response
        should_close = True
        failure: Optional[BaseException] = None
        try:
            if self._log_level != Level.NONE:
                response = await self._logger.log_and_rebuffer_response(
                    key, self._log_level, response, elapsed_ms
                )

            if self._descriptor.return_type is Response:
                if response.body is None:
                    return response
                length = response.body.length
                if length is None or length > MAX_RESPONSE_BUFFER_SIZE:
                    should_close = False
                    return response
                return await response.buffered()

            if 200 <= response.status < 300:
                if self._descriptor.return_type is type(None):
                    return None
                return self._decode(await response.buffered())

            if self._decode404 and response.status == 404:
                return self._decode(await response.buffered())

            buffered = await response.buffered()
            failure = self._error_decoder.decode(key, buffered)
            if not isinstance(failure, BaseException):
                raise TypeError(f"error decoder returned {type(failure).__name__}, not an exception")

        except ClientError as e:
            attach_context(e, COMPONENT, **self._ctx(request, "decode", response.status))
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            err = DecodeError(
                f"{e} reading {request.method.value} {request.url}",
                status=response.status,
            )
            attach_context(err, COMPONENT, **self._ctx(request, "decode", response.status))
            raise err from e
        finally:
            if should_close:
                await _ensure_closed(original)

        attach_context(failure, COMPONENT, **self._ctx(request, "decode", response.status))
        raise failure

    def _decode(self, response: Response) -> Any:
        try:
            return self._decoder.decode(response, self._descriptor.return_type)
        except ClientError:
            raise
        except Exception as e:  # noqa: BLE001
            raise DecodeError(str(e) or type(e).__name__, status=response.status) from e

    def _log_transport_error(self, err: BaseException, t0: float) -> None:
        if self._log_level != Level.NONE:
            self._logger.log_error(
                self._descriptor.config_key,
                self._log_level,
                err,
                (time.monotonic() - t0) * 1000.0,
            )

    def _ctx(self, request: Request, stage: str, status: Optional[int] = None) -> dict:
        ctx = {
            "config_key": self._descriptor.config_key,
            "method": request.method.value,
            "url": request.url,
            "stage": stage,
        }
        if status is not None:
            ctx["status"] = status
        return ctx

    def close(self) -> None:
        """Release the operation's retry scheduler, if any."""
        if self._resilience is not None:
            self._resilience.close()


class Factory:
    """
    Builds method handlers that share one client's configuration.

    Breaker and retry factories are called once per operation so that
    state is never shared across operations.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        interceptors: Sequence[Interceptor] = (),
        logger: Optional[HttpLogger] = None,
        log_level: Level = Level.NONE,
        decode404: bool = False,
        breaker_factory: Optional[Callable[[], CircuitBreaker]] = None,
        retry_factory: Optional[Callable[[], Retry]] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        if transport is None:
            raise ValueError("transport must not be None")
        self._transport = transport
        self._interceptors = tuple(interceptors)
        self._logger = logger or HttpLogger()
        self._log_level = log_level
        self._decode404 = decode404
        self._breaker_factory = breaker_factory
        self._retry_factory = retry_factory
        self._metrics = metrics or NoopMetrics()

    def create(
        self,
        target: Target,
        descriptor: OperationDescriptor,
        build_template: BuildTemplateByResolvingArgs,
        *,
        options: Options,
        decoder: Decoder,
        error_decoder: ErrorDecoder,
        fallback: Optional[FallbackHandler] = None,
    ) -> AsyncMethodHandler:
        breaker = self._breaker_factory() if self._breaker_factory is not None else None
        retry = self._retry_factory() if self._retry_factory is not None else None
        resilience = None
        if breaker is not None or retry is not None:
            resilience = ResilienceDecorator(
                descriptor.config_key,
                breaker=breaker,
                retry=retry,
                metrics=self._metrics,
            )
        return AsyncMethodHandler(
            target=target,
            descriptor=descriptor,
            build_template=build_template,
            transport=self._transport,
            options=options,
            decoder=decoder,
            error_decoder=error_decoder,
            decode404=self._decode404,
            interceptors=self._interceptors,
            logger=self._logger,
            log_level=self._log_level,
            fallback=fallback,
            resilience=resilience,
            metrics=self._metrics,
        )


__all__ = [
    "MAX_RESPONSE_BUFFER_SIZE",
    "AsyncMethodHandler",
    "Factory",
]
