# corpus_rest/client.py
# SPDX-License-Identifier: Apache-2.0
"""
Client construction: validating builder, immutable configuration and the
generated dispatch proxy.

    client = (
        AsyncClient.builder()
        .transport(HttpxTransport())
        .decoder(JsonDecoder())
        .circuit_breaker(SimpleCircuitBreaker)     # factory: one per operation
        .retry(RetryPolicy(max_attempts=3))        # shared, stateless
        .build()
    )
    orders = client.target(ORDERS, "https://orders.example.com")
    order = await orders.find_order(42, None)

`target()` produces an instance of a class generated for that target. Each
operation becomes a method delegating to an explicit dispatch table
(config key -> AsyncMethodHandler) built once; the API's default methods
become ordinary methods of the same class. Equality, hashing and repr are
answered from the target, never forwarded.

Modes
-----
thin (default)
    No breaker, no retry unless supplied.
standalone
    Per-operation SimpleCircuitBreaker and a default RetryPolicy unless
    supplied.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from corpus_rest.codec import (
    Decoder,
    DefaultDecoder,
    DefaultEncoder,
    DefaultErrorDecoder,
    Encoder,
    ErrorDecoder,
)
from corpus_rest.contract import (
    ApiType,
    AsyncContract,
    DefaultMethod,
    OperationDescriptor,
    is_pending,
)
from corpus_rest.core.error_context import attach_context
from corpus_rest.core.errors import ConfigurationError, InvocationError
from corpus_rest.core.metrics import COMPONENT, MetricsSink, NoopMetrics
from corpus_rest.handler import AsyncMethodHandler, Factory, Interceptor
from corpus_rest.http.logger import HttpLogger, Level
from corpus_rest.http.models import Options
from corpus_rest.http.template import HardCodedTarget, Target
from corpus_rest.http.transport import Transport
from corpus_rest.resilience import CircuitBreaker, Retry, RetryPolicy, SimpleCircuitBreaker
from corpus_rest.resolving import template_builder_for
from corpus_rest.tracing import PendingResult

LOG = logging.getLogger(__name__)

MODES = ("thin", "standalone")


def _as_factory(value: Any, attr: str, what: str) -> Optional[Callable[[], Any]]:
    """
    Classes and zero-argument callables are factories; an object exposing
    `attr` is a shared instance.
    """
    if value is None:
        return None
    if inspect.isclass(value):
        return value
    if hasattr(value, attr):
        return lambda: value
    if callable(value):
        return value
    raise ConfigurationError(f"{what} must be a policy instance, class or factory, got {value!r}")


@dataclass(frozen=True)
class ClientConfig:
    """
    Validated, immutable client configuration produced by `Builder.build()`.
    """
    transport: Transport
    encoder: Encoder
    decoder: Decoder
    error_decoder: ErrorDecoder
    options: Options
    logger: HttpLogger
    log_level: Level = Level.NONE
    decode404: bool = False
    interceptors: Tuple[Interceptor, ...] = ()
    breaker_factory: Optional[Callable[[], CircuitBreaker]] = None
    retry_factory: Optional[Callable[[], Retry]] = None
    metrics: MetricsSink = field(default_factory=NoopMetrics)
    mode: str = "thin"
    contract: AsyncContract = field(default_factory=AsyncContract)


class Builder:
    """
    Collects client options; `build()` validates them all at once.
    """

    def __init__(self) -> None:
        self._transport: Any = None
        self._retry: Any = None
        self._breaker: Any = None
        self._interceptors: List[Any] = []
        self._logger: Any = None
        self._log_level: Any = Level.NONE
        self._encoder: Any = None
        self._decoder: Any = None
        self._error_decoder: Any = None
        self._decode404 = False
        self._options: Any = None
        self._metrics: Any = None
        self._mode = "thin"
        self._contract: Any = None

    def transport(self, transport: Transport) -> "Builder":
        self._transport = transport
        return self

    def retry(self, policy: Union[Retry, Callable[[], Retry]]) -> "Builder":
        self._retry = policy
        return self

    def circuit_breaker(self, breaker: Union[CircuitBreaker, Callable[[], CircuitBreaker]]) -> "Builder":
        self._breaker = breaker
        return self

    def interceptor(self, interceptor: Interceptor) -> "Builder":
        self._interceptors.append(interceptor)
        return self

    def interceptors(self, interceptors: Sequence[Interceptor]) -> "Builder":
        self._interceptors = list(interceptors)
        return self

    def logger(self, logger: Union[HttpLogger, logging.Logger]) -> "Builder":
        self._logger = logger
        return self

    def log_level(self, level: Union[Level, str]) -> "Builder":
        self._log_level = level
        return self

    def encoder(self, encoder: Encoder) -> "Builder":
        self._encoder = encoder
        return self

    def decoder(self, decoder: Decoder) -> "Builder":
        self._decoder = decoder
        return self

    def error_decoder(self, error_decoder: ErrorDecoder) -> "Builder":
        self._error_decoder = error_decoder
        return self

    def decode404(self, enabled: bool = True) -> "Builder":
        self._decode404 = enabled
        return self

    def options(self, options: Options) -> "Builder":
        self._options = options
        return self

    def metrics(self, metrics: MetricsSink) -> "Builder":
        self._metrics = metrics
        return self

    def mode(self, mode: str) -> "Builder":
        self._mode = mode
        return self

    def contract(self, contract: AsyncContract) -> "Builder":
        self._contract = contract
        return self

    def _resolve_level(self) -> Level:
        level = self._log_level
        if isinstance(level, Level):
            return level
        if isinstance(level, str):
            try:
                return Level[level.strip().upper()]
            except KeyError:
                pass
        raise ConfigurationError(f"unknown log level {level!r}")

    def _resolve_logger(self) -> HttpLogger:
        if self._logger is None:
            return HttpLogger()
        if isinstance(self._logger, HttpLogger):
            return self._logger
        if isinstance(self._logger, logging.Logger):
            return HttpLogger(self._logger)
        raise ConfigurationError(f"logger must be an HttpLogger or logging.Logger, got {self._logger!r}")

    def build(self) -> "AsyncClient":
        if self._transport is None:
            raise ConfigurationError("transport is required")
        if not callable(getattr(self._transport, "execute", None)):
            raise ConfigurationError(f"transport {self._transport!r} has no execute()")

        mode = (self._mode or "").strip().lower()
        if mode not in MODES:
            raise ConfigurationError(f"unknown mode {self._mode!r}; expected one of {MODES}")

        for i, interceptor in enumerate(self._interceptors):
            if not callable(interceptor):
                raise ConfigurationError(f"interceptor #{i} is not callable: {interceptor!r}")

        options = self._options if self._options is not None else Options()
        if not isinstance(options, Options):
            raise ConfigurationError(f"options must be an Options instance, got {options!r}")

        for name, codec, method in (
            ("encoder", self._encoder, "encode"),
            ("decoder", self._decoder, "decode"),
            ("error_decoder", self._error_decoder, "decode"),
        ):
            if codec is not None and not callable(getattr(codec, method, None)):
                raise ConfigurationError(f"{name} {codec!r} has no {method}()")

        breaker_factory = _as_factory(self._breaker, "allow", "circuit breaker")
        retry_factory = _as_factory(self._retry, "should_retry", "retry policy")
        if mode == "standalone":
            if self._metrics is None:
                LOG.warning(
                    "Using standalone mode without metrics - "
                    "consider providing a metrics sink for production use"
                )
            breaker_factory = breaker_factory or SimpleCircuitBreaker
            if retry_factory is None:
                default_retry = RetryPolicy()
                retry_factory = lambda: default_retry  # noqa: E731

        config = ClientConfig(
            transport=self._transport,
            encoder=self._encoder or DefaultEncoder(),
            decoder=self._decoder or DefaultDecoder(),
            error_decoder=self._error_decoder or DefaultErrorDecoder(),
            options=options,
            logger=self._resolve_logger(),
            log_level=self._resolve_level(),
            decode404=bool(self._decode404),
            interceptors=tuple(self._interceptors),
            breaker_factory=breaker_factory,
            retry_factory=retry_factory,
            metrics=self._metrics or NoopMetrics(),
            mode=mode,
            contract=self._contract or AsyncContract(),
        )
        return AsyncClient(config)


class DispatchProxy:
    """
    Base class of generated clients.

    Subclasses are generated per target by `AsyncClient.target()`; each
    operation method calls `_invoke(config_key, argv)`.
    """

    def __init__(self, target: Target) -> None:
        self._target = target
        self._dispatch: Mapping[str, AsyncMethodHandler] = MappingProxyType({})
        self._pending: Mapping[str, bool] = MappingProxyType({})

    @property
    def target(self) -> Target:
        return self._target

    @property
    def dispatch_table(self) -> Mapping[str, AsyncMethodHandler]:
        return self._dispatch

    def _invoke(self, config_key: str, argv: Sequence[Any]) -> Any:
        handler = self._dispatch[config_key]
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise InvocationError(
                f"{config_key} must be called from a running event loop",
                details={"config_key": config_key},
            ) from None
        try:
            return handler.invoke(argv)
        except Exception as e:  # noqa: BLE001
            attach_context(e, COMPONENT, config_key=config_key, stage="encode")
            if self._pending.get(config_key, False):
                return PendingResult.failed(e, config_key=config_key, loop=loop)
            raise InvocationError(
                "Error invoking method",
                details={"config_key": config_key},
            ) from e

    async def aclose(self) -> None:
        """Release per-operation retry schedulers. The transport is not closed."""
        for handler in self._dispatch.values():
            handler.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DispatchProxy):
            return NotImplemented
        return self._target == other._target

    def __hash__(self) -> int:
        return hash(self._target)

    def __repr__(self) -> str:
        return str(self._target)


_RESERVED = frozenset(dir(DispatchProxy))


def _operation_method(class_name: str, d: OperationDescriptor) -> Callable[..., Any]:
    key = d.config_key
    sig = inspect.Signature(
        [inspect.Parameter("self", inspect.Parameter.POSITIONAL_OR_KEYWORD)]
        + [inspect.Parameter(n, inspect.Parameter.POSITIONAL_OR_KEYWORD) for n in d.param_names]
    )

    def method(self: DispatchProxy, *args: Any, **kwargs: Any) -> Any:
        bound = sig.bind(self, *args, **kwargs)
        return self._invoke(key, bound.args[1:])

    method.__name__ = d.name
    method.__qualname__ = f"{class_name}.{d.name}"
    method.__signature__ = sig  # type: ignore[attr-defined]
    method.__doc__ = f"{d.method.value} {d.url}"
    return method


def _proxy_class(api_type: ApiType, descriptors: Sequence[OperationDescriptor]) -> type:
    class_name = f"{api_type.name}Client"
    namespace: Dict[str, Any] = {"__module__": __name__, "__qualname__": class_name}

    for d in descriptors:
        if d.name in _RESERVED:
            raise ConfigurationError(f"operation name {d.name!r} of {api_type.name} is reserved")
        namespace[d.name] = _operation_method(class_name, d)

    for name, entry in api_type.defaults.items():
        fn = entry.fn if isinstance(entry, DefaultMethod) else entry
        if not name.isidentifier() or name in _RESERVED or name in namespace:
            raise ConfigurationError(f"default method name {name!r} of {api_type.name} is not usable")
        if not callable(fn):
            raise ConfigurationError(f"default method {name!r} of {api_type.name} is not callable")
        namespace[name] = fn

    return type(class_name, (DispatchProxy,), namespace)


class AsyncClient:
    """
    Entry point: holds a `ClientConfig` and produces clients per target.
    """

    def __init__(self, config: ClientConfig) -> None:
        self._config = config

    @staticmethod
    def builder() -> Builder:
        return Builder()

    @property
    def config(self) -> ClientConfig:
        return self._config

    def target(self, api_type: ApiType, url: Optional[str] = None, *, target: Optional[Target] = None) -> Any:
        """
        Build a client for `api_type` pointed at `url` (or a custom Target).

        All contract and fallback validation happens here; any problem
        raises ConfigurationError and no client is produced.
        """
        if target is None:
            if not url:
                raise ConfigurationError("either url or target is required")
            target = HardCodedTarget(api_type, url)
        cfg = self._config

        descriptors = cfg.contract.parse_and_validate(api_type)
        fallbacks = cfg.contract.get_fallbacks(api_type)
        cls = _proxy_class(api_type, descriptors)
        proxy = cls(target)

        factory = Factory(
            transport=cfg.transport,
            interceptors=cfg.interceptors,
            logger=cfg.logger,
            log_level=cfg.log_level,
            decode404=cfg.decode404,
            breaker_factory=cfg.breaker_factory,
            retry_factory=cfg.retry_factory,
            metrics=cfg.metrics,
        )
        dispatch: Dict[str, AsyncMethodHandler] = {}
        pending: Dict[str, bool] = {}
        for d in descriptors:
            fallback = fallbacks.get(d.config_key)
            dispatch[d.config_key] = factory.create(
                target,
                d,
                template_builder_for(d, cfg.encoder),
                options=cfg.options,
                decoder=cfg.decoder,
                error_decoder=cfg.error_decoder,
                fallback=fallback.bind(proxy) if fallback is not None else None,
            )
            pending[d.config_key] = is_pending(api_type.operation(d.name).returns)

        proxy._dispatch = MappingProxyType(dispatch)
        proxy._pending = MappingProxyType(pending)
        LOG.debug("built %s with %d operations", target, len(dispatch))
        return proxy


__all__ = [
    "MODES",
    "ClientConfig",
    "Builder",
    "DispatchProxy",
    "AsyncClient",
]
