# corpus_rest/contract.py
# SPDX-License-Identifier: Apache-2.0
"""
Declarative API descriptions and the contract adapter.

An API is described as data rather than through annotations:

    ORDERS = ApiType(
        name="OrderApi",
        headers=("Accept: application/json",),
        operations=(
            OperationSpec(
                "find_order",
                "GET /orders/{id}?expand={expand}",
                params=(Param("id"), Param("expand")),
                returns=Awaitable[Order],
                fallback=Fallback("find_order_fallback", ignore=(HttpStatusError,)),
            ),
            OperationSpec(
                "make_order",
                "POST /orders",
                headers=("Content-Type: application/json",),
                params=(Body(Order),),
                returns=PendingResult[Bill],
            ),
        ),
        defaults={"find_order_fallback": find_order_fallback},
    )

`DeclarativeContract` parses each `OperationSpec` into an
`OperationDescriptor`. `AsyncContract` wraps it, insists that every
operation returns a pending wrapper around exactly one type, records the
unwrapped type, and discovers and validates fallback bindings. Every
violation raises `ConfigurationError`; a client is never produced from an
invalid description.

Pending wrappers: `Awaitable[T]`, `Coroutine[Any, Any, T]`,
`asyncio.Future[T]` and `PendingResult[T]`. `T` may be `None` for
operations that return no value.
"""

from __future__ import annotations

import asyncio
import collections.abc
import inspect
import logging
import typing
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from corpus_rest.core.errors import ConfigurationError
from corpus_rest.fallback import FallbackHandler, IgnoreRule
from corpus_rest.http.models import HttpMethod
from corpus_rest.http.template import RequestTemplate, placeholders

LOG = logging.getLogger(__name__)

_MISSING: Any = object()

# =============================================================================
# Declarative description
# =============================================================================


@dataclass(frozen=True)
class Param:
    """
    Named argument bound to `{name}` placeholders in the URL, query or
    header templates. Names not referenced by any template become form
    parameters.
    """
    name: str
    expander: Optional[Callable[[Any], str]] = None


@dataclass(frozen=True)
class Body:
    """Argument encoded as the request body."""
    type: Any = Any
    name: str = "body"


@dataclass(frozen=True)
class QueryMap:
    """Argument whose mapping entries are merged into the query string."""
    name: str = "queries"


@dataclass(frozen=True)
class HeaderMap:
    """Argument whose mapping entries are merged into the headers."""
    name: str = "headers"


@dataclass(frozen=True)
class Url:
    """Argument carrying the base URL for this call."""
    name: str = "url"


ParamSpec = Union[Param, Body, QueryMap, HeaderMap, Url]


@dataclass(frozen=True)
class Fallback:
    """
    Fallback binding declared on an operation.

    Attributes:
        name:
            Name of a default method on the API.
        ignore:
            Exception classes and/or error codes that never trigger the
            fallback.
        ignore_predicate:
            Callable `(err) -> bool`; True means "do not fall back". A class
            is instantiated once at client construction.
    """
    name: str
    ignore: Tuple[IgnoreRule, ...] = ()
    ignore_predicate: Optional[Any] = None


@dataclass(frozen=True)
class OperationSpec:
    name: str
    request_line: str
    params: Tuple[ParamSpec, ...] = ()
    returns: Any = _MISSING
    headers: Tuple[str, ...] = ()
    fallback: Optional[Fallback] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", tuple(self.params))
        object.__setattr__(self, "headers", tuple(self.headers))


@dataclass(frozen=True)
class DefaultMethod:
    """
    Default method with an explicitly declared result type.

    Plain functions in `ApiType.defaults` declare their result type through
    their return annotation instead.
    """
    fn: Callable[..., Any]
    returns: Any = _MISSING


@dataclass(frozen=True, eq=False)
class ApiType:
    """
    A remote API: name, class-level header templates, operations and
    default methods. Compared and hashed by identity.
    """
    name: str
    operations: Tuple[OperationSpec, ...] = ()
    headers: Tuple[str, ...] = ()
    defaults: Mapping[str, Union[Callable[..., Any], DefaultMethod]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "operations", tuple(self.operations))
        object.__setattr__(self, "headers", tuple(self.headers))
        object.__setattr__(self, "defaults", dict(self.defaults))

    def operation(self, name: str) -> OperationSpec:
        for op in self.operations:
            if op.name == name:
                return op
        raise KeyError(name)

    def __repr__(self) -> str:
        return f"ApiType({self.name})"


# =============================================================================
# Parsed metadata
# =============================================================================


@dataclass(frozen=True)
class OperationDescriptor:
    """
    Parsed, immutable metadata of one operation.

    `return_type` holds the declared type as parsed; after `AsyncContract`
    it holds the unwrapped result type.
    """
    config_key: str
    name: str
    method: HttpMethod
    url: str
    queries: Mapping[str, Tuple[Optional[str], ...]]
    headers: Mapping[str, Tuple[str, ...]]
    param_names: Tuple[str, ...]
    index_to_name: Mapping[int, str]
    index_to_expander: Mapping[int, Callable[[Any], str]]
    return_type: Any
    body_index: Optional[int] = None
    body_type: Any = None
    form_params: Tuple[str, ...] = ()
    query_map_index: Optional[int] = None
    header_map_index: Optional[int] = None
    url_index: Optional[int] = None

    def new_template(self) -> RequestTemplate:
        return RequestTemplate(
            self.method,
            self.url,
            queries=self.queries,
            headers=self.headers,
        )


def config_key(api_name: str, op_name: str, param_names: Sequence[str]) -> str:
    return f"{api_name}#{op_name}({','.join(param_names)})"


def _parse_header(line: str, where: str) -> Tuple[str, str]:
    name, sep, value = line.partition(":")
    name = name.strip()
    if not sep or not name:
        raise ConfigurationError(f"{where}: header template {line!r} is not 'Name: value'")
    return name, value.strip()


def _merge_headers(
    api_lines: Sequence[str],
    op_lines: Sequence[str],
    where: str,
) -> Dict[str, List[str]]:
    """Operation-level headers replace class-level ones of the same name."""
    headers: Dict[str, List[str]] = {}
    for line in api_lines:
        name, value = _parse_header(line, where)
        key = next((k for k in headers if k.lower() == name.lower()), name)
        headers.setdefault(key, []).append(value)

    replaced = set()
    for line in op_lines:
        name, value = _parse_header(line, where)
        lname = name.lower()
        if lname not in replaced:
            for k in [k for k in headers if k.lower() == lname]:
                del headers[k]
            replaced.add(lname)
        key = next((k for k in headers if k.lower() == lname), name)
        headers.setdefault(key, []).append(value)
    return headers


def _parse_request_line(line: str, where: str) -> Tuple[HttpMethod, str, Dict[str, List[Optional[str]]]]:
    parts = line.strip().split(None, 1)
    if len(parts) != 2:
        raise ConfigurationError(f"{where}: request line {line!r} is not 'METHOD /path'")
    try:
        method = HttpMethod.parse(parts[0])
    except ValueError as e:
        raise ConfigurationError(f"{where}: {e}") from None

    path, _, query = parts[1].strip().partition("?")
    queries: Dict[str, List[Optional[str]]] = {}
    for pair in filter(None, query.split("&")):
        name, eq, value = pair.partition("=")
        queries.setdefault(name, []).append(value if eq else None)
    return method, path, queries


class DeclarativeContract:
    """
    Parses `OperationSpec`s into `OperationDescriptor`s.

    Rules enforced:
        - operation names are unique
        - at most one Body, QueryMap, HeaderMap and Url parameter
        - parameter names are unique identifiers
        - Params not referenced by any template become form parameters
        - Body and form parameters are mutually exclusive
        - GET operations carry no body or form parameters
    """

    def parse_and_validate(self, api_type: ApiType) -> List[OperationDescriptor]:
        seen = set()
        out: List[OperationDescriptor] = []
        for op in api_type.operations:
            if op.name in seen:
                raise ConfigurationError(
                    f"operation {op.name} of contract {api_type.name} is declared more than once"
                )
            seen.add(op.name)
            out.append(self.parse_operation(api_type, op))
        return out

    def parse_operation(self, api_type: ApiType, op: OperationSpec) -> OperationDescriptor:
        where = f"{api_type.name}.{op.name}"
        if not op.name.isidentifier() or op.name.startswith("_"):
            raise ConfigurationError(f"{where}: operation name must be a public identifier")

        method, url, queries = _parse_request_line(op.request_line, where)

        headers = _merge_headers(api_type.headers, op.headers, where)

        referenced = set(placeholders(url))
        for values in queries.values():
            for v in values:
                if v is not None:
                    referenced.update(placeholders(v))
        for values in headers.values():
            for v in values:
                referenced.update(placeholders(v))
        referenced = {n.strip() for n in referenced}

        names: List[str] = []
        index_to_name: Dict[int, str] = {}
        index_to_expander: Dict[int, Callable[[Any], str]] = {}
        form_params: List[str] = []
        special: Dict[type, int] = {}
        body_type: Any = None

        for i, p in enumerate(op.params):
            if not isinstance(p, (Param, Body, QueryMap, HeaderMap, Url)):
                raise ConfigurationError(f"{where}: parameter #{i} has unsupported kind {type(p).__name__}")
            if not p.name.isidentifier():
                raise ConfigurationError(f"{where}: parameter name {p.name!r} is not an identifier")
            if p.name in names:
                raise ConfigurationError(f"{where}: parameter name {p.name!r} is declared more than once")
            names.append(p.name)

            if isinstance(p, Param):
                index_to_name[i] = p.name
                if p.expander is not None:
                    if not callable(p.expander):
                        raise ConfigurationError(f"{where}: expander for {p.name!r} is not callable")
                    index_to_expander[i] = p.expander
                if p.name not in referenced:
                    form_params.append(p.name)
                continue

            kind = type(p)
            if kind in special:
                raise ConfigurationError(f"{where}: more than one {kind.__name__} parameter")
            special[kind] = i
            if isinstance(p, Body):
                body_type = p.type

        if Body in special and form_params:
            raise ConfigurationError(
                f"{where}: body parameters cannot be used with form parameters {form_params}"
            )
        if method is HttpMethod.GET and (Body in special or form_params):
            raise ConfigurationError(f"{where}: GET operations cannot carry a body or form parameters")
        if op.returns is _MISSING:
            raise ConfigurationError(f"{where}: no result type declared")

        return OperationDescriptor(
            config_key=config_key(api_type.name, op.name, names),
            name=op.name,
            method=method,
            url=url,
            queries={k: tuple(v) for k, v in queries.items()},
            headers={k: tuple(v) for k, v in headers.items()},
            param_names=tuple(names),
            index_to_name=index_to_name,
            index_to_expander=index_to_expander,
            return_type=op.returns,
            body_index=special.get(Body),
            body_type=body_type,
            form_params=tuple(form_params),
            query_map_index=special.get(QueryMap),
            header_map_index=special.get(HeaderMap),
            url_index=special.get(Url),
        )


# =============================================================================
# Pending wrappers
# =============================================================================


def _is_pending_origin(origin: Any) -> bool:
    if origin in (collections.abc.Awaitable, collections.abc.Coroutine):
        return True
    return inspect.isclass(origin) and issubclass(origin, asyncio.Future)


def unwrap_pending(tp: Any) -> Any:
    """
    Return T for a pending wrapper around exactly one type T.

    Raises TypeError for anything else. `None` is normalized to NoneType.
    """
    origin = typing.get_origin(tp)
    if origin is None or not _is_pending_origin(origin):
        raise TypeError(f"{tp!r} is not a pending result type")
    args = typing.get_args(tp)
    if origin is collections.abc.Coroutine:
        if len(args) != 3:
            raise TypeError(f"{tp!r} does not wrap exactly one type")
        inner = args[2]
    elif len(args) != 1:
        raise TypeError(f"{tp!r} does not wrap exactly one type")
    else:
        inner = args[0]
    return type(None) if inner is None else inner


def is_pending(tp: Any) -> bool:
    try:
        unwrap_pending(tp)
    except TypeError:
        return False
    return True


# =============================================================================
# Contract adapter
# =============================================================================


def _default_parts(name: str, entry: Any) -> Tuple[Callable[..., Any], Any]:
    if isinstance(entry, DefaultMethod):
        return entry.fn, entry.returns
    return entry, _MISSING


def _fallback_result_type(fn: Callable[..., Any], declared: Any, where: str) -> Any:
    if declared is not _MISSING:
        try:
            return unwrap_pending(declared)
        except TypeError as e:
            raise ConfigurationError(f"{where}: {e}") from None
    try:
        hints = typing.get_type_hints(fn)
    except Exception as e:  # noqa: BLE001
        raise ConfigurationError(f"{where}: cannot evaluate annotations: {e}") from e
    if "return" not in hints:
        raise ConfigurationError(f"{where}: declares no result type")
    ret = hints["return"]
    if inspect.iscoroutinefunction(fn):
        return type(None) if ret is None else ret
    try:
        return unwrap_pending(ret)
    except TypeError as e:
        raise ConfigurationError(f"{where}: {e}") from None


def _is_exception_annotation(tp: Any) -> bool:
    if inspect.isclass(tp):
        return issubclass(tp, BaseException)
    if typing.get_origin(tp) is Union:
        return all(_is_exception_annotation(a) for a in typing.get_args(tp))
    return False


def _instantiate_predicate(predicate: Any, where: str) -> Optional[Callable[[BaseException], bool]]:
    if predicate is None:
        return None
    if inspect.isclass(predicate):
        try:
            predicate = predicate()
        except Exception as e:  # noqa: BLE001
            raise ConfigurationError(f"{where}: cannot instantiate ignore predicate {predicate!r}: {e}") from e
    if not callable(predicate):
        raise ConfigurationError(f"{where}: ignore predicate {predicate!r} is not callable")
    return predicate


class AsyncContract:
    """
    Contract adapter for asynchronous clients.

    Delegates parsing to a `DeclarativeContract` and then validates pending
    result types and fallback bindings.
    """

    def __init__(self, delegate: Optional[DeclarativeContract] = None) -> None:
        self._delegate = delegate or DeclarativeContract()

    def parse_and_validate(self, api_type: ApiType) -> List[OperationDescriptor]:
        descriptors = self._delegate.parse_and_validate(api_type)
        out: List[OperationDescriptor] = []
        for d in descriptors:
            try:
                actual = unwrap_pending(d.return_type)
            except TypeError:
                raise ConfigurationError(
                    f"Method {d.config_key} of contract {api_type.name} doesn't return a pending result",
                    details={"operation": d.name, "api": api_type.name},
                ) from None
            out.append(replace(d, return_type=actual))
        return out

    def get_fallbacks(self, api_type: ApiType) -> Dict[str, FallbackHandler]:
        """
        Resolve and validate every declared fallback, keyed by config key.
        """
        by_name = {d.name: d for d in self.parse_and_validate(api_type)}
        fallbacks: Dict[str, FallbackHandler] = {}

        for op in api_type.operations:
            if op.fallback is None:
                continue
            d = by_name[op.name]
            fb = op.fallback
            where = f"fallback {fb.name!r} of {d.config_key} in contract {api_type.name}"

            if fb.name not in api_type.defaults:
                raise ConfigurationError(f"{where}: no such default method")
            fn, declared = _default_parts(fb.name, api_type.defaults[fb.name])
            if not callable(fn):
                raise ConfigurationError(f"{where}: default method is not callable")

            try:
                sig = inspect.signature(fn)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"{where}: cannot inspect signature: {e}") from None
            params = list(sig.parameters.values())
            if any(p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD, p.KEYWORD_ONLY) for p in params):
                raise ConfigurationError(f"{where}: only positional parameters are supported")
            # First parameter receives the client.
            expected = len(d.param_names) + 2
            if len(params) != expected:
                raise ConfigurationError(
                    f"{where}: expected {len(d.param_names) + 1} parameters after the client "
                    f"(operation parameters plus the failure), got {len(params) - 1}"
                )

            try:
                hints = typing.get_type_hints(fn)
            except Exception:  # noqa: BLE001
                hints = {}
            trailing = hints.get(params[-1].name)
            if trailing is not None and not _is_exception_annotation(trailing):
                raise ConfigurationError(f"{where}: last parameter must accept an exception")

            result_type = _fallback_result_type(fn, declared, where)
            if result_type != d.return_type:
                raise ConfigurationError(
                    f"{where}: result type {result_type!r} does not match {d.return_type!r}"
                )

            for rule in fb.ignore:
                if not (isinstance(rule, str) or (inspect.isclass(rule) and issubclass(rule, BaseException))):
                    raise ConfigurationError(f"{where}: ignore rule {rule!r} is not an exception class or code")

            handler = FallbackHandler(
                config_key=d.config_key,
                name=fb.name,
                fn=fn,
                ignore=tuple(fb.ignore),
                ignore_predicate=_instantiate_predicate(fb.ignore_predicate, where),
            )
            LOG.info("Discovered fallback %s for %s", fb.name, d.config_key)
            fallbacks[d.config_key] = handler

        return fallbacks


__all__ = [
    "Param",
    "Body",
    "QueryMap",
    "HeaderMap",
    "Url",
    "Fallback",
    "OperationSpec",
    "DefaultMethod",
    "ApiType",
    "OperationDescriptor",
    "DeclarativeContract",
    "AsyncContract",
    "config_key",
    "unwrap_pending",
    "is_pending",
]
