# SPDX-License-Identifier: Apache-2.0
"""
Contract adapter: operation parsing, pending result validation and
fallback discovery.

Covers:
  • Every operation must return a pending wrapper around exactly one type
  • Unwrapped result types and config keys recorded on descriptors
  • Declarative parser rules (bodies, forms, maps, methods, headers)
  • Fallback bindings validated at construction time
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Coroutine, List, Optional

import pytest

from corpus_rest.contract import (
    ApiType,
    AsyncContract,
    Body,
    DefaultMethod,
    Fallback,
    HeaderMap,
    OperationSpec,
    Param,
    QueryMap,
    Url,
    unwrap_pending,
)
from corpus_rest.core.errors import ConfigurationError
from corpus_rest.http.models import HttpMethod, Response
from corpus_rest.tracing import PendingResult
from tests.mock.api import ICE_CREAM, ICE_CREAM_FALLBACKS
from tests.mock.domain import Bill, IceCreamOrder


def _api(*operations: OperationSpec, **kwargs: Any) -> ApiType:
    return ApiType(name=kwargs.pop("name", "Broken"), operations=operations, **kwargs)


def _make_order(fallback: Optional[Fallback] = None) -> OperationSpec:
    return OperationSpec(
        "make_order",
        "POST /icecream/orders",
        params=(Body(IceCreamOrder, name="order"),),
        returns=PendingResult[Bill],
        fallback=fallback,
    )


# --------------------------------------------------------------------------- #
# Pending result types
# --------------------------------------------------------------------------- #


@pytest.mark.parametrize(
    "declared, expected",
    [
        (Awaitable[int], int),
        (Coroutine[Any, Any, str], str),
        (asyncio.Future[List[int]], List[int]),
        (PendingResult[Bill], Bill),
        (Awaitable[None], type(None)),
    ],
)
def test_unwrap_pending_wrappers(declared, expected):
    assert unwrap_pending(declared) == expected


@pytest.mark.parametrize("declared", [int, List[int], Awaitable, asyncio.Future, Optional[Awaitable[int]]])
def test_non_pending_result_types_are_rejected(declared):
    with pytest.raises(TypeError):
        unwrap_pending(declared)


def test_construction_fails_for_non_pending_operation():
    api = _api(OperationSpec("count_orders", "GET /icecream/orders/count", returns=int))

    with pytest.raises(ConfigurationError) as excinfo:
        AsyncContract().parse_and_validate(api)

    msg = str(excinfo.value)
    assert "count_orders" in msg
    assert "Broken" in msg
    assert excinfo.value.code == "CONFIGURATION_ERROR"


def test_descriptors_record_unwrapped_types_and_config_keys():
    by_name = {d.name: d for d in AsyncContract().parse_and_validate(ICE_CREAM)}

    find = by_name["find_order"]
    assert find.config_key == "IceCreamService#find_order(order_id)"
    assert find.method is HttpMethod.GET
    assert find.url == "/icecream/orders/{order_id}"
    assert find.return_type == Optional[IceCreamOrder]
    assert find.index_to_name == {0: "order_id"}

    assert by_name["make_order"].body_index == 0
    assert by_name["make_order"].body_type is IceCreamOrder
    assert by_name["make_order"].return_type is Bill
    assert by_name["pay_bill"].return_type is type(None)
    assert by_name["raw_order"].return_type is Response

    search = by_name["search_orders"]
    assert search.param_names == ("flavor", "limit", "queries", "headers")
    assert search.query_map_index == 2
    assert search.header_map_index == 3
    assert search.form_params == ()
    assert search.queries == {"flavor": ("{flavor}",), "limit": ("{limit}",)}


# --------------------------------------------------------------------------- #
# Declarative parser rules
# --------------------------------------------------------------------------- #


def test_unreferenced_params_become_form_params():
    api = _api(
        OperationSpec(
            "login",
            "POST /login/{tenant}",
            params=(Param("tenant"), Param("user"), Param("password")),
            returns=Awaitable[None],
        )
    )
    (d,) = AsyncContract().parse_and_validate(api)
    assert d.form_params == ("user", "password")
    assert d.body_index is None


def test_operation_headers_replace_api_headers_of_same_name():
    api = _api(
        OperationSpec(
            "export",
            "GET /export",
            headers=("accept: text/csv", "X-Trace: {trace}"),
            params=(Param("trace"),),
            returns=Awaitable[str],
        ),
        headers=("Accept: application/json", "User-Agent: corpus"),
    )
    (d,) = AsyncContract().parse_and_validate(api)
    assert d.headers == {"User-Agent": ("corpus",), "accept": ("text/csv",), "X-Trace": ("{trace}",)}
    assert d.form_params == ()


def test_url_param_is_recorded():
    api = _api(OperationSpec("ping", "GET /ping", params=(Url(),), returns=Awaitable[str]))
    (d,) = AsyncContract().parse_and_validate(api)
    assert d.url_index == 0
    assert d.config_key == "Broken#ping(url)"


@pytest.mark.parametrize(
    "operations, fragment",
    [
        (
            (
                OperationSpec("a", "GET /a", returns=Awaitable[str]),
                OperationSpec("a", "GET /b", returns=Awaitable[str]),
            ),
            "more than once",
        ),
        (
            (OperationSpec("a", "POST /a", params=(Body(str), Body(str, name="other")), returns=Awaitable[str]),),
            "more than one Body",
        ),
        (
            (OperationSpec("a", "GET /a", params=(QueryMap(), QueryMap(name="more")), returns=Awaitable[str]),),
            "more than one QueryMap",
        ),
        (
            (OperationSpec("a", "POST /a", params=(Body(str), Param("extra")), returns=Awaitable[str]),),
            "form parameters",
        ),
        (
            (OperationSpec("a", "GET /a", params=(Body(str),), returns=Awaitable[str]),),
            "GET operations",
        ),
        ((OperationSpec("a", "FETCH /a", returns=Awaitable[str]),), "unsupported HTTP method"),
        ((OperationSpec("a", "GET", returns=Awaitable[str]),), "request line"),
        ((OperationSpec("a", "GET /a"),), "no result type"),
        ((OperationSpec("a", "GET /a", headers=("Accept",), returns=Awaitable[str]),), "header template"),
        ((OperationSpec("a", "GET /{x}", params=(Param("x"), Param("x")), returns=Awaitable[str]),), "more than once"),
        ((OperationSpec("a", "GET /a", params=(Param("not valid"),), returns=Awaitable[str]),), "identifier"),
    ],
)
def test_parser_rejects_malformed_operations(operations, fragment):
    with pytest.raises(ConfigurationError) as excinfo:
        AsyncContract().parse_and_validate(_api(*operations))
    assert fragment in str(excinfo.value)


def test_header_map_and_query_map_are_not_form_params():
    api = _api(
        OperationSpec("a", "POST /a", params=(QueryMap(), HeaderMap(), Body(bytes)), returns=Awaitable[bytes])
    )
    (d,) = AsyncContract().parse_and_validate(api)
    assert (d.query_map_index, d.header_map_index, d.body_index) == (0, 1, 2)


# --------------------------------------------------------------------------- #
# Fallback discovery
# --------------------------------------------------------------------------- #


def test_fallbacks_are_discovered_per_config_key():
    fallbacks = AsyncContract().get_fallbacks(ICE_CREAM_FALLBACKS)

    assert set(fallbacks) == {
        "IceCreamServiceFallbacks#get_available_flavors()",
        "IceCreamServiceFallbacks#make_order(order)",
        "IceCreamServiceFallbacks#make_order2(order)",
        "IceCreamServiceFallbacks#make_order_ignore_status_error(order)",
        "IceCreamServiceFallbacks#make_order_ignore_code(order)",
        "IceCreamServiceFallbacks#make_order_ignore_predicate(order)",
        "IceCreamServiceFallbacks#make_order_broken_predicate(order)",
    }
    handler = fallbacks["IceCreamServiceFallbacks#make_order_ignore_predicate(order)"]
    assert handler.name == "make_order_fallback"
    assert callable(handler.ignore_predicate)
    assert handler.ignore_predicate(RuntimeError()) is True


def test_api_without_fallbacks_yields_empty_mapping():
    assert AsyncContract().get_fallbacks(ICE_CREAM) == {}


def test_missing_fallback_default_is_rejected():
    api = _api(_make_order(Fallback("nowhere")))
    with pytest.raises(ConfigurationError, match="no such default method"):
        AsyncContract().get_fallbacks(api)


def test_fallback_with_wrong_arity_is_rejected():
    async def fb(client, err: Exception) -> Bill:
        return Bill(price=0)

    api = _api(_make_order(Fallback("fb")), defaults={"fb": fb})
    with pytest.raises(ConfigurationError, match="parameters"):
        AsyncContract().get_fallbacks(api)


def test_fallback_with_mismatched_result_type_is_rejected():
    async def fb(client, order: IceCreamOrder, err: Exception) -> str:
        return "nope"

    api = _api(_make_order(Fallback("fb")), defaults={"fb": fb})
    with pytest.raises(ConfigurationError, match="does not match"):
        AsyncContract().get_fallbacks(api)


def test_fallback_returning_non_pending_is_rejected():
    def fb(client, order: IceCreamOrder, err: Exception) -> Bill:
        return Bill(price=0)

    api = _api(_make_order(Fallback("fb")), defaults={"fb": fb})
    with pytest.raises(ConfigurationError, match="not a pending result type"):
        AsyncContract().get_fallbacks(api)


def test_fallback_trailing_parameter_must_accept_an_exception():
    async def fb(client, order: IceCreamOrder, err: int) -> Bill:
        return Bill(price=0)

    api = _api(_make_order(Fallback("fb")), defaults={"fb": fb})
    with pytest.raises(ConfigurationError, match="exception"):
        AsyncContract().get_fallbacks(api)


def test_fallback_without_declared_result_type_is_rejected():
    api = _api(_make_order(Fallback("fb")), defaults={"fb": lambda client, order, err: None})
    with pytest.raises(ConfigurationError, match="no result type"):
        AsyncContract().get_fallbacks(api)


def test_default_method_with_explicit_result_type_is_accepted():
    api = _api(
        _make_order(Fallback("fb")),
        defaults={"fb": DefaultMethod(lambda client, order, err: None, returns=Awaitable[Bill])},
    )
    fallbacks = AsyncContract().get_fallbacks(api)
    assert list(fallbacks) == ["Broken#make_order(order)"]


def test_unconstructible_ignore_predicate_is_rejected():
    class Exploding:
        def __init__(self) -> None:
            raise RuntimeError("no")

        def __call__(self, err: BaseException) -> bool:
            return False

    async def fb(client, order: IceCreamOrder, err: Exception) -> Bill:
        return Bill(price=0)

    api = _api(_make_order(Fallback("fb", ignore_predicate=Exploding)), defaults={"fb": fb})
    with pytest.raises(ConfigurationError, match="cannot instantiate"):
        AsyncContract().get_fallbacks(api)


def test_invalid_ignore_rule_is_rejected():
    async def fb(client, order: IceCreamOrder, err: Exception) -> Bill:
        return Bill(price=0)

    api = _api(_make_order(Fallback("fb", ignore=(42,))), defaults={"fb": fb})
    with pytest.raises(ConfigurationError, match="ignore rule"):
        AsyncContract().get_fallbacks(api)
