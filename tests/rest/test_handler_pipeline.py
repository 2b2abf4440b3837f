# SPDX-License-Identifier: Apache-2.0
"""
Async method handler: execute -> decode, response ownership and logging.

Covers:
  • 2xx decoding into the declared type (including "no value" results)
  • 404 handling with and without decode404
  • Error decoder results passed through verbatim; unexpected decode-time
    exceptions wrapped as DecodeError carrying the status
  • Raw Response results: buffering threshold and close responsibility
  • Bodies closed on every other path
  • Interceptor ordering, Options forwarding, request/response logging
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import pytest

from corpus_rest.core.error_context import get_context
from corpus_rest.core.errors import (
    ConnectTimeoutError,
    DecodeError,
    HttpStatusError,
    ReadTimeoutError,
    TransportError,
)
from corpus_rest.handler import MAX_RESPONSE_BUFFER_SIZE
from corpus_rest.http.logger import Level
from corpus_rest.http.models import BytesBody, Options, Response, StreamBody
from corpus_rest.tracing import PendingResult
from tests.mock.api import ICE_CREAM
from tests.mock.domain import Bill, Flavor, IceCreamOrder, Mixin, bill_for, make_order
from tests.mock.transport import (
    ClosingTracker,
    ScriptedTransport,
    json_reply,
    reply,
    stream_reply,
)

pytestmark = pytest.mark.asyncio


async def test_get_order_resolves_to_decoded_record(client_factory):
    order = make_order(Flavor.MELON, Flavor.VANILLA, mixins=[Mixin.NUTS])
    transport = ScriptedTransport(json_reply(200, order))
    client = client_factory(ICE_CREAM, transport)

    result = await client.find_order(order.id)

    assert result == order
    assert isinstance(result, IceCreamOrder)
    request = transport.requests[0]
    assert request.method.value == "GET"
    assert request.url == f"{client.target.url}/icecream/orders/{order.id}"
    assert request.header("Accept") == "application/json"


async def test_every_wrapper_kind_resolves(client_factory):
    transport = ScriptedTransport(
        json_reply(200, ["VANILLA", "MELON"]),
        json_reply(200, ["NUTS"]),
    )
    client = client_factory(ICE_CREAM, transport)

    assert await client.get_available_flavors() == [Flavor.VANILLA, Flavor.MELON]
    assert await client.get_available_mixins() == [Mixin.NUTS]


async def test_post_returns_pending_result_with_bill(client_factory):
    order = make_order(Flavor.BANANA, mixins=[Mixin.COOKIES])
    transport = ScriptedTransport(json_reply(200, bill_for(order)))
    client = client_factory(ICE_CREAM, transport)

    pending = client.make_order(order)

    assert isinstance(pending, PendingResult)
    assert await pending == Bill(price=1.5)
    assert IceCreamOrder.model_validate_json(transport.requests[0].body) == order


async def test_no_value_result_skips_decoding(client_factory):
    transport = ScriptedTransport(reply(204, None))
    client = client_factory(ICE_CREAM, transport)

    assert await client.pay_bill(Bill(price=3.0)) is None


async def test_404_fails_with_status_error_by_default(client_factory):
    transport = ScriptedTransport(reply(404, "no such order", reason="Not Found"))
    client = client_factory(ICE_CREAM, transport)

    with pytest.raises(HttpStatusError) as excinfo:
        await client.find_order(123)

    err = excinfo.value
    assert err.status == 404
    assert "404" in str(err)
    assert err.reason == "Not Found"
    assert err.body == "no such order"
    assert err.config_key == "IceCreamService#find_order(order_id)"

    ctx = get_context(err)
    assert ctx["config_key"] == "IceCreamService#find_order(order_id)"
    assert ctx["stage"] == "decode"
    assert ctx["status"] == 404


async def test_404_decodes_when_decode404_is_set(client_factory):
    transport = ScriptedTransport(reply(404, ""))
    client = client_factory(ICE_CREAM, transport, decode404=True)

    assert await client.find_order(123) is None


async def test_retry_after_header_is_surfaced(client_factory):
    transport = ScriptedTransport(reply(503, "busy", headers={"Retry-After": ["2"]}))
    client = client_factory(ICE_CREAM, transport)

    with pytest.raises(HttpStatusError) as excinfo:
        await client.get_available_flavors()
    assert excinfo.value.retry_after_ms == 2000


async def test_undecodable_body_becomes_decode_error_with_status(client_factory):
    transport = ScriptedTransport(reply(200, "{not json"))
    client = client_factory(ICE_CREAM, transport)

    with pytest.raises(DecodeError) as excinfo:
        await client.find_order(1)

    assert excinfo.value.status == 200
    assert isinstance(excinfo.value.__cause__, ValueError)


class _RaisingErrorDecoder:
    def decode(self, config_key: str, response: Response) -> BaseException:
        raise KeyError("mapping table missing")


class _DomainErrorDecoder:
    def decode(self, config_key: str, response: Response) -> BaseException:
        return LookupError(f"{config_key} -> {response.status}")


async def test_error_decoder_crash_becomes_decode_error(client_factory):
    transport = ScriptedTransport(reply(500, "oops"))
    client = client_factory(ICE_CREAM, transport, error_decoder=_RaisingErrorDecoder())

    with pytest.raises(DecodeError) as excinfo:
        await client.get_available_flavors()
    assert excinfo.value.status == 500
    assert "reading GET" in str(excinfo.value)


async def test_error_decoder_result_is_passed_through_verbatim(client_factory):
    transport = ScriptedTransport(reply(409, "conflict"))
    client = client_factory(ICE_CREAM, transport, error_decoder=_DomainErrorDecoder())

    with pytest.raises(LookupError, match="get_available_flavors\\(\\) -> 409"):
        await client.get_available_flavors()


async def test_body_is_closed_after_successful_decode(client_factory):
    tracker = ClosingTracker()
    order = make_order()
    transport = ScriptedTransport(stream_reply(200, [order.model_dump_json().encode()], tracker=tracker))
    client = client_factory(ICE_CREAM, transport)

    assert await client.find_order(order.id) == order
    assert tracker.bodies and tracker.all_closed


async def test_body_is_closed_after_error_status(client_factory):
    tracker = ClosingTracker()
    transport = ScriptedTransport(stream_reply(500, [b"server ", b"error"], tracker=tracker))
    client = client_factory(ICE_CREAM, transport)

    with pytest.raises(HttpStatusError) as excinfo:
        await client.find_order(1)
    assert excinfo.value.body == "server error"
    assert tracker.all_closed


async def test_body_is_closed_after_decode_failure(client_factory):
    tracker = ClosingTracker()
    transport = ScriptedTransport(stream_reply(200, [b"[1, 2"], tracker=tracker))
    client = client_factory(ICE_CREAM, transport)

    with pytest.raises(DecodeError):
        await client.find_order(1)
    assert tracker.all_closed


async def test_small_raw_response_is_buffered_and_original_closed(client_factory):
    tracker = ClosingTracker()
    transport = ScriptedTransport(stream_reply(200, [b"abc"], length=3, tracker=tracker))
    client = client_factory(ICE_CREAM, transport)

    response = await client.raw_order(1)

    assert isinstance(response, Response)
    assert isinstance(response.body, BytesBody)
    assert await response.read() == b"abc"
    assert tracker.all_closed


@pytest.mark.parametrize("length", [MAX_RESPONSE_BUFFER_SIZE + 1, None])
async def test_large_or_unknown_raw_response_is_left_to_caller(client_factory, length):
    tracker = ClosingTracker()
    transport = ScriptedTransport(stream_reply(200, [b"x" * 10, b"y" * 10], length=length, tracker=tracker))
    client = client_factory(ICE_CREAM, transport)

    response = await client.raw_order(1)

    assert isinstance(response.body, StreamBody)
    assert not response.body.closed
    assert await response.read() == b"x" * 10 + b"y" * 10
    await response.aclose()
    assert tracker.all_closed


async def test_raw_response_without_body_is_returned_as_is(client_factory):
    transport = ScriptedTransport(reply(200, None))
    client = client_factory(ICE_CREAM, transport)

    response = await client.raw_order(1)
    assert response.status == 200
    assert response.body is None


async def test_interceptors_run_in_registration_order(client_factory):
    def tag(value: str):
        def _interceptor(template: Any) -> None:
            template.header("X-Order", list(template.header_values("X-Order")) + [value])
        return _interceptor

    transport = ScriptedTransport(json_reply(200, ["VANILLA"]))
    client = client_factory(ICE_CREAM, transport, interceptors=[tag("first"), tag("second")])

    await client.get_available_flavors()
    assert transport.requests[0].headers["X-Order"] == ("first", "second")


async def test_options_are_forwarded_to_transport(client_factory):
    options = Options(connect_timeout_s=1.5, read_timeout_s=2.5, follow_redirects=False)
    transport = ScriptedTransport(json_reply(200, ["VANILLA"]))
    client = client_factory(ICE_CREAM, transport, options=options)

    await client.get_available_flavors()
    assert transport.options == [options]


async def test_transport_errors_propagate_unchanged(client_factory):
    failure = ConnectTimeoutError("connect timed out")
    client = client_factory(ICE_CREAM, ScriptedTransport(failure))

    with pytest.raises(ConnectTimeoutError) as excinfo:
        await client.get_available_flavors()
    assert excinfo.value is failure
    assert get_context(failure)["stage"] == "transport"


async def test_os_errors_from_transport_become_transport_errors(client_factory):
    client = client_factory(ICE_CREAM, ScriptedTransport(ConnectionRefusedError))

    with pytest.raises(TransportError) as excinfo:
        await client.get_available_flavors()
    assert isinstance(excinfo.value.__cause__, ConnectionRefusedError)
    assert excinfo.value.code == "TRANSPORT_ERROR"


async def test_read_exceeding_timeout_fails_within_margin(client_factory):
    transport = ScriptedTransport(json_reply(200, ["VANILLA"]), delay_s=5.0, honor_read_timeout=True)
    client = client_factory(ICE_CREAM, transport, options=Options(read_timeout_s=0.2))

    t0 = time.monotonic()
    with pytest.raises(ReadTimeoutError) as excinfo:
        await client.get_available_flavors()
    elapsed = time.monotonic() - t0

    assert elapsed < 0.2 + 1.0
    assert excinfo.value.code == "READ_TIMEOUT"
    assert isinstance(excinfo.value, TransportError)
    assert get_context(excinfo.value)["stage"] == "transport"


@pytest.mark.parametrize("raised", [asyncio.TimeoutError, TimeoutError])
async def test_timeouts_escaping_transport_become_read_timeouts(client_factory, raised):
    client = client_factory(ICE_CREAM, ScriptedTransport(raised))

    with pytest.raises(ReadTimeoutError) as excinfo:
        await client.get_available_flavors()
    assert isinstance(excinfo.value.__cause__, raised)


async def test_full_logging_does_not_change_outcome(client_factory, caplog):
    tracker = ClosingTracker()
    order = make_order(Flavor.PISTACHIO)
    transport = ScriptedTransport(stream_reply(200, [order.model_dump_json().encode()], tracker=tracker))
    client = client_factory(ICE_CREAM, transport, log_level=Level.FULL)

    with caplog.at_level(logging.DEBUG, logger="corpus_rest.http"):
        result = await client.find_order(order.id)

    assert result == order
    assert tracker.all_closed
    messages = [r.getMessage() for r in caplog.records if r.name == "corpus_rest.http"]
    key = "[IceCreamService#find_order(order_id)]"
    assert any(m.startswith(f"{key} ---> GET") for m in messages)
    assert any(m.startswith(f"{key} <--- HTTP 200") for m in messages)
    assert any("PISTACHIO" in m for m in messages)


async def test_basic_logging_reports_transport_errors(client_factory, caplog):
    client = client_factory(ICE_CREAM, ScriptedTransport(TransportError("reset")), log_level="basic")

    with caplog.at_level(logging.DEBUG, logger="corpus_rest.http"):
        with pytest.raises(TransportError):
            await client.get_available_flavors()

    assert any("<--- ERROR TransportError" in r.getMessage() for r in caplog.records)
