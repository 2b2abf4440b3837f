# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the Corpus REST client tests.

`client_factory` builds a client for an API against a scripted transport
with the pydantic JSON codec installed; keyword arguments map onto builder
setters, e.g. `client_factory(ICE_CREAM, transport, decode404=True)`.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from corpus_rest.client import AsyncClient
from corpus_rest.contract import ApiType
from tests.mock.codec import JsonDecoder, JsonEncoder
from tests.mock.metrics import CaptureMetrics
from tests.mock.transport import ScriptedTransport

BASE_URL = "http://localhost:8089"


@pytest.fixture
def metrics() -> CaptureMetrics:
    return CaptureMetrics()


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def client_factory(metrics: CaptureMetrics) -> Callable[..., Any]:
    def _build(api: ApiType, transport: Any, *, url: str = BASE_URL, **setters: Any) -> Any:
        builder = (
            AsyncClient.builder()
            .transport(transport)
            .encoder(JsonEncoder())
            .decoder(JsonDecoder())
            .metrics(metrics)
        )
        for name, value in setters.items():
            getattr(builder, name)(value)
        return builder.build().target(api, url)

    return _build
