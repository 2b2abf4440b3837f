# SPDX-License-Identifier: Apache-2.0
"""
JSON and form codecs for tests, backed by pydantic TypeAdapter.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlencode

from pydantic import TypeAdapter

from corpus_rest.codec import FORM_MAP
from corpus_rest.http.models import Response
from corpus_rest.http.template import RequestTemplate


class JsonEncoder:
    """Serializes bodies as JSON; form maps are sent as a JSON object."""

    def encode(self, value: Any, body_type: Any, template: RequestTemplate) -> None:
        if body_type is Any or body_type is None or body_type == FORM_MAP:
            adapter = TypeAdapter(type(value))
        else:
            adapter = TypeAdapter(body_type)
        template.set_body(adapter.dump_json(value))
        if not template.header_values("Content-Type"):
            template.header("Content-Type", ["application/json"])


class JsonDecoder:
    """
    Decodes JSON bodies; 404 and empty bodies decode to None.
    """

    def decode(self, response: Response, type_: Any) -> Any:
        if response.status == 404 or response.body is None:
            return None
        data = response.body.data  # buffered by the handler
        if not data.strip():
            return None
        return TypeAdapter(type_).validate_json(data)


class FormEncoder:
    """application/x-www-form-urlencoded encoder for form parameters."""

    def encode(self, value: Any, body_type: Any, template: RequestTemplate) -> None:
        if body_type != FORM_MAP:
            raise TypeError(f"FormEncoder only encodes form parameters, not {body_type!r}")
        template.set_body(urlencode(value, doseq=True).encode(template.charset))
        template.header("Content-Type", ["application/x-www-form-urlencoded"])
