# corpus_rest/resolving.py
# SPDX-License-Identifier: Apache-2.0
"""
Template builders: (operation descriptor, call arguments) -> RequestTemplate.

Resolution order for one call:

    1. dynamic base URL argument, if the operation declares one
    2. bind named variables from arguments (None values are skipped),
       applying per-parameter expanders
    3. form parameters -> encoder, with a dict of the form variables, or
       the body argument (must not be None) -> encoder
    4. resolve the template against the variables
    5. merge the query-map argument (overrides template values)
    6. merge the header-map argument (overrides template values)

Encoders that raise a `ClientError` subclass are propagated as-is; any other
exception becomes an `EncodeError`.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from corpus_rest.codec import FORM_MAP, Encoder
from corpus_rest.contract import OperationDescriptor
from corpus_rest.core.errors import ClientError, EncodeError
from corpus_rest.http.template import RequestTemplate


def _as_values(value: Any) -> List[Optional[str]]:
    if value is None:
        return [None]
    if isinstance(value, (str, bytes)):
        return [value.decode() if isinstance(value, bytes) else value]
    if isinstance(value, Iterable):
        return [None if v is None else str(v) for v in value]
    return [str(value)]


class BuildTemplateByResolvingArgs:
    """
    Builds templates for operations without a body or form parameters.
    """

    def __init__(self, descriptor: OperationDescriptor) -> None:
        self._descriptor = descriptor

    @property
    def descriptor(self) -> OperationDescriptor:
        return self._descriptor

    def create(self, argv: Sequence[Any]) -> RequestTemplate:
        d = self._descriptor
        if len(argv) != len(d.param_names):
            raise TypeError(
                f"{d.config_key} takes {len(d.param_names)} arguments but {len(argv)} were given"
            )

        mutable = d.new_template()
        if d.url_index is not None:
            url = argv[d.url_index]
            if url is None:
                raise ValueError(f"URI parameter {d.param_names[d.url_index]} was null")
            mutable.target(str(url))

        variables: Dict[str, Any] = {}
        for i, name in d.index_to_name.items():
            value = argv[i]
            if value is None:
                continue
            expander = d.index_to_expander.get(i)
            if expander is not None:
                value = expander(value)
            variables[name] = value

        template = self.resolve(argv, mutable, variables)

        if d.query_map_index is not None:
            query_map = argv[d.query_map_index]
            if query_map is not None:
                template = self.add_query_map(query_map, template)

        if d.header_map_index is not None:
            header_map = argv[d.header_map_index]
            if header_map is not None:
                template = self.add_header_map(header_map, template)

        return template

    def resolve(
        self,
        argv: Sequence[Any],
        mutable: RequestTemplate,
        variables: Mapping[str, Any],
    ) -> RequestTemplate:
        return mutable.resolve(variables)

    @staticmethod
    def add_query_map(query_map: Mapping[Any, Any], template: RequestTemplate) -> RequestTemplate:
        if not isinstance(query_map, Mapping):
            raise TypeError(f"query map must be a mapping, got {type(query_map).__name__}")
        for key, value in query_map.items():
            if not isinstance(key, str):
                raise TypeError("query map key must be a str")
            template.query(key, _as_values(value))
        return template

    @staticmethod
    def add_header_map(header_map: Mapping[Any, Any], template: RequestTemplate) -> RequestTemplate:
        if not isinstance(header_map, Mapping):
            raise TypeError(f"header map must be a mapping, got {type(header_map).__name__}")
        for key, value in header_map.items():
            if not isinstance(key, str):
                raise TypeError("header map key must be a str")
            template.header(key, _as_values(value))
        return template

    def _encode(self, encoder: Encoder, value: Any, body_type: Any, mutable: RequestTemplate) -> None:
        try:
            encoder.encode(value, body_type, mutable)
        except ClientError:
            raise
        except Exception as e:  # noqa: BLE001
            raise EncodeError(
                f"{type(e).__name__}: {e}",
                details={"config_key": self._descriptor.config_key},
            ) from e


class BuildFormEncodedTemplateFromArgs(BuildTemplateByResolvingArgs):
    """Hands the form variables to the encoder as a dict."""

    def __init__(self, descriptor: OperationDescriptor, encoder: Encoder) -> None:
        super().__init__(descriptor)
        self._encoder = encoder

    def resolve(
        self,
        argv: Sequence[Any],
        mutable: RequestTemplate,
        variables: Mapping[str, Any],
    ) -> RequestTemplate:
        form = {
            name: variables[name]
            for name in self._descriptor.form_params
            if name in variables
        }
        self._encode(self._encoder, form, FORM_MAP, mutable)
        return super().resolve(argv, mutable, variables)


class BuildEncodedTemplateFromArgs(BuildTemplateByResolvingArgs):
    """Hands the body argument to the encoder."""

    def __init__(self, descriptor: OperationDescriptor, encoder: Encoder) -> None:
        super().__init__(descriptor)
        self._encoder = encoder

    def resolve(
        self,
        argv: Sequence[Any],
        mutable: RequestTemplate,
        variables: Mapping[str, Any],
    ) -> RequestTemplate:
        d = self._descriptor
        assert d.body_index is not None
        body = argv[d.body_index]
        if body is None:
            raise ValueError(f"Body parameter {d.param_names[d.body_index]} was null")
        self._encode(self._encoder, body, d.body_type, mutable)
        return super().resolve(argv, mutable, variables)


def template_builder_for(descriptor: OperationDescriptor, encoder: Encoder) -> BuildTemplateByResolvingArgs:
    """Pick the builder matching how the operation carries its payload."""
    if descriptor.form_params and descriptor.body_index is None:
        return BuildFormEncodedTemplateFromArgs(descriptor, encoder)
    if descriptor.body_index is not None:
        return BuildEncodedTemplateFromArgs(descriptor, encoder)
    return BuildTemplateByResolvingArgs(descriptor)


__all__ = [
    "BuildTemplateByResolvingArgs",
    "BuildFormEncodedTemplateFromArgs",
    "BuildEncodedTemplateFromArgs",
    "template_builder_for",
]
