# corpus_rest/http/template.py
# SPDX-License-Identifier: Apache-2.0
"""
Request templates and targets.

A `RequestTemplate` is created fresh for every invocation from an operation
descriptor. The template builder mutates it (variables, query map, header
map, encoded body), interceptors may mutate it further, and finally a
`Target` freezes it into an immutable `Request`. A frozen template rejects
every further mutation.

Expansion rules
---------------
- `{name}` placeholders in the path are percent-encoded; a placeholder with
  no value expands to the empty string.
- Query and header values containing a placeholder with no value are
  dropped; a name left with no values is removed.
- A variable bound to a list/tuple expands a bare `{name}` query or header
  value into multiple values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)
from urllib.parse import quote

from corpus_rest.http.models import HttpMethod, Request

_VAR = re.compile(r"\{([^{}]+)\}")
_ABSOLUTE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")


def placeholders(text: str) -> List[str]:
    return _VAR.findall(text)


def _expand_path(text: str, variables: Mapping[str, Any]) -> str:
    def repl(m: "re.Match[str]") -> str:
        value = variables.get(m.group(1).strip())
        if value is None:
            return ""
        return quote(str(value), safe="")

    return _VAR.sub(repl, text)


def _expand_values(values: Iterable[Optional[str]], variables: Mapping[str, Any]) -> List[Optional[str]]:
    out: List[Optional[str]] = []
    for raw in values:
        if raw is None:
            out.append(None)
            continue
        names = [n.strip() for n in placeholders(raw)]
        if not names:
            out.append(raw)
            continue
        if any(variables.get(n) is None for n in names):
            continue
        whole = _VAR.fullmatch(raw.strip())
        if whole is not None:
            value = variables[names[0]]
            if isinstance(value, (list, tuple)):
                out.extend(None if v is None else str(v) for v in value)
                continue
        out.append(_VAR.sub(lambda m: str(variables[m.group(1).strip()]), raw))
    return out


class RequestTemplate:
    """
    Mutable, per-invocation request under construction.
    """

    def __init__(
        self,
        method: HttpMethod,
        url: str = "",
        *,
        queries: Optional[Mapping[str, Iterable[Optional[str]]]] = None,
        headers: Optional[Mapping[str, Iterable[Optional[str]]]] = None,
        body: Optional[bytes] = None,
        charset: str = "utf-8",
        target: Optional[str] = None,
    ) -> None:
        self._method = method
        self._url = url
        self._queries: Dict[str, List[Optional[str]]] = {
            k: list(v) for k, v in (queries or {}).items()
        }
        self._headers: Dict[str, List[Optional[str]]] = {}
        for name, values in (headers or {}).items():
            self._headers[name] = list(values)
        self._body = body
        self._charset = charset
        self._target = target
        self._frozen = False

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def method(self) -> HttpMethod:
        return self._method

    @property
    def url(self) -> str:
        return self._url

    @property
    def target_url(self) -> Optional[str]:
        return self._target

    @property
    def queries(self) -> Dict[str, Tuple[Optional[str], ...]]:
        return {k: tuple(v) for k, v in self._queries.items()}

    @property
    def headers(self) -> Dict[str, Tuple[Optional[str], ...]]:
        return {k: tuple(v) for k, v in self._headers.items()}

    @property
    def body(self) -> Optional[bytes]:
        return self._body

    @property
    def charset(self) -> str:
        return self._charset

    @property
    def frozen(self) -> bool:
        return self._frozen

    def header_values(self, name: str) -> Tuple[Optional[str], ...]:
        key = self._header_key(name)
        return tuple(self._headers[key]) if key is not None else ()

    # ------------------------------------------------------------------ #
    # Mutators
    # ------------------------------------------------------------------ #

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("request template is frozen")

    def _header_key(self, name: str) -> Optional[str]:
        lname = name.lower()
        for key in self._headers:
            if key.lower() == lname:
                return key
        return None

    def target(self, url: str) -> "RequestTemplate":
        """Set the base URL this template resolves against."""
        self._check_mutable()
        self._target = url.rstrip("/")
        return self

    def query(self, name: str, values: Iterable[Optional[str]]) -> "RequestTemplate":
        """Replace the values of a query parameter; empty removes it."""
        self._check_mutable()
        vals = list(values)
        if vals:
            self._queries[name] = vals
        else:
            self._queries.pop(name, None)
        return self

    def header(self, name: str, values: Iterable[Optional[str]]) -> "RequestTemplate":
        """Replace the values of a header (case-insensitive); empty removes it."""
        self._check_mutable()
        key = self._header_key(name)
        if key is not None:
            del self._headers[key]
        vals = [v for v in values if v is not None]
        if vals:
            self._headers[name] = vals
        return self

    def set_body(self, data: Optional[bytes], charset: Optional[str] = None) -> "RequestTemplate":
        self._check_mutable()
        self._body = data
        if charset:
            self._charset = charset
        return self

    def resolve(self, variables: Mapping[str, Any]) -> "RequestTemplate":
        """
        Expand `{name}` placeholders in path, query and header templates.
        """
        self._check_mutable()
        self._url = _expand_path(self._url, variables)

        queries: Dict[str, List[Optional[str]]] = {}
        for name, values in self._queries.items():
            expanded = _expand_values(values, variables)
            if expanded:
                queries[name] = expanded
        self._queries = queries

        headers: Dict[str, List[Optional[str]]] = {}
        for name, values in self._headers.items():
            expanded = [v for v in _expand_values(values, variables) if v is not None]
            if expanded:
                headers[name] = expanded
        self._headers = headers
        return self

    # ------------------------------------------------------------------ #
    # Freezing
    # ------------------------------------------------------------------ #

    def query_line(self) -> str:
        parts: List[str] = []
        for name, values in self._queries.items():
            qname = quote(name, safe="")
            for value in values:
                if value is None:
                    parts.append(qname)
                else:
                    parts.append(f"{qname}={quote(value, safe='')}")
        return "&".join(parts)

    def request(self) -> Request:
        """
        Freeze this template into a Request.
        """
        self._check_mutable()
        url = self._url
        if self._target and not _ABSOLUTE.match(url):
            if url and not url.startswith("/"):
                url = "/" + url
            url = self._target + url
        query = self.query_line()
        if query:
            url = f"{url}{'&' if '?' in url else '?'}{query}"
        self._frozen = True
        return Request(
            method=self._method,
            url=url,
            headers={k: tuple(v for v in vs if v is not None) for k, vs in self._headers.items()},
            body=self._body,
            charset=self._charset,
        )

    def __repr__(self) -> str:
        return f"RequestTemplate({self._method.value} {self._url}, frozen={self._frozen})"


@runtime_checkable
class Target(Protocol):
    """
    Identity of a generated client: the API it implements and where it points.
    """
    api_type: Any
    name: str
    url: str

    def apply(self, template: RequestTemplate) -> Request: ...


@dataclass(frozen=True)
class HardCodedTarget:
    """
    Target with a fixed base URL.

    Templates that already carry an absolute URL or a dynamic target keep it.
    """
    api_type: Any
    url: str
    name: str = ""

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("target url must be non-empty")
        if not self.name:
            object.__setattr__(self, "name", getattr(self.api_type, "name", str(self.api_type)))

    def apply(self, template: RequestTemplate) -> Request:
        if template.target_url is None and not _ABSOLUTE.match(template.url):
            template.target(self.url)
        return template.request()

    def __str__(self) -> str:
        return f"HardCodedTarget(type={self.name}, url={self.url})"


__all__ = [
    "RequestTemplate",
    "Target",
    "HardCodedTarget",
]
