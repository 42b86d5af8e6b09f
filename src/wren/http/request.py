"""Request and handler input.

The pipeline does no wire parsing. A ``Request`` already carries its
method, path, decoded query and parsed body; the ASGI binding builds one
from a scope and the received body with ``Request.from_asgi``.
"""

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, TypeAlias
from urllib.parse import parse_qsl

from wren._internal.asgi import HTTPScope, Scope


@dataclass(frozen=True, slots=True)
class Request:
    """An incoming request with its input already decoded."""

    method: str
    path: str
    query: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    path_params: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())

    @property
    def content_type(self) -> str | None:
        return self.headers.get("content-type")

    def with_path_params(self, path_params: Mapping[str, str]) -> "Request":
        """Return a copy carrying the matched path parameters."""
        return replace(self, path_params=dict(path_params))

    @classmethod
    def from_asgi(cls, scope: Scope, body: bytes = b"") -> "Request":
        """Build a Request from a raw ASGI scope and the received body."""
        http = HTTPScope.from_scope(scope)
        headers = {
            name.decode("latin-1").lower(): value.decode("latin-1")
            for name, value in http.headers
        }
        query = dict(parse_qsl(http.query_string.decode("latin-1"), keep_blank_values=True))
        return cls(
            method=http.method,
            path=http.path,
            query=query,
            body=parse_body(body, headers.get("content-type")),
            headers=headers,
        )


def parse_body(body: bytes, content_type: str | None) -> Any:
    """Decode a request body according to its content type.

    JSON bodies become Python objects (``{}`` when malformed), form
    bodies become a dict, anything else is returned as text.
    Returns ``None`` for an empty body.
    """
    if not body:
        return None
    ct = content_type or ""
    if "application/json" in ct:
        try:
            return json.loads(body)
        except ValueError:
            return {}
    if "application/x-www-form-urlencoded" in ct:
        text = body.decode("utf-8", errors="replace")
        return dict(parse_qsl(text, keep_blank_values=True))
    return body.decode("utf-8", errors="replace")


@dataclass(frozen=True, slots=True)
class HandlerInput:
    """Normalized input handed to a route handler as ``input``."""

    path: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    body: Any = None


# Builds the handler input from a request and its matched path params
InputBuilder: TypeAlias = Callable[[Request, Mapping[str, str]], HandlerInput]


def build_input(request: Request, path_params: Mapping[str, str]) -> HandlerInput:
    """Default input builder: path params, query and body as received."""
    return HandlerInput(path=dict(path_params), query=dict(request.query), body=request.body)
