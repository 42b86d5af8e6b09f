"""Compiled router with first-match, ordered matching.

Routes are registered during setup and compiled into an immutable
table when the app freezes. Matching scans the table in registration
order, so overlapping templates must be registered most-specific-first.
"""

import inspect
import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from wren._internal.types import Handler
from wren.errors import ConfigurationError, RouteNotFound
from wren.routing.params import CONVERTERS, param_kind
from wren.routing.route import PathSegment, Route, RouteMatch

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def parse_path(path: str) -> list[PathSegment]:
    """Parse a route path string into segments.

    Empty segments are kept so that ``"/"`` and ``"/users/"`` compile to
    patterns with the same slashes as the template.

    Examples::

        "/users"             -> [PathSegment(""), PathSegment("users")]
        "/users/:id"         -> [..., PathSegment(":id", is_param=True, param_name="id")]
        "/users/{id:int}"    -> [..., PathSegment("{id:int}", is_param=True, param_type="int")]
        "/files/{name:path}" -> [..., PathSegment("{name:path}", is_param=True, param_type="path")]
    """
    if "<" in path and ">" in path:
        msg = (
            f"Route {path!r} uses <param> syntax. "
            "Wren path parameters are written {param} or :param."
        )
        raise ConfigurationError(msg)

    segments: list[PathSegment] = []
    for part in path.split("/"):
        if part.startswith(":") and len(part) > 1:
            segments.append(PathSegment(value=part, is_param=True, param_name=part[1:]))
        elif part.startswith("{") and part.endswith("}"):
            inner = part[1:-1]
            if ":" in inner:
                param_name, param_type = inner.split(":", 1)
            else:
                param_name, param_type = inner, "str"
            if param_type not in CONVERTERS:
                msg = f"Unknown converter {param_type!r} in route {path!r}"
                raise ConfigurationError(msg)
            segments.append(
                PathSegment(
                    value=part,
                    is_param=True,
                    param_name=param_name,
                    param_type=param_type,
                )
            )
        else:
            segments.append(PathSegment(value=part))
    return segments


def compile_path(path: str) -> tuple[re.Pattern[str], tuple[str, ...], tuple[str, ...]]:
    """Compile a path template into an anchored regex.

    Returns the pattern plus the parameter names and converter names,
    aligned with the pattern's capture groups.
    """
    segments = parse_path(path)
    names: list[str] = []
    types: list[str] = []
    pieces: list[str] = []

    for index, seg in enumerate(segments):
        if not seg.is_param:
            pieces.append(re.escape(seg.value))
            continue

        name = seg.param_name or ""
        if not _IDENTIFIER.match(name):
            msg = f"Invalid parameter name {name!r} in route {path!r}"
            raise ConfigurationError(msg)
        if name in names:
            msg = f"Duplicate parameter {name!r} in route {path!r}"
            raise ConfigurationError(msg)

        if param_kind(seg.param_type) == "wildcard" and index != len(segments) - 1:
            msg = f"Wildcard parameter {name!r} must be the last segment of {path!r}"
            raise ConfigurationError(msg)

        regex, _ = CONVERTERS[seg.param_type]
        pieces.append(f"({regex})")
        names.append(name)
        types.append(seg.param_type)

    return re.compile("/".join(pieces)), tuple(names), tuple(types)


class Router:
    """Compiled router with ordered first-match lookup.

    Usage::

        router = Router()
        router.add("GET", "/users", list_users)
        router.add("GET", "/users/:id", get_user)
        router.compile()
        match = router.match("GET", "/users/42")
    """

    __slots__ = ("_compiled", "_pending", "_table")

    def __init__(self) -> None:
        self._pending: list[Route] = []
        self._table: tuple[Route, ...] = ()
        self._compiled = False

    def add(
        self,
        method: str,
        path: str,
        handler: Handler,
        *,
        metadata: Mapping[str, Any] | None = None,
        dependencies: Mapping[str, Any] | None = None,
        name: str | None = None,
    ) -> Route:
        """Compile *path* and append a route. Must be called before compile()."""
        if self._compiled:
            msg = "Cannot add routes after compilation."
            raise RuntimeError(msg)

        pattern, param_names, param_types = compile_path(path)
        try:
            signature = inspect.signature(handler, eval_str=True)
        except (NameError, TypeError, ValueError) as exc:
            msg = f"Cannot inspect handler for {method.upper()} {path!r}: {exc}"
            raise ConfigurationError(msg) from exc
        route = Route(
            method=method.upper(),
            path=path,
            pattern=pattern,
            param_names=param_names,
            param_types=param_types,
            handler=handler,
            metadata=MappingProxyType({**(metadata or {}), "path_template": path}),
            dependencies=MappingProxyType(dict(dependencies or {})),
            name=name,
            signature=signature,
        )
        self._pending.append(route)
        return route

    @property
    def routes(self) -> tuple[Route, ...]:
        """Return all registered routes in registration order."""
        if self._compiled:
            return self._table
        return tuple(self._pending)

    def compile(self) -> None:
        """Freeze the router. No more routes can be added."""
        self._table = tuple(self._pending)
        self._pending = []
        self._compiled = True

    def match(self, method: str, path: str) -> RouteMatch:
        """Match a request method and path against the route table.

        Returns the first ``RouteMatch`` whose method matches and whose
        pattern matches the whole path.
        Raises ``RouteNotFound`` if nothing matches.
        """
        method = method.upper()
        for route in self.routes:
            if route.method != method:
                continue
            found = route.pattern.fullmatch(path)
            if found is None:
                continue
            return RouteMatch(
                route=route,
                path_params=dict(zip(route.param_names, found.groups(), strict=True)),
            )

        raise RouteNotFound(f"No route matches {method} {path!r}")
