"""Route and RouteMatch frozen dataclasses."""

import inspect
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from wren._internal.types import Handler
from wren.routing.params import ParamKind, param_kind


@dataclass(frozen=True, slots=True)
class PathSegment:
    """A parsed segment of a route path.

    Static:   ``users``       (is_param=False)
    Param:    ``:id``/``{id}`` (is_param=True, param_name="id")
    Typed:    ``{id:int}``    (is_param=True, param_name="id", param_type="int")
    Wildcard: ``{rest:path}`` (is_param=True, param_type="path")
    """

    value: str
    is_param: bool = False
    param_name: str | None = None
    param_type: str = "str"


@dataclass(frozen=True, slots=True)
class Route:
    """A compiled route definition.

    Built by ``Router.add`` and never mutated afterwards, so the route
    table can be read by many requests at once without locking.
    ``param_types`` holds the converter name of each parameter, aligned
    with ``param_names``. ``signature`` is the handler's signature,
    inspected once when the route is added.
    """

    method: str
    path: str
    pattern: re.Pattern[str]
    param_names: tuple[str, ...]
    param_types: tuple[str, ...]
    handler: Handler
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    dependencies: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    name: str | None = None
    signature: inspect.Signature | None = None

    @property
    def param_kinds(self) -> tuple[ParamKind, ...]:
        return tuple(param_kind(param_type) for param_type in self.param_types)

    def param_type(self, name: str) -> str:
        """Converter declared for parameter *name* (``"str"`` when untyped)."""
        return self.param_types[self.param_names.index(name)]


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match."""

    route: Route
    path_params: dict[str, str]
