"""Path parameter grammar and converters.

Two spellings of a single-segment parameter are accepted, ``:id`` and
``{id}``. Braced parameters may name a converter, ``{id:int}``. The
``path`` converter turns a parameter into a wildcard that swallows the
rest of the path, slashes included.
"""

from typing import Literal, TypeAlias

ParamKind: TypeAlias = Literal["single", "wildcard"]

# (regex_pattern, python_type) for each supported converter
CONVERTERS: dict[str, tuple[str, type]] = {
    "str": (r"[^/]+", str),
    "int": (r"\d+", int),
    "float": (r"\d+(?:\.\d+)?", float),
    "path": (r".+", str),
}


def param_kind(param_type: str) -> ParamKind:
    """Return whether a converter captures one segment or the remainder."""
    return "wildcard" if param_type == "path" else "single"


def convert_param(value: str, param_type: str) -> str | int | float:
    """Convert a captured path parameter string to the target type.

    Raises ``ValueError`` if the string cannot be converted.
    Raises ``KeyError`` if *param_type* is not a registered converter.
    """
    _, target_type = CONVERTERS[param_type]
    return target_type(value)
