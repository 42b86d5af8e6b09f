"""Tests for wren.routing.params — converters and parameter kinds."""

import re

import pytest

from wren.routing.params import CONVERTERS, convert_param, param_kind


class TestConvertParam:
    def test_str(self) -> None:
        assert convert_param("hello", "str") == "hello"

    def test_int(self) -> None:
        assert convert_param("42", "int") == 42

    def test_float(self) -> None:
        assert convert_param("3.5", "float") == 3.5

    def test_path(self) -> None:
        assert convert_param("a/b/c", "path") == "a/b/c"

    def test_invalid_int(self) -> None:
        with pytest.raises(ValueError):
            convert_param("abc", "int")

    def test_unknown_converter(self) -> None:
        with pytest.raises(KeyError):
            convert_param("x", "uuid")


class TestParamKind:
    @pytest.mark.parametrize("param_type", ["str", "int", "float"])
    def test_single(self, param_type: str) -> None:
        assert param_kind(param_type) == "single"

    def test_path_is_wildcard(self) -> None:
        assert param_kind("path") == "wildcard"

    @pytest.mark.parametrize("param_type", ["str", "int", "float"])
    def test_single_kinds_stop_at_slash(self, param_type: str) -> None:
        regex, _ = CONVERTERS[param_type]
        assert re.fullmatch(regex, "1/2") is None

    def test_path_crosses_slashes(self) -> None:
        regex, _ = CONVERTERS["path"]
        assert re.fullmatch(regex, "a/b/c.png") is not None
