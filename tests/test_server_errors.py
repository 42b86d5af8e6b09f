"""Tests for wren.server.errors — mapping failures to responses."""

import logging

from wren.errors import DependencyAcquisitionError, HTTPError, RouteNotFound
from wren.http.request import Request
from wren.server.errors import (
    cancelled_response,
    dependency_error_response,
    http_error_response,
    internal_error_response,
    not_found_response,
)

REQUEST = Request("GET", "/things")


class TestErrorResponses:
    def test_not_found(self) -> None:
        response = not_found_response(RouteNotFound())
        assert response.status == 404
        assert response.payload == {"error": "Not found"}

    def test_http_error(self) -> None:
        exc = HTTPError(409, "Conflict", (("retry-after", "5"),))
        response = http_error_response(exc, REQUEST)
        assert response.status == 409
        assert response.payload == {"detail": "Conflict"}
        assert response.headers == {"retry-after": "5"}

    def test_internal_error_logs_traceback(self, caplog) -> None:
        try:
            raise ZeroDivisionError("division by zero")
        except ZeroDivisionError as exc:
            with caplog.at_level(logging.ERROR, logger="wren.server"):
                response = internal_error_response(exc, REQUEST)

        assert response.status == 500
        assert response.payload == {"detail": "Internal Server Error"}
        assert "500 GET /things" in caplog.text
        assert "ZeroDivisionError" in caplog.text

    def test_dependency_error_uses_http_cause(self) -> None:
        exc = DependencyAcquisitionError("user", HTTPError(403, "Forbidden"))
        response = dependency_error_response(exc, REQUEST)
        assert response.status == 403
        assert response.payload == {"detail": "Forbidden"}

    def test_dependency_error_generic(self) -> None:
        exc = DependencyAcquisitionError("db", OSError("refused"))
        response = dependency_error_response(exc, REQUEST)
        assert response.status == 500
        assert response.payload == {"detail": "Internal Server Error"}

    def test_dependency_error_without_cause(self) -> None:
        response = dependency_error_response(DependencyAcquisitionError("db"), REQUEST)
        assert response.status == 500

    def test_cancelled(self) -> None:
        response = cancelled_response(REQUEST)
        assert response.status == 503
        assert response.payload == {"detail": "Request cancelled"}

    def test_internal_error_debug_names_exception(self) -> None:
        response = internal_error_response(KeyError("user_id"), REQUEST, debug=True)
        assert response.payload == {
            "detail": "Internal Server Error",
            "error": "KeyError: 'user_id'",
        }
