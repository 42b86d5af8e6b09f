"""Error handling pipeline for wren requests.

Maps route misses, structured ``HTTPError``s, dependency failures and
unexpected exceptions to ``Response`` objects. Internal details never
reach the client; they go to the ``wren.server`` logger.
"""

import logging

from wren.errors import DependencyAcquisitionError, HTTPError, RouteNotFound
from wren.http.request import Request
from wren.http.response import Response

logger = logging.getLogger("wren.server")

INTERNAL_ERROR_DETAIL = "Internal Server Error"
CANCELLED_DETAIL = "Request cancelled"


def not_found_response(exc: RouteNotFound, detail: str = "Not found") -> Response:
    """The fixed 404 payload returned when no route matches."""
    logger.debug("404 %s", exc.detail)
    return Response(payload={"error": detail}, status=404)


def http_error_response(exc: HTTPError, request: Request) -> Response:
    """Map an HTTPError to a Response carrying its status, detail and headers."""
    logger.debug("%d %s %s: %s", exc.status, request.method, request.path, exc.detail)
    return Response(payload={"detail": exc.detail}, status=exc.status, headers=dict(exc.headers))


def internal_error_response(
    exc: BaseException, request: Request, *, debug: bool = False
) -> Response:
    """Handle unexpected handler exceptions as a generic 500.

    With *debug* on, the payload also names the exception. Never enable
    it in production.
    """
    logger.error("500 %s %s", request.method, request.path, exc_info=exc)
    payload: dict[str, str] = {"detail": INTERNAL_ERROR_DETAIL}
    if debug:
        payload["error"] = f"{type(exc).__name__}: {exc}"
    return Response(payload=payload, status=500)


def dependency_error_response(exc: DependencyAcquisitionError, request: Request) -> Response:
    """Map a failed dependency to a response.

    A provider that raised an ``HTTPError`` (an auth check, say) gets its
    own status and detail; anything else is a generic 500.
    """
    if isinstance(exc.cause, HTTPError):
        return http_error_response(exc.cause, request)
    logger.error(
        "500 %s %s: dependency %r failed",
        request.method,
        request.path,
        exc.name,
        exc_info=exc.cause or exc,
    )
    return Response(payload={"detail": INTERNAL_ERROR_DETAIL}, status=500)


def cancelled_response(request: Request) -> Response:
    logger.info("Request %s %s was cancelled", request.method, request.path)
    return Response(payload={"detail": CANCELLED_DETAIL}, status=503)
