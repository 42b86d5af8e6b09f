"""Wren exception hierarchy.

Shared across Router, DependencyScope, scheduler, background queue and
the request pipeline so every module raises and catches the same types.
"""

from dataclasses import dataclass, field
from typing import Any


class WrenError(Exception):
    """Base for all wren-specific errors."""


class ConfigurationError(WrenError):
    """Raised when app configuration is invalid.

    Typically raised during route or provider registration, or when the
    app freezes at startup.
    """


@dataclass(frozen=True, slots=True)
class HTTPError(WrenError):
    """An error that maps directly to an HTTP status code.

    Raised by handlers (or providers) to produce a structured error
    response. The pipeline converts it to a ``Response`` carrying
    ``{"detail": detail}``, the status, and the extra headers.
    """

    status: int
    detail: Any = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class RouteNotFound(HTTPError):  # noqa: N818
    """404 — no route matched the request method and path."""

    def __init__(self, detail: str = "Not found") -> None:
        super().__init__(status=404, detail=detail)


class DependencyAcquisitionError(WrenError):
    """A provider failed before yielding its value.

    Every resource acquired earlier in the same ``resolve`` call has
    already been closed when this is raised.
    """

    def __init__(self, name: str, cause: BaseException | None = None) -> None:
        self.name = name
        self.cause = cause
        if cause is None:
            msg = f"Dependency {name!r} did not yield a value"
        else:
            msg = f"Dependency {name!r} failed: {type(cause).__name__}: {cause}"
        super().__init__(msg)


class UnhandledHandlerError(WrenError):
    """Wraps a non-HTTP exception raised by a route handler.

    Never shown to clients; they receive a generic 500.
    """

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"{type(cause).__name__}: {cause}")


@dataclass(slots=True)
class BackgroundTaskError(WrenError):
    """Record of a background task that raised.

    Collected on ``BackgroundTasks.errors`` and logged; never raised to
    the caller.
    """

    task_name: str
    kind: str
    message: str
    trace: tuple[str, ...] = ()
    exception: BaseException | None = field(default=None, repr=False, compare=False)

    def __str__(self) -> str:
        return f"{self.task_name}: {self.kind} - {self.message}"


class CleanupError(WrenError):
    """A dependency's cleanup raised during scope teardown."""

    def __init__(self, name: str, cause: BaseException) -> None:
        self.name = name
        self.cause = cause
        super().__init__(f"Cleanup of {name!r} failed: {type(cause).__name__}: {cause}")


class TaskCancelled(WrenError):  # noqa: N818
    """The awaited task was cancelled before it produced a result."""

    def __init__(self, task_name: str) -> None:
        self.task_name = task_name
        super().__init__(f"Task {task_name!r} was cancelled")
