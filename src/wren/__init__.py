"""Wren — a request-processing core with scoped dependencies and background work.

Routes are matched first-come, dependencies are two-phase resources
released after the request's background tasks, and handlers can fan out
concurrent work under a structured task tree.

Basic usage::

    from wren import App

    app = App()

    @app.get("/hello/:name")
    def hello(name, background):
        background.add(audit_log, "hello", name=name)
        return {"message": f"Hello, {name}!"}, 200

Serve ``app`` with any ASGI server.
"""

__version__ = "0.1.0"
__all__ = [
    "App",
    "AppConfig",
    "BackgroundTasks",
    "ConfigurationError",
    "DependencyAcquisitionError",
    "HTTPError",
    "HandlerInput",
    "Request",
    "Resource",
    "Response",
    "RouteNotFound",
    "TaskCancelled",
    "TaskNode",
    "WrenError",
    "current_task",
    "get_request",
]


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import wren`` fast while providing a clean top-level API.
    """
    if name == "App":
        from wren.app import App

        return App

    if name == "AppConfig":
        from wren.config import AppConfig

        return AppConfig

    if name == "BackgroundTasks":
        from wren.background import BackgroundTasks

        return BackgroundTasks

    if name in ("Request", "HandlerInput"):
        from wren.http import request as _req

        return getattr(_req, name)

    if name == "Response":
        from wren.http.response import Response

        return Response

    if name == "Resource":
        from wren.dependencies.provider import Resource

        return Resource

    if name == "TaskNode":
        from wren.concurrency.scheduler import TaskNode

        return TaskNode

    if name in ("current_task", "get_request"):
        from wren import context as _ctx

        return getattr(_ctx, name)

    if name in (
        "ConfigurationError",
        "DependencyAcquisitionError",
        "HTTPError",
        "RouteNotFound",
        "TaskCancelled",
        "WrenError",
    ):
        from wren import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
