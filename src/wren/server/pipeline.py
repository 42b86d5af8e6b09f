"""Request pipeline — one request from route match to teardown.

The pipeline walks each request through a fixed sequence of states::

    MATCHING -> INPUT_READY -> DEPENDENCIES_RESOLVED -> HANDLER_DONE
             -> RESPONSE_READY -> BACKGROUND_DONE -> TORN_DOWN

A route miss jumps straight to TORN_DOWN with a 404. Every other path
opens a root task, a dependency scope and a background queue, produces
exactly one response, runs background work after the response, and
tears the scope down exactly once, last.
"""

import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import anyio

from wren._internal.invoke import invoke
from wren._internal.types import ResponseCallback
from wren.background import BackgroundTasks
from wren.concurrency.scheduler import ConcurrencyScheduler, TaskNode
from wren.config import AppConfig
from wren.context import request_var
from wren.dependencies.scope import DependencyScope, ProviderRegistry
from wren.errors import (
    BackgroundTaskError,
    CleanupError,
    DependencyAcquisitionError,
    HTTPError,
    RouteNotFound,
    TaskCancelled,
    UnhandledHandlerError,
)
from wren.http.request import HandlerInput, InputBuilder, Request, build_input
from wren.http.response import Response
from wren.routing.params import convert_param
from wren.routing.route import Route, RouteMatch
from wren.routing.router import Router
from wren.server.errors import (
    cancelled_response,
    dependency_error_response,
    http_error_response,
    internal_error_response,
    not_found_response,
)

logger = logging.getLogger("wren.server")


class PipelineState(Enum):
    MATCHING = "matching"
    INPUT_READY = "input_ready"
    DEPENDENCIES_RESOLVED = "dependencies_resolved"
    HANDLER_DONE = "handler_done"
    RESPONSE_READY = "response_ready"
    BACKGROUND_DONE = "background_done"
    TORN_DOWN = "torn_down"


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Outcome of one request.

    ``trail`` lists the states the request actually passed through.
    ``error`` is the failure that shaped the response, if any.
    """

    response: Response
    trail: tuple[PipelineState, ...]
    error: BaseException | None = None
    background_errors: tuple[BackgroundTaskError, ...] = ()
    cleanup_errors: tuple[CleanupError, ...] = ()

    @property
    def state(self) -> PipelineState:
        return self.trail[-1]


class RequestPipeline:
    """Runs requests against a frozen route table and provider registry.

    Shared by all requests; holds no per-request state.
    """

    __slots__ = ("config", "input_builder", "providers", "router", "scheduler")

    def __init__(
        self,
        *,
        router: Router,
        providers: ProviderRegistry,
        scheduler: ConcurrencyScheduler,
        config: AppConfig | None = None,
        input_builder: InputBuilder = build_input,
    ) -> None:
        self.router = router
        self.providers = providers
        self.scheduler = scheduler
        self.config = config or AppConfig()
        self.input_builder = input_builder

    async def run(
        self,
        request: Request,
        *,
        on_response: ResponseCallback | None = None,
    ) -> PipelineResult:
        """Process a single request through the full pipeline.

        *on_response* is awaited with the finalized response before any
        background task starts.
        """
        trail = [PipelineState.MATCHING]
        try:
            match = self.router.match(request.method, request.path)
        except RouteNotFound as exc:
            response = not_found_response(exc, self.config.not_found_detail)
            trail.append(PipelineState.TORN_DOWN)
            await _deliver(response, on_response)
            return PipelineResult(response, tuple(trail), error=exc)

        request = request.with_path_params(match.path_params)
        token = request_var.set(request)
        queue = BackgroundTasks(trace_depth=self.config.background_trace_depth)
        scope = DependencyScope(self.providers, request=request)
        response: Response | None = None
        error: BaseException | None = None
        background_errors: tuple[BackgroundTaskError, ...] = ()
        cleanup_errors: tuple[CleanupError, ...] = ()

        try:
            async with self.scheduler.open_root(f"{request.method} {request.path}") as root:
                response, error = await self._respond(match, request, root, queue, scope, trail)
                trail.append(PipelineState.RESPONSE_READY)
                # A ready response is sent even if the root is cancelled meanwhile
                with anyio.CancelScope(shield=True):
                    await _deliver(response, on_response)

                # The handler never ran if a dependency failed
                if not isinstance(error, DependencyAcquisitionError):
                    if root.cancelled:
                        dropped = queue.discard()
                        logger.info(
                            "%s %s cancelled after responding; %d background task(s) dropped",
                            request.method,
                            request.path,
                            dropped,
                        )
                    elif error is None or self.config.run_background_on_error:
                        background_errors = await queue.execute(root)
                    else:
                        queue.discard()
                    trail.append(PipelineState.BACKGROUND_DONE)

            if response is None:
                # Root cancelled before the handler produced anything
                response = cancelled_response(request)
                error = TaskCancelled(root.name)
                queue.discard()
                await _deliver(response, on_response)
        finally:
            with anyio.CancelScope(shield=True):
                cleanup_errors = await scope.teardown()
            trail.append(PipelineState.TORN_DOWN)
            request_var.reset(token)

        return PipelineResult(
            response,
            tuple(trail),
            error=error,
            background_errors=background_errors,
            cleanup_errors=cleanup_errors,
        )

    async def _respond(
        self,
        match: RouteMatch,
        request: Request,
        root: TaskNode,
        queue: BackgroundTasks,
        scope: DependencyScope,
        trail: list[PipelineState],
    ) -> tuple[Response, BaseException | None]:
        """Build input, resolve dependencies and run the handler."""
        route = match.route
        try:
            handler_input = self.input_builder(request, match.path_params)
            trail.append(PipelineState.INPUT_READY)

            try:
                values = await scope.resolve(route.dependencies) if route.dependencies else {}
            except DependencyAcquisitionError as exc:
                return dependency_error_response(exc, request), exc
            trail.append(PipelineState.DEPENDENCIES_RESOLVED)

            kwargs = build_handler_kwargs(
                route,
                request=request,
                handler_input=handler_input,
                task=root,
                background=queue,
                values=values,
                path_params=match.path_params,
            )
            result = await invoke(route.handler, **kwargs)
            response = Response.from_result(result)
            trail.append(PipelineState.HANDLER_DONE)
            return response, None
        except HTTPError as exc:
            return http_error_response(exc, request), exc
        except Exception as exc:
            wrapped = UnhandledHandlerError(exc)
            wrapped.__cause__ = exc
            return internal_error_response(exc, request, debug=self.config.debug), wrapped


def build_handler_kwargs(
    route: Route,
    *,
    request: Request,
    handler_input: HandlerInput,
    task: TaskNode,
    background: BackgroundTasks,
    values: Mapping[str, Any],
    path_params: Mapping[str, str],
) -> dict[str, Any]:
    """Build kwargs for the route's handler from its cached signature.

    Resolution order:
    1. ``request``, ``input``, ``task``, ``background`` (by name or annotation)
    2. Resolved dependencies (by alias)
    3. Path parameters (by name), converted by the template's converter,
       or by an ``int``/``float`` annotation on an untyped parameter

    Raises ``HTTPError`` (422) when a path parameter cannot be converted
    to its annotated type.
    """
    sig = route.signature or inspect.signature(route.handler, eval_str=True)
    kwargs: dict[str, Any] = {}

    for name, param in sig.parameters.items():
        annotation = param.annotation
        if name == "request" or annotation is Request:
            kwargs[name] = request
        elif name == "input" or annotation is HandlerInput:
            kwargs[name] = handler_input
        elif name == "task" or annotation is TaskNode:
            kwargs[name] = task
        elif name == "background" or annotation is BackgroundTasks:
            kwargs[name] = background
        elif name in values:
            kwargs[name] = values[name]
        elif name in path_params:
            kwargs[name] = _convert_path_param(route, name, path_params[name], annotation)

    return kwargs


def _convert_path_param(route: Route, name: str, value: str, annotation: Any) -> Any:
    param_type = route.param_type(name) if name in route.param_names else "str"
    if param_type == "str" and annotation in (int, float):
        param_type = annotation.__name__
    try:
        return convert_param(value, param_type)
    except ValueError:
        raise HTTPError(
            422,
            f"Path parameter {name!r} must be {param_type}, got {value!r}",
        ) from None


async def _deliver(response: Response, on_response: ResponseCallback | None) -> None:
    """Hand the finalized response to the transport.

    A failing transport is logged; it never changes the outcome of the
    request or stops background work.
    """
    if on_response is None:
        return
    try:
        await on_response(response)
    except Exception:
        logger.exception("Failed to deliver %d response", response.status)
