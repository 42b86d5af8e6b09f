"""Wren application class.

Mutable during setup (route, provider and hook registration).
Frozen at runtime when the first request or lifespan event arrives.
"""

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from wren._internal.asgi import Receive, Scope, Send, read_body
from wren._internal.invoke import invoke
from wren._internal.types import Handler, Hook, ProviderFunc, ResponseCallback
from wren.concurrency.scheduler import ConcurrencyScheduler
from wren.config import AppConfig
from wren.dependencies.provider import Provider
from wren.dependencies.scope import ProviderRegistry
from wren.errors import ConfigurationError
from wren.http.request import InputBuilder, Request, build_input
from wren.http.response import Response
from wren.routing.route import Route
from wren.routing.router import Router
from wren.server.pipeline import PipelineResult, RequestPipeline
from wren.server.sender import send_response

logger = logging.getLogger("wren.app")

Depends: TypeAlias = Sequence[str] | Mapping[str, str | ProviderFunc | None]


@dataclass(slots=True)
class _PendingRoute:
    """A route waiting to be compiled."""

    path: str
    handler: Handler
    methods: list[str]
    depends: Depends | None
    name: str | None
    metadata: dict[str, Any] = field(default_factory=dict)


class App:
    """The wren application.

    Mutable during setup (routes, providers, hooks).
    Frozen at runtime when ``handle()`` or ``__call__()`` is first invoked.

    Usage::

        app = App()

        @app.provider("db")
        async def db():
            conn = await connect()
            try:
                yield conn
            finally:
                await conn.close()

        @app.post("/users", depends=["db"])
        async def create_user(input, db, background):
            user = await db.insert(input.body)
            background.add(send_welcome, user)
            return {"id": user.id}, 201

    Thread safety:
        The setup phase is single-threaded (decorators at import time).
        The freeze transition uses a Lock + double-check so exactly one
        caller compiles the route table, which is read-only afterwards.
    """

    __slots__ = (
        "_freeze_lock",
        "_frozen",
        "_input_builder",
        "_pending_routes",
        "_pipeline",
        "_providers",
        "_router",
        "_scheduler",
        "_shutdown_hooks",
        "_startup_hooks",
        "config",
    )

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        input_builder: InputBuilder = build_input,
    ) -> None:
        self.config: AppConfig = config or AppConfig()
        self._pending_routes: list[_PendingRoute] = []
        self._providers = ProviderRegistry()
        self._startup_hooks: list[Hook] = []
        self._shutdown_hooks: list[Hook] = []
        self._scheduler = ConcurrencyScheduler()
        self._input_builder = input_builder
        self._frozen: bool = False
        self._freeze_lock: threading.Lock = threading.Lock()

        # Compiled state, set during _freeze()
        self._router: Router | None = None
        self._pipeline: RequestPipeline | None = None

    # -- Route registration --

    def route(
        self,
        path: str,
        *,
        methods: list[str] | None = None,
        depends: Depends | None = None,
        name: str | None = None,
        **metadata: Any,
    ) -> Callable[[Handler], Handler]:
        """Register a route handler via decorator.

        Args:
            path: URL path template. Use ``:param`` or ``{param}`` for one
                segment and ``{param:path}`` for the rest of the path.
            methods: HTTP methods. Defaults to ``["GET"]``.
            depends: Provider names to resolve for the handler, or a
                mapping of handler argument name to a provider name or
                an inline provider callable.
            name: Optional route name.
            metadata: Stored on the compiled ``Route``.
        """

        def decorator(func: Handler) -> Handler:
            self._check_not_frozen()
            self._pending_routes.append(
                _PendingRoute(path, func, list(methods or ["GET"]), depends, name, metadata)
            )
            return func

        return decorator

    def get(self, path: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["GET"], **kwargs)

    def post(self, path: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["POST"], **kwargs)

    def put(self, path: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["PUT"], **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["PATCH"], **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Callable[[Handler], Handler]:
        return self.route(path, methods=["DELETE"], **kwargs)

    # -- Dependency providers --

    def provide(self, name: str, func: ProviderFunc) -> None:
        """Register a dependency provider under *name*.

        Routes list the names they need in ``depends=``. A provider's own
        parameters name the providers it depends on (or ``request``).
        """
        self._check_not_frozen()
        self._providers.register(name, func)

    def provider(self, name: str | None = None) -> Callable[[ProviderFunc], ProviderFunc]:
        """Register a dependency provider via decorator.

        The provider name defaults to the function name.
        """

        def decorator(func: ProviderFunc) -> ProviderFunc:
            self.provide(name or func.__name__, func)
            return func

        return decorator

    # -- Lifecycle hooks --

    def on_startup(self, func: Hook) -> Hook:
        """Register an async or sync startup hook via decorator.

        Hooks run in registration order during ASGI lifespan startup,
        before the server begins accepting HTTP requests.
        """
        self._check_not_frozen()
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Hook) -> Hook:
        """Register an async or sync shutdown hook via decorator.

        Hooks run in registration order during ASGI lifespan shutdown.
        """
        self._check_not_frozen()
        self._shutdown_hooks.append(func)
        return func

    async def run_startup_hooks(self) -> None:
        """Run startup hooks in order. The first failure propagates."""
        for hook in self._startup_hooks:
            await invoke(hook)

    async def run_shutdown_hooks(self) -> None:
        """Run shutdown hooks in order, then cancel in-flight requests.

        A failing hook is logged and the remaining hooks still run.
        """
        for hook in self._shutdown_hooks:
            try:
                await invoke(hook)
            except Exception:
                logger.exception("Shutdown hook %r failed", getattr(hook, "__name__", hook))
        self._scheduler.cancel_all()

    # -- Introspection --

    @property
    def routes(self) -> tuple[Route, ...]:
        """The compiled route table (freezes the app)."""
        self._ensure_frozen()
        assert self._router is not None
        return self._router.routes

    @property
    def scheduler(self) -> ConcurrencyScheduler:
        return self._scheduler

    @property
    def providers(self) -> ProviderRegistry:
        return self._providers

    # -- Request handling --

    async def handle(
        self,
        request: Request,
        *,
        on_response: ResponseCallback | None = None,
    ) -> PipelineResult:
        """Run *request* through the pipeline and return the outcome."""
        self._ensure_frozen()
        assert self._pipeline is not None
        return await self._pipeline.run(request, on_response=on_response)

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point.

        Handles lifespan scopes directly, then runs HTTP scopes through
        the request pipeline. The response is sent before background
        tasks start; the call returns once they and the teardown finish.
        """
        if scope["type"] == "lifespan":
            await self._handle_lifespan(scope, receive, send)
            return

        if scope["type"] != "http":
            return

        self._ensure_frozen()
        body = await read_body(receive)
        request = Request.from_asgi(scope, body)

        async def on_response(response: Response) -> None:
            await send_response(response, send)

        await self.handle(request, on_response=on_response)

    async def _handle_lifespan(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """Run the ASGI lifespan protocol.

        Freezes the app at startup (before first HTTP request), then
        runs registered startup/shutdown hooks and signals completion
        back to the server.
        """
        self._ensure_frozen()

        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    await self.run_startup_hooks()
                except Exception as exc:
                    logger.exception("Startup failed")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})

            elif msg_type == "lifespan.shutdown":
                await self.run_shutdown_hooks()
                await send({"type": "lifespan.shutdown.complete"})
                return

    # -- Internal --

    def _ensure_frozen(self) -> None:
        """Thread-safe freeze with double-check locking."""
        if self._frozen:
            return
        with self._freeze_lock:
            if self._frozen:
                return
            self._freeze()

    def _freeze(self) -> None:
        """Compile the app into its frozen runtime state.

        MUST only be called while holding _freeze_lock.
        """
        # 1. Providers: validate the graph before routes reference it
        self._providers.freeze()

        # 2. Compile route table, binding each route's dependencies
        router = Router()
        inline: list[Provider] = []
        for pending in self._pending_routes:
            dependencies = self._bind_dependencies(pending, inline)
            for method in pending.methods:
                router.add(
                    method,
                    pending.path,
                    pending.handler,
                    metadata=pending.metadata,
                    dependencies=dependencies,
                    name=pending.name,
                )
        self._providers.validate(inline)
        router.compile()
        self._router = router

        # 3. Build the pipeline shared by every request
        self._pipeline = RequestPipeline(
            router=router,
            providers=self._providers,
            scheduler=self._scheduler,
            config=self.config,
            input_builder=self._input_builder,
        )

        self._frozen = True
        logger.debug(
            "Compiled %d route(s), %d provider(s)", len(router.routes), len(self._providers)
        )

    def _bind_dependencies(
        self, pending: _PendingRoute, inline: list[Provider]
    ) -> dict[str, Provider]:
        if not pending.depends:
            return {}
        if isinstance(pending.depends, Mapping):
            items = list(pending.depends.items())
        else:
            items = [(name, name) for name in pending.depends]

        bound: dict[str, Provider] = {}
        for alias, spec in items:
            if spec is None:
                spec = alias
            if isinstance(spec, str) and spec not in self._providers:
                msg = f"Route {pending.path!r} depends on unknown provider {spec!r}"
                raise ConfigurationError(msg)
            provider = self._providers.as_provider(alias, spec)
            if not isinstance(spec, str):
                inline.append(provider)
            bound[alias] = provider
        return bound

    def _check_not_frozen(self) -> None:
        if self._frozen:
            msg = (
                "Cannot modify the app after it has started serving requests. "
                "Register routes, providers, and hooks before the first request."
            )
            raise RuntimeError(msg)
