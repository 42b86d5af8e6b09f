"""Per-request dependency scopes.

``ProviderRegistry`` holds the application's provider definitions and
is frozen with the app. ``DependencyScope`` is created per request: it
acquires providers on demand, caches their values, and releases every
acquired resource exactly once at teardown.

Thread safety:
    A registry is read-only after ``freeze()``. A scope belongs to one
    request and is never shared, so neither needs locks.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, TypeAlias

from wren._internal.invoke import invoke
from wren._internal.types import ProviderFunc
from wren.dependencies.provider import REQUEST_PARAM, Acquired, Provider
from wren.errors import CleanupError, ConfigurationError, DependencyAcquisitionError

logger = logging.getLogger("wren.dependencies")

Requested: TypeAlias = Iterable[str] | Mapping[str, str | Provider | ProviderFunc]


class ProviderRegistry:
    """Application-level provider definitions, keyed by name.

    Usage::

        registry = ProviderRegistry()
        registry.register("db", open_db)
        registry.freeze()
        values, scope = await registry.resolve(["db"])
        ...
        await scope.teardown()
    """

    __slots__ = ("_frozen", "_providers")

    def __init__(self) -> None:
        self._providers: dict[str, Provider] = {}
        self._frozen = False

    def register(self, name: str, func: ProviderFunc) -> Provider:
        """Register *func* as the provider for *name*."""
        if self._frozen:
            msg = "Cannot register providers after the app has started."
            raise RuntimeError(msg)
        if name in self._providers:
            msg = f"Dependency {name!r} is already registered"
            raise ConfigurationError(msg)
        provider = Provider.from_callable(name, func)
        self._providers[name] = provider
        return provider

    def get(self, name: str) -> Provider:
        try:
            return self._providers[name]
        except KeyError:
            msg = f"No provider registered for {name!r}"
            raise ConfigurationError(msg) from None

    def as_provider(self, alias: str, spec: str | Provider | ProviderFunc) -> Provider:
        """Turn a registered name, a Provider, or an inline callable into a Provider."""
        if isinstance(spec, Provider):
            return spec
        if isinstance(spec, str):
            return self.get(spec)
        return Provider.from_callable(alias, spec)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def __iter__(self) -> Iterator[str]:
        return iter(self._providers)

    def validate(self, extra: Iterable[Provider] = ()) -> None:
        """Check that every sub-dependency exists and nothing is cyclic.

        Raises ``ConfigurationError`` on the first problem found.
        """
        done: set[str] = set()

        def visit(provider: Provider, chain: tuple[str, ...]) -> None:
            if provider.name in chain:
                cycle = " -> ".join((*chain, provider.name))
                msg = f"Dependency cycle: {cycle}"
                raise ConfigurationError(msg)
            if provider.name in done and provider.name in self._providers:
                return
            for param in provider.params:
                if param == REQUEST_PARAM and param not in self._providers:
                    continue
                if param not in self._providers:
                    msg = f"Dependency {provider.name!r} requires unknown dependency {param!r}"
                    raise ConfigurationError(msg)
                visit(self._providers[param], (*chain, provider.name))
            done.add(provider.name)

        for provider in (*self._providers.values(), *extra):
            visit(provider, ())

    def freeze(self) -> None:
        """Validate the provider graph and refuse further registration."""
        self.validate()
        self._frozen = True

    async def resolve(
        self, requested: Requested, *, request: Any = None
    ) -> tuple[dict[str, Any], "DependencyScope"]:
        """Open a new scope and resolve *requested* in it.

        Returns ``(values, scope)``; the caller owns the scope and must
        tear it down.
        """
        scope = DependencyScope(self, request=request)
        values = await scope.resolve(requested)
        return values, scope


class DependencyScope:
    """Resolved dependency values for one request.

    Every resource acquired through the scope is closed exactly once:
    either immediately, when a later provider in the same ``resolve``
    call fails, or at ``teardown()``. Closers run in reverse
    acquisition order.
    """

    __slots__ = ("_acquired", "_cache", "_errors", "_registry", "_torn_down", "request")

    def __init__(self, registry: ProviderRegistry, *, request: Any = None) -> None:
        self._registry = registry
        self.request = request
        self._cache: dict[Provider, Acquired] = {}
        self._acquired: list[Acquired] = []
        self._errors: list[CleanupError] = []
        self._torn_down = False

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    @property
    def values(self) -> dict[str, Any]:
        """Currently held values, keyed by provider name."""
        return {acquired.name: acquired.value for acquired in self._acquired}

    def __len__(self) -> int:
        return len(self._acquired)

    async def resolve(self, requested: Requested) -> dict[str, Any]:
        """Acquire each requested dependency and return its value.

        *requested* is either a list of registered names or a mapping of
        result key to a registered name, Provider, or inline callable.

        Raises ``DependencyAcquisitionError`` if a provider fails before
        yielding; anything this call acquired has been closed by then.
        """
        if self._torn_down:
            msg = "Cannot resolve dependencies on a scope that was torn down."
            raise RuntimeError(msg)

        if isinstance(requested, Mapping):
            wanted = [
                (alias, self._registry.as_provider(alias, spec))
                for alias, spec in requested.items()
            ]
        else:
            wanted = [(name, self._registry.get(name)) for name in requested]

        mark = len(self._acquired)
        values: dict[str, Any] = {}
        try:
            for alias, provider in wanted:
                values[alias] = await self._resolve_one(provider, ())
        except DependencyAcquisitionError as exc:
            logger.debug(
                "Dependency %r failed, releasing %d resource(s)",
                exc.name,
                len(self._acquired) - mark,
            )
            await self._rollback(mark)
            raise
        return values

    async def teardown(self) -> tuple[CleanupError, ...]:
        """Release every held resource, once.

        Cleanup failures are logged and collected; they never stop the
        remaining closers. Returns all cleanup errors seen by this
        scope, including those from rolled-back resolves.
        """
        if self._torn_down:
            msg = "Dependency scope was already torn down."
            raise RuntimeError(msg)
        self._torn_down = True

        pending = self._acquired
        self._acquired = []
        self._cache.clear()
        await self._close_all(reversed(pending))
        return tuple(self._errors)

    # -- Internal --

    async def _resolve_one(self, provider: Provider, chain: tuple[str, ...]) -> Any:
        if provider in self._cache:
            return self._cache[provider].value
        if provider.name in chain:
            cycle = ConfigurationError(f"Dependency cycle through {provider.name!r}")
            raise DependencyAcquisitionError(provider.name, cycle)

        kwargs: dict[str, Any] = {}
        for param in provider.params:
            if param == REQUEST_PARAM and param not in self._registry:
                kwargs[param] = self.request
                continue
            try:
                sub = self._registry.get(param)
            except ConfigurationError as exc:
                raise DependencyAcquisitionError(provider.name, exc) from exc
            kwargs[param] = await self._resolve_one(sub, (*chain, provider.name))

        try:
            acquired = await provider.acquire(kwargs)
        except Exception as exc:
            raise DependencyAcquisitionError(provider.name, exc) from exc
        if acquired is None:
            raise DependencyAcquisitionError(provider.name)

        self._acquired.append(acquired)
        self._cache[provider] = acquired
        return acquired.value

    async def _rollback(self, mark: int) -> None:
        pending = self._acquired[mark:]
        del self._acquired[mark:]
        released = {id(acquired) for acquired in pending}
        self._cache = {p: held for p, held in self._cache.items() if id(held) not in released}
        await self._close_all(reversed(pending))

    async def _close_all(self, pending: Iterable[Acquired]) -> None:
        for acquired in pending:
            if acquired.closer is None:
                continue
            try:
                await invoke(acquired.closer)
            except Exception as exc:
                logger.error("Cleanup of dependency %r failed", acquired.name, exc_info=exc)
                self._errors.append(CleanupError(acquired.name, exc))
