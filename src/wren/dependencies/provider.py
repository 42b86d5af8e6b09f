"""Dependency providers — two-phase resources.

A provider is acquired once per request scope and released when the
scope is torn down. Three shapes are accepted::

    # Plain function: a value, nothing to release
    def settings():
        return load_settings()

    # Generator: code after ``yield`` runs at teardown
    async def db(settings):
        conn = await connect(settings.dsn)
        try:
            yield conn
        finally:
            await conn.close()

    # Explicit (value, closer) pair
    def cache():
        client = Cache()
        return Resource(client, client.close)

Whatever the shape, acquisition produces an ``Acquired`` value holding
the resource and a closer. The scope stores the closer and calls it
exactly once.
"""

import inspect
from collections.abc import AsyncGenerator, Callable, Generator
from dataclasses import dataclass
from typing import Any

from wren._internal.invoke import invoke
from wren._internal.types import Closer, ProviderFunc

# Parameter name that receives the current Request instead of a dependency
REQUEST_PARAM = "request"


@dataclass(frozen=True, slots=True)
class Resource:
    """An acquired value paired with the callable that releases it."""

    value: Any
    close: Closer | None = None


@dataclass(frozen=True, slots=True)
class Acquired:
    """A resource held by a scope until teardown."""

    name: str
    value: Any
    closer: Closer | None


@dataclass(frozen=True, eq=False, slots=True)
class Provider:
    """A named provider definition.

    ``params`` lists the provider's parameter names; each one is either
    another provider's name (a sub-dependency) or ``request``.
    Compared by identity, so a scope caches one value per provider.
    """

    name: str
    func: ProviderFunc
    params: tuple[str, ...]

    @classmethod
    def from_callable(cls, name: str, func: ProviderFunc) -> "Provider":
        """Build a Provider, reading parameter names from the signature."""
        if not callable(func):
            msg = f"Dependency {name!r} must be callable, got {type(func).__name__}"
            raise TypeError(msg)
        sig = inspect.signature(func)
        params = tuple(
            param_name
            for param_name, param in sig.parameters.items()
            if param.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
            and param.default is inspect.Parameter.empty
        )
        return cls(name=name, func=func, params=params)

    async def acquire(self, kwargs: dict[str, Any]) -> Acquired | None:
        """Run the acquisition phase.

        Returns ``None`` when a generator provider finished without
        yielding. Exceptions raised before the value is produced
        propagate to the caller.
        """
        func = self.func
        if inspect.isasyncgenfunction(func):
            agen = func(**kwargs)
            try:
                value = await agen.__anext__()
            except StopAsyncIteration:
                return None
            return Acquired(self.name, value, _async_generator_closer(self.name, agen))

        if inspect.isgeneratorfunction(func):
            gen = func(**kwargs)
            try:
                value = next(gen)
            except StopIteration:
                return None
            return Acquired(self.name, value, _generator_closer(self.name, gen))

        result = await invoke(func, **kwargs)
        if isinstance(result, Resource):
            return Acquired(self.name, result.value, result.close)
        return Acquired(self.name, result, None)


def _generator_closer(name: str, gen: Generator[Any, None, None]) -> Callable[[], None]:
    def close() -> None:
        try:
            next(gen)
        except StopIteration:
            return
        gen.close()
        msg = f"Dependency {name!r} yielded more than once"
        raise RuntimeError(msg)

    return close


def _async_generator_closer(
    name: str, agen: AsyncGenerator[Any, None]
) -> Callable[[], Any]:
    async def close() -> None:
        try:
            await agen.__anext__()
        except StopAsyncIteration:
            return
        await agen.aclose()
        msg = f"Dependency {name!r} yielded more than once"
        raise RuntimeError(msg)

    return close
