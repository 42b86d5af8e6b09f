"""Tests for wren.dependencies — providers, registry and per-request scopes."""

import logging

import pytest

from wren.dependencies.provider import Provider, Resource
from wren.dependencies.scope import DependencyScope, ProviderRegistry
from wren.errors import CleanupError, ConfigurationError, DependencyAcquisitionError
from wren.http.request import Request


def _scope(registry: ProviderRegistry, request: Request | None = None) -> DependencyScope:
    return DependencyScope(registry, request=request)


class TestProvider:
    def test_params_from_signature(self) -> None:
        def db(settings, request):
            return None

        assert Provider.from_callable("db", db).params == ("settings", "request")

    def test_defaults_and_variadics_are_not_dependencies(self) -> None:
        def paged(limit=10, *args, **kwargs):
            return limit

        assert Provider.from_callable("paged", paged).params == ()

    def test_rejects_non_callable(self) -> None:
        with pytest.raises(TypeError, match="must be callable"):
            Provider.from_callable("bad", 42)  # type: ignore[arg-type]

    async def test_plain_function_has_no_closer(self) -> None:
        provider = Provider.from_callable("answer", lambda: 42)
        acquired = await provider.acquire({})
        assert acquired is not None
        assert acquired.value == 42
        assert acquired.closer is None

    async def test_resource_carries_closer(self) -> None:
        closed: list[str] = []
        provider = Provider.from_callable("conn", lambda: Resource("c", lambda: closed.append("c")))
        acquired = await provider.acquire({})
        assert acquired is not None
        assert acquired.value == "c"
        acquired.closer()
        assert closed == ["c"]

    async def test_generator_without_yield(self) -> None:
        def nothing():
            return
            yield

        assert await Provider.from_callable("nothing", nothing).acquire({}) is None


class TestProviderRegistry:
    def test_register_and_get(self) -> None:
        registry = ProviderRegistry()
        provider = registry.register("db", lambda: "conn")
        assert registry.get("db") is provider
        assert "db" in registry
        assert len(registry) == 1
        assert list(registry) == ["db"]

    def test_duplicate_registration(self) -> None:
        registry = ProviderRegistry()
        registry.register("db", lambda: "conn")
        with pytest.raises(ConfigurationError, match="already registered"):
            registry.register("db", lambda: "other")

    def test_unknown_name(self) -> None:
        with pytest.raises(ConfigurationError, match="No provider registered for 'db'"):
            ProviderRegistry().get("db")

    def test_register_after_freeze(self) -> None:
        registry = ProviderRegistry()
        registry.freeze()
        with pytest.raises(RuntimeError, match="after the app has started"):
            registry.register("db", lambda: "conn")

    def test_validate_unknown_sub_dependency(self) -> None:
        registry = ProviderRegistry()

        def db(settings):
            return settings

        registry.register("db", db)
        with pytest.raises(ConfigurationError, match="requires unknown dependency 'settings'"):
            registry.validate()

    def test_validate_cycle(self) -> None:
        registry = ProviderRegistry()

        def a(b):
            return b

        def b(a):
            return a

        registry.register("a", a)
        registry.register("b", b)
        with pytest.raises(ConfigurationError, match="a -> b -> a"):
            registry.freeze()

    def test_request_param_needs_no_provider(self) -> None:
        registry = ProviderRegistry()

        def user(request):
            return request

        registry.register("user", user)
        registry.validate()

    async def test_resolve_opens_scope(self) -> None:
        registry = ProviderRegistry()
        registry.register("answer", lambda: 42)

        values, scope = await registry.resolve(["answer"])
        assert values == {"answer": 42}
        assert isinstance(scope, DependencyScope)
        assert await scope.teardown() == ()


class TestScopeResolve:
    async def test_plain_sync_and_async_providers(self) -> None:
        registry = ProviderRegistry()

        async def token():
            return "t-1"

        registry.register("answer", lambda: 42)
        registry.register("token", token)

        values = await _scope(registry).resolve(["answer", "token"])
        assert values == {"answer": 42, "token": "t-1"}

    async def test_sub_dependency_resolved_first(self) -> None:
        order: list[str] = []
        registry = ProviderRegistry()

        def settings():
            order.append("settings")
            return {"dsn": "memory://"}

        def db(settings):
            order.append("db")
            return f"conn:{settings['dsn']}"

        registry.register("settings", settings)
        registry.register("db", db)

        values = await _scope(registry).resolve(["db"])
        assert values == {"db": "conn:memory://"}
        assert order == ["settings", "db"]

    async def test_shared_provider_acquired_once(self) -> None:
        calls: list[str] = []
        registry = ProviderRegistry()

        def settings():
            calls.append("settings")
            return "cfg"

        def db(settings):
            return ("db", settings)

        def cache(settings):
            return ("cache", settings)

        registry.register("settings", settings)
        registry.register("db", db)
        registry.register("cache", cache)

        scope = _scope(registry)
        await scope.resolve(["db", "cache"])
        await scope.resolve(["settings"])
        assert calls == ["settings"]
        assert len(scope) == 3

    async def test_request_param(self) -> None:
        registry = ProviderRegistry()

        def user(request):
            return request.headers["x-user"]

        registry.register("user", user)
        request = Request("GET", "/", headers={"x-user": "alice"})

        values = await _scope(registry, request).resolve(["user"])
        assert values == {"user": "alice"}

    async def test_mapping_with_aliases_and_inline_providers(self) -> None:
        registry = ProviderRegistry()
        registry.register("db", lambda: "conn")

        values = await _scope(registry).resolve({"conn": "db", "now": lambda: 1700000000})
        assert values == {"conn": "conn", "now": 1700000000}

    async def test_values_property(self) -> None:
        registry = ProviderRegistry()
        registry.register("db", lambda: "conn")

        scope = _scope(registry)
        await scope.resolve(["db"])
        assert scope.values == {"db": "conn"}

    async def test_unknown_name(self) -> None:
        with pytest.raises(ConfigurationError):
            await _scope(ProviderRegistry()).resolve(["missing"])

    async def test_resolve_after_teardown(self) -> None:
        scope = _scope(ProviderRegistry())
        await scope.teardown()
        with pytest.raises(RuntimeError, match="torn down"):
            await scope.resolve([])


class TestScopeFailure:
    async def test_failure_closes_earlier_resources_once(self) -> None:
        log: list[str] = []
        registry = ProviderRegistry()

        def first():
            log.append("first:acquire")
            yield "a"
            log.append("first:release")

        def second():
            raise RuntimeError("boom")

        registry.register("first", first)
        registry.register("second", second)
        scope = _scope(registry)

        with pytest.raises(DependencyAcquisitionError) as exc_info:
            await scope.resolve(["first", "second"])

        assert exc_info.value.name == "second"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert log == ["first:acquire", "first:release"]
        assert len(scope) == 0

        assert await scope.teardown() == ()
        assert log == ["first:acquire", "first:release"]

    async def test_rollback_is_reverse_order(self) -> None:
        log: list[str] = []
        registry = ProviderRegistry()

        def make(name):
            def provider():
                yield name
                log.append(name)

            return provider

        def failing():
            raise ValueError("nope")

        registry.register("a", make("a"))
        registry.register("b", make("b"))
        registry.register("c", failing)

        with pytest.raises(DependencyAcquisitionError):
            await _scope(registry).resolve(["a", "b", "c"])
        assert log == ["b", "a"]

    async def test_rollback_keeps_earlier_resolves(self) -> None:
        log: list[str] = []
        registry = ProviderRegistry()

        def held():
            yield "held"
            log.append("held")

        def failing():
            raise ValueError("nope")

        registry.register("held", held)
        registry.register("failing", failing)
        scope = _scope(registry)

        await scope.resolve(["held"])
        with pytest.raises(DependencyAcquisitionError):
            await scope.resolve(["failing"])
        assert log == []
        assert scope.values == {"held": "held"}

        await scope.teardown()
        assert log == ["held"]

    async def test_provider_that_never_yields(self) -> None:
        registry = ProviderRegistry()

        def nothing():
            return
            yield

        registry.register("nothing", nothing)
        with pytest.raises(DependencyAcquisitionError, match="did not yield a value"):
            await _scope(registry).resolve(["nothing"])

    async def test_sub_dependency_failure_names_the_failing_provider(self) -> None:
        registry = ProviderRegistry()

        def settings():
            raise KeyError("DATABASE_URL")

        def db(settings):
            return settings

        registry.register("settings", settings)
        registry.register("db", db)

        with pytest.raises(DependencyAcquisitionError) as exc_info:
            await _scope(registry).resolve(["db"])
        assert exc_info.value.name == "settings"


class TestScopeTeardown:
    async def test_reverse_acquisition_order(self) -> None:
        log: list[str] = []
        registry = ProviderRegistry()

        def make(name):
            async def provider():
                log.append(f"open:{name}")
                yield name
                log.append(f"close:{name}")

            return provider

        for name in ("a", "b", "c"):
            registry.register(name, make(name))

        scope = _scope(registry)
        await scope.resolve(["a", "b", "c"])
        await scope.teardown()
        assert log == ["open:a", "open:b", "open:c", "close:c", "close:b", "close:a"]

    async def test_sub_dependency_outlives_dependant(self) -> None:
        log: list[str] = []
        registry = ProviderRegistry()

        def settings():
            yield "cfg"
            log.append("settings")

        def db(settings):
            yield "conn"
            log.append("db")

        registry.register("settings", settings)
        registry.register("db", db)

        scope = _scope(registry)
        await scope.resolve(["db"])
        await scope.teardown()
        assert log == ["db", "settings"]

    async def test_resource_closer_sync_and_async(self) -> None:
        closed: list[str] = []
        registry = ProviderRegistry()

        async def aclose():
            closed.append("async")

        registry.register("sync", lambda: Resource(1, lambda: closed.append("sync")))
        registry.register("async", lambda: Resource(2, aclose))

        scope = _scope(registry)
        await scope.resolve(["sync", "async"])
        await scope.teardown()
        assert closed == ["async", "sync"]

    async def test_cleanup_failure_collected_and_logged(self, caplog) -> None:
        log: list[str] = []
        registry = ProviderRegistry()

        def first():
            yield 1
            log.append("first")

        def broken():
            yield 2
            raise RuntimeError("close failed")

        def last():
            yield 3
            log.append("last")

        registry.register("first", first)
        registry.register("broken", broken)
        registry.register("last", last)

        scope = _scope(registry)
        await scope.resolve(["first", "broken", "last"])
        with caplog.at_level(logging.ERROR, logger="wren.dependencies"):
            errors = await scope.teardown()

        assert log == ["last", "first"]
        assert len(errors) == 1
        assert isinstance(errors[0], CleanupError)
        assert errors[0].name == "broken"
        assert "close failed" in str(errors[0].cause)
        assert "Cleanup of dependency 'broken' failed" in caplog.text

    async def test_generator_yielding_twice(self) -> None:
        registry = ProviderRegistry()

        def greedy():
            yield 1
            yield 2

        registry.register("greedy", greedy)
        scope = _scope(registry)
        await scope.resolve(["greedy"])

        errors = await scope.teardown()
        assert len(errors) == 1
        assert "yielded more than once" in str(errors[0])

    async def test_teardown_exactly_once(self) -> None:
        calls: list[str] = []
        registry = ProviderRegistry()

        def db():
            yield "conn"
            calls.append("closed")

        registry.register("db", db)
        scope = _scope(registry)
        await scope.resolve(["db"])

        await scope.teardown()
        assert scope.torn_down is True
        with pytest.raises(RuntimeError, match="already torn down"):
            await scope.teardown()
        assert calls == ["closed"]
