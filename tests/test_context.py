"""Tests for wren.context — request and task context variables."""

import pytest

from wren.concurrency.scheduler import ConcurrencyScheduler
from wren.context import current_task, get_request, request_var
from wren.http.request import Request


class TestGetRequest:
    def test_outside_request(self) -> None:
        with pytest.raises(LookupError):
            get_request()

    def test_set_and_reset(self) -> None:
        request = Request("GET", "/")
        token = request_var.set(request)
        try:
            assert get_request() is request
        finally:
            request_var.reset(token)

    async def test_inherited_by_spawned_tasks(self) -> None:
        request = Request("GET", "/reports")
        seen: list[Request] = []

        def capture():
            seen.append(get_request())

        token = request_var.set(request)
        try:
            async with ConcurrencyScheduler().open_root() as root:
                root.spawn(capture)
        finally:
            request_var.reset(token)

        assert seen == [request]


class TestCurrentTask:
    def test_outside_tree(self) -> None:
        with pytest.raises(LookupError):
            current_task()

    async def test_child_sees_itself(self) -> None:
        seen = []

        async with ConcurrencyScheduler().open_root() as root:
            child = root.spawn(lambda: seen.append(current_task()), name="probe")
            await child.wait()

        assert seen == [child]
