"""Structured concurrency for request handlers.

Every request runs under a root ``TaskNode`` backed by an anyio task
group. Handlers (and anything they spawn) can fan out child tasks with
``task.spawn(...)`` and collect results with ``await child.wait()``.
Children form a tree: cancelling a node cancels its whole subtree, and
the root does not exit until every descendant has finished, awaited or
not.

Usage::

    scheduler = ConcurrencyScheduler()

    async with scheduler.open_root("GET /report") as root:
        users = root.spawn(fetch_users)
        orders = root.spawn(fetch_orders)
        report = build(await users.wait(), await orders.wait())

Cancellation is cooperative. A cancelled task is interrupted at its
next suspension point; code that never awaits runs to completion. Use
``task.checkpoint()`` inside long synchronous loops.
"""

import logging
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager
from functools import partial
from typing import Any, Literal, TypeAlias

import anyio
import anyio.lowlevel
from anyio.abc import TaskGroup

from wren._internal.invoke import invoke
from wren.context import task_var
from wren.errors import TaskCancelled

logger = logging.getLogger("wren.scheduler")

TaskState: TypeAlias = Literal["pending", "running", "done", "failed", "cancelled"]


class TaskNode:
    """A unit of work in a request's task tree.

    Returned by ``spawn`` as the handle for the child. The root node of
    a request is handed to handlers as ``task``.
    """

    __slots__ = (
        "_cancel_requested",
        "_cancel_scope",
        "_done",
        "_error",
        "_result",
        "_retrieved",
        "_scheduler",
        "_task_group",
        "children",
        "name",
        "parent",
        "state",
    )

    def __init__(
        self,
        name: str,
        parent: "TaskNode | None",
        scheduler: "ConcurrencyScheduler",
    ) -> None:
        self.name = name
        self.parent = parent
        self.children: list[TaskNode] = []
        self.state: TaskState = "pending"
        self._scheduler = scheduler
        self._cancel_requested = False
        self._cancel_scope: anyio.CancelScope | None = None
        self._task_group: TaskGroup | None = None
        self._done = anyio.Event()
        self._result: Any = None
        self._error: Exception | None = None
        self._retrieved = False

    @property
    def root(self) -> "TaskNode":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    @property
    def cancelled(self) -> bool:
        """True if this node or any ancestor was cancelled."""
        node: TaskNode | None = self
        while node is not None:
            if node._cancel_requested:
                return True
            node = node.parent
        return False

    @property
    def done(self) -> bool:
        return self.state in ("done", "failed", "cancelled")

    def spawn(
        self, func: Callable[..., Any], *args: Any, name: str | None = None, **kwargs: Any
    ) -> "TaskNode":
        """Start *func* concurrently as a child of this node."""
        return self._scheduler.spawn(self, func, *args, name=name, **kwargs)

    def cancel(self) -> None:
        """Cancel this node and every descendant."""
        self._scheduler.cancel(self)

    async def wait(self) -> Any:
        """Wait for the task to finish and return its result.

        Re-raises the task's exception, or ``TaskCancelled`` if it was
        cancelled before producing a result.
        """
        await self._done.wait()
        self._retrieved = True
        if self._error is not None:
            raise self._error
        if self.state == "cancelled":
            raise TaskCancelled(self.name)
        return self._result

    def check_cancelled(self) -> None:
        """Raise ``TaskCancelled`` if this node has been cancelled."""
        if self.cancelled:
            raise TaskCancelled(self.name)

    async def checkpoint(self) -> None:
        """Yield to the scheduler, then raise if cancelled."""
        await anyio.lowlevel.checkpoint()
        self.check_cancelled()

    async def sleep(self, seconds: float) -> None:
        await anyio.sleep(seconds)

    def walk(self) -> Iterator["TaskNode"]:
        """Yield this node and all descendants, depth first."""
        yield self
        for child in list(self.children):
            yield from child.walk()

    def __repr__(self) -> str:
        return f"<TaskNode {self.name!r} {self.state}>"


class ConcurrencyScheduler:
    """Spawns, awaits and cancels request task trees.

    One scheduler serves the whole app; each request opens its own root
    with ``open_root`` and nothing is shared between trees.
    """

    __slots__ = ("_roots",)

    def __init__(self) -> None:
        self._roots: set[TaskNode] = set()

    @property
    def active_roots(self) -> int:
        """Number of request trees currently alive."""
        return len(self._roots)

    @asynccontextmanager
    async def open_root(self, name: str = "request") -> AsyncIterator[TaskNode]:
        """Open a root task for a request.

        Exiting waits until every descendant has finished. If the root
        is cancelled, the body is interrupted at its next await and the
        cancellation ends here instead of propagating to the caller.
        """
        root = TaskNode(name, None, self)
        root.state = "running"
        self._roots.add(root)
        token = task_var.set(root)
        try:
            async with anyio.create_task_group() as tg:
                root._task_group = tg
                root._cancel_scope = tg.cancel_scope
                yield root
        finally:
            root._task_group = None
            root._cancel_scope = None
            task_var.reset(token)
            self._roots.discard(root)
            root.state = "cancelled" if root._cancel_requested else "done"
            root._done.set()
            self._report_unretrieved(root)

    def spawn(
        self,
        parent: TaskNode,
        func: Callable[..., Any],
        *args: Any,
        name: str | None = None,
        **kwargs: Any,
    ) -> TaskNode:
        """Start ``func(*args, **kwargs)`` (sync or async) as a child of *parent*.

        Raises ``RuntimeError`` if the parent's tree has already been
        retired.
        """
        tg = parent.root._task_group
        if tg is None:
            msg = f"Cannot spawn under {parent.root.name!r}: the task tree has finished."
            raise RuntimeError(msg)

        child = TaskNode(name or getattr(func, "__name__", "task"), parent, self)
        parent.children.append(child)
        if child.cancelled:
            child.state = "cancelled"
            child._done.set()
            return child

        tg.start_soon(self._run, child, partial(func, *args, **kwargs), name=child.name)
        return child

    def cancel(self, node: TaskNode) -> None:
        """Mark *node* and its subtree cancelled and interrupt their waits."""
        for descendant in node.walk():
            descendant._cancel_requested = True
            if descendant._cancel_scope is not None:
                descendant._cancel_scope.cancel()
        logger.debug("Cancelled task %r", node.name)

    def cancel_all(self) -> None:
        """Cancel every live request tree."""
        for root in list(self._roots):
            self.cancel(root)

    # -- Internal --

    async def _run(self, node: TaskNode, call: Callable[[], Any]) -> None:
        token = task_var.set(node)
        try:
            if node.cancelled:
                node.state = "cancelled"
                return
            node.state = "running"
            with anyio.CancelScope() as scope:
                node._cancel_scope = scope
                node._result = await invoke(call)
                node.state = "done"
            if scope.cancelled_caught:
                node.state = "cancelled"
        except TaskCancelled:
            node.state = "cancelled"
        except Exception as exc:
            node._error = exc
            node.state = "failed"
        finally:
            if node.state == "running":
                # Cancelled from an enclosing scope (the root)
                node.state = "cancelled"
            node._cancel_scope = None
            node._done.set()
            task_var.reset(token)

    def _report_unretrieved(self, root: TaskNode) -> None:
        for node in root.walk():
            if node._error is not None and not node._retrieved:
                logger.warning(
                    "Task %r failed and was never awaited: %s: %s",
                    node.name,
                    type(node._error).__name__,
                    node._error,
                    exc_info=node._error,
                )
