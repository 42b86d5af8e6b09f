"""Background tasks — deferred work that runs after the response.

Handlers receive a ``BackgroundTasks`` queue as their ``background``
parameter and register callables on it. Once the response has been
produced, the pipeline starts every task under the request's root task,
in registration order, and waits for all of them before releasing the
request's dependencies::

    @app.post("/signup")
    async def signup(input, background):
        user = await create_user(input.body)
        background.add(send_welcome_email, user.email, template="welcome")
        return {"id": user.id}, 201

A task that raises is logged and recorded on ``errors``; it never
affects the response or its sibling tasks.
"""

import logging
import traceback
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from wren._internal.invoke import invoke
from wren.errors import BackgroundTaskError, TaskCancelled

if TYPE_CHECKING:
    from wren.concurrency.scheduler import TaskNode

logger = logging.getLogger("wren.background")


@dataclass(frozen=True, slots=True)
class TaskArguments:
    """Positional and keyword arguments for one call."""

    args: tuple[Any, ...] = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)


async def invoke_with(func: Callable[..., Any], arguments: TaskArguments) -> Any:
    """Call *func* with an argument bag, awaiting it if needed."""
    return await invoke(func, *arguments.args, **arguments.kwargs)


@dataclass(frozen=True, slots=True)
class BackgroundTask:
    """A queued callable and the arguments to call it with."""

    func: Callable[..., Any]
    arguments: TaskArguments = field(default_factory=TaskArguments)

    @property
    def name(self) -> str:
        return getattr(self.func, "__qualname__", None) or repr(self.func)

    async def run(self) -> Any:
        return await invoke_with(self.func, self.arguments)


class BackgroundTasks:
    """Ordered queue of background tasks for one request.

    Append-only until ``execute()`` runs it; afterwards ``add`` raises.
    """

    __slots__ = ("_executed", "_tasks", "errors", "trace_depth")

    def __init__(self, *, trace_depth: int = 3) -> None:
        self._tasks: list[BackgroundTask] = []
        self._executed = False
        self.errors: list[BackgroundTaskError] = []
        self.trace_depth = trace_depth

    def add(self, func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> None:
        """Queue ``func(*args, **kwargs)`` to run after the response."""
        if not callable(func):
            msg = f"Background task must be callable, got {type(func).__name__}"
            raise TypeError(msg)
        if self._executed:
            msg = "Cannot add background tasks after they have run."
            raise RuntimeError(msg)
        self._tasks.append(BackgroundTask(func, TaskArguments(args, kwargs)))

    add_task = add

    @property
    def empty(self) -> bool:
        return not self._tasks

    @property
    def size(self) -> int:
        return len(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def tasks(self) -> tuple[BackgroundTask, ...]:
        return tuple(self._tasks)

    @property
    def executed(self) -> bool:
        return self._executed

    async def execute(self, root: "TaskNode") -> tuple[BackgroundTaskError, ...]:
        """Run every queued task under *root* and wait for all of them.

        Tasks start in registration order and run concurrently. Returns
        the errors recorded for tasks that raised.
        """
        if self._executed:
            msg = "Background tasks have already been executed."
            raise RuntimeError(msg)
        self._executed = True
        tasks, self._tasks = self._tasks, []
        if not tasks:
            return ()

        handles = [
            root.spawn(self._run_one, task, name=f"background:{task.name}") for task in tasks
        ]
        for handle in handles:
            try:
                await handle.wait()
            except TaskCancelled:
                logger.debug("Background task %r was cancelled", handle.name)
        return tuple(self.errors)

    def discard(self) -> int:
        """Drop queued tasks without running them. Returns how many were dropped."""
        dropped = len(self._tasks)
        self._tasks = []
        self._executed = True
        if dropped:
            logger.debug("Discarded %d background task(s)", dropped)
        return dropped

    # -- Internal --

    async def _run_one(self, task: BackgroundTask) -> None:
        try:
            await task.run()
        except Exception as exc:
            self._report(task, exc)

    def _report(self, task: BackgroundTask, exc: Exception) -> BackgroundTaskError:
        frames = traceback.format_tb(exc.__traceback__) if self.trace_depth > 0 else []
        trace = tuple(frame.rstrip() for frame in frames[-self.trace_depth :])
        error = BackgroundTaskError(
            task_name=task.name,
            kind=type(exc).__name__,
            message=str(exc),
            trace=trace,
            exception=exc,
        )
        self.errors.append(error)
        logger.error(
            "Background task failed: %s - %s\n%s",
            error.kind,
            error.message,
            "\n".join(trace),
        )
        return error
