"""Request-scoped context via ContextVar.

Provides:
- ``request_var``: The current ``Request`` for this task.
- ``task_var``: The scheduler ``TaskNode`` the current code runs under.

Both are set by the pipeline and the scheduler and reset afterwards.
Tasks spawned through the scheduler inherit the request and carry their
own node.

Thread safety:
    ``ContextVar`` is task-local under asyncio and trio. No locks needed.
"""

from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wren.concurrency.scheduler import TaskNode
    from wren.http.request import Request

request_var: "ContextVar[Request]" = ContextVar("wren_request")
"""The current request. Set by the pipeline before dispatch."""

task_var: "ContextVar[TaskNode]" = ContextVar("wren_task")
"""The current task node. Set by the scheduler for roots and children."""


def get_request() -> "Request":
    """Return the current request.

    Raises ``LookupError`` if called outside a request context.
    """
    return request_var.get()


def current_task() -> "TaskNode":
    """Return the task node the caller is running under.

    Raises ``LookupError`` if called outside a request's task tree.
    """
    return task_var.get()
