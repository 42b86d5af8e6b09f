"""One await point for user callables that may or may not be coroutines.

Route handlers, dependency providers, resource closers and background
tasks are accepted as either ``def`` or ``async def``. Everything in wren
that calls into user code goes through :func:`invoke`.
"""

import inspect
from typing import Any


async def invoke(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *func* with the given arguments, awaiting the result when needed.

    A plain function runs inline on the event loop and its return value
    is passed through. A coroutine function (or any callable returning an
    awaitable) is awaited::

        await invoke(send_welcome_email, user)
    """
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result
