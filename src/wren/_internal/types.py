"""Shared type aliases used across wren modules."""

from collections.abc import Awaitable, Callable
from typing import Any, TypeAlias

# Route handler: user-defined function with variable signature
Handler: TypeAlias = Callable[..., Any]

# Dependency provider: plain function, generator or async generator
ProviderFunc: TypeAlias = Callable[..., Any]

# Closer stored by a DependencyScope: sync or async, no arguments
Closer: TypeAlias = Callable[[], Any]

# Lifecycle hook: sync or async, no arguments
Hook: TypeAlias = Callable[[], Any]

# Called with the finalized response before background work starts
ResponseCallback: TypeAlias = Callable[[Any], Awaitable[None]]
