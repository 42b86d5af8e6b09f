"""Dependency providers and per-request scopes."""

from wren.dependencies.provider import Provider, Resource
from wren.dependencies.scope import DependencyScope, ProviderRegistry

__all__ = ["DependencyScope", "Provider", "ProviderRegistry", "Resource"]
