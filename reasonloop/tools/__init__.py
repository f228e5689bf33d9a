"""
reasonloop tools package

Available tools:
- web_search: Web search via SearXNG
- math: Mathematical expressions (evaluate, solve, simplify sub-actions)
"""

from . import math_solver, search
from .registry import SUB_ACTION_SEPARATOR, SubAction, ToolDescriptor, ToolRegistry
from .resolver import ActionRequest, ActionResolver


def build_default_registry() -> ToolRegistry:
    """Build a registry holding the built-in tools."""
    registry = ToolRegistry()
    search.register(registry)
    math_solver.register(registry)
    return registry


__all__ = [
    "SUB_ACTION_SEPARATOR",
    "ActionRequest",
    "ActionResolver",
    "SubAction",
    "ToolDescriptor",
    "ToolRegistry",
    "build_default_registry",
]
