"""
Tool Registry - single source of truth for tool descriptors.

A registry is built once at startup and handed to every run. Lookups are
lock-free: ``register`` swaps in a new read-only mapping under a lock, so
readers always see a consistent table.

A multitool descriptor declares several sub-actions. Each one is
addressable as ``<tool>__<sub_action>`` and shares the parent's invoke
function, which receives the sub-action id as a keyword argument.
"""

import functools
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

SUB_ACTION_SEPARATOR = "__"


def default_input_schema() -> dict:
    """Schema for tools that take a single free-text input."""
    return {
        "type": "object",
        "properties": {"input": {"type": "string", "description": "Input text"}},
        "required": ["input"],
    }


@dataclass(frozen=True)
class SubAction:
    """One independently callable action of a multitool."""

    name: str
    description: str
    input_schema: dict = field(default_factory=default_input_schema)


@dataclass(frozen=True)
class ToolDescriptor:
    """Metadata and entry point for a tool - defined once, used everywhere."""

    name: str
    description: str
    invoke: Callable[..., Any]
    input_schema: dict = field(default_factory=default_input_schema)
    formatter: Optional[Callable[[Any], str]] = None
    sub_actions: tuple[SubAction, ...] = ()
    parent: Optional[str] = None

    @property
    def is_multitool(self) -> bool:
        return bool(self.sub_actions)

    def expand(self) -> list["ToolDescriptor"]:
        """One descriptor per sub-action, or ``[self]`` for a plain tool."""
        if not self.sub_actions:
            return [self]
        return [self.sub_action_descriptor(sub) for sub in self.sub_actions]

    def sub_action_descriptor(self, sub: SubAction) -> "ToolDescriptor":
        return ToolDescriptor(
            name=f"{self.name}{SUB_ACTION_SEPARATOR}{sub.name}",
            description=sub.description,
            invoke=functools.partial(self.invoke, sub_action=sub.name),
            input_schema=sub.input_schema,
            formatter=self.formatter,
            parent=self.name,
        )


class ToolRegistry:
    """Name-indexed table of tool descriptors."""

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()):
        self._lock = threading.Lock()
        self._tools: Mapping[str, ToolDescriptor] = MappingProxyType({})
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: ToolDescriptor) -> None:
        """Register a tool. Names must be unique."""
        if SUB_ACTION_SEPARATOR in descriptor.name and descriptor.parent is None:
            raise ValueError(
                f"Tool name '{descriptor.name}' must not contain '{SUB_ACTION_SEPARATOR}'"
            )
        with self._lock:
            if descriptor.name in self._tools:
                raise ValueError(f"Tool '{descriptor.name}' is already registered")
            tools = dict(self._tools)
            tools[descriptor.name] = descriptor
            self._tools = MappingProxyType(tools)

    def lookup(self, name: str) -> Optional[ToolDescriptor]:
        """
        Find a descriptor by name.

        ``<tool>__<sub_action>`` resolves to the synthetic descriptor for
        that sub-action of a multitool. A multitool's bare name resolves to
        the parent descriptor, which is not directly invocable.
        """
        tools = self._tools
        descriptor = tools.get(name)
        if descriptor is not None:
            return descriptor

        parent_name, sep, sub_name = name.partition(SUB_ACTION_SEPARATOR)
        if not sep:
            return None
        parent = tools.get(parent_name)
        if parent is None:
            return None
        for sub in parent.sub_actions:
            if sub.name == sub_name:
                return parent.sub_action_descriptor(sub)
        return None

    def names(self) -> list[str]:
        """Registered (top-level) tool names."""
        return list(self._tools)

    def select(self, names: Optional[Iterable[str]]) -> "ToolRegistry":
        """
        Build a registry restricted to ``names``.

        ``None`` selects everything. A sub-action name selects just that
        sub-action.

        Raises:
            ValueError: If a name is not registered.
        """
        if names is None:
            return self
        selected: list[ToolDescriptor] = []
        for name in names:
            descriptor = self.lookup(name)
            if descriptor is None:
                raise ValueError(f"Unknown tool: {name}")
            if descriptor.name not in {d.name for d in selected}:
                selected.append(descriptor)
        return ToolRegistry(selected)

    def get_tools_summary(self) -> str:
        """Get formatted summary of all invocable tools for prompts."""
        return "\n".join(f"- {d.name}: {d.description}" for d in self.list())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.lookup(name) is not None

    def __len__(self) -> int:
        return len(self._tools)

    def list(self) -> list[ToolDescriptor]:
        """All invocable descriptors, with multitools expanded."""
        expanded: list[ToolDescriptor] = []
        for descriptor in self._tools.values():
            expanded.extend(descriptor.expand())
        return expanded
