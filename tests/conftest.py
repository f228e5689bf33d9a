"""
Pytest configuration and fixtures for reasonloop tests.
"""

import asyncio
from typing import Optional

import pytest

from reasonloop.config_loader import reset_config_cache
from reasonloop.events import EventBroadcaster
from reasonloop.tools import SubAction, ToolDescriptor, ToolRegistry


class ScriptedModel:
    """
    Model provider that replays a fixed script.

    Each entry is either the text to return or an exception to raise.
    Once the script runs out the last entry repeats. Every call is
    recorded so tests can inspect the transcript the loop sent.
    """

    def __init__(self, outputs, model: str = "scripted-model", delay: float = 0.0):
        self.outputs = list(outputs)
        self.model = model
        self.delay = delay
        self.calls: list[tuple[list[dict], Optional[dict]]] = []

    async def generate(self, messages: list[dict], params: Optional[dict] = None) -> str:
        self.calls.append((messages, params))
        if self.delay:
            await asyncio.sleep(self.delay)
        index = min(len(self.calls), len(self.outputs)) - 1
        output = self.outputs[index]
        if isinstance(output, BaseException):
            raise output
        return output

    @property
    def call_count(self) -> int:
        return len(self.calls)


def _echo(args: dict) -> str:
    return f"echo: {args.get('text', '')}"


def _fail(args: dict) -> str:
    raise RuntimeError("disk on fire")


def _counter(args: dict, sub_action: str) -> dict:
    value = int(args.get("value", 0))
    return {"value": value + 1 if sub_action == "increment" else value - 1}


TEXT_SCHEMA = {
    "type": "object",
    "properties": {"text": {"type": "string", "description": "Text to echo"}},
    "required": ["text"],
}

VALUE_SCHEMA = {
    "type": "object",
    "properties": {"value": {"type": "integer", "description": "Starting value"}},
    "required": ["value"],
}


@pytest.fixture
def registry():
    """Registry with a handful of deterministic tools."""
    return ToolRegistry(
        [
            ToolDescriptor(
                name="echo",
                description="Echo the input text back",
                invoke=_echo,
                input_schema=TEXT_SCHEMA,
            ),
            ToolDescriptor(
                name="broken",
                description="Always fails",
                invoke=_fail,
                input_schema=TEXT_SCHEMA,
            ),
            ToolDescriptor(
                name="counter",
                description="Count up or down",
                invoke=_counter,
                input_schema=VALUE_SCHEMA,
                formatter=lambda result: f"value is {result['value']}",
                sub_actions=(
                    SubAction(name="increment", description="Add one", input_schema=VALUE_SCHEMA),
                    SubAction(name="decrement", description="Subtract one", input_schema=VALUE_SCHEMA),
                ),
            ),
        ]
    )


@pytest.fixture
def scripted_model():
    """Factory for ScriptedModel instances."""
    return ScriptedModel


@pytest.fixture
def broadcaster():
    """Broadcaster with small, predictable bounds."""
    return EventBroadcaster(queue_size=100, history_size=100)


@pytest.fixture(autouse=True)
def reset_agents_cache():
    """Each test starts with an empty agents config cache."""
    reset_config_cache()
    yield
    reset_config_cache()
