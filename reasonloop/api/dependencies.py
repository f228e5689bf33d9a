"""FastAPI dependencies resolving the services attached to the app."""

from fastapi import Request

from ..events import EventBroadcaster
from ..models import AgentsConfiguration
from ..orchestration import AgentRunner
from ..parsers import ParserSet
from ..tools import ToolRegistry


def get_runner(request: Request) -> AgentRunner:
    return request.app.state.runner


def get_registry(request: Request) -> ToolRegistry:
    return request.app.state.registry


def get_broadcaster(request: Request) -> EventBroadcaster:
    return request.app.state.broadcaster


def get_parsers(request: Request) -> ParserSet:
    return request.app.state.parsers


def get_agents(request: Request) -> AgentsConfiguration:
    return request.app.state.agents
