"""
Fixtures for API tests.
"""

import pytest
from fastapi.testclient import TestClient

from reasonloop.api.main import create_app
from reasonloop.models import AgentDefinition, AgentsConfiguration


@pytest.fixture
def agents():
    """A small agents configuration."""
    return AgentsConfiguration(
        version="1.0",
        agents={
            "echoer": AgentDefinition(
                name="echoer",
                description="Echoes things",
                tools=["echo"],
                instructions="Always echo first.",
            )
        },
    )


@pytest.fixture
def make_client(registry, broadcaster, agents):
    """Build a TestClient whose app runs against the given model."""

    def _make(model) -> TestClient:
        app = create_app(model=model, registry=registry, broadcaster=broadcaster, agents=agents)
        return TestClient(app)

    return _make
