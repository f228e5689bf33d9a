"""
Tests for AgentRunner: run submission, isolation and cancellation.
"""

import asyncio
import re
from typing import Optional
from unittest.mock import patch

import pytest

from reasonloop.models import AgentDefinition
from reasonloop.orchestration import AgentRunner, ExecutionStatus, FailureReason
from reasonloop.tracing import TracingContext


class GoalEchoModel:
    """Answers every question with the question itself, after a delay."""

    model = "goal-echo"

    def __init__(self, delay: float = 0.01):
        self.delay = delay

    async def generate(self, messages: list[dict], params: Optional[dict] = None) -> str:
        await asyncio.sleep(self.delay)
        question = re.match(r"Question: (.*)\nThought:", messages[1]["content"]).group(1)
        if len(messages) == 2:
            return f"Action: echo\nAction Input: {question}"
        return f"Final Answer: {question}"


class TestAgentRunner:
    """Tests for AgentRunner."""

    @pytest.mark.asyncio
    async def test_submit(self, scripted_model, registry):
        """A submitted goal runs to completion."""
        runner = AgentRunner(scripted_model(["Final Answer: 4"]), registry)
        result = await runner.submit("2+2?")
        assert result.succeeded
        assert result.answer == "4"
        assert result.execution_id.startswith("exec-")
        assert runner.active_runs() == []

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_isolated(self, registry, broadcaster):
        """Interleaved runs keep their own state and event sequences."""
        runner = AgentRunner(GoalEchoModel(), registry, broadcaster)
        goals = [f"goal {i}" for i in range(5)]

        results = await runner.submit_many(goals)

        assert [r.answer for r in results] == goals
        assert len({r.execution_id for r in results}) == 5
        for result in results:
            assert result.steps[0].observation.content == f"echo: {result.answer}"
            events = [e for e in broadcaster.recent() if e.execution_id == result.execution_id]
            assert [e.sequence for e in events] == list(range(1, len(events) + 1))
            assert events[-1].is_terminal
            assert sum(1 for e in events if e.is_terminal) == 1

    @pytest.mark.asyncio
    async def test_tool_subset(self, scripted_model, registry):
        """Tools outside the selection are unknown to the run."""
        runner = AgentRunner(scripted_model(["Action: broken\nAction Input: x"]), registry)
        result = await runner.submit("?", tool_names=["echo"])
        assert result.reason == FailureReason.RESOLUTION_ERROR

    @pytest.mark.asyncio
    async def test_unknown_tool_name_rejected(self, scripted_model, registry):
        """Selecting an unregistered tool is a caller error."""
        runner = AgentRunner(scripted_model(["Final Answer: x"]), registry)
        with pytest.raises(ValueError, match="Unknown tool"):
            await runner.submit("?", tool_names=["nope"])

    @pytest.mark.asyncio
    async def test_agent_defaults(self, scripted_model, registry):
        """An agent supplies tools, budgets and instructions."""
        agent = AgentDefinition(
            name="brief",
            tools=["echo"],
            instructions="Be brief.",
            max_iterations=1,
        )
        model = scripted_model(["Action: echo\nAction Input: x"])
        runner = AgentRunner(model, registry)
        result = await runner.submit("?", agent=agent)

        system = model.calls[0][0][0]["content"]
        assert system.startswith("Be brief.")
        assert "broken" not in system
        assert result.reason == FailureReason.MAX_ITERATIONS

    @pytest.mark.asyncio
    async def test_agent_self_evaluation(self, scripted_model, registry):
        """self_evaluate agents grade answers with the same model."""
        agent = AgentDefinition(name="careful", self_evaluate=True)
        model = scripted_model(["Final Answer: 4", "true"])
        runner = AgentRunner(model, registry)
        result = await runner.submit("2+2?", agent=agent)

        assert result.answer == "4"
        assert model.call_count == 2
        assert "Proposed answer: 4" in model.calls[1][0][0]["content"]

    @pytest.mark.asyncio
    async def test_explicit_budget_overrides_agent(self, scripted_model, registry):
        """Explicit budgets win over the agent's."""
        agent = AgentDefinition(name="a", max_retries=5)
        model = scripted_model(["nonsense"])
        result = await AgentRunner(model, registry).submit("?", agent=agent, max_retries=1)
        assert result.reason == FailureReason.MAX_RETRIES
        assert model.call_count == 1

    @pytest.mark.asyncio
    async def test_cancel_running(self, scripted_model, registry):
        """cancel() stops an active run."""
        runner = AgentRunner(scripted_model(["Final Answer: x"], delay=5), registry)
        task = asyncio.create_task(runner.submit("?", execution_id="exec-cancel"))
        await asyncio.sleep(0.05)

        assert runner.active_runs() == ["exec-cancel"]
        assert runner.cancel("exec-cancel") is True

        result = await asyncio.wait_for(task, timeout=1)
        assert result.status == ExecutionStatus.FAILED
        assert result.reason == FailureReason.CANCELLED
        assert runner.cancel("exec-cancel") is False

    @pytest.mark.asyncio
    async def test_duplicate_execution_id(self, scripted_model, registry):
        """An id cannot be reused while its run is active."""
        runner = AgentRunner(scripted_model(["Final Answer: x"], delay=5), registry)
        task = asyncio.create_task(runner.submit("?", execution_id="exec-dup"))
        await asyncio.sleep(0.05)
        try:
            with pytest.raises(ValueError, match="already in progress"):
                await runner.submit("?", execution_id="exec-dup")
        finally:
            runner.cancel("exec-dup")
            await task

    def test_cancel_unknown(self, scripted_model, registry):
        """Cancelling an unknown run reports False."""
        runner = AgentRunner(scripted_model([]), registry)
        assert runner.cancel("exec-none") is False

    @pytest.mark.asyncio
    async def test_session_id_reaches_tracing(self, scripted_model, registry):
        """A session id is attached to the run's tracing context."""
        runner = AgentRunner(scripted_model(["Final Answer: x"]), registry)
        with patch("reasonloop.orchestration.runner.TracingContext", wraps=TracingContext) as ctx:
            result = await runner.submit("?", execution_id="exec-s", session_id="sess-1")

        assert result.succeeded
        ctx.assert_called_once_with(execution_id="exec-s", session_id="sess-1")
