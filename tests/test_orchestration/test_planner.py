"""
Tests for the plan-and-execute strategy.
"""

import asyncio

import pytest

from reasonloop.errors import ProviderError
from reasonloop.events import EventKind
from reasonloop.models import AgentDefinition
from reasonloop.orchestration import (
    AgentRunner,
    ExecutionStatus,
    FailureReason,
    PlanAndExecute,
    PlanRunResult,
)
from reasonloop.orchestration.planner import PLAN_STOP_SEQUENCES, build_step_goal
from reasonloop.tools import ToolDescriptor, ToolRegistry

PLAN = "1. Echo hi\n2. Report the echo"
ECHO = "Thought: echo it\nAction: echo\nAction Input: hi"


def _make_planner(model, registry, broadcaster=None, **kwargs) -> PlanAndExecute:
    kwargs.setdefault("max_iterations", 5)
    kwargs.setdefault("max_retries", 3)
    return PlanAndExecute(
        model=model,
        registry=registry,
        broadcaster=broadcaster,
        execution_id="plan-test",
        **kwargs,
    )


class TestPlanning:
    """Tests for producing the plan."""

    @pytest.mark.asyncio
    async def test_plan_parsed_from_numbered_list(self, scripted_model, registry):
        """The plan is the numbered list the model writes."""
        model = scripted_model([PLAN, ECHO, "Final Answer: echo: hi", "Final Answer: done"])
        result = await _make_planner(model, registry).run("Echo hi and report")

        assert isinstance(result, PlanRunResult)
        assert result.plan == ["Echo hi", "Report the echo"]
        messages, params = model.calls[0]
        assert params["stop"] == PLAN_STOP_SEQUENCES
        assert messages[1]["content"] == "Question: Echo hi and report"
        assert "echo: Echo the input text back" in messages[0]["content"]

    @pytest.mark.asyncio
    async def test_unreadable_plan_is_retried(self, scripted_model, registry):
        """Output without a numbered list is fed back and the model tries again."""
        model = scripted_model(["I would just answer it", "1. Answer", "Final Answer: ok"])
        result = await _make_planner(model, registry).run("?")

        assert result.succeeded
        assert result.plan == ["Answer"]
        retry_messages = model.calls[1][0]
        assert retry_messages[2] == {"role": "assistant", "content": "I would just answer it"}
        assert "No numbered list items found" in retry_messages[3]["content"]

    @pytest.mark.asyncio
    async def test_planning_exhausts_retries(self, scripted_model, registry):
        """Planning gives up after max_retries unreadable plans."""
        model = scripted_model(["no plan"])
        result = await _make_planner(model, registry, max_retries=2).run("?")

        assert result.status == ExecutionStatus.FAILED
        assert result.reason == FailureReason.MAX_RETRIES
        assert result.plan == []
        assert model.call_count == 2

    @pytest.mark.asyncio
    async def test_long_plan_is_cut(self, scripted_model, registry):
        """Only the first max_plan_steps steps are executed."""
        model = scripted_model(["1. a\n2. b\n3. c", "Final Answer: x"])
        result = await _make_planner(model, registry, max_plan_steps=2).run("?")

        assert result.plan == ["a", "b"]
        assert len(result.step_results) == 2

    @pytest.mark.asyncio
    async def test_fatal_provider_error(self, scripted_model, registry):
        """A fatal provider error while planning fails the run."""
        model = scripted_model([ProviderError("bad key", retriable=False)])
        result = await _make_planner(model, registry).run("?")

        assert result.reason == FailureReason.PROVIDER_ERROR
        assert result.error == "bad key"

    @pytest.mark.asyncio
    async def test_unexpected_model_exception(self, scripted_model, registry, broadcaster):
        """Any model exception ends the run with an error event."""
        model = scripted_model([RuntimeError("boom")])
        result = await _make_planner(model, registry, broadcaster).run("?")

        assert result.reason == FailureReason.PROVIDER_ERROR
        assert [e.kind for e in broadcaster.recent()] == [EventKind.ERROR]


class TestExecution:
    """Tests for executing the plan step by step."""

    @pytest.mark.asyncio
    async def test_steps_run_in_order(self, scripted_model, registry):
        """Each step runs its own loop; the last step's answer is the answer."""
        model = scripted_model([PLAN, ECHO, "Final Answer: echo: hi", "Final Answer: done"])
        result = await _make_planner(model, registry).run("Echo hi and report")

        assert result.succeeded
        assert result.answer == "done"
        assert [r.execution_id for r in result.step_results] == ["plan-test.1", "plan-test.2"]
        assert [r.answer for r in result.step_results] == ["echo: hi", "done"]
        assert result.tools_used == ["echo"]

    @pytest.mark.asyncio
    async def test_later_steps_see_earlier_results(self, scripted_model, registry):
        """A step's goal lists the steps before it with their answers."""
        model = scripted_model([PLAN, ECHO, "Final Answer: echo: hi", "Final Answer: done"])
        await _make_planner(model, registry).run("Echo hi and report")

        second_step_question = model.calls[3][0][1]["content"]
        assert "Overall goal: Echo hi and report" in second_step_question
        assert "Previous steps:\n1. Echo hi -> echo: hi" in second_step_question
        assert "Current objective: Report the echo" in second_step_question

    @pytest.mark.asyncio
    async def test_failed_step_fails_run(self, scripted_model, registry, broadcaster):
        """A step that fails stops the plan with the step's reason."""
        model = scripted_model([PLAN, "gibberish"])
        result = await _make_planner(model, registry, broadcaster, max_retries=2).run("?")

        assert result.status == ExecutionStatus.FAILED
        assert result.reason == FailureReason.MAX_RETRIES
        assert result.error.startswith("Step 1 (Echo hi) failed")
        assert len(result.step_results) == 1
        parent_events = [e for e in broadcaster.recent() if e.execution_id == "plan-test"]
        assert parent_events[-1].kind == EventKind.ERROR

    @pytest.mark.asyncio
    async def test_events(self, scripted_model, registry, broadcaster):
        """The run announces its plan and each step; step runs publish under their own ids."""
        model = scripted_model([PLAN, ECHO, "Final Answer: echo: hi", "Final Answer: done"])
        await _make_planner(model, registry, broadcaster).run("?")

        events = broadcaster.recent()
        parent = [e for e in events if e.execution_id == "plan-test"]
        assert [e.kind for e in parent] == [
            EventKind.PLAN,
            EventKind.PLAN_STEP,
            EventKind.PLAN_STEP,
            EventKind.FINISH,
        ]
        assert parent[0].payload == {"steps": ["Echo hi", "Report the echo"]}
        assert parent[1].payload["step_execution_id"] == "plan-test.1"
        assert parent[-1].payload["answer"] == "done"
        step_one = [e.kind for e in events if e.execution_id == "plan-test.1"]
        assert step_one[-1] == EventKind.FINISH

    @pytest.mark.asyncio
    async def test_run_timeout(self, scripted_model, registry):
        """The wall-clock budget covers planning and every step."""
        model = scripted_model([PLAN], delay=1)
        result = await _make_planner(model, registry, run_timeout=0.1).run("?")

        assert result.reason == FailureReason.RUN_TIMEOUT

    @pytest.mark.asyncio
    async def test_cancel_during_step(self, scripted_model):
        """Cancelling stops the running step and the plan."""

        async def slow(args: dict) -> str:
            await asyncio.sleep(5)
            return "late"

        registry = ToolRegistry([ToolDescriptor(name="slow", description="Sleep", invoke=slow)])
        model = scripted_model(["1. Wait\n2. Answer", "Action: slow\nAction Input: x"])
        planner = _make_planner(model, registry)

        task = asyncio.create_task(planner.run("?"))
        await asyncio.sleep(0.1)
        planner.cancel()
        result = await asyncio.wait_for(task, timeout=2)

        assert result.reason == FailureReason.CANCELLED
        assert len(result.step_results) == 1


class TestStepGoal:
    """Tests for build_step_goal."""

    def test_first_step(self):
        """The first step has no previous steps."""
        text = build_step_goal("g", [], "do a")
        assert text == "Overall goal: g\n\nCurrent objective: do a"

    def test_previous_steps_numbered(self):
        """Completed steps are numbered with their answers."""
        text = build_step_goal("g", [("a", "1"), ("b", "2")], "c")
        assert "Previous steps:\n1. a -> 1\n2. b -> 2" in text


class TestRunnerStrategy:
    """Tests for choosing the strategy through AgentRunner."""

    @pytest.mark.asyncio
    async def test_agent_strategy(self, scripted_model, registry):
        """An agent with the plan_and_execute strategy plans first."""
        agent = AgentDefinition(name="planner", strategy="plan_and_execute")
        runner = AgentRunner(scripted_model(["1. Answer", "Final Answer: 4"]), registry)

        result = await runner.submit("2+2?", agent=agent)

        assert isinstance(result, PlanRunResult)
        assert result.plan == ["Answer"]
        assert result.answer == "4"

    @pytest.mark.asyncio
    async def test_explicit_strategy_overrides_agent(self, scripted_model, registry):
        """A strategy given at submission wins over the agent's."""
        agent = AgentDefinition(name="planner", strategy="plan_and_execute")
        runner = AgentRunner(scripted_model(["Final Answer: 4"]), registry)

        result = await runner.submit("2+2?", agent=agent, strategy="react")

        assert not isinstance(result, PlanRunResult)
        assert result.answer == "4"

    @pytest.mark.asyncio
    async def test_plan_options_ignored_by_react(self, scripted_model, registry):
        """Runner-wide plan options do not break react runs."""
        runner = AgentRunner(scripted_model(["Final Answer: 4"]), registry, max_plan_steps=2)
        result = await runner.submit("2+2?")
        assert result.succeeded

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, scripted_model, registry):
        """An unknown strategy is rejected before running."""
        runner = AgentRunner(scripted_model([]), registry)
        with pytest.raises(ValueError, match="Unknown strategy"):
            await runner.submit("?", strategy="tree_of_thought")
