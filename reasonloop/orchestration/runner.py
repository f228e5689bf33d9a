"""
Run submission.

``AgentRunner`` is the entry point callers use to start runs. It holds
what runs share (model, tool registry, event broadcaster) and builds a
fresh ``ReasoningLoop`` (or ``PlanAndExecute``) with its own state for
every submission.
"""

import asyncio
import logging
from typing import Iterable, Optional, Union

from ..events import EventBroadcaster
from ..llm_call import ModelProvider
from ..models import STRATEGIES, AgentDefinition
from ..tools import ToolRegistry
from ..tracing import TracingContext
from .evaluator import SelfEvaluator
from .loop import ReasoningLoop, new_execution_id
from .planner import PlanAndExecute
from .state import RunResult

logger = logging.getLogger(__name__)

# Options only the plan-and-execute strategy understands
_PLAN_OPTIONS = ("max_plan_steps", "plan_parser")


class AgentRunner:
    """Starts runs and tracks the ones in flight so they can be cancelled."""

    def __init__(
        self,
        model: ModelProvider,
        registry: ToolRegistry,
        broadcaster: Optional[EventBroadcaster] = None,
        **loop_options,
    ):
        self.model = model
        self.registry = registry
        self.broadcaster = broadcaster
        self.loop_options = loop_options
        self._active: dict[str, Union[ReasoningLoop, PlanAndExecute]] = {}

    async def submit(
        self,
        goal: str,
        tool_names: Optional[Iterable[str]] = None,
        max_iterations: Optional[int] = None,
        max_retries: Optional[int] = None,
        execution_id: Optional[str] = None,
        agent: Optional[AgentDefinition] = None,
        strategy: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> RunResult:
        """
        Run a goal to completion.

        Args:
            goal: The question or task
            tool_names: Tools the run may use (None: the agent's tools, or
                every registered tool)
            max_iterations: Override the tool-call budget
            max_retries: Override the consecutive-retry budget
            execution_id: Id to use for events and logs
            agent: Optional agent definition supplying defaults
            strategy: "react" or "plan_and_execute" (None: the agent's
                strategy, or "react")
            session_id: Optional tracing session grouping related runs

        Returns:
            RunResult (a PlanRunResult for plan-and-execute); failures are
            reported in it, not raised

        Raises:
            ValueError: If a tool name or strategy is unknown, or the id is
                already running
        """
        if tool_names is None and agent is not None and agent.tools:
            tool_names = agent.tools
        tools = self.registry.select(list(tool_names) if tool_names is not None else None)

        strategy = strategy or (agent.strategy if agent is not None else "react")
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy: {strategy} (expected one of: {', '.join(STRATEGIES)})")

        if agent is not None:
            max_iterations = max_iterations if max_iterations is not None else agent.max_iterations
            max_retries = max_retries if max_retries is not None else agent.max_retries

        execution_id = execution_id or new_execution_id()
        if execution_id in self._active:
            raise ValueError(f"Run '{execution_id}' is already in progress")

        options = dict(self.loop_options)
        if agent is not None:
            options.setdefault("instructions", agent.instructions or None)
            if agent.self_evaluate:
                options.setdefault("evaluator", SelfEvaluator(self.model))
        if session_id:
            options["tracing_context"] = TracingContext(execution_id=execution_id, session_id=session_id)

        if strategy == "plan_and_execute":
            run_cls = PlanAndExecute
        else:
            run_cls = ReasoningLoop
            for key in _PLAN_OPTIONS:
                options.pop(key, None)

        run = run_cls(
            model=self.model,
            registry=tools,
            broadcaster=self.broadcaster,
            execution_id=execution_id,
            max_iterations=max_iterations,
            max_retries=max_retries,
            **options,
        )

        self._active[execution_id] = run
        try:
            return await run.run(goal)
        finally:
            self._active.pop(execution_id, None)

    def cancel(self, execution_id: str) -> bool:
        """
        Signal a running run to stop. Returns False if it is not running.

        Must be called on the event loop the run is executing on; from
        another thread use ``loop.call_soon_threadsafe``.
        """
        run = self._active.get(execution_id)
        if run is None:
            return False
        logger.info("[%s] Cancellation requested", execution_id)
        run.cancel()
        return True

    def active_runs(self) -> list[str]:
        return list(self._active)

    async def submit_many(self, goals: Iterable[str], **kwargs) -> list[RunResult]:
        """Run several goals concurrently with the same options."""
        return list(await asyncio.gather(*(self.submit(goal, **kwargs) for goal in goals)))
