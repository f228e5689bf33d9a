"""
Plan-and-execute strategy.

The model first writes a numbered plan for the goal. Each plan step then
runs as its own ``ReasoningLoop`` (sub-run ``<execution_id>.<n>``), seeing
the overall goal and the results of the steps before it. The answer of
the last step is the answer of the run.

Iteration and retry budgets apply to each step's loop; the wall-clock
budget and cancellation cover the whole run. A step that fails fails the
run with the step's reason.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from ..config import config
from ..errors import BudgetExceeded, ProviderError, ReasonLoopError, RunCancelled
from ..events import EventBroadcaster, EventEmitter, EventKind
from ..llm_call import ModelProvider
from ..parsers import NumberedListParser, OutputParser, ParseFailure, Value
from ..tools import ToolRegistry
from ..tracing import TracingContext
from .evaluator import AnswerEvaluator
from .loop import ReasoningLoop, bounded_call, new_execution_id
from .state import ExecutionState, ExecutionStatus, FailureReason, Observation, RunResult, Step

logger = logging.getLogger(__name__)

PLAN_PROMPT = """Let's first understand the problem and devise a plan to solve it.
The steps will be carried out one at a time by an assistant with access to these tools:

{tools}

Write the plan as a numbered list with one short step per line.
Use as few steps as possible. The result of the final step must answer the question.
After the last step write <END_OF_PLAN>."""

PLAN_STOP_SEQUENCES = ["<END_OF_PLAN>"]


class _PlanFailed(ReasonLoopError):
    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


def build_plan_messages(
    goal: str,
    attempts: list[Step],
    registry: ToolRegistry,
    instructions: Optional[str] = None,
) -> list[dict]:
    """Planning transcript: the request, then every rejected attempt with its feedback."""
    system = PLAN_PROMPT.format(tools=registry.get_tools_summary() or "(no tools available)")
    if instructions:
        system = f"{instructions.strip()}\n\n{system}"
    messages = [
        {"role": "system", "content": system},
        {"role": "user", "content": f"Question: {goal}"},
    ]
    for attempt in attempts:
        if attempt.raw_output is None or attempt.observation is None:
            continue
        messages.append({"role": "assistant", "content": attempt.raw_output})
        messages.append(
            {"role": "user", "content": f"{attempt.observation.content}\nWrite the plan again as a numbered list."}
        )
    return messages


def build_step_goal(goal: str, completed: list[tuple[str, str]], objective: str) -> str:
    """Goal text for one plan step."""
    parts = [f"Overall goal: {goal}"]
    if completed:
        lines = "\n".join(
            f"{i}. {step} -> {answer}" for i, (step, answer) in enumerate(completed, 1)
        )
        parts.append(f"Previous steps:\n{lines}")
    parts.append(f"Current objective: {objective}")
    return "\n\n".join(parts)


@dataclass
class PlanRunResult(RunResult):
    """A plan-and-execute run: the plan plus the result of every step run."""

    plan: list[str] = field(default_factory=list)
    step_results: list[RunResult] = field(default_factory=list)


class PlanAndExecute:
    """Plans a goal into steps, then drives one reasoning loop per step."""

    def __init__(
        self,
        model: ModelProvider,
        registry: ToolRegistry,
        broadcaster: Optional[EventBroadcaster] = None,
        execution_id: Optional[str] = None,
        max_iterations: Optional[int] = None,
        max_retries: Optional[int] = None,
        model_timeout: Optional[float] = None,
        tool_timeout: Optional[float] = None,
        run_timeout: Optional[float] = None,
        max_plan_steps: Optional[int] = None,
        model_params: Optional[dict] = None,
        instructions: Optional[str] = None,
        evaluator: Optional[AnswerEvaluator] = None,
        parser: Optional[OutputParser] = None,
        plan_parser: Optional[OutputParser] = None,
        cancel_event: Optional[asyncio.Event] = None,
        tracing_context: Optional[TracingContext] = None,
    ):
        self.model = model
        self.registry = registry
        self.broadcaster = broadcaster
        self.execution_id = execution_id or new_execution_id()
        self.max_iterations = max_iterations if max_iterations is not None else config.loop.max_iterations
        self.max_retries = max_retries if max_retries is not None else config.loop.max_retries
        self.model_timeout = model_timeout if model_timeout is not None else config.loop.model_timeout
        self.tool_timeout = tool_timeout if tool_timeout is not None else config.loop.tool_timeout
        self.run_timeout = run_timeout if run_timeout is not None else config.loop.run_timeout
        self.max_plan_steps = max_plan_steps if max_plan_steps is not None else config.loop.max_plan_steps
        self.model_params = dict(model_params or {})
        self.instructions = instructions
        self.evaluator = evaluator
        self.parser = parser
        self.plan_parser = plan_parser or NumberedListParser()
        self.cancel_event = cancel_event or asyncio.Event()
        self.tracing_context = tracing_context or TracingContext(execution_id=self.execution_id)
        self.emitter = EventEmitter(broadcaster, self.execution_id)
        self.state: Optional[ExecutionState] = None
        self.plan: list[str] = []
        self.step_results: list[RunResult] = []
        self._deadline = 0.0

        if self.max_iterations < 1 or self.max_retries < 1 or self.max_plan_steps < 1:
            raise ValueError("max_iterations, max_retries and max_plan_steps must be at least 1")

    @property
    def _id_prefix(self) -> str:
        return f"[{self.execution_id}] "

    def cancel(self) -> None:
        """Signal the run, and whichever step is running, to stop."""
        self.cancel_event.set()

    async def run(self, goal: str) -> PlanRunResult:
        """
        Plan and execute a goal.

        Like ``ReasoningLoop.run``, failures come back in the result.
        """
        self.state = ExecutionState(
            execution_id=self.execution_id,
            goal=goal,
            tool_names=[d.name for d in self.registry.list()],
            max_iterations=self.max_iterations,
            max_retries=self.max_retries,
        )
        self._deadline = asyncio.get_running_loop().time() + self.run_timeout
        logger.info("%sStarting plan-and-execute run: %s", self._id_prefix, goal[:100])

        self.tracing_context.start_trace(
            name="plan_and_execute",
            goal=goal,
            metadata={
                "max_iterations": self.max_iterations,
                "max_retries": self.max_retries,
                "tools": self.state.tool_names,
            },
        )
        try:
            self.plan = await self._make_plan()
            self.emitter.emit(EventKind.PLAN, steps=list(self.plan))
            await self._execute()
        except BudgetExceeded as e:
            self._fail(e.reason, e.message)
        except RunCancelled:
            self._fail(FailureReason.CANCELLED, "Run was cancelled")
        except _PlanFailed as e:
            self._fail(e.reason, e.message)
        except asyncio.CancelledError:
            self._fail(FailureReason.CANCELLED, "Run task was cancelled")
            raise
        finally:
            self.tracing_context.end_trace(
                output=self.state.answer,
                status="success" if self.state.status == ExecutionStatus.FINISHED else "error",
                metadata={
                    "plan": self.plan,
                    "steps_run": len(self.step_results),
                    "reason": self.state.failure_reason,
                },
            )

        return self._result()

    async def _make_plan(self) -> list[str]:
        state = self.state
        while True:
            self._check_cancelled()
            messages = build_plan_messages(state.goal, state.steps, self.registry, self.instructions)
            attempt = state.new_step(messages)

            try:
                output = await self._call_model(messages, attempt)
            except ProviderError as e:
                if not e.retriable:
                    raise _PlanFailed(FailureReason.PROVIDER_ERROR, e.message) from e
                self._retry(attempt, f"Model call failed: {e.message}")
                continue

            attempt.raw_output = output
            result = self.plan_parser.parse(output)
            attempt.parse_result = result
            if isinstance(result, Value) and result.value:
                attempt.finished_at = time.time()
                plan = [str(item) for item in result.value]
                if len(plan) > self.max_plan_steps:
                    logger.warning(
                        "%sPlan has %d steps, keeping the first %d",
                        self._id_prefix,
                        len(plan),
                        self.max_plan_steps,
                    )
                    plan = plan[: self.max_plan_steps]
                logger.info("%sPlan: %s", self._id_prefix, plan)
                return plan

            if isinstance(result, ParseFailure):
                if not result.retriable:
                    raise _PlanFailed(FailureReason.PARSE_ERROR, result.reason)
                self._retry(attempt, f"Could not read the plan: {result.reason}")
            else:
                self._retry(attempt, "Could not read the plan: expected a numbered list")

    async def _execute(self) -> None:
        completed: list[tuple[str, str]] = []
        loop_time = asyncio.get_running_loop().time
        for number, objective in enumerate(self.plan, 1):
            self._check_cancelled()
            remaining = self._deadline - loop_time()
            if remaining <= 0:
                raise BudgetExceeded(
                    FailureReason.RUN_TIMEOUT,
                    f"Run exceeded its {self.run_timeout:g}s time budget",
                )

            step_id = f"{self.execution_id}.{number}"
            self.emitter.emit(EventKind.PLAN_STEP, step=number, objective=objective, step_execution_id=step_id)
            logger.info("%sPlan step %d/%d: %s", self._id_prefix, number, len(self.plan), objective)

            step_loop = ReasoningLoop(
                model=self.model,
                registry=self.registry,
                broadcaster=self.broadcaster,
                execution_id=step_id,
                max_iterations=self.max_iterations,
                max_retries=self.max_retries,
                model_timeout=self.model_timeout,
                tool_timeout=self.tool_timeout,
                run_timeout=remaining,
                model_params=self.model_params,
                instructions=self.instructions,
                evaluator=self.evaluator,
                parser=self.parser,
                cancel_event=self.cancel_event,
                tracing_context=TracingContext(
                    execution_id=step_id, session_id=self.tracing_context.session_id
                ),
            )
            result = await step_loop.run(build_step_goal(self.state.goal, completed, objective))
            self.step_results.append(result)

            if not result.succeeded:
                if result.reason == FailureReason.CANCELLED:
                    raise RunCancelled()
                self._fail(result.reason, f"Step {number} ({objective}) failed: {result.error}")
                return
            completed.append((objective, result.answer or ""))

        self._finish(completed[-1][1])

    async def _call_model(self, messages: list[dict], attempt: Step) -> str:
        remaining = self._deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise BudgetExceeded(
                FailureReason.RUN_TIMEOUT, f"Run exceeded its {self.run_timeout:g}s time budget"
            )
        timeout = min(self.model_timeout, remaining) if self.model_timeout > 0 else remaining
        params = {**self.model_params, "stop": PLAN_STOP_SEQUENCES}
        model_name = getattr(self.model, "model", type(self.model).__name__)

        with self.tracing_context.generation(
            name=f"planning_{attempt.index}",
            model=str(model_name),
            input=messages,
            model_parameters={k: v for k, v in params.items() if k != "stop"},
        ) as gen:
            try:
                output = await bounded_call(self.model.generate(messages, params), timeout, self.cancel_event)
            except asyncio.TimeoutError as e:
                gen.set_status("error")
                if timeout >= remaining:
                    raise BudgetExceeded(
                        FailureReason.RUN_TIMEOUT, f"Run exceeded its {self.run_timeout:g}s time budget"
                    ) from e
                raise ProviderError(f"Model call timed out after {timeout:g}s", retriable=True) from e
            except (ProviderError, RunCancelled):
                gen.set_status("error")
                raise
            except Exception as e:
                gen.set_status("error")
                logger.exception("%sPlanning model call raised unexpectedly", self._id_prefix)
                raise ProviderError(f"Model call failed: {type(e).__name__}: {e}", retriable=False) from e

            if not isinstance(output, str):
                gen.set_status("error")
                raise ProviderError(f"Model returned {type(output).__name__} instead of text", retriable=False)
            usage = getattr(output, "usage", None)
            if usage:
                gen.set_usage(**usage)
            gen.set_output(output[:2000])
            return output

    def _retry(self, attempt: Step, message: str) -> None:
        state = self.state
        state.consecutive_retries += 1
        state.total_retries += 1
        logger.warning(
            "%sPlanning attempt %d failed (%d/%d): %s",
            self._id_prefix,
            attempt.index,
            state.consecutive_retries,
            self.max_retries,
            message,
        )
        attempt.observation = Observation(content=message, is_error=True)
        attempt.finished_at = time.time()
        if state.consecutive_retries >= self.max_retries:
            raise BudgetExceeded(
                FailureReason.MAX_RETRIES,
                f"Gave up planning after {self.max_retries} attempts; last: {message}",
            )

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise RunCancelled()

    def _finish(self, answer: str) -> None:
        state = self.state
        state.answer = answer
        state.transition(ExecutionStatus.FINISHED)
        self.emitter.emit(
            EventKind.FINISH, reason="final_answer", answer=answer, steps=len(self.step_results)
        )
        logger.info("%sFinished all %d plan step(s)", self._id_prefix, len(self.plan))

    def _fail(self, reason: str, message: str) -> None:
        state = self.state
        if state.status.is_terminal:
            return
        state.failure_reason = reason
        state.error_message = message
        state.transition(ExecutionStatus.FAILED)
        self.emitter.emit(EventKind.ERROR, reason=reason, message=message, steps=len(self.step_results))
        logger.warning("%sRun failed (%s): %s", self._id_prefix, reason, message)

    def _result(self) -> PlanRunResult:
        base = RunResult.from_state(self.state)
        tools_used: list[str] = []
        steps = list(base.steps)
        for result in self.step_results:
            steps.extend(result.steps)
            tools_used.extend(t for t in result.tools_used if t not in tools_used)
        return PlanRunResult(
            execution_id=base.execution_id,
            status=base.status,
            answer=base.answer,
            reason=base.reason,
            error=base.error,
            steps=steps,
            tools_used=tools_used,
            duration_ms=base.duration_ms,
            plan=list(self.plan),
            step_results=list(self.step_results),
        )
