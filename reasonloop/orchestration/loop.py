"""
Reasoning loop: the Thought / Action / Observation state machine.

One ``ReasoningLoop`` drives one run::

    THINKING  -> ACTING | FINISHED | FAILED
    ACTING    -> OBSERVING
    OBSERVING -> THINKING

Per THINKING pass the loop rebuilds the transcript, calls the model, and
parses the output with the action parser:

- Final answer: optionally self-evaluated, then FINISHED.
- Action: resolved against the run's tools, dispatched, and its result
  folded back as an Observation.
- Anything the model can fix (malformed output, bad tool input, a
  transient provider error, a rejected answer): a synthetic Observation
  explaining the problem, which consumes one retry.

Tool failures are observations, never run failures. A run fails only when
a budget runs out (iterations, consecutive retries, wall clock), on
cancellation, or on an error the model cannot fix (fatal provider error,
unknown tool, fatal parse failure).
"""

import asyncio
import inspect
import json
import logging
import time
import uuid
from typing import Any, Awaitable, Optional

from ..config import config
from ..errors import (
    BudgetExceeded,
    ProviderError,
    ReasonLoopError,
    ResolutionError,
    RunCancelled,
)
from ..events import EventBroadcaster, EventEmitter, EventKind
from ..llm_call import ModelProvider
from ..parsers import Action, ActionParser, Final, OutputParser, ParseFailure, extract_thought
from ..tools import ActionRequest, ActionResolver, ToolRegistry
from ..tracing import TracingContext
from .evaluator import AnswerEvaluator
from .prompt import STOP_SEQUENCES, build_messages
from .state import (
    ExecutionState,
    ExecutionStatus,
    FailureReason,
    Observation,
    RunResult,
    Step,
)

logger = logging.getLogger(__name__)

# Observations longer than this are cut before they reach the transcript
MAX_OBSERVATION_CHARS = 4000


class _FatalRunError(ReasonLoopError):
    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


def new_execution_id() -> str:
    return f"exec-{uuid.uuid4().hex[:8]}"


def _stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, default=str)
    except (TypeError, ValueError):
        return str(result)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


async def bounded_call(awaitable: Awaitable[Any], timeout: float, cancel_event: asyncio.Event) -> Any:
    """
    Await ``awaitable`` for at most ``timeout`` seconds.

    Raises:
        RunCancelled: If ``cancel_event`` is set first; the call is abandoned.
        asyncio.TimeoutError: If the timeout expires first.
    """
    task = asyncio.ensure_future(awaitable)
    cancel_waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {task, cancel_waiter},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        cancel_waiter.cancel()
        if not task.done():
            task.cancel()

    if task in done:
        return task.result()
    if cancel_waiter in done:
        raise RunCancelled()
    raise asyncio.TimeoutError()


class ReasoningLoop:
    """
    Drives a single run from goal to final answer or failure.

    The registry and broadcaster may be shared between concurrent runs;
    everything else on this object belongs to one run.
    """

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
        model_params: Optional[dict] = None,
        instructions: Optional[str] = None,
        evaluator: Optional[AnswerEvaluator] = None,
        parser: Optional[OutputParser] = None,
        cancel_event: Optional[asyncio.Event] = None,
        tracing_context: Optional[TracingContext] = None,
    ):
        self.model = model
        self.registry = registry
        self.resolver = ActionResolver(registry)
        self.parser = parser or ActionParser()
        self.evaluator = evaluator
        self.instructions = instructions
        self.execution_id = execution_id or new_execution_id()
        self.max_iterations = max_iterations if max_iterations is not None else config.loop.max_iterations
        self.max_retries = max_retries if max_retries is not None else config.loop.max_retries
        self.model_timeout = model_timeout if model_timeout is not None else config.loop.model_timeout
        self.tool_timeout = tool_timeout if tool_timeout is not None else config.loop.tool_timeout
        self.run_timeout = run_timeout if run_timeout is not None else config.loop.run_timeout
        self.model_params = dict(model_params or {})
        self.cancel_event = cancel_event or asyncio.Event()
        self.tracing_context = tracing_context or TracingContext(execution_id=self.execution_id)
        self.emitter = EventEmitter(broadcaster, self.execution_id)
        self.state: Optional[ExecutionState] = None
        self._deadline = 0.0

        if self.max_iterations < 1 or self.max_retries < 1:
            raise ValueError("max_iterations and max_retries must be at least 1")

    @property
    def _id_prefix(self) -> str:
        return f"[{self.execution_id}] "

    def cancel(self) -> None:
        """Signal the run to stop at its next check."""
        self.cancel_event.set()

    async def run(self, goal: str) -> RunResult:
        """
        Run the loop for a goal.

        Never raises for run-level failures: budget exhaustion, fatal
        errors and cancellation all come back as a FAILED ``RunResult``.
        """
        self.state = ExecutionState(
            execution_id=self.execution_id,
            goal=goal,
            tool_names=[d.name for d in self.registry.list()],
            max_iterations=self.max_iterations,
            max_retries=self.max_retries,
        )
        self._deadline = asyncio.get_running_loop().time() + self.run_timeout

        logger.info("%sStarting run: %s", self._id_prefix, goal[:100])
        logger.debug("%sTools: %s", self._id_prefix, self.state.tool_names)

        self.tracing_context.start_trace(
            name="agent_run",
            goal=goal,
            metadata={
                "max_iterations": self.max_iterations,
                "max_retries": self.max_retries,
                "tools": self.state.tool_names,
            },
        )
        try:
            await self._run_loop()
        except BudgetExceeded as e:
            self._fail(e.reason, e.message)
        except RunCancelled:
            self._fail(FailureReason.CANCELLED, "Run was cancelled")
        except _FatalRunError as e:
            self._fail(e.reason, e.message)
        except asyncio.CancelledError:
            self._fail(FailureReason.CANCELLED, "Run task was cancelled")
            raise
        finally:
            self.tracing_context.end_trace(
                output=self.state.answer,
                status="success" if self.state.status == ExecutionStatus.FINISHED else "error",
                metadata={
                    "steps": len(self.state.steps),
                    "reason": self.state.failure_reason,
                },
            )
            self._log_trace_summary()

        return RunResult.from_state(self.state)

    async def _run_loop(self) -> None:
        state = self.state
        while True:
            # THINKING
            self._check_cancelled()
            messages = build_messages(state.goal, state.steps, self.registry, self.instructions)
            step = state.new_step(messages)

            try:
                raw_output = await self._call_model(messages, step)
            except ProviderError as e:
                if not e.retriable:
                    raise _FatalRunError(FailureReason.PROVIDER_ERROR, e.message) from e
                self._retry(step, f"Model call failed: {e.message}")
                continue

            step.raw_output = raw_output
            step.thought = extract_thought(raw_output)
            if step.thought:
                logger.debug("%sStep %d thought: %s", self._id_prefix, step.index, step.thought[:200])
                self.emitter.emit(EventKind.THOUGHT, step=step.index, thought=step.thought)

            result = self.parser.parse(raw_output)
            step.parse_result = result

            if isinstance(result, Final):
                try:
                    critique = await self._evaluate(result.content)
                except ProviderError as e:
                    if not e.retriable:
                        raise _FatalRunError(FailureReason.PROVIDER_ERROR, e.message) from e
                    self._retry(step, f"Answer evaluation failed: {e.message}")
                    continue
                if critique is not None:
                    self._retry(step, f"Your final answer was rejected: {critique}")
                    continue
                self._finish(step, result.content)
                return

            if isinstance(result, ParseFailure):
                if not result.retriable:
                    raise _FatalRunError(FailureReason.PARSE_ERROR, result.reason)
                self._retry(step, result.reason)
                continue

            if not isinstance(result, Action):
                self._retry(step, f"Unexpected output; expected an Action or a Final Answer, got {type(result).__name__}")
                continue

            try:
                request = self.resolver.resolve(result.name, result.raw_input)
            except ResolutionError as e:
                if not e.retriable:
                    raise _FatalRunError(FailureReason.RESOLUTION_ERROR, e.message) from e
                self._retry(step, e.message)
                continue

            if state.iterations >= self.max_iterations:
                raise BudgetExceeded(
                    FailureReason.MAX_ITERATIONS,
                    f"Reached the limit of {self.max_iterations} tool calls without a final answer",
                )

            # ACTING
            step.action_request = request
            state.transition(ExecutionStatus.ACTING)
            state.iterations += 1
            self.emitter.emit(EventKind.ACTION, step=step.index, tool=request.tool_name, args=request.args)
            logger.info("%sStep %d: calling '%s'", self._id_prefix, step.index, request.tool_name)

            observation = await self._dispatch(request)
            state.consecutive_retries = 0

            # OBSERVING
            state.transition(ExecutionStatus.OBSERVING)
            self._observe(step, observation)
            state.transition(ExecutionStatus.THINKING)

    def _observe(self, step: Step, observation: Observation) -> None:
        step.observation = observation
        step.finished_at = time.time()
        self.emitter.emit(
            EventKind.OBSERVATION,
            step=step.index,
            content=observation.content,
            is_error=observation.is_error,
        )

    def _retry(self, step: Step, message: str) -> None:
        """Feed a recoverable problem back to the model as an observation."""
        state = self.state
        state.consecutive_retries += 1
        state.total_retries += 1
        logger.warning(
            "%sStep %d: retriable failure (%d/%d): %s",
            self._id_prefix,
            step.index,
            state.consecutive_retries,
            self.max_retries,
            message,
        )
        self._observe(step, Observation(content=message, is_error=True))
        if state.consecutive_retries >= self.max_retries:
            raise BudgetExceeded(
                FailureReason.MAX_RETRIES,
                f"Gave up after {self.max_retries} consecutive retriable failures; last: {message}",
            )

    def _finish(self, step: Step, answer: str) -> None:
        state = self.state
        state.answer = answer
        step.finished_at = time.time()
        state.transition(ExecutionStatus.FINISHED)
        self.emitter.emit(EventKind.FINISH, reason="final_answer", answer=answer, steps=len(state.steps))
        logger.info("%sFinished after %d step(s)", self._id_prefix, len(state.steps))

    def _fail(self, reason: str, message: str) -> None:
        state = self.state
        if state.status.is_terminal:
            return
        state.failure_reason = reason
        state.error_message = message
        state.transition(ExecutionStatus.FAILED)
        self.emitter.emit(EventKind.ERROR, reason=reason, message=message, steps=len(state.steps))
        logger.warning("%sRun failed (%s): %s", self._id_prefix, reason, message)

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise RunCancelled()

    def _timeout_for(self, limit: float) -> tuple[float, bool]:
        """Per-call timeout capped by the run's remaining budget.

        Returns the timeout and whether the run budget is the binding one.

        Raises:
            BudgetExceeded: If the run budget is already spent.
        """
        remaining = self._deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise BudgetExceeded(
                FailureReason.RUN_TIMEOUT,
                f"Run exceeded its {self.run_timeout:g}s time budget",
            )
        if limit and limit > 0 and limit < remaining:
            return limit, False
        return remaining, True

    async def _bounded(self, awaitable: Awaitable[Any], timeout: float, run_bound: bool) -> Any:
        """Await with a timeout, returning early if the run is cancelled."""
        try:
            return await bounded_call(awaitable, timeout, self.cancel_event)
        except asyncio.TimeoutError:
            if run_bound:
                raise BudgetExceeded(
                    FailureReason.RUN_TIMEOUT,
                    f"Run exceeded its {self.run_timeout:g}s time budget",
                ) from None
            raise

    async def _call_model(self, messages: list[dict], step: Step) -> str:
        timeout, run_bound = self._timeout_for(self.model_timeout)
        params = {**self.model_params, "stop": STOP_SEQUENCES}
        model_name = getattr(self.model, "model", type(self.model).__name__)

        with self.tracing_context.generation(
            name=f"reasoning_step_{step.index}",
            model=str(model_name),
            input=messages,
            model_parameters={k: v for k, v in params.items() if k != "stop"},
        ) as gen:
            logger.debug("%sStep %d: calling model", self._id_prefix, step.index)
            try:
                output = await self._bounded(self.model.generate(messages, params), timeout, run_bound)
            except asyncio.TimeoutError as e:
                gen.set_status("error")
                raise ProviderError(f"Model call timed out after {timeout:g}s", retriable=True) from e
            except (ProviderError, BudgetExceeded, RunCancelled):
                gen.set_status("error")
                raise
            except Exception as e:
                gen.set_status("error")
                logger.exception("%sStep %d: model raised unexpectedly", self._id_prefix, step.index)
                raise ProviderError(f"Model call failed: {type(e).__name__}: {e}", retriable=False) from e

            if not isinstance(output, str):
                gen.set_status("error")
                raise ProviderError(
                    f"Model returned {type(output).__name__} instead of text", retriable=False
                )
            usage = getattr(output, "usage", None)
            if usage:
                gen.set_usage(**usage)
            gen.set_output(output[:2000])
            return output

    async def _evaluate(self, answer: str) -> Optional[str]:
        if self.evaluator is None:
            return None
        self._check_cancelled()
        timeout, run_bound = self._timeout_for(self.model_timeout)
        with self.tracing_context.span(name="self_evaluation", input={"answer": answer[:500]}) as span:
            try:
                critique = await self._bounded(
                    self.evaluator.evaluate(self.state.goal, answer), timeout, run_bound
                )
            except asyncio.TimeoutError as e:
                span.set_status("error")
                raise ProviderError(f"Answer evaluation timed out after {timeout:g}s", retriable=True) from e
            except (ProviderError, BudgetExceeded, RunCancelled):
                span.set_status("error")
                raise
            except Exception as e:
                span.set_status("error")
                logger.exception("%sAnswer evaluation raised unexpectedly", self._id_prefix)
                raise ProviderError(
                    f"Answer evaluation failed: {type(e).__name__}: {e}", retriable=False
                ) from e
            span.set_output({"accepted": critique is None, "critique": critique})
            return critique

    async def _invoke(self, request: ActionRequest) -> Any:
        invoke = request.descriptor.invoke
        if inspect.iscoroutinefunction(invoke):
            return await invoke(request.args)
        return await asyncio.to_thread(invoke, request.args)

    async def _dispatch(self, request: ActionRequest) -> Observation:
        """Invoke a tool; every tool-level failure becomes an error observation."""
        self._check_cancelled()
        timeout, run_bound = self._timeout_for(self.tool_timeout)
        name = request.tool_name

        with self.tracing_context.span(name=f"tool:{name}", input=request.args) as span:
            try:
                raw_result = await self._bounded(self._invoke(request), timeout, run_bound)
                formatter = request.descriptor.formatter
                content = formatter(raw_result) if formatter else _stringify(raw_result)
            except (BudgetExceeded, RunCancelled):
                span.set_status("error")
                raise
            except asyncio.TimeoutError:
                span.set_status("error")
                logger.error("%sTool '%s' timed out after %gs", self._id_prefix, name, timeout)
                return Observation(content=f"Tool '{name}' timed out after {timeout:g}s", is_error=True)
            except Exception as e:
                span.set_status("error")
                logger.error("%sTool '%s' execution failed: %s", self._id_prefix, name, e)
                error_msg = _truncate(str(e) or type(e).__name__, 500)
                return Observation(content=f"Tool '{name}' execution error: {error_msg}", is_error=True)

            span.set_output({"result": _truncate(content, 500)})
            return Observation(content=_truncate(content, MAX_OBSERVATION_CHARS))

    def _log_trace_summary(self) -> None:
        """Log a compact trace summary."""
        state = self.state
        prefix = self._id_prefix
        logger.info("%s%s", prefix, "─" * 50)
        logger.info("%sTRACE SUMMARY (%s)", prefix, state.status.value)
        logger.info("%s%s", prefix, "─" * 50)
        for step in state.steps:
            if step.is_final:
                logger.info("%sStep %d [FINAL]", prefix, step.index)
                continue
            obs = step.observation.content if step.observation else None
            obs_preview = (obs[:80] + "...") if obs and len(obs) > 80 else obs
            logger.info("%sStep %d: %s -> %s", prefix, step.index, step.action_name or "(no action)", obs_preview)
        if state.failure_reason:
            logger.info("%sFailed: %s", prefix, state.failure_reason)
