"""
Run state for the reasoning loop.

An ``ExecutionState`` belongs to exactly one run and is only mutated by
the loop driving it. Steps and observations are append-only.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..parsers import Action, Final, ParseFailure, ParseResult
from ..tools import ActionRequest


class ExecutionStatus(str, Enum):
    """States of the reasoning loop."""

    THINKING = "thinking"
    ACTING = "acting"
    OBSERVING = "observing"
    FINISHED = "finished"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.FINISHED, ExecutionStatus.FAILED)


# Allowed transitions; anything else is a bug in the loop
TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.THINKING: frozenset(
        {ExecutionStatus.ACTING, ExecutionStatus.FINISHED, ExecutionStatus.FAILED}
    ),
    ExecutionStatus.ACTING: frozenset({ExecutionStatus.OBSERVING, ExecutionStatus.FAILED}),
    ExecutionStatus.OBSERVING: frozenset({ExecutionStatus.THINKING, ExecutionStatus.FAILED}),
    ExecutionStatus.FINISHED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
}


class FailureReason:
    """Reason strings carried by FAILED runs."""

    MAX_ITERATIONS = "max_iterations_exceeded"
    MAX_RETRIES = "max_retries_exceeded"
    RUN_TIMEOUT = "run_timeout_exceeded"
    CANCELLED = "cancelled"
    PARSE_ERROR = "parse_error"
    RESOLUTION_ERROR = "resolution_error"
    PROVIDER_ERROR = "provider_error"


@dataclass(frozen=True)
class Observation:
    """Result of a tool call, or corrective feedback for the model."""

    content: str
    is_error: bool = False


@dataclass
class Step:
    """One THINKING pass and whatever followed from it."""

    index: int
    prompt: list[dict]
    raw_output: Optional[str] = None
    parse_result: Optional[ParseResult] = None
    thought: Optional[str] = None
    action_request: Optional[ActionRequest] = None
    observation: Optional[Observation] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def action_name(self) -> Optional[str]:
        if self.action_request is not None:
            return self.action_request.tool_name
        if isinstance(self.parse_result, Action):
            return self.parse_result.name
        return None

    @property
    def is_final(self) -> bool:
        return isinstance(self.parse_result, Final) and self.observation is None

    def to_dict(self) -> dict:
        result = self.parse_result
        return {
            "index": self.index,
            "thought": self.thought,
            "raw_output": self.raw_output,
            "action": self.action_name,
            "action_input": self.action_request.args if self.action_request else None,
            "parse_error": result.reason if isinstance(result, ParseFailure) else None,
            "observation": self.observation.content if self.observation else None,
            "observation_is_error": self.observation.is_error if self.observation else None,
            "final_answer": result.content if self.is_final else None,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


@dataclass
class ExecutionState:
    """Mutable state of a single run."""

    execution_id: str
    goal: str
    tool_names: list[str]
    max_iterations: int
    max_retries: int
    status: ExecutionStatus = ExecutionStatus.THINKING
    steps: list[Step] = field(default_factory=list)
    iterations: int = 0
    consecutive_retries: int = 0
    total_retries: int = 0
    answer: Optional[str] = None
    failure_reason: Optional[str] = None
    error_message: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    def transition(self, status: ExecutionStatus) -> None:
        if status not in TRANSITIONS[self.status]:
            raise RuntimeError(f"Illegal transition {self.status.value} -> {status.value}")
        self.status = status
        if status.is_terminal:
            self.finished_at = time.time()

    def new_step(self, prompt: list[dict]) -> Step:
        step = Step(index=len(self.steps) + 1, prompt=prompt)
        self.steps.append(step)
        return step

    def tools_used(self) -> list[str]:
        """Unique dispatched tools, in first-use order."""
        seen: list[str] = []
        for step in self.steps:
            if step.action_request and step.action_request.tool_name not in seen:
                seen.append(step.action_request.tool_name)
        return seen


@dataclass
class RunResult:
    """What a caller gets back from a run; failures included."""

    execution_id: str
    status: ExecutionStatus
    answer: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    steps: list[Step] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.FINISHED

    @classmethod
    def from_state(cls, state: ExecutionState) -> "RunResult":
        finished = state.finished_at or time.time()
        return cls(
            execution_id=state.execution_id,
            status=state.status,
            answer=state.answer,
            reason=state.failure_reason,
            error=state.error_message,
            steps=list(state.steps),
            tools_used=state.tools_used(),
            duration_ms=round((finished - state.started_at) * 1000, 2),
        )

    def get_trace(self) -> list[dict]:
        return [step.to_dict() for step in self.steps]
