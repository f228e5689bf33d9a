"""
Orchestration package - the reasoning loop, plan-and-execute and run submission.
"""

from .evaluator import AnswerEvaluator, SelfEvaluator
from .loop import ReasoningLoop, new_execution_id
from .planner import PlanAndExecute, PlanRunResult
from .runner import AgentRunner
from .state import (
    ExecutionState,
    ExecutionStatus,
    FailureReason,
    Observation,
    RunResult,
    Step,
)

__all__ = [
    "AgentRunner",
    "AnswerEvaluator",
    "ExecutionState",
    "ExecutionStatus",
    "FailureReason",
    "Observation",
    "PlanAndExecute",
    "PlanRunResult",
    "ReasoningLoop",
    "RunResult",
    "SelfEvaluator",
    "Step",
    "new_execution_id",
]
