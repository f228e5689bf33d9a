"""
Run submission endpoints.

A run is executed inside the request and its outcome returned in full.
Budget exhaustion, cancellation and fatal model errors are reported in
the ``RunResponse`` with status ``failed``, not as HTTP errors.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ...models import AgentsConfiguration
from ...orchestration import AgentRunner, PlanRunResult, RunResult
from ..dependencies import get_agents, get_runner
from ..schemas import CancelResponse, RunRequest, RunResponse, TraceStep

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(result: RunResult, include_trace: bool) -> RunResponse:
    trace = None
    if include_trace:
        trace = [
            TraceStep(
                **{k: v for k, v in step.items() if k in TraceStep.model_fields}
            )
            for step in result.get_trace()
        ]
    return RunResponse(
        execution_id=result.execution_id,
        status=result.status.value,
        answer=result.answer,
        reason=result.reason,
        error=result.error,
        tools_used=result.tools_used,
        steps=len(result.steps),
        duration_ms=result.duration_ms,
        plan=result.plan if isinstance(result, PlanRunResult) else None,
        trace=trace,
    )


@router.post(
    "/v1/runs",
    response_model=RunResponse,
    summary="Run an agent",
    description="Run the reasoning loop for a goal and return the final answer or failure reason.",
)
async def create_run(
    request: RunRequest,
    runner: AgentRunner = Depends(get_runner),
    agents: AgentsConfiguration = Depends(get_agents),
) -> RunResponse:
    agent = None
    if request.agent:
        agent = agents.get_agent(request.agent)
        if agent is None:
            raise HTTPException(
                status_code=404,
                detail=f"Agent '{request.agent}' not found. Available agents: {', '.join(agents.names()) or '(none)'}",
            )

    try:
        result = await runner.submit(
            request.goal,
            tool_names=request.tools,
            max_iterations=request.max_iterations,
            max_retries=request.max_retries,
            execution_id=request.execution_id,
            agent=agent,
            strategy=request.strategy,
            session_id=request.session_id,
        )
    except ValueError as e:
        logger.warning("Rejected run request: %s", e)
        status_code = 409 if "already in progress" in str(e) else 400
        raise HTTPException(status_code=status_code, detail=str(e)) from e

    logger.info(
        "[%s] Run %s in %.0fms (%d steps)",
        result.execution_id,
        result.status.value,
        result.duration_ms,
        len(result.steps),
    )
    return _to_response(result, request.include_trace)


@router.post(
    "/v1/runs/{execution_id}/cancel",
    response_model=CancelResponse,
    summary="Cancel a run",
    description="Signal a running run to stop. It finishes as failed with reason 'cancelled'.",
)
async def cancel_run(execution_id: str, runner: AgentRunner = Depends(get_runner)) -> CancelResponse:
    if not runner.cancel(execution_id):
        raise HTTPException(status_code=404, detail=f"Run '{execution_id}' is not running")
    return CancelResponse(execution_id=execution_id, cancelled=True)
