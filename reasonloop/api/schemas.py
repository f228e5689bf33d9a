"""
Pydantic schemas for the HTTP API.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for the health check endpoint."""

    status: str = Field(default="healthy", description="Server health status")
    version: str = Field(..., description="API version")
    model: str = Field(..., description="Reasoning model in use")


class ToolInfo(BaseModel):
    """One invocable tool (multitool sub-actions are listed individually)."""

    name: str = Field(..., description="Name to use after 'Action:'")
    description: str = Field(..., description="What the tool does")
    input_schema: dict = Field(..., description="JSON schema of the tool's input")
    parent: Optional[str] = Field(default=None, description="Multitool this sub-action belongs to")


class ToolListResponse(BaseModel):
    object: Literal["list"] = "list"
    data: list[ToolInfo]


class ParserListResponse(BaseModel):
    parsers: list[str] = Field(..., description="Names accepted by POST /v1/parsers/{name}")


class ParseRequest(BaseModel):
    """Raw model text to run through an output parser."""

    text: str = Field(..., description="Model output to parse")


class ParseResponse(BaseModel):
    """Result of parsing model text; exactly one kind is populated."""

    parser: str
    kind: Literal["value", "action", "final", "failure"]
    value: Optional[Any] = Field(default=None, description="Parsed value (kind=value)")
    repaired: bool = Field(default=False, description="Whether repair was applied (kind=value)")
    action: Optional[str] = Field(default=None, description="Tool name (kind=action)")
    action_input: Optional[str] = Field(default=None, description="Raw tool input (kind=action)")
    content: Optional[str] = Field(default=None, description="Final answer (kind=final)")
    reason: Optional[str] = Field(default=None, description="Why parsing failed (kind=failure)")
    retriable: Optional[bool] = Field(default=None, description="Whether a retry may help (kind=failure)")


class RunRequest(BaseModel):
    """Request body for POST /v1/runs."""

    goal: str = Field(..., min_length=1, description="The question or task for the agent")
    tools: Optional[list[str]] = Field(
        default=None,
        description="Tools the run may use; defaults to the agent's tools or all tools",
    )
    agent: Optional[str] = Field(default=None, description="Name of a configured agent")
    max_iterations: Optional[int] = Field(default=None, ge=1, le=50, description="Tool-call budget")
    max_retries: Optional[int] = Field(default=None, ge=1, le=20, description="Consecutive retry budget")
    execution_id: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=64,
        description="Caller-chosen run id, usable for cancellation and event filtering",
    )
    strategy: Optional[Literal["react", "plan_and_execute"]] = Field(
        default=None,
        description="Run strategy; defaults to the agent's strategy or react",
    )
    session_id: Optional[str] = Field(
        default=None, max_length=128, description="Tracing session grouping related runs"
    )
    include_trace: bool = Field(default=False, description="Include the step trace in the response")


class TraceStep(BaseModel):
    """A single step in the run trace."""

    index: int = Field(..., description="Step number in the run")
    thought: Optional[str] = Field(default=None, description="The reasoning for this step")
    action: Optional[str] = Field(default=None, description="Tool name that was invoked")
    action_input: Optional[dict] = Field(default=None, description="Validated tool input")
    parse_error: Optional[str] = Field(default=None, description="Why the output was rejected")
    observation: Optional[str] = Field(default=None, description="Result fed back to the model")
    observation_is_error: Optional[bool] = Field(default=None, description="Whether the observation is an error")
    final_answer: Optional[str] = Field(default=None, description="Accepted answer, on the final step")


class RunResponse(BaseModel):
    """Outcome of a run. Failed runs are reported here, not as HTTP errors."""

    execution_id: str
    status: Literal["finished", "failed"]
    answer: Optional[str] = None
    reason: Optional[str] = Field(default=None, description="Failure reason code")
    error: Optional[str] = Field(default=None, description="Human-readable failure message")
    tools_used: list[str] = Field(default_factory=list)
    steps: int = Field(..., description="Number of steps taken")
    duration_ms: float
    plan: Optional[list[str]] = Field(default=None, description="Plan steps (plan_and_execute runs)")
    trace: Optional[list[TraceStep]] = Field(default=None, description="Step trace (if include_trace=true)")


class CancelResponse(BaseModel):
    execution_id: str
    cancelled: bool
