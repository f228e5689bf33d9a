"""Health check endpoints."""

from fastapi import APIRouter, Depends

from ... import __version__
from ...orchestration import AgentRunner
from ..dependencies import get_runner
from ..schemas import HealthResponse

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check if the API server is running and healthy.",
)
def health_check(runner: AgentRunner = Depends(get_runner)) -> HealthResponse:
    """Return health status of the API server."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        model=str(getattr(runner.model, "model", type(runner.model).__name__)),
    )
