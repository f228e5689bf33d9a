"""
FastAPI application for reasonloop.

Exposes run submission, cancellation, tool and parser listings, and a
live Server-Sent Events stream of run progress.

Usage:
    # Development server with auto-reload
    uvicorn reasonloop.api.main:app --reload --host 0.0.0.0 --port 8000

    # Debug mode (verbose logging)
    LOG_LEVEL=DEBUG uvicorn reasonloop.api.main:app --reload --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import config
from ..config_loader import load_agents_config, validate_agents_config
from ..events import EventBroadcaster
from ..llm_call import LLMClient, ModelProvider
from ..models import AgentsConfiguration
from ..orchestration import AgentRunner
from ..parsers import ParserSet, default_parser_set
from ..tools import ToolRegistry, build_default_registry
from ..tracing import init_tracing_client, shutdown_tracing
from .routes import events, health, runs, tools


def configure_logging():
    """Configure logging based on LOG_LEVEL environment variable."""
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("reasonloop").setLevel(log_level)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    logger.info("Starting reasonloop API server")

    logger.info("=" * 60)
    logger.info("MODEL CONFIGURATION")
    logger.info("  Base URL: %s", config.model.base_url)
    logger.info("  Model: %s", config.model.model)
    logger.info("  Temperature: %s", config.model.temperature)

    logger.info("-" * 60)
    logger.info("LOOP BUDGETS")
    logger.info("  Max iterations: %d", config.loop.max_iterations)
    logger.info("  Max retries: %d", config.loop.max_retries)
    logger.info(
        "  Timeouts: model=%gs tool=%gs run=%gs",
        config.loop.model_timeout,
        config.loop.tool_timeout,
        config.loop.run_timeout,
    )

    logger.info("-" * 60)
    logger.info("REGISTERED TOOLS")
    for descriptor in app.state.registry.list():
        logger.info("  - %s: %s", descriptor.name, descriptor.description[:60])

    logger.info("-" * 60)
    logger.info("AGENTS")
    for name in app.state.agents.names():
        logger.info("  - %s", name)

    logger.info("-" * 60)
    logger.info("LANGFUSE OBSERVABILITY")
    tracing_client = init_tracing_client(
        public_key=config.langfuse.public_key,
        secret_key=config.langfuse.secret_key,
        host=config.langfuse.host,
        debug=config.langfuse.debug,
    )
    if tracing_client.enabled:
        logger.info("  Status: ENABLED")
    else:
        logger.info("  Status: DISABLED")
        if tracing_client.error:
            logger.info("  Reason: %s", tracing_client.error)
    logger.info("=" * 60)

    yield

    logger.info("Shutting down reasonloop API server")
    for execution_id in app.state.runner.active_runs():
        app.state.runner.cancel(execution_id)
    shutdown_tracing()
    close = getattr(app.state.runner.model, "close", None)
    if close is not None:
        await close()


def create_app(
    model: Optional[ModelProvider] = None,
    registry: Optional[ToolRegistry] = None,
    broadcaster: Optional[EventBroadcaster] = None,
    parsers: Optional[ParserSet] = None,
    agents: Optional[AgentsConfiguration] = None,
    **loop_options,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Every service can be injected; anything not given is built from the
    environment configuration.

    Raises:
        ValueError: If an agent names a tool the registry does not have
    """
    app = FastAPI(
        title="reasonloop API",
        description="Reasoning-loop engine for tool-using LLM agents.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.state.registry = registry or build_default_registry()
    app.state.broadcaster = broadcaster or EventBroadcaster()
    app.state.parsers = parsers or default_parser_set()
    app.state.agents = agents if agents is not None else load_agents_config(config.agents_config_path or None)

    known_tools = set(app.state.registry.names()) | {d.name for d in app.state.registry.list()}
    errors = validate_agents_config(app.state.agents, known_tools=known_tools)
    if errors:
        raise ValueError("Invalid agents configuration: " + "; ".join(errors))

    app.state.runner = AgentRunner(
        model=model or LLMClient(),
        registry=app.state.registry,
        broadcaster=app.state.broadcaster,
        **loop_options,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(tools.router, tags=["Tools"])
    app.include_router(runs.router, tags=["Runs"])
    app.include_router(events.router, tags=["Events"])

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Log validation errors before returning 400 response."""
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        body = await request.body()
        logger.debug("Request body: %s", body.decode("utf-8", errors="replace")[:1000])
        return JSONResponse(
            status_code=400,
            content={"detail": exc.errors()},
        )

    return app


# Create the application instance
app = create_app()


def run_server():
    """Run the server using uvicorn."""
    import uvicorn

    uvicorn.run(
        "reasonloop.api.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        workers=1 if config.server.reload else config.server.workers,
    )


if __name__ == "__main__":
    run_server()
