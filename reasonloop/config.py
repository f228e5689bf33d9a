"""
Configuration management for reasonloop.

Loads all configuration from environment variables with sensible defaults
for local development. Agent definitions live in YAML and are handled by
``config_loader``.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class ModelConfig:
    """Configuration for the reasoning model endpoint."""
    base_url: str = os.getenv("MODEL_BASE_URL", "http://localhost:8001/v1")
    model: str = os.getenv("MODEL_NAME", "gpt-4o-mini")
    api_key: str = os.getenv("MODEL_API_KEY", "not-needed")
    temperature: float = float(os.getenv("MODEL_TEMPERATURE", "0.0"))
    max_tokens: int = int(os.getenv("MODEL_MAX_TOKENS", "1024"))


@dataclass
class LoopConfig:
    """Budgets for a single agent run."""
    max_iterations: int = int(os.getenv("MAX_ITERATIONS", "6"))
    max_retries: int = int(os.getenv("MAX_RETRIES", "3"))
    # Seconds; each model call and each tool call is bounded separately
    model_timeout: float = float(os.getenv("MODEL_TIMEOUT", "60"))
    tool_timeout: float = float(os.getenv("TOOL_TIMEOUT", "30"))
    run_timeout: float = float(os.getenv("RUN_TIMEOUT", "300"))
    # Plans longer than this are cut to their first steps
    max_plan_steps: int = int(os.getenv("MAX_PLAN_STEPS", "8"))


@dataclass
class ToolConfig:
    """Configuration for built-in tool endpoints."""
    searxng_endpoint: str = os.getenv("SEARXNG_ENDPOINT", "http://localhost:8080/search")
    searxng_timeout: int = int(os.getenv("SEARXNG_TIMEOUT", "30"))


@dataclass
class EventsConfig:
    """Configuration for the event broadcaster."""
    queue_size: int = int(os.getenv("EVENT_QUEUE_SIZE", "1000"))
    history_size: int = int(os.getenv("EVENT_HISTORY_SIZE", "100"))


@dataclass
class ServerConfig:
    """Configuration for the FastAPI server."""
    host: str = os.getenv("SERVER_HOST", "0.0.0.0")
    port: int = int(os.getenv("SERVER_PORT", "8000"))
    workers: int = int(os.getenv("SERVER_WORKERS", "1"))
    reload: bool = os.getenv("SERVER_RELOAD", "false").lower() == "true"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse observability.

    Tracing auto-enables when both public_key and secret_key are provided.
    """
    public_key: str = os.getenv("LANGFUSE_PUBLIC_KEY", "")
    secret_key: str = os.getenv("LANGFUSE_SECRET_KEY", "")
    host: str = os.getenv("LANGFUSE_HOST", "")
    debug: bool = os.getenv("LANGFUSE_DEBUG", "false").lower() == "true"

    @property
    def enabled(self) -> bool:
        """Auto-enable when both keys are configured."""
        return bool(self.public_key and self.secret_key)


@dataclass
class Config:
    """Main configuration container."""
    model: ModelConfig
    loop: LoopConfig
    tools: ToolConfig
    events: EventsConfig
    server: ServerConfig
    langfuse: LangfuseConfig
    agents_config_path: str = os.getenv("AGENTS_CONFIG_PATH", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def get_config() -> Config:
    """Get the application configuration."""
    return Config(
        model=ModelConfig(),
        loop=LoopConfig(),
        tools=ToolConfig(),
        events=EventsConfig(),
        server=ServerConfig(),
        langfuse=LangfuseConfig(),
    )


# Global config instance
config = get_config()
