"""
Configuration loader for reasonloop.

Loads agent definitions from a YAML file with support for
environment variable interpolation.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from .models import STRATEGIES, AgentDefinition, AgentsConfiguration

logger = logging.getLogger(__name__)

# Default config path relative to project root
DEFAULT_AGENTS_CONFIG_PATH = Path(__file__).parent.parent / "config" / "agents.yaml"

# Regex for environment variable interpolation: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

# Singleton cache for agents config
_agents_config: Optional[AgentsConfiguration] = None


def resolve_env_vars(value: str) -> str:
    """
    Resolve environment variable references in a string.

    Supports ${VAR} and ${VAR:-default} syntax.
    """

    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _substitute_env_vars_recursive(data: Any) -> Any:
    """Recursively substitute environment variables in a data structure."""
    if isinstance(data, dict):
        return {k: _substitute_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    return data


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() == "true"
    return bool(value)


def _parse_agent(name: str, data: dict) -> AgentDefinition:
    """Parse a single agent definition from dict."""
    tools = data.get("tools", []) or []
    if not isinstance(tools, list):
        raise ValueError("tools must be a list of tool names")

    return AgentDefinition(
        name=name,
        description=data.get("description", ""),
        tools=[str(t) for t in tools],
        instructions=data.get("instructions", "") or "",
        max_iterations=_optional_int(data.get("max_iterations")),
        max_retries=_optional_int(data.get("max_retries")),
        self_evaluate=_parse_bool(data.get("self_evaluate", False)),
        strategy=str(data.get("strategy", "react") or "react"),
    )


def validate_agents_config(
    agents_config: AgentsConfiguration,
    known_tools: Optional[set[str]] = None,
) -> list[str]:
    """
    Validate an agents configuration.

    Args:
        agents_config: Configuration to validate
        known_tools: Tool names available in the registry, if known

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    for name, agent in agents_config.agents.items():
        if agent.max_iterations is not None and agent.max_iterations <= 0:
            errors.append(f"Agent '{name}': max_iterations must be positive")
        if agent.max_retries is not None and agent.max_retries <= 0:
            errors.append(f"Agent '{name}': max_retries must be positive")
        if agent.strategy not in STRATEGIES:
            errors.append(
                f"Agent '{name}': unknown strategy '{agent.strategy}' (expected one of: {', '.join(STRATEGIES)})"
            )
        if known_tools is not None:
            for tool in agent.tools:
                if tool not in known_tools:
                    errors.append(f"Agent '{name}': unknown tool '{tool}'")

    return errors


def load_agents_config(path: Optional[str] = None, reload: bool = False) -> AgentsConfiguration:
    """
    Load agent definitions from a YAML file.

    Uses a singleton pattern - subsequent calls return the cached config
    unless reload=True is specified.

    Args:
        path: Path to the YAML file. If None, uses AGENTS_CONFIG_PATH env
              var or the default path (config/agents.yaml).
        reload: If True, force reload from disk instead of using cache.

    Returns:
        AgentsConfiguration (empty if the file does not exist)

    Raises:
        ValueError: If the config is invalid
    """
    global _agents_config

    if _agents_config is not None and not reload and path is None:
        return _agents_config

    if path is None:
        path = os.environ.get("AGENTS_CONFIG_PATH") or str(DEFAULT_AGENTS_CONFIG_PATH)

    config_path = Path(path)

    if not config_path.exists():
        logger.warning("Agents config not found at %s, using empty config", config_path)
        agents_config = AgentsConfiguration(version="1.0", agents={})
        _agents_config = agents_config
        return agents_config

    logger.info("Loading agents configuration from %s", config_path)

    with open(config_path, "r") as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}

    raw_config = _substitute_env_vars_recursive(raw_config)

    version = str(raw_config.get("version", "1.0"))
    agents_data = raw_config.get("agents", {}) or {}

    agents = {}
    for name, agent_data in agents_data.items():
        try:
            agents[name] = _parse_agent(name, agent_data or {})
            logger.debug("Loaded agent: %s -> tools=%s", name, agents[name].tools)
        except (TypeError, ValueError) as e:
            logger.error("Failed to parse agent '%s': %s", name, e)
            raise ValueError(f"Invalid agent configuration for '{name}': {e}") from e

    agents_config = AgentsConfiguration(version=version, agents=agents)

    errors = validate_agents_config(agents_config)
    if errors:
        raise ValueError("; ".join(errors))

    _agents_config = agents_config
    logger.debug("Agents configuration loaded: version=%s, agents=%s", version, list(agents))
    return agents_config


def reset_config_cache() -> None:
    """Reset the configuration cache, forcing a reload on next access."""
    global _agents_config
    _agents_config = None
    logger.debug("Configuration cache reset")
