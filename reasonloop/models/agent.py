"""
Data models for agent definitions.

An agent definition is a named, read-only preset for a run: which tools it
may use, its budgets, its strategy and whether answers are self-evaluated
before they are accepted.
"""

from dataclasses import dataclass, field
from typing import Optional

STRATEGIES = ("react", "plan_and_execute")


@dataclass
class AgentDefinition:
    """Configuration for a single agent."""

    name: str
    description: str = ""
    tools: list[str] = field(default_factory=list)
    instructions: str = ""
    max_iterations: Optional[int] = None
    max_retries: Optional[int] = None
    self_evaluate: bool = False
    # "react" runs one reasoning loop; "plan_and_execute" plans first
    strategy: str = "react"


@dataclass
class AgentsConfiguration:
    """Complete agents configuration loaded from YAML."""

    version: str
    agents: dict[str, AgentDefinition] = field(default_factory=dict)

    def get_agent(self, name: str) -> Optional[AgentDefinition]:
        """Get an agent by name."""
        return self.agents.get(name)

    def names(self) -> list[str]:
        return list(self.agents)
