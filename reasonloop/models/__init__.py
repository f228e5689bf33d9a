"""
Data models for reasonloop.
"""

from .agent import STRATEGIES, AgentDefinition, AgentsConfiguration

__all__ = [
    "STRATEGIES",
    "AgentDefinition",
    "AgentsConfiguration",
]
