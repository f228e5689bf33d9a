"""
Error taxonomy for the reasoning loop.

Parse failures are not exceptions: parsers return a ``ParseFailure`` result
instead. Everything here is raised by a collaborator (model provider, tool,
resolver) or by the loop itself when a budget runs out.
"""

from typing import Optional


class ReasonLoopError(Exception):
    """Base class for all reasonloop errors."""


class ProviderError(ReasonLoopError):
    """The model capability failed to produce text.

    ``retriable`` is supplied by the provider: transient overload or a
    dropped connection is retriable, bad credentials are not.
    """

    def __init__(self, message: str, retriable: bool = False):
        super().__init__(message)
        self.message = message
        self.retriable = retriable


class ToolError(ReasonLoopError):
    """A tool invocation failed. Always folded back as an observation."""

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tool_name = tool_name


class ResolutionError(ReasonLoopError):
    """An action could not be turned into a valid tool invocation.

    Unknown tools are fatal; schema mismatches are retriable so the model
    can correct its input.
    """

    def __init__(self, message: str, retriable: bool = False):
        super().__init__(message)
        self.message = message
        self.retriable = retriable


class BudgetExceeded(ReasonLoopError):
    """An iteration, retry or wall-clock limit was reached. Always fatal."""

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason
        self.message = message or reason


class RunCancelled(ReasonLoopError):
    """The run's cancellation signal was set."""
