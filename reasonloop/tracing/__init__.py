"""
Langfuse tracing integration for reasonloop.

Each run is a trace; model calls are generations and tool calls are spans.
"""

from .client import (
    TracingClient,
    get_tracing_client,
    init_tracing_client,
    shutdown_tracing,
)
from .context import (
    GenerationContext,
    SpanContext,
    TracingContext,
)

__all__ = [
    "TracingClient",
    "init_tracing_client",
    "get_tracing_client",
    "shutdown_tracing",
    "TracingContext",
    "SpanContext",
    "GenerationContext",
]
