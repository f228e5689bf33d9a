"""
Run-scoped tracing context using Langfuse SDK v3.

A ``TracingContext`` owns the root span of one run. Model calls and tool
calls are recorded as children by passing an explicit ``TraceContext``
(trace id + parent span id), so nesting stays correct when many runs are
interleaved on one event loop.

Every method degrades to a no-op when tracing is disabled.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from langfuse.types import TraceContext

from .client import get_tracing_client

logger = logging.getLogger(__name__)


@dataclass
class _Observation:
    """Shared lifecycle of a span or generation."""

    name: str
    enabled: bool = False
    input: Optional[Any] = None
    metadata: Optional[dict] = None
    _trace_context: Optional[TraceContext] = field(default=None, repr=False)
    _context_manager: Any = field(default=None, repr=False)
    _observation: Any = field(default=None, repr=False)
    _start_time: float = field(default=0.0, repr=False)
    _output: Optional[Any] = field(default=None, repr=False)
    _status: str = field(default="success", repr=False)

    as_type = "span"

    def _start_kwargs(self) -> dict:
        return {}

    def _end_kwargs(self) -> dict:
        return {}

    def start(self) -> None:
        if not self.enabled:
            return
        client = get_tracing_client()
        if not client or not client.client:
            return
        try:
            self._start_time = time.time()
            self._context_manager = client.client.start_as_current_observation(
                trace_context=self._trace_context,
                as_type=self.as_type,
                name=self.name,
                input=self.input,
                metadata=self.metadata,
                **self._start_kwargs(),
            )
            self._observation = self._context_manager.__enter__()
        except Exception as e:
            logger.warning("Failed to start %s '%s': %s", self.as_type, self.name, e)
            self._observation = None

    def end(self) -> None:
        if not self.enabled or not self._observation:
            return
        try:
            duration_ms = (time.time() - self._start_time) * 1000
            update_kwargs: dict[str, Any] = {
                "metadata": {"status": self._status, "duration_ms": round(duration_ms, 2)},
                **self._end_kwargs(),
            }
            if self._output is not None:
                update_kwargs["output"] = self._output
            if self._status == "error":
                update_kwargs["level"] = "ERROR"
            self._observation.update(**update_kwargs)
            self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning("Failed to end %s '%s': %s", self.as_type, self.name, e)

    def set_output(self, output: Any) -> None:
        self._output = output

    def set_status(self, status: str) -> None:
        self._status = status


@dataclass
class SpanContext(_Observation):
    """A traced tool call or other unit of work."""


@dataclass
class GenerationContext(_Observation):
    """A traced model call."""

    model: str = ""
    model_parameters: Optional[dict] = None
    _usage: Optional[dict] = field(default=None, repr=False)

    as_type = "generation"

    def _start_kwargs(self) -> dict:
        return {"model": self.model, "model_parameters": self.model_parameters}

    def _end_kwargs(self) -> dict:
        return {"usage_details": self._usage} if self._usage else {}

    def set_usage(
        self,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
        total_tokens: Optional[int] = None,
    ) -> None:
        """Set token usage for the generation."""
        usage = {"input": prompt_tokens, "output": completion_tokens, "total": total_tokens}
        self._usage = {k: v for k, v in usage.items() if v is not None}


@dataclass
class TracingContext:
    """
    Tracing for a single run.

    Call ``start_trace`` once before the loop and ``end_trace`` once after;
    ``span`` and ``generation`` nest under the run's root span.
    """

    execution_id: str
    session_id: Optional[str] = None
    _context_manager: Any = field(default=None, repr=False)
    _root_span: Any = field(default=None, repr=False)
    _enabled: bool = field(default=False, repr=False)
    _start_time: float = field(default_factory=time.time, repr=False)
    _trace_context: Optional[TraceContext] = field(default=None, repr=False)

    def __post_init__(self):
        client = get_tracing_client()
        self._enabled = client is not None and client.enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start_trace(
        self,
        name: str = "agent_run",
        goal: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Open the run's root span."""
        if not self._enabled:
            return
        client = get_tracing_client()
        if not client or not client.client:
            return

        try:
            self._context_manager = client.client.start_as_current_observation(
                as_type="span",
                name=name,
                input={"goal": goal} if goal else None,
                metadata={"execution_id": self.execution_id, **(metadata or {})},
            )
            self._root_span = self._context_manager.__enter__()
            self._root_span.update_trace(session_id=self.session_id)

            trace_id = getattr(self._root_span, "trace_id", None)
            span_id = getattr(self._root_span, "id", None)
            if trace_id and span_id:
                self._trace_context = TraceContext(trace_id=trace_id, parent_span_id=span_id)
            self._start_time = time.time()
            logger.debug("[%s] Trace started: trace_id=%s", self.execution_id, trace_id)
        except Exception as e:
            logger.warning("[%s] Failed to start trace: %s", self.execution_id, e)
            self._root_span = None

    def end_trace(
        self,
        output: Optional[str] = None,
        status: str = "success",
        metadata: Optional[dict] = None,
    ) -> None:
        """Close the run's root span."""
        if not self._enabled or not self._root_span:
            return
        try:
            duration_ms = (time.time() - self._start_time) * 1000
            self._root_span.update(
                output=output,
                metadata={"status": status, "duration_ms": round(duration_ms, 2), **(metadata or {})},
            )
            self._context_manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning("[%s] Failed to end trace: %s", self.execution_id, e)
        finally:
            self._root_span = None

    @contextmanager
    def span(
        self,
        name: str,
        metadata: Optional[dict] = None,
        input: Optional[Any] = None,
    ) -> Iterator[SpanContext]:
        """Trace a unit of work under the run's root span."""
        span_ctx = SpanContext(
            name=name,
            enabled=self._enabled,
            input=input,
            metadata=metadata,
            _trace_context=self._trace_context,
        )
        span_ctx.start()
        try:
            yield span_ctx
        finally:
            span_ctx.end()

    @contextmanager
    def generation(
        self,
        name: str,
        model: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
        model_parameters: Optional[dict] = None,
    ) -> Iterator[GenerationContext]:
        """Trace a model call under the run's root span."""
        gen_ctx = GenerationContext(
            name=name,
            enabled=self._enabled,
            input=input,
            metadata=metadata,
            model=model,
            model_parameters=model_parameters,
            _trace_context=self._trace_context,
        )
        gen_ctx.start()
        try:
            yield gen_ctx
        finally:
            gen_ctx.end()
