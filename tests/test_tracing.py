"""
Tests for Langfuse tracing integration.

Tests cover:
- Client disabled states (credentials, failed auth check)
- Context manager no-ops when disabled
- Trace lifecycle with a mocked Langfuse client
"""

from unittest.mock import MagicMock, patch

import pytest

from reasonloop.tracing import client as client_module
from reasonloop.tracing import TracingClient, TracingContext


@pytest.fixture(autouse=True)
def reset_tracing_client():
    """Each test starts without a global tracing client."""
    client_module._tracing_client = None
    yield
    client_module._tracing_client = None


class TestTracingClient:
    """Tests for TracingClient."""

    def test_disabled_without_credentials(self):
        """Client is disabled when credentials are not provided."""
        client = TracingClient(public_key="", secret_key="")
        assert client.enabled is False
        assert "credentials not configured" in client.error.lower()

    def test_disabled_with_partial_credentials(self):
        """Client is disabled with only a public key."""
        assert TracingClient(public_key="pk-test", secret_key="").enabled is False

    @patch("reasonloop.tracing.client.Langfuse")
    def test_disabled_when_auth_fails(self, mock_langfuse):
        """A failed auth check disables tracing."""
        mock_langfuse.return_value.auth_check.return_value = False
        client = TracingClient(public_key="pk", secret_key="sk", host="http://lf:3000")
        assert client.enabled is False
        assert "auth_check" in client.error

    @patch("reasonloop.tracing.client.Langfuse")
    def test_disabled_when_init_raises(self, mock_langfuse):
        """Construction errors disable tracing instead of propagating."""
        mock_langfuse.side_effect = RuntimeError("boom")
        client = TracingClient(public_key="pk", secret_key="sk")
        assert client.enabled is False
        assert "boom" in client.error

    @patch("reasonloop.tracing.client.Langfuse")
    def test_enabled_with_valid_credentials(self, mock_langfuse):
        """Tracing enables when the auth check passes."""
        mock_langfuse.return_value.auth_check.return_value = True
        client = TracingClient(public_key="pk", secret_key="sk", host="http://lf:3000")
        assert client.enabled is True
        assert client.error is None
        client.flush()
        mock_langfuse.return_value.flush.assert_called_once()

    def test_flush_and_shutdown_no_op_when_disabled(self):
        """flush and shutdown never raise when disabled."""
        client = TracingClient()
        client.flush()
        client.shutdown()


class TestTracingContext:
    """Tests for TracingContext."""

    def test_disabled_without_global_client(self):
        """Contexts are no-ops without a tracing client."""
        ctx = TracingContext(execution_id="exec-1")
        assert ctx.enabled is False
        ctx.start_trace(goal="q")
        with ctx.span("tool:echo", input={"text": "hi"}) as span:
            span.set_output("ok")
        with ctx.generation("step", model="m") as gen:
            gen.set_usage(prompt_tokens=1, completion_tokens=2)
        ctx.end_trace(output="done")

    @patch("reasonloop.tracing.client.Langfuse")
    def test_trace_lifecycle(self, mock_langfuse):
        """Spans nest under the run's root span via an explicit trace context."""
        langfuse = mock_langfuse.return_value
        langfuse.auth_check.return_value = True
        root = MagicMock(trace_id="trace-1", id="span-1")
        langfuse.start_as_current_observation.return_value.__enter__.return_value = root
        client_module.init_tracing_client(public_key="pk", secret_key="sk")

        ctx = TracingContext(execution_id="exec-1")
        assert ctx.enabled is True
        ctx.start_trace(name="agent_run", goal="q")
        with ctx.span("tool:echo", input={"text": "hi"}) as span:
            span.set_status("error")
        ctx.end_trace(output="done", status="success")

        calls = langfuse.start_as_current_observation.call_args_list
        assert calls[0].kwargs["name"] == "agent_run"
        child = calls[1].kwargs
        assert child["name"] == "tool:echo"
        assert child["trace_context"] == {"trace_id": "trace-1", "parent_span_id": "span-1"}
        span_update = root.update.call_args_list[0].kwargs
        assert span_update["level"] == "ERROR"
        root.update_trace.assert_called_once()

    @patch("reasonloop.tracing.client.Langfuse")
    def test_generation_records_usage(self, mock_langfuse):
        """Generations report model and token usage."""
        langfuse = mock_langfuse.return_value
        langfuse.auth_check.return_value = True
        observation = MagicMock(trace_id="trace-1", id="span-1")
        langfuse.start_as_current_observation.return_value.__enter__.return_value = observation
        client_module.init_tracing_client(public_key="pk", secret_key="sk")

        ctx = TracingContext(execution_id="exec-1")
        ctx.start_trace(goal="q")
        with ctx.generation("reasoning_step_1", model="test-model") as gen:
            gen.set_usage(prompt_tokens=10, completion_tokens=5, total_tokens=15)

        kwargs = langfuse.start_as_current_observation.call_args.kwargs
        assert kwargs["as_type"] == "generation"
        assert kwargs["model"] == "test-model"
        update = observation.update.call_args.kwargs
        assert update["usage_details"] == {"input": 10, "output": 5, "total": 15}
