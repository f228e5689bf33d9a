#!/usr/bin/env python3
"""
reasonloop Interactive CLI

A command-line interface for running agents against a live model, with
run progress streamed to the terminal as it happens.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
import threading
from typing import Optional

from .config import config
from .config_loader import load_agents_config
from .events import EventBroadcaster, EventKind, Subscription
from .llm_call import LLMClient
from .orchestration import AgentRunner, RunResult, new_execution_id
from .tools import ToolRegistry, build_default_registry

# Global shutdown flag for signal handling
_shutdown_requested = threading.Event()
_active_cli: Optional["InteractiveCLI"] = None

logger = logging.getLogger(__name__)


def _signal_handler(signum: int, frame) -> None:
    """First Ctrl+C cancels the running query; otherwise exit."""
    cli = _active_cli
    if cli is not None and cli.current_run is not None and not _shutdown_requested.is_set():
        _shutdown_requested.set()
        print("\n\nCancelling run... (press Ctrl+C again to force)")
        cli.loop.call_soon_threadsafe(cli.runner.cancel, cli.current_run)
        return
    if _shutdown_requested.is_set() and cli is not None and cli.current_run is not None:
        logger.debug("Force shutdown requested")
        sys.exit(1)
    raise KeyboardInterrupt


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def print_banner() -> None:
    """Print the welcome banner."""
    banner = """
╔════════════════════════════════════════════════════════════════╗
║                   reasonloop Interactive                        ║
║                                                                 ║
║  Thought / Action / Observation agents with tools              ║
╚════════════════════════════════════════════════════════════════╝

Available commands:
  /help     - Show this help message
  /trace    - Show the trace of the last run
  /tools    - List available tools
  /events   - Toggle live event output
  /quit     - Exit the CLI

Type your questions or tasks below. Ctrl+C cancels a running query.
"""
    print(banner)


def print_tools(registry: ToolRegistry) -> None:
    """Print available tools."""
    print("\nAvailable Tools:")
    print("─" * 64)
    for i, descriptor in enumerate(registry.list(), start=1):
        print(f"{i}. {descriptor.name.ljust(18)} - {descriptor.description}")
    print()


def print_trace(result: Optional[RunResult]) -> None:
    """Print the trace of the last run."""
    if result is None or not result.steps:
        print("\nNo trace available. Run a query first.\n")
        return

    print("\n" + "═" * 70)
    print(f"RUN TRACE ({result.execution_id}, {result.status.value})")
    print("═" * 70)

    for step in result.get_trace():
        print(f"\n┌─ Step {step['index']}" + ("  [FINAL]" if step["final_answer"] is not None else ""))
        print("│")
        if step["thought"]:
            print(f"│  Thought: {step['thought']}")
        if step["action"]:
            print(f"│  Action: {step['action']}")
        if step["action_input"]:
            print(f"│  Input: {json.dumps(step['action_input'], indent=2)}")
        if step["observation"]:
            obs = step["observation"]
            if len(obs) > 200:
                obs = obs[:200] + "..."
            label = "Error" if step["observation_is_error"] else "Observation"
            print(f"│  {label}: {obs}")
        if step["final_answer"] is not None:
            print(f"│  Final Answer: {step['final_answer']}")
        print("└" + "─" * 68)

    if result.reason:
        print(f"\nFailed: {result.reason} - {result.error}")
    print()


def format_event(kind: EventKind, payload: dict) -> str:
    if kind == EventKind.PLAN:
        steps = payload.get("steps", [])
        return "  Plan:\n" + "\n".join(f"    {i}. {step}" for i, step in enumerate(steps, 1))
    if kind == EventKind.PLAN_STEP:
        return f"  Step {payload.get('step')}: {payload.get('objective', '')}"
    if kind == EventKind.THOUGHT:
        return f"  Thought: {payload.get('thought', '')[:200]}"
    if kind == EventKind.ACTION:
        return f"  Action: {payload.get('tool')} {json.dumps(payload.get('args', {}))}"
    if kind == EventKind.OBSERVATION:
        label = "Error" if payload.get("is_error") else "Observation"
        content = str(payload.get("content", ""))
        return f"  {label}: {content[:200]}"
    if kind == EventKind.FINISH:
        return "  Finished"
    return f"  Failed: {payload.get('reason')}: {payload.get('message', '')}"


class InteractiveCLI:
    """Interactive CLI for reasonloop."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        tools: Optional[list[str]] = None,
        agent: Optional[str] = None,
        max_iterations: Optional[int] = None,
        strategy: Optional[str] = None,
        show_events: bool = True,
    ):
        self.loop = asyncio.new_event_loop()
        self.llm_client = LLMClient(base_url=base_url)
        self.registry = build_default_registry()
        self.broadcaster = EventBroadcaster()
        self.runner = AgentRunner(self.llm_client, self.registry, self.broadcaster)
        self.tools = tools
        self.agent = load_agents_config().get_agent(agent) if agent else None
        if agent and self.agent is None:
            raise ValueError(f"Unknown agent: {agent}")
        self.max_iterations = max_iterations
        self.strategy = strategy
        self.show_events = show_events
        self.current_run: Optional[str] = None
        self.last_result: Optional[RunResult] = None

    async def _print_events(self, subscription: Subscription) -> None:
        async for event in subscription:
            print(format_event(event.kind, event.payload))

    async def _run_query(self, query: str) -> RunResult:
        subscription = self.broadcaster.subscribe()
        printer = asyncio.create_task(self._print_events(subscription)) if self.show_events else None
        try:
            return await self.runner.submit(
                query,
                tool_names=self.tools,
                max_iterations=self.max_iterations,
                execution_id=self.current_run,
                agent=self.agent,
                strategy=self.strategy,
            )
        finally:
            subscription.close()
            if printer is not None:
                await printer

    def run_query(self, query: str) -> RunResult:
        """Run one query to completion on the CLI's event loop."""
        self.current_run = new_execution_id()
        try:
            self.last_result = self.loop.run_until_complete(self._run_query(query))
        finally:
            self.current_run = None
            _shutdown_requested.clear()
        return self.last_result

    def process_query(self, query: str) -> None:
        """Run a query and print the outcome."""
        print("\n" + "─" * 70)
        print("Processing query...")
        print("─" * 70 + "\n")

        result = self.run_query(query)

        print("\n" + "═" * 70)
        if result.succeeded:
            print("ANSWER")
            print("═" * 70)
            print(result.answer)
        else:
            print(f"FAILED ({result.reason})")
            print("═" * 70)
            print(result.error)
        print("═" * 70 + "\n")

        step_count = len(result.steps)
        print(f"(Completed in {step_count} step{'s' if step_count != 1 else ''})")
        print("Use /trace to see the full reasoning trace.\n")

    def run(self) -> None:
        """Run the interactive CLI loop."""
        print_banner()

        while True:
            try:
                user_input = input(">>> ").strip()
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!\n")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                command = user_input.lower()
                if command in ("/quit", "/exit", "/q"):
                    print("\nGoodbye!\n")
                    break
                elif command in ("/help", "/h", "/?"):
                    print_banner()
                elif command == "/trace":
                    print_trace(self.last_result)
                elif command == "/tools":
                    print_tools(self.registry.select(self.tools))
                elif command == "/events":
                    self.show_events = not self.show_events
                    print(f"\nLive events: {'ON' if self.show_events else 'OFF'}\n")
                else:
                    print(f"\nUnknown command: {user_input}")
                    print("Type /help for available commands.\n")
                continue

            self.process_query(user_input)

    def cleanup(self) -> None:
        """Close the model client and the event loop."""
        try:
            self.loop.run_until_complete(self.llm_client.close())
        finally:
            self.loop.close()


def main() -> None:
    """Main entry point."""
    global _active_cli

    parser = argparse.ArgumentParser(
        description="reasonloop Interactive CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # Start interactive mode
  %(prog)s -v                           # Start with verbose logging
  %(prog)s -q "What is 2^16?"           # Run a single query
  %(prog)s --tools math__evaluate -q "What is 5!?"
  %(prog)s --agent researcher           # Use a configured agent
  %(prog)s --strategy plan_and_execute -q "Who won the 2022 World Cup and what is 2022 mod 7?"
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-q", "--query", type=str, help="Run a single query and exit")
    parser.add_argument(
        "--base-url",
        type=str,
        default=None,
        help=f"Model endpoint URL (default: from MODEL_BASE_URL env or {config.model.base_url})",
    )
    parser.add_argument(
        "--tools",
        type=lambda s: [t.strip() for t in s.split(",") if t.strip()],
        default=None,
        help="Comma-separated tools the agent may use (default: all)",
    )
    parser.add_argument("--agent", type=str, default=None, help="Name of a configured agent")
    parser.add_argument("--max-iterations", type=int, default=None, help="Tool-call budget per run")
    parser.add_argument(
        "--strategy",
        choices=["react", "plan_and_execute"],
        default=None,
        help="Run strategy (default: the agent's, or react)",
    )
    parser.add_argument("--json", action="store_true", help="Output results as JSON (for scripting)")

    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        cli = InteractiveCLI(
            base_url=args.base_url,
            tools=args.tools,
            agent=args.agent,
            max_iterations=args.max_iterations,
            strategy=args.strategy,
            show_events=not args.json,
        )
    except ValueError as e:
        parser.error(str(e))

    _active_cli = cli
    signal.signal(signal.SIGINT, _signal_handler)

    try:
        if args.query:
            result = cli.run_query(args.query)
            if args.json:
                output = {
                    "query": args.query,
                    "status": result.status.value,
                    "answer": result.answer,
                    "reason": result.reason,
                    "error": result.error,
                    "trace": result.get_trace(),
                }
                print(json.dumps(output, indent=2, default=str))
            elif result.succeeded:
                print(result.answer)
            else:
                print(f"Failed ({result.reason}): {result.error}", file=sys.stderr)
                sys.exit(1)
        else:
            cli.run()
    finally:
        cli.cleanup()


if __name__ == "__main__":
    main()
