"""
Prompt construction for the reasoning loop.

Messages are rebuilt from scratch every turn: a system prompt describing
the tools and the Thought/Action/Observation format, the goal, then one
assistant/user pair per completed step (the model's output followed by
the observation it produced).
"""

from typing import Optional

from ..tools import ToolRegistry
from .state import Observation, Step

SYSTEM_PROMPT = """Answer the following question as best you can. You have access to the following tools:

{tools}

Use the following format:

Question: the input question you must answer
Thought: you should always think about what to do
Action: the action to take, should be one of [{tool_names}]
Action Input: the input to the action
Observation: the result of the action
... (this Thought/Action/Action Input/Observation can repeat N times)
Thought: I now know the final answer
Final Answer: the final answer to the original input question

Action Input may be plain text or a JSON object matching the tool's fields.
Never write an Action and a Final Answer in the same response."""

# Generation stops before the model invents its own observation
STOP_SEQUENCES = ["\nObservation:"]


def format_observation(observation: Observation) -> str:
    return f"Observation: {observation.content}\nThought:"


def build_system_prompt(registry: ToolRegistry, instructions: Optional[str] = None) -> str:
    tools = registry.get_tools_summary() or "(no tools available)"
    tool_names = ", ".join(d.name for d in registry.list())
    prompt = SYSTEM_PROMPT.format(tools=tools, tool_names=tool_names)
    if instructions:
        prompt = f"{instructions.strip()}\n\n{prompt}"
    return prompt


def build_messages(
    goal: str,
    steps: list[Step],
    registry: ToolRegistry,
    instructions: Optional[str] = None,
) -> list[dict]:
    """Build the full transcript for the next model call."""
    messages = [
        {"role": "system", "content": build_system_prompt(registry, instructions)},
        {"role": "user", "content": f"Question: {goal}\nThought:"},
    ]
    for step in steps:
        if step.raw_output is None or step.observation is None:
            continue
        messages.append({"role": "assistant", "content": step.raw_output})
        messages.append({"role": "user", "content": format_observation(step.observation)})
    return messages
