"""
ReAct action parser.

Reads the ``Thought: / Action: / Action Input: / Final Answer:`` format
that drives tool selection. Markers may be numbered (``Action 2:``) or
wrapped in markdown bold (``**Action**:``).
"""

import re
from typing import Optional

from .base import OutputParser
from .results import Action, Final, ParseFailure, ParseResult

_ACTION_MARK = r"\**[ \t]*Action[ \t]*\d*[ \t]*\**[ \t]*:"
_INPUT_MARK = r"\**[ \t]*Action[ \t]*\d*[ \t]*Input[ \t]*\d*[ \t]*\**[ \t]*:"
_FINAL_MARK = r"\**[ \t]*Final[ \t]+Answer[ \t]*\**[ \t]*:"
_OBSERVATION_MARK = r"\**[ \t]*Observation[ \t]*\d*[ \t]*\**[ \t]*:"

ACTION_RE = re.compile(
    _ACTION_MARK + r"\s*(.*?)(?=" + _INPUT_MARK + "|" + _ACTION_MARK + r"|\Z)",
    re.DOTALL,
)
INPUT_RE = re.compile(
    _INPUT_MARK
    + r"\s*(.*?)(?="
    + _ACTION_MARK
    + "|"
    + _INPUT_MARK
    + "|"
    + _OBSERVATION_MARK
    + r"|\Z)",
    re.DOTALL,
)
FINAL_RE = re.compile(_FINAL_MARK + r"\s*(.*)", re.DOTALL)
THINK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL)
THOUGHT_RE = re.compile(r"\**[ \t]*Thought[ \t]*\d*[ \t]*\**[ \t]*:\s*", re.DOTALL)

# Inputs that are queries against a structured source keep their quoting
_QUERY_RE = re.compile(r"^(SELECT|WITH|MATCH|MERGE|CALL|INSERT|UPDATE|DELETE)\b", re.IGNORECASE)
_QUOTES = ('"', "'", "`")
_FINAL_ACTION_NAMES = {"final answer", "final_answer"}

MISSING_ACTION = 'Invalid Format: Missing "Action:" after "Thought:"'


def strip_think_block(text: str) -> str:
    """Remove ``<think>...</think>`` reasoning from model output."""
    return THINK_RE.sub("", text)


def extract_thought(text: str) -> Optional[str]:
    """
    Return the model's reasoning for a turn.

    Prefers a ``<think>`` block; otherwise the text before the first
    action or final-answer marker, minus any ``Thought:`` prefix.
    """
    think = THINK_RE.search(text)
    if think:
        return think.group(1).strip() or None

    cut = len(text)
    for pattern in (_ACTION_MARK, _INPUT_MARK, _FINAL_MARK):
        match = re.search(pattern, text)
        if match:
            cut = min(cut, match.start())
    thought = THOUGHT_RE.sub("", text[:cut], count=1).strip()
    return thought or None


def clean_action_input(raw: str) -> Optional[str]:
    """Trim an action input and strip one pair of surrounding quotes."""
    value = raw.strip()
    if not value:
        return None
    if _QUERY_RE.match(value):
        return value
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
        value = value[1:-1]
    return value


def _clean_action_name(raw: str) -> str:
    lines = [line for line in raw.strip().splitlines() if line.strip()]
    if not lines:
        return ""
    return lines[0].strip().strip("*`").strip()


class ActionParser(OutputParser):
    """
    Parse a single ReAct turn into an action or a final answer.

    Output that carries both an action and a final answer is a
    contradiction and comes back as a retriable failure so the model can
    reconcile it. Output with neither marker is also a retriable failure.
    """

    name = "action"

    def _parse(self, text: str) -> ParseResult:
        body = strip_think_block(text)
        action_match = ACTION_RE.search(body)
        final_match = FINAL_RE.search(body)

        if action_match:
            name = _clean_action_name(action_match.group(1))
            if final_match:
                return ParseFailure(
                    reason=(
                        "Parsing LLM output produced both a final answer and a "
                        f"parseable action: {name}"
                    ),
                    retriable=True,
                    text=text,
                )
            if not name:
                return ParseFailure(
                    reason='Invalid Format: Missing tool name after "Action:"',
                    retriable=True,
                    text=text,
                )

            input_match = INPUT_RE.search(body, action_match.start())
            raw_input = clean_action_input(input_match.group(1)) if input_match else None

            # "Action: Final Answer / Action Input: ..." is a final answer
            if name.lower() in _FINAL_ACTION_NAMES:
                return Final(content=raw_input or "")
            return Action(name=name, raw_input=raw_input)

        if final_match:
            return Final(content=final_match.group(1).strip())

        return ParseFailure(reason=MISSING_ACTION, retriable=True, text=text)
