"""
Parse result variants.

Every output parser returns exactly one of these. The loop dispatches on
the variant type with ``isinstance``.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Value:
    """A typed value extracted from model text."""

    value: Any
    repaired: bool = False


@dataclass(frozen=True)
class Action:
    """A request to call a tool, as written by the model."""

    name: str
    raw_input: Optional[str] = None


@dataclass(frozen=True)
class Final:
    """A terminal answer."""

    content: str


@dataclass(frozen=True)
class ParseFailure:
    """The text could not be interpreted.

    ``text`` keeps the original output for diagnostics.
    """

    reason: str
    retriable: bool = True
    text: str = ""


ParseResult = Union[Value, Action, Final, ParseFailure]
