"""
Output parsers.

Each parser turns raw model text into a ``ParseResult``. A ``ParserSet``
is the name-indexed table a semantic function looks its parser up in.
"""

from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .action import ActionParser, extract_thought, strip_think_block
from .base import OutputParser, extract_fenced_block
from .dates import DateTimeParser
from .results import Action, Final, ParseFailure, ParseResult, Value
from .structured import StructuredParser, parse_json_fragment
from .text import (
    BooleanParser,
    CodeParser,
    LastLineParser,
    ListParser,
    NumberedListParser,
)


class ParserSet:
    """Immutable name -> parser table, built once and shared."""

    def __init__(self, parsers: Iterable[OutputParser]):
        table: dict[str, OutputParser] = {}
        for parser in parsers:
            if parser.name in table:
                raise ValueError(f"Duplicate parser name: {parser.name}")
            table[parser.name] = parser
        self._parsers: Mapping[str, OutputParser] = MappingProxyType(table)

    def get(self, name: str) -> Optional[OutputParser]:
        return self._parsers.get(name)

    def names(self) -> list[str]:
        return list(self._parsers)

    def parse(self, name: str, text: str) -> ParseResult:
        """Parse ``text`` with the named parser."""
        parser = self._parsers.get(name)
        if parser is None:
            return ParseFailure(
                reason=f"Unknown output parser: {name}", retriable=False, text=text
            )
        return parser.parse(text)

    def __contains__(self, name: object) -> bool:
        return name in self._parsers

    def __len__(self) -> int:
        return len(self._parsers)


def default_parser_set() -> ParserSet:
    """Build the standard parser table."""
    return ParserSet(
        [
            StructuredParser(),
            ActionParser(),
            BooleanParser(),
            CodeParser(),
            ListParser(),
            NumberedListParser(),
            LastLineParser(),
            DateTimeParser(),
        ]
    )


__all__ = [
    "Action",
    "ActionParser",
    "BooleanParser",
    "CodeParser",
    "DateTimeParser",
    "Final",
    "LastLineParser",
    "ListParser",
    "NumberedListParser",
    "OutputParser",
    "ParseFailure",
    "ParseResult",
    "ParserSet",
    "StructuredParser",
    "Value",
    "default_parser_set",
    "extract_fenced_block",
    "extract_thought",
    "parse_json_fragment",
    "strip_think_block",
]
