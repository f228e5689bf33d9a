"""
Scalar and list parsers.

The list and last-line parsers assume the model puts its deliverable at the
end of a longer chain of thought, so they read from the bottom up.
"""

import re

from ..repair import fix_bools
from .base import OutputParser, extract_fenced_block, last_nonblank_line
from .results import ParseFailure, ParseResult, Value

# "1. item" at the start of the text or of any line; the item ends at the newline.
# The dot must be followed by whitespace so "3.14 is pi" is not an item.
_NUMBERED_ITEM_RE = re.compile(r"(?:^|\n)[ \t]*\d+\.(?:[ \t]+|(?=\n)|$)([^\n]*)")


class BooleanParser(OutputParser):
    """Parse a ``true``/``false`` literal, tolerating Python capitalisation."""

    name = "boolean"

    def _parse(self, text: str) -> ParseResult:
        fixed = fix_bools(text)
        candidate = fixed.text.strip().rstrip(".").strip()
        if candidate == "true":
            return Value(value=True, repaired=fixed.fixed)
        if candidate == "false":
            return Value(value=False, repaired=fixed.fixed)
        return ParseFailure(
            reason=f"Expected 'true' or 'false', got: {candidate[:50]!r}",
            retriable=True,
            text=text,
        )


class CodeParser(OutputParser):
    """Return the contents of the first fenced code block."""

    name = "code"

    def _parse(self, text: str) -> ParseResult:
        block = extract_fenced_block(text)
        if block is None:
            return ParseFailure(reason="No code block found", retriable=True, text=text)
        code = block[0].strip()
        if not code:
            return ParseFailure(reason="Code block is empty", retriable=True, text=text)
        return Value(value=code)


class ListParser(OutputParser):
    """Split the last non-blank line on commas."""

    name = "list"

    def _parse(self, text: str) -> ParseResult:
        line = last_nonblank_line(text)
        items = [item.strip() for item in (line or "").split(",")]
        items = [item for item in items if item]
        if not items:
            return ParseFailure(reason="No list items found", retriable=True, text=text)
        return Value(value=items)


class NumberedListParser(OutputParser):
    """
    Collect ``1. item`` lines.

    Each item stops at the first newline after it, so commentary that
    follows the list is not folded into the last item.
    """

    name = "numberedlist"

    def _parse(self, text: str) -> ParseResult:
        items = [m.group(1).strip() for m in _NUMBERED_ITEM_RE.finditer(text)]
        items = [item for item in items if item]
        if not items:
            return ParseFailure(
                reason="No numbered list items found", retriable=True, text=text
            )
        return Value(value=items)


class LastLineParser(OutputParser):
    """Return the last non-blank line."""

    name = "lastline"

    def _parse(self, text: str) -> ParseResult:
        line = last_nonblank_line(text)
        if line is None:
            return ParseFailure(reason="No content found", retriable=True, text=text)
        return Value(value=line)
