"""
Shared parser plumbing: the base class and fenced-block helpers.
"""

import logging
import re
from typing import Optional

from .results import ParseFailure, ParseResult

logger = logging.getLogger(__name__)

# ```lang\n ... ``` (language tag optional)
_FENCE_RE = re.compile(r"```[ \t]*[\w+.-]*[ \t]*\n?(.*?)```", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"```[ \t]*[\w+.-]*[ \t]*\n?(.*)$", re.DOTALL)


def extract_fenced_block(text: str) -> Optional[tuple[str, str]]:
    """
    Extract the first fenced code block.

    A fence that was opened but never closed (truncated output) counts as
    a block running to the end of the text.

    Returns:
        Tuple of (inner content, remaining text outside the block), or
        None if the text has no fence.
    """
    match = _FENCE_RE.search(text)
    if match is None:
        match = _OPEN_FENCE_RE.search(text)
    if match is None:
        return None
    remainder = (text[: match.start()] + text[match.end():]).strip()
    return match.group(1), remainder


def last_nonblank_line(text: str) -> Optional[str]:
    """Return the last line with visible content, stripped."""
    for line in reversed(text.splitlines()):
        if line.strip():
            return line.strip()
    return None


class OutputParser:
    """
    Base class for output parsers.

    Subclasses implement ``_parse``. ``parse`` is total: empty input and
    unexpected exceptions both come back as ``ParseFailure``.
    """

    name: str = ""

    def parse(self, text: Optional[str]) -> ParseResult:
        if text is None or not text.strip():
            return ParseFailure(reason="Empty model output", retriable=True, text=text or "")
        try:
            return self._parse(text)
        except Exception as e:
            logger.warning("Parser '%s' failed unexpectedly: %s", self.name, e)
            return ParseFailure(
                reason=f"{self.name} parser error: {e}", retriable=True, text=text
            )

    def _parse(self, text: str) -> ParseResult:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
