"""
Best-effort natural-language date extraction.
"""

import re
from datetime import datetime, timedelta
from typing import Callable, Optional

from dateutil import parser as date_parser

from .base import OutputParser, last_nonblank_line
from .results import ParseFailure, ParseResult, Value

_RELATIVE_DAYS = {
    "today": 0,
    "now": 0,
    "tomorrow": 1,
    "yesterday": -1,
}
_RELATIVE_RE = re.compile(r"\b(" + "|".join(_RELATIVE_DAYS) + r")\b", re.IGNORECASE)


class DateTimeParser(OutputParser):
    """
    Extract a date/time from free text.

    Tries the last non-blank line first (where the answer usually is),
    then the whole text. Relative words such as "tomorrow" resolve
    against ``now``.
    """

    name = "datetime"

    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        self._now = now or datetime.now

    def _parse(self, text: str) -> ParseResult:
        candidates = [last_nonblank_line(text) or "", text.strip()]
        for candidate in candidates:
            value = self._parse_candidate(candidate)
            if value is not None:
                return Value(value=value)
        return ParseFailure(
            reason=f"No date found in: {text.strip()[:80]!r}",
            retriable=True,
            text=text,
        )

    def _parse_candidate(self, candidate: str) -> Optional[datetime]:
        if not candidate:
            return None
        try:
            return date_parser.parse(candidate, fuzzy=True)
        except (ValueError, OverflowError):
            pass

        relative = _RELATIVE_RE.search(candidate)
        if relative:
            today = self._now().replace(hour=0, minute=0, second=0, microsecond=0)
            return today + timedelta(days=_RELATIVE_DAYS[relative.group(1).lower()])
        return None
