"""
JSON output parser with truncation repair.
"""

import json
import logging

from ..repair import balance_brackets, fix_bools
from .base import OutputParser, extract_fenced_block
from .results import ParseFailure, ParseResult, Value

logger = logging.getLogger(__name__)


def parse_json_fragment(text: str) -> ParseResult:
    """
    Repair and strictly parse a JSON fragment.

    Used by the structured parser and by the action resolver when a tool
    input looks like a JSON object.
    """
    balanced = balance_brackets(text)
    candidate = balanced.text
    repaired = balanced.fixed

    try:
        return Value(value=json.loads(candidate), repaired=repaired)
    except json.JSONDecodeError as e:
        error = e

    # Python-style booleans are the next most common defect
    bools = fix_bools(candidate)
    if bools.fixed:
        try:
            return Value(value=json.loads(bools.text), repaired=True)
        except json.JSONDecodeError as e:
            error = e

    return ParseFailure(reason=f"Invalid JSON: {error}", retriable=True, text=text)


class StructuredParser(OutputParser):
    """
    Parse JSON from model output.

    If the text contains a fenced block, only the first block is parsed and
    the prose around it is ignored.
    """

    name = "json"

    def _parse(self, text: str) -> ParseResult:
        block = extract_fenced_block(text)
        candidate = block[0] if block else text

        result = parse_json_fragment(candidate)
        if isinstance(result, ParseFailure):
            logger.debug("JSON parse failed: %s", result.reason)
            return ParseFailure(reason=result.reason, retriable=True, text=text)
        if result.repaired:
            logger.debug("JSON output needed repair")
        return result
