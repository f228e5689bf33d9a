"""
Tests for output parsers.

Tests cover:
- Action/final-answer parsing of ReAct turns
- JSON parsing with repair
- Scalar, list and date parsers
- The parser table
"""

from datetime import datetime

import pytest

from reasonloop.parsers import (
    Action,
    ActionParser,
    BooleanParser,
    CodeParser,
    DateTimeParser,
    Final,
    LastLineParser,
    ListParser,
    NumberedListParser,
    ParseFailure,
    ParserSet,
    StructuredParser,
    Value,
    default_parser_set,
    extract_fenced_block,
    extract_thought,
)
from reasonloop.parsers.action import MISSING_ACTION


class TestActionParser:
    """Tests for ActionParser."""

    def setup_method(self):
        self.parser = ActionParser()

    def test_parses_action_and_input(self):
        """Thought / Action / Action Input yields an Action."""
        result = self.parser.parse(
            "Thought: I should search\nAction: web_search\nAction Input: weather in Paris"
        )
        assert result == Action(name="web_search", raw_input="weather in Paris")

    def test_parses_final_answer(self):
        """Final Answer yields a Final with the remaining text."""
        result = self.parser.parse("Thought: I know this\nFinal Answer: 42")
        assert result == Final(content="42")

    def test_final_answer_keeps_multiline_content(self):
        """Everything after the marker belongs to the answer."""
        result = self.parser.parse("Final Answer: line one\nline two")
        assert result == Final(content="line one\nline two")

    def test_action_without_input(self):
        """A missing Action Input gives raw_input None."""
        result = self.parser.parse("Action: list_files")
        assert result == Action(name="list_files", raw_input=None)

    def test_numbered_markers(self):
        """Numbered markers like 'Action 2:' are accepted."""
        result = self.parser.parse("Thought 2: next\nAction 2: echo\nAction Input 2: hello")
        assert result == Action(name="echo", raw_input="hello")

    def test_markdown_bold_markers(self):
        """Bold markers like '**Action**:' are accepted."""
        result = self.parser.parse("**Action**: echo\n**Action Input**: hello")
        assert result == Action(name="echo", raw_input="hello")

    def test_strips_surrounding_quotes(self):
        """One pair of surrounding quotes is removed from the input."""
        result = self.parser.parse('Action: echo\nAction Input: "hello world"')
        assert result.raw_input == "hello world"

    def test_keeps_quotes_in_query_input(self):
        """Query-language inputs keep their quoting."""
        result = self.parser.parse("Action: db\nAction Input: SELECT * FROM t WHERE a = 'x'")
        assert result.raw_input == "SELECT * FROM t WHERE a = 'x'"

    def test_keeps_quotes_in_lowercase_query_input(self):
        """Query keywords are matched case-insensitively."""
        result = self.parser.parse("Action: db\nAction Input: select * from t where a = 'x'")
        assert result.raw_input == "select * from t where a = 'x'"

    def test_input_stops_at_observation(self):
        """A hallucinated Observation is not part of the input."""
        result = self.parser.parse("Action: echo\nAction Input: hi\nObservation: made up")
        assert result.raw_input == "hi"

    def test_json_input_kept_raw(self):
        """JSON inputs are passed through for the resolver to decode."""
        result = self.parser.parse('Action: counter__increment\nAction Input: {"value": 3}')
        assert result == Action(name="counter__increment", raw_input='{"value": 3}')

    def test_action_and_final_is_retriable_failure(self):
        """Both an action and a final answer is a contradiction."""
        result = self.parser.parse("Action: echo\nAction Input: hi\nFinal Answer: done")
        assert isinstance(result, ParseFailure)
        assert result.retriable is True
        assert "both a final answer and a parseable action" in result.reason

    def test_no_markers_is_retriable_failure(self):
        """Plain prose is a retriable format error."""
        result = self.parser.parse("I am not sure what to do.")
        assert isinstance(result, ParseFailure)
        assert result.retriable is True
        assert result.reason == MISSING_ACTION

    def test_empty_tool_name_is_failure(self):
        """An Action marker with no name cannot be dispatched."""
        result = self.parser.parse("Action:\nAction Input: hi")
        assert isinstance(result, ParseFailure)
        assert result.retriable is True

    def test_final_answer_as_action_name(self):
        """'Action: Final Answer' is treated as a final answer."""
        result = self.parser.parse("Action: Final Answer\nAction Input: 7")
        assert result == Final(content="7")

    def test_think_block_ignored(self):
        """Markers inside <think> do not count."""
        result = self.parser.parse(
            "<think>Maybe Action: echo?</think>\nFinal Answer: nothing to do"
        )
        assert result == Final(content="nothing to do")

    def test_empty_output_is_failure(self):
        """Empty or whitespace-only output is a retriable failure."""
        for text in ("", "   \n", None):
            result = self.parser.parse(text)
            assert isinstance(result, ParseFailure)
            assert result.retriable is True

    def test_failure_keeps_original_text(self):
        """Failures carry the text for diagnostics."""
        result = self.parser.parse("gibberish")
        assert result.text == "gibberish"


class TestExtractThought:
    """Tests for extract_thought."""

    def test_text_before_action(self):
        """The thought is the text before the first marker."""
        assert extract_thought("Thought: look it up\nAction: web_search") == "look it up"

    def test_think_block_preferred(self):
        """A <think> block wins over surrounding text."""
        assert extract_thought("<think>reasoning</think>Final Answer: x") == "reasoning"

    def test_no_thought(self):
        """Output that starts with a marker has no thought."""
        assert extract_thought("Final Answer: 1") is None


class TestStructuredParser:
    """Tests for StructuredParser."""

    def setup_method(self):
        self.parser = StructuredParser()

    def test_valid_json(self):
        """Valid JSON parses without repair."""
        result = self.parser.parse('{"a": 1, "b": [true, null]}')
        assert result == Value(value={"a": 1, "b": [True, None]}, repaired=False)

    def test_truncated_json_repaired(self):
        """Truncated JSON is closed and flagged as repaired."""
        result = self.parser.parse('{"name": "x", "tags": ["a", "b"')
        assert isinstance(result, Value)
        assert result.value == {"name": "x", "tags": ["a", "b"]}
        assert result.repaired is True

    def test_python_booleans_repaired(self):
        """Capitalised booleans are fixed."""
        result = self.parser.parse('{"ok": True}')
        assert result == Value(value={"ok": True}, repaired=True)

    def test_fenced_block_only(self):
        """Only the first fenced block is parsed; prose is ignored."""
        text = 'Sure, here you go:\n```json\n{"a": 1}\n```\nAnything else? {"b": 2}'
        result = self.parser.parse(text)
        assert result == Value(value={"a": 1}, repaired=False)

    def test_invalid_json_is_failure(self):
        """Unrepairable text is a retriable failure."""
        result = self.parser.parse("{not json at all")
        assert isinstance(result, ParseFailure)
        assert result.retriable is True
        assert result.reason.startswith("Invalid JSON")


class TestExtractFencedBlock:
    """Tests for extract_fenced_block."""

    def test_extracts_content_and_remainder(self):
        """Returns the block body and the text outside it."""
        content, remainder = extract_fenced_block("before\n```python\nx = 1\n```\nafter")
        assert content == "x = 1\n"
        assert "before" in remainder and "after" in remainder

    def test_unterminated_fence(self):
        """An unclosed fence runs to the end of the text."""
        content, _ = extract_fenced_block("```\nx = 1")
        assert content == "x = 1"

    def test_no_fence(self):
        """Text without a fence gives None."""
        assert extract_fenced_block("no code here") is None


class TestTextParsers:
    """Tests for scalar and list parsers."""

    @pytest.mark.parametrize(
        "text,expected",
        [("true", True), ("false", False), ("True", True), (" False. ", False)],
    )
    def test_boolean(self, text, expected):
        """Boolean literals parse, tolerating capitalisation."""
        result = BooleanParser().parse(text)
        assert isinstance(result, Value)
        assert result.value is expected

    def test_boolean_rejects_other_text(self):
        """Anything else is a failure."""
        assert isinstance(BooleanParser().parse("maybe"), ParseFailure)

    def test_code_block(self):
        """CodeParser returns the stripped block contents."""
        result = CodeParser().parse("Here:\n```python\nprint('hi')\n```")
        assert result == Value(value="print('hi')")

    def test_code_requires_block(self):
        """No fence is a failure."""
        assert isinstance(CodeParser().parse("print('hi')"), ParseFailure)

    def test_list_reads_last_line(self):
        """ListParser splits the last non-blank line on commas."""
        result = ListParser().parse("Let me think.\nred, green , blue\n\n")
        assert result == Value(value=["red", "green", "blue"])

    def test_numbered_list(self):
        """Items stop at the end of their line."""
        text = "Steps:\n1. first\n2. second\nThat is all."
        result = NumberedListParser().parse(text)
        assert result == Value(value=["first", "second"])

    def test_numbered_list_ignores_decimals(self):
        """A line starting with a decimal number is not a list item."""
        text = "1. Look up pi\n3.14 is pi\n2. Round it"
        result = NumberedListParser().parse(text)
        assert result == Value(value=["Look up pi", "Round it"])

    def test_numbered_list_missing(self):
        """No numbered items is a failure."""
        assert isinstance(NumberedListParser().parse("no items"), ParseFailure)

    def test_last_line(self):
        """LastLineParser returns the final non-blank line."""
        assert LastLineParser().parse("a\nb\n\n") == Value(value="b")


class TestDateTimeParser:
    """Tests for DateTimeParser."""

    def test_absolute_date(self):
        """An explicit date on the last line is parsed."""
        result = DateTimeParser().parse("The launch happened on\nMarch 5, 2024")
        assert isinstance(result, Value)
        assert (result.value.year, result.value.month, result.value.day) == (2024, 3, 5)

    def test_relative_date(self):
        """Relative words resolve against the supplied clock."""
        parser = DateTimeParser(now=lambda: datetime(2024, 1, 10, 15, 30))
        result = parser.parse("tomorrow")
        assert result == Value(value=datetime(2024, 1, 11))

    def test_no_date(self):
        """Text without a date is a failure."""
        result = DateTimeParser().parse("no idea")
        assert isinstance(result, ParseFailure)


class TestParserSet:
    """Tests for ParserSet."""

    def test_default_names(self):
        """The default table holds every built-in parser."""
        parsers = default_parser_set()
        assert set(parsers.names()) == {
            "json",
            "action",
            "boolean",
            "code",
            "list",
            "numberedlist",
            "lastline",
            "datetime",
        }

    def test_parse_by_name(self):
        """parse dispatches to the named parser."""
        assert default_parser_set().parse("boolean", "true") == Value(value=True)

    def test_unknown_name_is_fatal_failure(self):
        """An unknown parser name is a non-retriable failure."""
        result = default_parser_set().parse("yaml", "a: 1")
        assert isinstance(result, ParseFailure)
        assert result.retriable is False

    def test_duplicate_names_rejected(self):
        """Two parsers with the same name cannot share a table."""
        with pytest.raises(ValueError, match="Duplicate"):
            ParserSet([BooleanParser(), BooleanParser()])
