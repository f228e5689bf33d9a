"""
Self-evaluation of candidate final answers.

Before a final answer is accepted, an evaluator may judge it against the
goal. A rejected answer comes back as a critique, which the loop feeds to
the model as an observation.
"""

import logging
from typing import Optional, Protocol

from ..llm_call import ModelProvider
from ..parsers import BooleanParser, Value

logger = logging.getLogger(__name__)

EVALUATION_PROMPT = """You are checking whether an answer is valid for a question.

Question: {goal}
Proposed answer: {answer}

If the answer correctly and completely answers the question, reply with the single word true.
Otherwise reply with false on the first line, and on the next line explain what is wrong or missing."""

DEFAULT_CRITIQUE = "I don't know whether that answer is correct. Check it against the question and try again."


class AnswerEvaluator(Protocol):
    async def evaluate(self, goal: str, answer: str) -> Optional[str]:
        """Return None to accept the answer, or a critique to reject it."""
        ...


class SelfEvaluator:
    """Asks a model to grade the answer it (or another model) produced."""

    def __init__(self, model: ModelProvider, params: Optional[dict] = None):
        self.model = model
        self.params = params or {"temperature": 0.0}
        self._parser = BooleanParser()

    async def evaluate(self, goal: str, answer: str) -> Optional[str]:
        messages = [{"role": "user", "content": EVALUATION_PROMPT.format(goal=goal, answer=answer)}]
        response = await self.model.generate(messages, self.params)

        first_line, _, rest = response.strip().partition("\n")
        verdict = self._parser.parse(first_line)
        if isinstance(verdict, Value) and verdict.value is True:
            return None

        logger.debug("Answer rejected by evaluator: %s", response[:200])
        return rest.strip() or DEFAULT_CRITIQUE
