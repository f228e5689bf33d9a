"""
LLM Call Interface for reasonloop

The loop only needs one capability from a model: turn a list of chat
messages into text. ``LLMClient`` provides it for any OpenAI-compatible
endpoint (vLLM, Ollama, SGLang, OpenAI) and maps SDK failures onto
``ProviderError`` with a retriable flag.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

import openai
from openai import AsyncOpenAI

from .config import config
from .errors import ProviderError

logger = logging.getLogger(__name__)

# Transient failures the loop may retry; everything else is fatal.
_RETRIABLE_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)
_FATAL_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.NotFoundError,
    openai.BadRequestError,
)


class Completion(str):
    """Completion text that also carries the token usage the endpoint reported."""

    usage: Optional[dict] = None

    def __new__(cls, text: str, usage: Optional[dict] = None):
        completion = super().__new__(cls, text)
        completion.usage = usage
        return completion


@runtime_checkable
class ModelProvider(Protocol):
    """Anything that can produce a completion for a transcript."""

    async def generate(self, messages: list[dict], params: Optional[dict] = None) -> str:
        ...


class LLMClient:
    """Async client for an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.base_url = base_url or config.model.base_url
        self.model = model or config.model.model
        # Retries are the loop's decision, never the SDK's
        self.client = client or AsyncOpenAI(
            base_url=self.base_url,
            api_key=api_key or config.model.api_key,
            max_retries=0,
        )

    async def generate(self, messages: list[dict], params: Optional[dict] = None) -> str:
        """Call the model.

        Args:
            messages: List of chat messages
            params: Optional overrides (temperature, max_tokens, stop)

        Returns:
            The completion text (empty string if the model returned none),
            with token usage attached when the endpoint reports it

        Raises:
            ProviderError: retriable for timeouts, connection errors, rate
                limits and server errors; fatal otherwise
        """
        params = params or {}
        create_kwargs: dict = {
            "model": params.get("model", self.model),
            "messages": messages,
            "temperature": params.get("temperature", config.model.temperature),
            "max_tokens": params.get("max_tokens", config.model.max_tokens),
        }
        if params.get("stop"):
            create_kwargs["stop"] = params["stop"]

        try:
            response = await self.client.chat.completions.create(**create_kwargs)  # type: ignore[arg-type]
        except _RETRIABLE_ERRORS as e:
            logger.warning("Model call failed (retriable): %s", e)
            raise ProviderError(f"Model call failed: {e}", retriable=True) from e
        except _FATAL_ERRORS as e:
            logger.error("Model call failed: %s", e)
            raise ProviderError(f"Model call failed: {e}", retriable=False) from e
        except openai.APIError as e:
            logger.error("Model call failed: %s", e)
            raise ProviderError(f"Model call failed: {e}", retriable=False) from e

        if not response.choices:
            raise ProviderError("Model returned no choices", retriable=True)

        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return Completion(response.choices[0].message.content or "", usage=usage)

    async def close(self) -> None:
        await self.client.close()
