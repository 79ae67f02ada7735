"""
OpenAI completion provider.

Adapts the OpenAI chat completions API to the CompletionProvider interface
and classifies SDK failures into ErrorKinds.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import openai
from openai import OpenAI

from ..core.errors import CompletionError, ErrorKind
from ..core.orchestrator import Completion, CompletionProvider

logger = logging.getLogger(__name__)


def classify_openai_error(exc: openai.OpenAIError) -> ErrorKind:
    """Map an OpenAI SDK exception to an ErrorKind."""
    # APITimeoutError subclasses APIConnectionError; check it first
    if isinstance(exc, openai.APITimeoutError):
        return ErrorKind.TIMED_OUT
    if isinstance(exc, openai.APIConnectionError):
        return ErrorKind.CONNECTION_FAILED
    if isinstance(exc, openai.RateLimitError):
        return ErrorKind.RATE_LIMITED
    return ErrorKind.OTHER


class OpenAIProvider(CompletionProvider):
    """Calls the OpenAI Chat Completions API.

    All failures are loud: SDK errors surface as CompletionError with the
    original exception chained.
    """

    def __init__(self, client: Optional[OpenAI] = None, **client_kwargs: Any):
        """Initialize the provider.

        Args:
            client: Preconfigured OpenAI client (optional)
            **client_kwargs: Passed to ``OpenAI()`` when no client is given

        The SDK's own retries are off by default; RetryPolicy owns every retry.
        """
        if client is None:
            client_kwargs.setdefault("max_retries", 0)
            client = OpenAI(**client_kwargs)
        self.client = client

    def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        model_params: Mapping[str, Any],
    ) -> Completion:
        """Create a chat completion.

        Raises:
            ValueError: If messages is empty or usage is missing
            CompletionError: On any OpenAI API failure
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                **model_params
            )
        except openai.OpenAIError as exc:
            kind = classify_openai_error(exc)
            logger.debug("OpenAI error model=%s kind=%s: %s", model, kind.value, exc)
            raise CompletionError(kind, f"OpenAI request failed for {model}: {exc}") from exc

        usage = response.usage
        if not usage:
            raise ValueError("OpenAI response missing usage information")

        choice = response.choices[0]
        return Completion(
            text=choice.message.content or "",
            stop_reason=choice.finish_reason or "",
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
        )
