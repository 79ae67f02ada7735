"""
Token counting and usage tracking.

Counts prompt tokens with the tokenizer matching each model's encoding.
"""

from dataclasses import dataclass
from functools import lru_cache

import tiktoken

_DEFAULT_ENCODING = "cl100k_base"


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Contains exact token counts as reported by the completion provider.
    """
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


@lru_cache(maxsize=64)
def _encoding_for_model(model: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        # unregistered with tiktoken, e.g. a custom ModelSpec name
        return tiktoken.get_encoding(_DEFAULT_ENCODING)


def estimate_tokens(model: str, text: str) -> int:
    """Count the tokens *text* occupies under *model*'s encoding.

    Args:
        model: Model identifier
        text: Text to encode

    Returns:
        Number of tokens; identical input always yields the same count
    """
    if not text:
        return 0
    # scraped pages may contain literal special-token strings
    return len(_encoding_for_model(model).encode(text, disallowed_special=()))
