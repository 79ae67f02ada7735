"""
Token-aware chunking of serialized document fragments.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Sequence, Tuple

from .token_counter import estimate_tokens

logger = logging.getLogger(__name__)

TokenCounter = Callable[[str, str], int]


@dataclass(frozen=True)
class Chunk:
    """Consecutive fragments sent together as one completion request."""
    fragments: Tuple[str, ...]
    tokens: int

    @property
    def html(self) -> str:
        return "".join(self.fragments)


def chunk_fragments(
    fragments: Sequence[str],
    max_tokens: int,
    model: str,
    count_tokens: TokenCounter = estimate_tokens,
) -> List[Chunk]:
    """Split *fragments* into token-bounded chunks without reordering.

    A chunk is closed before a fragment that would push it past *max_tokens*.
    A fragment that alone exceeds *max_tokens* still forms its own chunk; the
    orchestrator's context check reports it rather than dropping content.
    Zero-token fragments (e.g. empty strings) never open a chunk of their own;
    they ride along with the next fragment, so such a chunk may exceed
    *max_tokens* while holding only one non-empty fragment.
    Empty input yields a single empty chunk.

    Args:
        fragments: Serialized fragments in document order
        max_tokens: Target token ceiling per chunk
        model: Model whose tokenizer counts the fragments
        count_tokens: ``(model, text) -> int`` token counter

    Returns:
        Chunks that together contain every fragment exactly once, in order
    """
    if max_tokens < 1:
        raise ValueError("max_tokens must be >= 1")

    chunks: List[Chunk] = []
    current: List[str] = []
    current_tokens = 0

    for fragment in fragments:
        fragment_tokens = count_tokens(model, fragment)
        if current_tokens + fragment_tokens > max_tokens and current_tokens > 0:
            chunks.append(Chunk(tuple(current), current_tokens))
            current = []
            current_tokens = 0
        current.append(fragment)
        current_tokens += fragment_tokens

    chunks.append(Chunk(tuple(current), current_tokens))
    logger.debug("chunked fragments num=%d sizes=%s", len(chunks), [c.tokens for c in chunks])
    return chunks
