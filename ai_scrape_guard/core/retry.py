"""
Retry rules for completion calls.

The policy is plain configuration; the orchestrator interprets it.
"""

from dataclasses import dataclass, field
from typing import FrozenSet

from .errors import ErrorKind

DEFAULT_RETRY_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.TIMED_OUT,
    ErrorKind.CONNECTION_FAILED,
})

# Not transient, but a model with a larger context may succeed
FALLBACK_KINDS: FrozenSet[ErrorKind] = frozenset({
    ErrorKind.TOO_MANY_TOKENS,
    ErrorKind.BAD_STOP,
})


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget shared by same-model retries and model fallbacks.

    A single run makes at most ``max_retries + 1`` attempts across all models.
    """
    max_retries: int = 0
    wait_seconds: float = 30.0
    retry_kinds: FrozenSet[ErrorKind] = field(default=DEFAULT_RETRY_KINDS)

    def __post_init__(self):
        """Validate retry values."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.wait_seconds < 0:
            raise ValueError("wait_seconds must be >= 0")
        object.__setattr__(self, "retry_kinds", frozenset(self.retry_kinds))

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def is_retryable(self, kind: ErrorKind) -> bool:
        return kind in self.retry_kinds
