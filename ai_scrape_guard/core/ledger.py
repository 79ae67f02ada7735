"""
Running spend and token totals for one extraction session.

The ledger is append-only: totals only ever grow.
"""

from dataclasses import dataclass

from .errors import MaxCostExceeded
from .token_counter import TokenUsage


@dataclass
class CostLedger:
    """Cumulative usage owned by a single ExtractionSession."""
    max_cost: float
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    total_cost: float = 0.0

    def __post_init__(self):
        """Validate the spend ceiling."""
        if self.max_cost < 0:
            raise ValueError("max_cost must be >= 0")

    def check(self) -> None:
        """Fail if spend has already passed the ceiling.

        Raises:
            MaxCostExceeded: If total_cost > max_cost
        """
        if self.total_cost > self.max_cost:
            raise MaxCostExceeded(
                f"Total cost ${self.total_cost:.4f} exceeds max cost ${self.max_cost:.4f}"
            )

    def record(self, usage: TokenUsage, cost: float) -> None:
        if cost < 0:
            raise ValueError("cost must be >= 0")
        self.total_prompt_tokens += usage.prompt_tokens
        self.total_completion_tokens += usage.completion_tokens
        self.total_cost += cost

    def stats(self) -> dict:
        return {
            "total_prompt_tokens": self.total_prompt_tokens,
            "total_completion_tokens": self.total_completion_tokens,
            "total_cost": self.total_cost,
        }
