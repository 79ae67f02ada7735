"""
Pricing calculations and model limits.

Handles context-window lookups and cost computations for completion models.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, Optional

from .errors import UnknownModel
from .token_counter import TokenUsage, estimate_tokens


@dataclass(frozen=True)
class ModelSpec:
    """Context window and per-1K-token pricing for a specific model."""
    name: str
    max_context_tokens: int
    prompt_cost_per_1k: Decimal  # Cost per 1K prompt tokens
    completion_cost_per_1k: Decimal  # Cost per 1K completion tokens

    def __post_init__(self):
        """Validate limits and coerce prices to Decimal."""
        if not self.name or not self.name.strip():
            raise ValueError("model name is required and cannot be empty")
        if self.max_context_tokens <= 0:
            raise ValueError(f"max_context_tokens for {self.name} must be > 0")
        # frozen dataclass: coerce through object.__setattr__
        for attr in ("prompt_cost_per_1k", "completion_cost_per_1k"):
            value = Decimal(str(getattr(self, attr)))
            if value < 0:
                raise ValueError(f"{attr} for {self.name} must be >= 0")
            object.__setattr__(self, attr, value)


@dataclass(frozen=True)
class ModelTable:
    """Fixed registry of model specs, keyed by model name."""
    specs: Dict[str, ModelSpec] = field(default_factory=dict)

    def get(self, model: str) -> ModelSpec:
        """Get the spec for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelSpec for the model

        Raises:
            UnknownModel: If model is not registered
        """
        if model not in self.specs:
            raise UnknownModel(f"Unknown model: {model}")
        return self.specs[model]

    def with_models(self, specs: Iterable[ModelSpec]) -> "ModelTable":
        """Return a new table with *specs* added (or replacing same-named ones)."""
        merged = dict(self.specs)
        for spec in specs:
            merged[spec.name] = spec
        return ModelTable(merged)


def _spec(name: str, max_context_tokens: int, prompt: str, completion: str) -> ModelSpec:
    return ModelSpec(name, max_context_tokens, Decimal(prompt), Decimal(completion))


# Fixed pricing table - no dynamic fetching
DEFAULT_MODEL_TABLE = ModelTable({
    spec.name: spec
    for spec in (
        _spec("gpt-3.5-turbo", 4096, "0.0015", "0.002"),
        _spec("gpt-3.5-turbo-16k", 16384, "0.003", "0.004"),
        _spec("gpt-4", 8192, "0.03", "0.06"),
        _spec("gpt-4-32k", 32768, "0.06", "0.12"),
        _spec("gpt-4-turbo", 128000, "0.01", "0.03"),
        _spec("gpt-4o", 128000, "0.0025", "0.01"),
        _spec("gpt-4o-mini", 128000, "0.00015", "0.0006"),
    )
})


def max_tokens(model: str, table: Optional[ModelTable] = None) -> int:
    """Return the context-window ceiling for *model*.

    Raises:
        UnknownModel: If model is not registered
    """
    return (table or DEFAULT_MODEL_TABLE).get(model).max_context_tokens


def calculate_cost(model: str, usage: TokenUsage, table: Optional[ModelTable] = None) -> float:
    """Calculate total cost for model usage.

    Args:
        model: Model identifier
        usage: Token usage data
        table: Model registry; defaults to DEFAULT_MODEL_TABLE

    Returns:
        Exact cost as a float, never rounded

    Raises:
        UnknownModel: If model is not registered
    """
    spec = (table or DEFAULT_MODEL_TABLE).get(model)

    prompt_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * spec.prompt_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * spec.completion_cost_per_1k

    return float(prompt_cost + completion_cost)


def cost_estimate(html: str, model: str = "gpt-4", table: Optional[ModelTable] = None) -> float:
    """Rough pre-flight cost estimate for sending *html* to *model*.

    Assumes the completion is as long as the prompt. This is a heuristic,
    not a bound on actual spend; the ledger does the real accounting.
    """
    tokens = estimate_tokens(model, html)
    return calculate_cost(model, TokenUsage(prompt_tokens=tokens, completion_tokens=tokens), table)
