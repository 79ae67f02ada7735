"""
Response accumulators.

A Response collects one or more completion calls; its totals are always the
sum over the calls recorded in it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Sequence


@dataclass(frozen=True)
class ApiCall:
    """Immutable record of one successful raw completion call.

    Append-only entries; once recorded they are never modified.
    """
    model: str
    text: str
    stop_reason: str
    prompt_tokens: int
    completion_tokens: int
    cost: float
    duration: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class Response:
    """Accumulated result of one logical extraction request."""
    api_responses: List[ApiCall] = field(default_factory=list)
    total_cost: float = 0.0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    api_time: float = 0.0
    data: Any = ""

    def record(self, call: ApiCall) -> None:
        """Append a call and fold it into the totals."""
        self.api_responses.append(call)
        self.total_cost += call.cost
        self.total_prompt_tokens += call.prompt_tokens
        self.total_completion_tokens += call.completion_tokens
        self.api_time += call.duration


@dataclass
class ScrapeResponse(Response):
    """Response for a whole document, carrying the document it came from."""
    url: Optional[str] = None
    document: Any = None
    auto_split_length: int = 0


def combine_responses(target: Response, responses: Sequence[Response]) -> Response:
    """Fold per-chunk responses into *target*.

    Totals are summed call by call. With more than one response, list data is
    concatenated in order and any other value appended; a single response's
    data is taken as-is.
    """
    for response in responses:
        for call in response.api_responses:
            target.record(call)

    if len(responses) == 1:
        target.data = responses[0].data
    elif responses:
        combined: List[Any] = []
        for response in responses:
            if isinstance(response.data, list):
                combined.extend(response.data)
            else:
                combined.append(response.data)
        target.data = combined
    return target
