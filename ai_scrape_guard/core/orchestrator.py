"""
Completion orchestration with retry, model fallback and spend enforcement.

One ``run`` issues a single logical extraction request:

1. Fail with MaxCostExceeded if the ledger is already over its ceiling
2. Fail with TooManyTokens if the content does not fit the current model
3. Call the provider; anything but a normal stop is a BadStop
4. Record usage in the ledger and the Response

Transient transport errors retry on the same model. TooManyTokens and
BadStop advance to the next fallback model. Both share one attempt budget of
``retry.max_retries + 1``. Everything else propagates unchanged.
"""

import abc
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from .cancellation import CancellationToken
from .chunking import TokenCounter
from .errors import Cancelled, ScrapeError, TooManyTokens, BadStop, classify_error
from .ledger import CostLedger
from .pricing import DEFAULT_MODEL_TABLE, ModelTable, calculate_cost
from .responses import ApiCall, Response
from .retry import FALLBACK_KINDS, RetryPolicy
from .token_counter import TokenUsage, estimate_tokens

logger = logging.getLogger(__name__)

STOP_REASON_COMPLETE = "stop"


@dataclass(frozen=True)
class ExtractionRequest:
    """A single logical ask: instructions plus the content to extract from."""
    instructions: Tuple[str, ...]
    content: str
    schema_description: str = ""

    def to_messages(self) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": text} for text in self.instructions]
        messages.append({"role": "user", "content": self.content})
        return messages


@dataclass(frozen=True)
class Completion:
    """What a provider returns for one chat completion."""
    text: str
    stop_reason: str
    prompt_tokens: int
    completion_tokens: int


class CompletionProvider(abc.ABC):
    """Interface every LLM transport adapter must implement."""

    @abc.abstractmethod
    def complete(
        self,
        model: str,
        messages: List[Dict[str, str]],
        model_params: Mapping[str, Any],
    ) -> Completion:
        """Send a chat completion request.

        Args:
            model: Provider-side model identifier
            messages: ``{"role": ..., "content": ...}`` dicts
            model_params: Extra sampling parameters (temperature etc.)

        Returns:
            Completion with text, stop reason and token counts

        Raises:
            CompletionError: Transport failures, classified by ErrorKind
        """


@dataclass
class _RunState:
    model_index: int = 0
    attempts: int = 0


@dataclass
class CompletionOrchestrator:
    """Drives provider calls for one session under its ledger and retry policy."""
    provider: CompletionProvider
    ledger: CostLedger
    models: Sequence[str]
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    model_table: ModelTable = DEFAULT_MODEL_TABLE
    model_params: Mapping[str, Any] = field(default_factory=dict)
    count_tokens: TokenCounter = estimate_tokens

    def __post_init__(self):
        """Validate the fallback list against the model table."""
        self.models = tuple(self.models)
        if not self.models:
            raise ValueError("at least one model is required")
        for model in self.models:
            self.model_table.get(model)
        self.model_params = dict(self.model_params)

    def run(
        self,
        request: ExtractionRequest,
        response: Optional[Response] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Response:
        """Run *request* to completion, recording calls into *response*.

        Args:
            request: Instructions and content to send
            response: Accumulator to record into; a new Response if omitted
            cancel_token: Checked before every call and every retry wait

        Returns:
            The response, with ``data`` set to the completion text

        Raises:
            ScrapeError: The terminal failure, stamped with model and attempts
        """
        if response is None:
            response = Response()
        state = _RunState()

        retrying = Retrying(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_fixed(self.retry.wait_seconds),
            retry=retry_if_exception(lambda exc: self._should_retry(exc, state)),
            before_sleep=lambda retry_state: self._before_retry(retry_state, state),
            sleep=cancel_token.wait if cancel_token is not None else time.sleep,
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    text = self._attempt(request, response, state, cancel_token)
        except ScrapeError as exc:
            exc.model = self.models[state.model_index]
            exc.attempts = state.attempts
            if isinstance(exc, Cancelled) and exc.response is None:
                exc.response = response
            raise

        response.data = text
        return response

    def _should_retry(self, exc: BaseException, state: _RunState) -> bool:
        kind = classify_error(exc)
        if self.retry.is_retryable(kind):
            return True
        if kind in FALLBACK_KINDS:
            return state.model_index + 1 < len(self.models)
        return False

    def _before_retry(self, retry_state: RetryCallState, state: _RunState) -> None:
        exc = retry_state.outcome.exception()
        kind = classify_error(exc)
        if not self.retry.is_retryable(kind) and kind in FALLBACK_KINDS:
            state.model_index += 1
            logger.warning(
                "falling back attempt=%d error=%s next_model=%s: %s",
                state.attempts, kind.value, self.models[state.model_index], exc,
            )
        else:
            logger.warning(
                "retrying attempt=%d error=%s model=%s wait=%.1fs: %s",
                state.attempts, kind.value, self.models[state.model_index],
                self.retry.wait_seconds, exc,
            )

    def _attempt(
        self,
        request: ExtractionRequest,
        response: Response,
        state: _RunState,
        cancel_token: Optional[CancellationToken],
    ) -> str:
        state.attempts += 1
        model = self.models[state.model_index]

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        self.ledger.check()

        tokens = self.count_tokens(model, request.content)
        limit = self.model_table.get(model).max_context_tokens
        if tokens > limit:
            raise TooManyTokens(f"Content is {tokens} tokens, max for {model} is {limit}")

        return self._raw_request(model, request.to_messages(), response)

    def _raw_request(self, model: str, messages: List[Dict[str, str]], response: Response) -> str:
        start = time.perf_counter()
        completion = self.provider.complete(model, messages, dict(self.model_params))
        elapsed = time.perf_counter() - start

        usage = TokenUsage(
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
        )
        cost = calculate_cost(model, usage, self.model_table)
        logger.info(
            "API response model=%s duration=%.2fs prompt_tokens=%d completion_tokens=%d "
            "finish_reason=%s cost=%.4f",
            model, elapsed, usage.prompt_tokens, usage.completion_tokens,
            completion.stop_reason, cost,
        )

        if completion.stop_reason != STOP_REASON_COMPLETE:
            raise BadStop(
                f"{model} did not stop: {completion.stop_reason} "
                f"(prompt_tokens={usage.prompt_tokens}, completion_tokens={usage.completion_tokens})"
            )

        self.ledger.record(usage, cost)
        response.record(ApiCall(
            model=model,
            text=completion.text,
            stop_reason=completion.stop_reason,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            cost=cost,
            duration=elapsed,
        ))
        return completion.text
