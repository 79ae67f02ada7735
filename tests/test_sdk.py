"""
Unit tests for SDK layer.

Tests the OpenAI provider adapter and error classification.
"""

from unittest.mock import Mock, patch

import httpx
import openai
import pytest

from ai_scrape_guard.core.errors import CompletionError, ErrorKind
from ai_scrape_guard.core.ledger import CostLedger
from ai_scrape_guard.core.orchestrator import Completion, CompletionOrchestrator, ExtractionRequest
from ai_scrape_guard.core.retry import RetryPolicy
from ai_scrape_guard.sdk.openai_client import OpenAIProvider, classify_openai_error

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
MESSAGES = [{"role": "system", "content": "Extract"}, {"role": "user", "content": "<p>Hi</p>"}]


def _status_error(cls, status_code: int, message: str):
    return cls(message, response=httpx.Response(status_code, request=REQUEST), body=None)


def _mock_response(content="{}", finish_reason="stop", prompt_tokens=100, completion_tokens=50):
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    response.choices[0].finish_reason = finish_reason
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    return response


class TestClassifyOpenAIError:
    """Test OpenAI exception -> ErrorKind mapping."""

    def test_timeout(self):
        """Timeouts are connection errors too; they must still classify as timeouts."""
        assert classify_openai_error(openai.APITimeoutError(request=REQUEST)) == ErrorKind.TIMED_OUT

    def test_connection(self):
        exc = openai.APIConnectionError(request=REQUEST)
        assert classify_openai_error(exc) == ErrorKind.CONNECTION_FAILED

    def test_rate_limit(self):
        exc = _status_error(openai.RateLimitError, 429, "slow down")
        assert classify_openai_error(exc) == ErrorKind.RATE_LIMITED

    def test_other_api_errors(self):
        exc = _status_error(openai.BadRequestError, 400, "bad request")
        assert classify_openai_error(exc) == ErrorKind.OTHER


class TestOpenAIProvider:
    """Test OpenAIProvider adapter."""

    @patch('ai_scrape_guard.sdk.openai_client.OpenAI')
    def test_init_creates_client(self, mock_openai_class):
        """Client kwargs are forwarded when no client is given."""
        mock_openai_class.return_value = Mock()

        provider = OpenAIProvider(api_key="sk-test", timeout=10)

        mock_openai_class.assert_called_once_with(api_key="sk-test", timeout=10, max_retries=0)
        assert provider.client is mock_openai_class.return_value

    @patch('ai_scrape_guard.sdk.openai_client.OpenAI')
    def test_init_disables_sdk_retries(self, mock_openai_class):
        """The SDK never retries on its own; RetryPolicy owns the attempt budget."""
        OpenAIProvider()

        mock_openai_class.assert_called_once_with(max_retries=0)

    @patch('ai_scrape_guard.sdk.openai_client.OpenAI')
    def test_init_explicit_sdk_retries_kept(self, mock_openai_class):
        OpenAIProvider(max_retries=3)

        mock_openai_class.assert_called_once_with(max_retries=3)

    @patch('ai_scrape_guard.sdk.openai_client.OpenAI')
    def test_init_uses_given_client(self, mock_openai_class):
        client = Mock()

        provider = OpenAIProvider(client=client)

        assert provider.client is client
        mock_openai_class.assert_not_called()

    def test_complete_success(self):
        """Test a successful call maps to a Completion."""
        client = Mock()
        client.chat.completions.create.return_value = _mock_response('{"a": 1}')
        provider = OpenAIProvider(client=client)

        result = provider.complete("gpt-4", MESSAGES, {"temperature": 0})

        client.chat.completions.create.assert_called_once_with(
            model="gpt-4",
            messages=MESSAGES,
            temperature=0,
        )
        assert result == Completion(
            text='{"a": 1}', stop_reason="stop", prompt_tokens=100, completion_tokens=50
        )

    def test_complete_passes_finish_reason(self):
        client = Mock()
        client.chat.completions.create.return_value = _mock_response("{", finish_reason="length")

        result = OpenAIProvider(client=client).complete("gpt-4", MESSAGES, {})

        assert result.stop_reason == "length"

    def test_complete_none_content(self):
        client = Mock()
        client.chat.completions.create.return_value = _mock_response(None)

        assert OpenAIProvider(client=client).complete("gpt-4", MESSAGES, {}).text == ""

    def test_complete_empty_messages(self):
        """Test empty messages are rejected before any call."""
        client = Mock()

        with pytest.raises(ValueError, match="messages is required"):
            OpenAIProvider(client=client).complete("gpt-4", [], {})
        client.chat.completions.create.assert_not_called()

    def test_complete_missing_usage(self):
        client = Mock()
        response = _mock_response()
        response.usage = None
        client.chat.completions.create.return_value = response

        with pytest.raises(ValueError, match="missing usage"):
            OpenAIProvider(client=client).complete("gpt-4", MESSAGES, {})

    def test_api_failure_wrapped(self):
        """Test API failures surface as classified CompletionErrors."""
        original = _status_error(openai.RateLimitError, 429, "slow down")
        client = Mock()
        client.chat.completions.create.side_effect = original

        with pytest.raises(CompletionError) as exc_info:
            OpenAIProvider(client=client).complete("gpt-4", MESSAGES, {})

        assert exc_info.value.kind == ErrorKind.RATE_LIMITED
        assert exc_info.value.__cause__ is original
        assert "gpt-4" in str(exc_info.value)

    def test_non_openai_errors_propagate(self):
        client = Mock()
        client.chat.completions.create.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            OpenAIProvider(client=client).complete("gpt-4", MESSAGES, {})


class TestOpenAIProviderRetryBudget:
    """Test that one orchestrator attempt is one HTTP request."""

    def test_rate_limited_request_sent_once(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(429, json={"error": {"message": "slow down"}})

        http_client = httpx.Client(transport=httpx.MockTransport(handler))
        provider = OpenAIProvider(api_key="sk-test", http_client=http_client)
        orchestrator = CompletionOrchestrator(
            provider=provider,
            ledger=CostLedger(max_cost=1.0),
            models=("gpt-4",),
            retry=RetryPolicy(max_retries=0, wait_seconds=0),
        )

        with pytest.raises(CompletionError) as exc_info:
            orchestrator.run(ExtractionRequest(instructions=("Extract",), content="<p>Hi</p>"))

        assert exc_info.value.kind == ErrorKind.RATE_LIMITED
        assert len(requests) == 1
        assert requests[0].url.path == "/v1/chat/completions"

    def test_retry_policy_controls_request_count(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(429, json={"error": {"message": "slow down"}})

        http_client = httpx.Client(transport=httpx.MockTransport(handler))
        orchestrator = CompletionOrchestrator(
            provider=OpenAIProvider(api_key="sk-test", http_client=http_client),
            ledger=CostLedger(max_cost=1.0),
            models=("gpt-4",),
            retry=RetryPolicy(max_retries=2, wait_seconds=0),
        )

        with pytest.raises(CompletionError):
            orchestrator.run(ExtractionRequest(instructions=("Extract",), content="<p>Hi</p>"))

        assert len(requests) == 3
