"""
Unit tests for token counting.
"""

from unittest.mock import Mock, patch

from ai_scrape_guard.core import token_counter
from ai_scrape_guard.core.token_counter import estimate_tokens

# captured before the autouse fixture swaps it out
_real_encoding_for_model = token_counter._encoding_for_model


class TestEstimateTokens:
    """Test estimate_tokens against the configured encoding."""

    def test_counts_encoded_tokens(self):
        assert estimate_tokens("gpt-4", "one two three") == 3

    def test_empty_text_is_zero(self):
        assert estimate_tokens("gpt-4", "") == 0

    def test_idempotent(self):
        """Identical input always yields the same count."""
        text = "<ul><li>a</li> <li>b</li></ul> tail"
        assert estimate_tokens("gpt-4", text) == estimate_tokens("gpt-4", text)


class TestEncodingLookup:
    """Test model -> encoding resolution."""

    def setup_method(self):
        _real_encoding_for_model.cache_clear()

    def teardown_method(self):
        _real_encoding_for_model.cache_clear()

    @patch("ai_scrape_guard.core.token_counter.tiktoken")
    def test_uses_model_encoding(self, mock_tiktoken):
        """Registered models use tiktoken's model mapping."""
        encoding = Mock()
        mock_tiktoken.encoding_for_model.return_value = encoding

        assert _real_encoding_for_model("gpt-4") is encoding
        mock_tiktoken.encoding_for_model.assert_called_once_with("gpt-4")
        mock_tiktoken.get_encoding.assert_not_called()

    @patch("ai_scrape_guard.core.token_counter.tiktoken")
    def test_unknown_model_falls_back_to_default_encoding(self, mock_tiktoken):
        """Models tiktoken does not know use cl100k_base."""
        mock_tiktoken.encoding_for_model.side_effect = KeyError("custom-model")
        fallback = Mock()
        mock_tiktoken.get_encoding.return_value = fallback

        assert _real_encoding_for_model("custom-model") is fallback
        mock_tiktoken.get_encoding.assert_called_once_with("cl100k_base")
