"""Test configuration for AI Scrape Guard."""

import pytest

from fakes import WhitespaceEncoding


@pytest.fixture(autouse=True)
def whitespace_tokenizer(monkeypatch):
    """Count one token per word so no test needs tiktoken's encoding files."""
    monkeypatch.setattr(
        "ai_scrape_guard.core.token_counter._encoding_for_model",
        lambda model: WhitespaceEncoding(),
    )
