"""
SDK for AI Scrape Guard.

Provides completion providers backed by real LLM APIs.
"""

from .openai_client import OpenAIProvider, classify_openai_error

__all__ = ["OpenAIProvider", "classify_openai_error"]
