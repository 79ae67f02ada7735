"""
Core modules for AI Scrape Guard.

This package contains the extraction engine: token budgeting, chunking,
retry/fallback orchestration, cost accounting and postprocessing.
"""

from .cancellation import CancellationToken
from .chunking import Chunk, chunk_fragments
from .document import Document, DocumentSource, apply_preprocessors
from .errors import (
    BadStop,
    Cancelled,
    CompletionError,
    ErrorKind,
    InvalidJSON,
    MaxCostExceeded,
    PostprocessingError,
    PreprocessorError,
    ScrapeError,
    TooManyTokens,
    UnknownModel,
    ValidationError,
)
from .ledger import CostLedger
from .orchestrator import Completion, CompletionOrchestrator, CompletionProvider, ExtractionRequest
from .postprocessors import (
    HallucinationChecker,
    JSONPostprocessor,
    PipelineContext,
    PostprocessorPipeline,
    SchemaValidator,
    Stage,
)
from .pricing import DEFAULT_MODEL_TABLE, ModelSpec, ModelTable, calculate_cost, cost_estimate, max_tokens
from .responses import ApiCall, Response, ScrapeResponse
from .retry import RetryPolicy
from .session import ExtractionSession, extract
from .token_counter import TokenUsage, estimate_tokens

__all__ = [
    "ApiCall",
    "BadStop",
    "CancellationToken",
    "Cancelled",
    "Chunk",
    "Completion",
    "CompletionError",
    "CompletionOrchestrator",
    "CompletionProvider",
    "CostLedger",
    "DEFAULT_MODEL_TABLE",
    "Document",
    "DocumentSource",
    "ErrorKind",
    "ExtractionRequest",
    "ExtractionSession",
    "HallucinationChecker",
    "InvalidJSON",
    "JSONPostprocessor",
    "MaxCostExceeded",
    "ModelSpec",
    "ModelTable",
    "PipelineContext",
    "PostprocessingError",
    "PostprocessorPipeline",
    "PreprocessorError",
    "Response",
    "RetryPolicy",
    "SchemaValidator",
    "ScrapeError",
    "ScrapeResponse",
    "Stage",
    "TokenUsage",
    "TooManyTokens",
    "UnknownModel",
    "ValidationError",
    "apply_preprocessors",
    "calculate_cost",
    "chunk_fragments",
    "cost_estimate",
    "estimate_tokens",
    "extract",
    "max_tokens",
]
