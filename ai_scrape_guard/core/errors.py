"""
Error taxonomy for extraction runs.

Every library error carries an ErrorKind so retry decisions never depend on
exception class identity across module boundaries.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    """Classification used by RetryPolicy to decide what to do with a failure."""
    RATE_LIMITED = "rate_limited"
    TIMED_OUT = "timed_out"
    CONNECTION_FAILED = "connection_failed"
    TOO_MANY_TOKENS = "too_many_tokens"
    BAD_STOP = "bad_stop"
    MAX_COST_EXCEEDED = "max_cost_exceeded"
    INVALID_JSON = "invalid_json"
    VALIDATION = "validation"
    POSTPROCESSING = "postprocessing"
    PREPROCESSOR = "preprocessor"
    UNKNOWN_MODEL = "unknown_model"
    CANCELLED = "cancelled"
    OTHER = "other"


class ScrapeError(Exception):
    """Base class for all extraction errors.

    ``model`` and ``attempts`` are filled in by the orchestrator when a
    failure becomes terminal.
    """
    kind = ErrorKind.OTHER

    def __init__(self, message: str):
        super().__init__(message)
        self.model: Optional[str] = None
        self.attempts: Optional[int] = None


class CompletionError(ScrapeError):
    """Transport-level failure reported by a CompletionProvider."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class TooManyTokens(ScrapeError):
    """Input exceeds the model's context window; raised before any call."""
    kind = ErrorKind.TOO_MANY_TOKENS


class MaxCostExceeded(ScrapeError):
    kind = ErrorKind.MAX_COST_EXCEEDED


class BadStop(ScrapeError):
    """Completion ended for a reason other than a normal stop."""
    kind = ErrorKind.BAD_STOP


class InvalidJSON(ScrapeError):
    """Output could not be parsed as JSON, even after repair."""
    kind = ErrorKind.INVALID_JSON

    def __init__(self, message: str, text: str):
        super().__init__(message)
        self.text = text


class ValidationError(ScrapeError):
    """Structured data does not match the typed schema."""
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class PostprocessingError(ScrapeError):
    """Postprocessing failed or was misconfigured."""
    kind = ErrorKind.POSTPROCESSING

    def __init__(self, message: str, path: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.path = path
        self.value = value


class PreprocessorError(ScrapeError):
    """A document preprocessor produced no nodes."""
    kind = ErrorKind.PREPROCESSOR


class UnknownModel(ScrapeError, ValueError):
    kind = ErrorKind.UNKNOWN_MODEL


class Cancelled(ScrapeError):
    """The caller's cancellation token fired.

    ``response`` holds whatever was accumulated before cancellation, since
    the cost of completed calls has already been spent.
    """
    kind = ErrorKind.CANCELLED

    def __init__(self, message: str, response: Any = None):
        super().__init__(message)
        self.response = response


def classify_error(exc: BaseException) -> ErrorKind:
    """Return the ErrorKind of an exception, ``OTHER`` for foreign errors."""
    if isinstance(exc, ScrapeError):
        return exc.kind
    return ErrorKind.OTHER
