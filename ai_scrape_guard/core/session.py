"""
Extraction sessions.

An ExtractionSession ties together preprocessing, chunking, orchestration
and postprocessing, and owns the cost ledger shared by all its calls.
"""

import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from .cancellation import CancellationToken
from .chunking import TokenCounter, chunk_fragments
from .document import Document, DocumentSource, Preprocessor, apply_preprocessors
from .errors import Cancelled, PostprocessingError
from .ledger import CostLedger
from .orchestrator import CompletionOrchestrator, CompletionProvider, ExtractionRequest
from .postprocessors import (
    JSONPostprocessor,
    PipelineContext,
    PostprocessorPipeline,
    SchemaValidator,
    Stage,
)
from .pricing import DEFAULT_MODEL_TABLE, ModelSpec, ModelTable
from .responses import Response, ScrapeResponse, combine_responses
from .retry import RetryPolicy
from .schema import describe_schema, is_typed_schema
from .token_counter import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_MODELS: Tuple[str, ...] = ("gpt-3.5-turbo", "gpt-4")

# Template only; every session copies it
_DEFAULT_PREPROCESSORS: Tuple[Preprocessor, ...] = ()

JSON_FORMAT_INSTRUCTION = (
    "Responses should be valid JSON, with no other text. "
    "Never truncate the JSON with an ellipsis. "
    "Always use double quotes for strings and escape quotes with \\. "
    "Always omit trailing commas."
)


def _resolve_models(
    models: Sequence[Union[str, ModelSpec]], table: ModelTable
) -> Tuple[Tuple[str, ...], ModelTable]:
    names: List[str] = []
    specs: List[ModelSpec] = []
    for model in models:
        if isinstance(model, ModelSpec):
            specs.append(model)
            names.append(model.name)
        else:
            names.append(model)
    return tuple(names), table.with_models(specs)


class ExtractionSession:
    """Convert HTML documents into structured data matching *schema*.

    Args:
        schema: dict/list, schema string, or pydantic model class
        provider: CompletionProvider used for every call
        models: Fallback-ordered model names or ModelSpecs
        max_cost: Spend ceiling for the whole session
        retry: RetryPolicy shared by retries and model fallback
        auto_split_tokens: Chunk size in tokens; 0 sends the whole document
        extra_instructions: Appended to the system instructions
        postprocessors: Stages to run; None selects the defaults
        extra_preprocessors: Node transforms applied after the defaults
        model_params: Sampling parameters (temperature defaults to 0)
        model_table: Registry resolving model names
        count_tokens: ``(model, text) -> int`` token counter
        document_source: Resolves URL / HTML strings into Documents
        serialize: Turns a preprocessed node into its fragment string

    Raises:
        PostprocessingError: A stage needing the whole document was combined
            with auto_split_tokens
    """

    def __init__(
        self,
        schema: Any,
        provider: CompletionProvider,
        *,
        models: Sequence[Union[str, ModelSpec]] = DEFAULT_MODELS,
        max_cost: float = 1.0,
        retry: Optional[RetryPolicy] = None,
        auto_split_tokens: int = 0,
        extra_instructions: Optional[Sequence[str]] = None,
        postprocessors: Optional[Sequence[Stage]] = None,
        extra_preprocessors: Optional[Sequence[Preprocessor]] = None,
        model_params: Optional[dict] = None,
        model_table: Optional[ModelTable] = None,
        count_tokens: TokenCounter = estimate_tokens,
        document_source: Optional[DocumentSource] = None,
        serialize: Callable[[Any], str] = str,
    ):
        if auto_split_tokens < 0:
            raise ValueError("auto_split_tokens must be >= 0")

        self.schema_description = describe_schema(schema)
        self.auto_split_tokens = auto_split_tokens
        self.count_tokens = count_tokens
        self.document_source = document_source
        self.serialize = serialize

        model_names, table = _resolve_models(models, model_table or DEFAULT_MODEL_TABLE)
        params = {"temperature": 0}
        params.update(model_params or {})

        self.ledger = CostLedger(max_cost=max_cost)
        self.orchestrator = CompletionOrchestrator(
            provider=provider,
            ledger=self.ledger,
            models=model_names,
            retry=retry or RetryPolicy(max_retries=1, wait_seconds=30),
            model_table=table,
            model_params=params,
            count_tokens=count_tokens,
        )

        if postprocessors is None:
            stages: List[Stage] = [JSONPostprocessor(nudge=not auto_split_tokens)]
        else:
            stages = list(postprocessors)
        if is_typed_schema(schema) and not any(isinstance(s, SchemaValidator) for s in stages):
            stages.append(SchemaValidator(schema))
        self.pipeline = PostprocessorPipeline(stages)

        if auto_split_tokens and self.pipeline.requires_document:
            offending = [repr(s) for s in self.pipeline.stages if s.requires_document]
            raise PostprocessingError(
                f"{', '.join(offending)} needs the whole document and cannot be used "
                f"with auto_split_tokens={auto_split_tokens}"
            )

        json_type = "list of JSON objects" if auto_split_tokens else "JSON object"
        self.instructions: Tuple[str, ...] = (
            f"For the given HTML, convert to a {json_type} matching this schema: "
            f"{self.schema_description}",
            JSON_FORMAT_INSTRUCTION,
            *(extra_instructions or ()),
        )
        self.preprocessors: List[Preprocessor] = list(_DEFAULT_PREPROCESSORS) + list(
            extra_preprocessors or ()
        )

    @classmethod
    def from_config(cls, schema: Any, provider: CompletionProvider, config, **overrides) -> "ExtractionSession":
        """Build a session from a loaded ExtractionConfig; keyword overrides win."""
        options = dict(
            models=config.models,
            max_cost=config.max_cost,
            retry=config.retry,
            auto_split_tokens=config.auto_split_tokens,
            extra_instructions=config.extra_instructions,
            model_params=dict(config.model_params),
        )
        options.update(overrides)
        return cls(schema, provider, **options)

    @property
    def models(self) -> Tuple[str, ...]:
        return self.orchestrator.models

    def stats(self) -> dict:
        """Session-wide token and cost totals."""
        return self.ledger.stats()

    def _load(self, document: Union[Document, str]) -> Document:
        if isinstance(document, Document):
            return document
        if self.document_source is not None:
            return self.document_source.fetch_and_normalize(document)
        if document.startswith("http"):
            raise ValueError("Extracting from a URL requires a document_source")
        return Document.from_html(document)

    def _request(self, content: str) -> ExtractionRequest:
        return ExtractionRequest(
            instructions=self.instructions,
            content=content,
            schema_description=self.schema_description,
        )

    def extract(
        self,
        document: Union[Document, str],
        *,
        extra_preprocessors: Optional[Sequence[Preprocessor]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ScrapeResponse:
        """Extract structured data from *document*.

        Args:
            document: A Document, raw HTML, or a URL (with a document_source)
            extra_preprocessors: Applied after the session's preprocessors
            cancel_token: Checked before every call and retry wait

        Returns:
            ScrapeResponse whose ``data`` holds the structured result

        Raises:
            Cancelled: With ``response`` holding the work already paid for
            ScrapeError: Any terminal extraction failure
        """
        doc = self._load(document)
        sr = ScrapeResponse(url=doc.url, document=doc, auto_split_length=self.auto_split_tokens)

        nodes = apply_preprocessors(doc.nodes, self.preprocessors + list(extra_preprocessors or ()))
        fragments = [self.serialize(node) for node in nodes]

        if self.auto_split_tokens:
            return self._extract_chunked(sr, fragments, cancel_token)

        context = PipelineContext(
            orchestrator=self.orchestrator,
            schema_description=self.schema_description,
            document_text=doc.text,
            cancel_token=cancel_token,
        )
        self.orchestrator.run(self._request("\n".join(fragments)), sr, cancel_token)
        return self.pipeline.apply(sr, context)

    __call__ = extract

    def _extract_chunked(
        self,
        sr: ScrapeResponse,
        fragments: List[str],
        cancel_token: Optional[CancellationToken],
    ) -> ScrapeResponse:
        chunks = chunk_fragments(
            fragments, self.auto_split_tokens, self.orchestrator.models[0], self.count_tokens
        )
        context = PipelineContext(
            orchestrator=self.orchestrator,
            schema_description=self.schema_description,
            cancel_token=cancel_token,
        )

        completed: List[Response] = []
        for index, chunk in enumerate(chunks, start=1):
            chunk_response = Response()
            try:
                self.orchestrator.run(self._request(chunk.html), chunk_response, cancel_token)
                completed.append(self.pipeline.apply(chunk_response, context))
            except Cancelled as exc:
                partial = combine_responses(sr, completed)
                for call in chunk_response.api_responses:
                    partial.record(call)
                exc.response = partial
                raise
            logger.debug("chunk %d/%d done tokens=%d", index, len(chunks), chunk.tokens)

        return combine_responses(sr, completed)


def extract(document: Union[Document, str], schema: Any, provider: CompletionProvider, **options) -> ScrapeResponse:
    """One-shot extraction with a throwaway session."""
    cancel_token = options.pop("cancel_token", None)
    return ExtractionSession(schema, provider, **options).extract(document, cancel_token=cancel_token)
