"""
Postprocessing pipeline for completion output.

Stages run in order over a Response. Any stage failure aborts the rest of
the pipeline; there is no partial success.
"""

import abc
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Tuple

import pydantic

from .cancellation import CancellationToken
from .errors import InvalidJSON, PostprocessingError, ValidationError
from .orchestrator import CompletionOrchestrator, ExtractionRequest
from .responses import Response

logger = logging.getLogger(__name__)

NUDGE_INSTRUCTION = (
    "When you receive invalid JSON, respond only with valid JSON matching the schema: "
)

_FENCE_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*\s*\n(.*?)\n?```\s*$", re.DOTALL)


@dataclass
class PipelineContext:
    """What stages may consult besides the response itself.

    ``document_text`` is only set when the pipeline runs over a whole
    document; it is None for detached chunks.
    """
    orchestrator: Optional[CompletionOrchestrator] = None
    schema_description: str = ""
    document_text: Optional[str] = None
    cancel_token: Optional[CancellationToken] = None


class Stage(abc.ABC):
    """A single postprocessing step."""

    #: Stages that need the whole document cannot run in auto-split mode.
    requires_document: bool = False

    @abc.abstractmethod
    def apply(self, response: Response, context: PipelineContext) -> Response:
        """Transform *response*; may replace ``data`` but never the totals."""


def _strip_fence(text: str) -> str:
    match = _FENCE_RE.match(text)
    return match.group(1) if match else text


def _format_path(loc: Iterable[Any]) -> str:
    parts = []
    for part in loc:
        if isinstance(part, int):
            parts.append(f"[{part}]")
        else:
            parts.append(f".{part}")
    return "".join(parts)


class JSONPostprocessor(Stage):
    """Parse string data as JSON, optionally nudging the model to repair it.

    With ``nudge`` enabled, a parse failure triggers exactly one extra
    orchestrator call asking the model to reformat its own output.
    """

    def __init__(self, nudge: bool = True):
        self.nudge = nudge

    def __repr__(self) -> str:
        return f"JSONPostprocessor(nudge={self.nudge})"

    def apply(self, response: Response, context: PipelineContext) -> Response:
        if not isinstance(response.data, str):
            return response

        try:
            response.data = json.loads(_strip_fence(response.data))
            return response
        except json.JSONDecodeError as exc:
            if not self.nudge:
                raise InvalidJSON(f"Invalid JSON: {exc}", response.data) from exc

        if context.orchestrator is None:
            raise PostprocessingError("JSON nudge requires an orchestrator in the pipeline context")

        logger.debug("nudging model to repair invalid JSON length=%d", len(response.data))
        request = ExtractionRequest(
            instructions=(NUDGE_INSTRUCTION + context.schema_description,),
            content=response.data,
            schema_description=context.schema_description,
        )
        context.orchestrator.run(request, response, context.cancel_token)

        try:
            response.data = json.loads(_strip_fence(response.data))
        except json.JSONDecodeError as exc:
            raise InvalidJSON(f"Invalid JSON after repair: {exc}", response.data) from exc
        return response


class SchemaValidator(Stage):
    """Validate parsed data against a pydantic model.

    Dict data becomes a model instance; list data becomes a list of them.
    """

    def __init__(self, model: type):
        self.model = model

    def __repr__(self) -> str:
        return f"SchemaValidator({self.model.__name__})"

    def _validate(self, data: Any, prefix: Tuple[Any, ...]) -> Any:
        try:
            return self.model.model_validate(data)
        except pydantic.ValidationError as exc:
            error = exc.errors()[0]
            path = _format_path(prefix + tuple(error["loc"]))
            logger.error("validation error path=%s: %s", path, error["msg"])
            raise ValidationError(
                f"Schema validation failed at {path or '.'}: {error['msg']}", path
            ) from exc

    def apply(self, response: Response, context: PipelineContext) -> Response:
        if isinstance(response.data, list):
            response.data = [
                self._validate(item, (index,)) for index, item in enumerate(response.data)
            ]
        elif isinstance(response.data, dict):
            response.data = self._validate(response.data, ())
        else:
            raise PostprocessingError(
                "SchemaValidator expecting a dict or list, "
                "ensure JSONPostprocessor or equivalent is used first."
            )
        return response


class HallucinationChecker(Stage):
    """Require every string leaf in the data to appear verbatim in the document.

    Precondition: the pipeline runs against a whole-document response, so
    ``context.document_text`` is available. Incompatible with auto-split.
    """
    requires_document = True

    def __repr__(self) -> str:
        return "HallucinationChecker"

    def apply(self, response: Response, context: PipelineContext) -> Response:
        if context.document_text is None:
            raise PostprocessingError(
                "HallucinationChecker needs the whole document, incompatible with auto_split_tokens"
            )
        check_data_in_document(context.document_text, response.data)
        return response


def check_data_in_document(document_text: str, data: Any, parent: str = "") -> None:
    """Walk *data* and fail on the first string leaf not found in *document_text*.

    Raises:
        PostprocessingError: Naming the leaf's path (e.g. ``.address[2].city``)
    """
    if isinstance(data, pydantic.BaseModel):
        data = data.model_dump()

    if isinstance(data, dict):
        for key, value in data.items():
            check_data_in_document(document_text, value, f"{parent}.{key}")
    elif isinstance(data, list):
        for index, value in enumerate(data):
            check_data_in_document(document_text, value, f"{parent}[{index}]")
    elif isinstance(data, str):
        if data not in document_text:
            raise PostprocessingError(
                f"Data not found in document: {data} ({parent})", path=parent, value=data
            )


class PostprocessorPipeline:
    """Ordered chain of stages, fixed at construction."""

    def __init__(self, stages: Sequence[Stage]):
        self.stages: Tuple[Stage, ...] = tuple(stages)

    def __repr__(self) -> str:
        return f"PostprocessorPipeline({list(self.stages)})"

    @property
    def requires_document(self) -> bool:
        return any(stage.requires_document for stage in self.stages)

    def apply(self, response: Response, context: PipelineContext) -> Response:
        for stage in self.stages:
            response = stage.apply(response, context)
            logger.debug("postprocessor %r applied", stage)
        return response
