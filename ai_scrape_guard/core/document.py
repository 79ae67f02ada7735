"""
Documents and preprocessing.

Fetching and DOM normalization live outside this package: a DocumentSource
hands back a Document whose nodes preprocessors may narrow down.
"""

import abc
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from .errors import PreprocessorError

logger = logging.getLogger(__name__)

Preprocessor = Callable[[Any], List[Any]]


@dataclass
class Document:
    """A fetched, normalized document.

    ``text`` is the serialized whole document (used for hallucination
    checks); ``nodes`` are the top-level nodes preprocessing starts from.
    """
    text: str
    nodes: List[Any] = field(default_factory=list)
    url: Optional[str] = None

    @classmethod
    def from_html(cls, html: str, url: Optional[str] = None) -> "Document":
        return cls(text=html, nodes=[html], url=url)


class DocumentSource(abc.ABC):
    """Turns a URL or raw HTML into a Document."""

    @abc.abstractmethod
    def fetch_and_normalize(self, url_or_html: str) -> Document:
        """Fetch (when given a URL) and normalize a document.

        Raises:
            Exception: Source-specific fetch errors propagate unchanged
        """


def apply_preprocessors(nodes: Sequence[Any], preprocessors: Sequence[Preprocessor]) -> List[Any]:
    """Apply *preprocessors* in order, each mapping one node to a list of nodes.

    Raises:
        PreprocessorError: If a preprocessor leaves no nodes
    """
    current = list(nodes)
    for preprocessor in preprocessors:
        new_nodes: List[Any] = []
        for node in current:
            new_nodes.extend(preprocessor(node))
        logger.debug(
            "preprocessor name=%r from_nodes=%d nodes=%d",
            preprocessor, len(current), len(new_nodes),
        )
        if not new_nodes:
            raise PreprocessorError(f"Preprocessor {preprocessor!r} returned no nodes for {len(current)} input node(s)")
        current = new_nodes
    return current
