"""Brute-force cosine search over externally supplied embedding vectors.

Every stored vector is compared against the query vector on each search, so a
query costs O(N·d).  That is fine up to tens of thousands of documents; an
approximate-nearest-neighbour structure is the obvious next step beyond that.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .errors import DimensionMismatchError
from .models import EmbeddedDocument

logger = logging.getLogger(__name__)

# Similarities below this are considered noise and never returned by search().
RELEVANCE_FLOOR: float = 0.3

DEFAULT_TOP_K = 10


@dataclass
class VectorResult:
    document_id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine similarity between two vectors of equal length.

    Returns a value in ``[-1, 1]``; ``0.0`` when either vector has zero norm.

    Raises:
        DimensionMismatchError: if the vectors differ in length.
    """
    if len(vec_a) != len(vec_b):
        raise DimensionMismatchError(len(vec_a), len(vec_b))
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for a, b in zip(vec_a, vec_b):
        dot += a * b
        norm_a += a * a
        norm_b += b * b
    if norm_a < 1e-24 or norm_b < 1e-24:
        return 0.0
    similarity = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # rounding can push |cos| a hair past 1
    return max(-1.0, min(1.0, similarity))


class VectorIndex:
    """In-memory vector store keyed by document id."""

    def __init__(self, relevance_floor: float = RELEVANCE_FLOOR) -> None:
        self.relevance_floor = relevance_floor
        self._documents: Dict[str, EmbeddedDocument] = {}
        self._dimension: Optional[int] = None

    def index(self, documents: Sequence[EmbeddedDocument]) -> None:
        """Replace the stored vectors with *documents*.

        Raises:
            DimensionMismatchError: if two documents disagree on dimension.
                Nothing is replaced in that case.
        """
        stored: Dict[str, EmbeddedDocument] = {}
        dimension: Optional[int] = None
        for doc in documents:
            if dimension is None:
                dimension = doc.dimension
            elif doc.dimension != dimension:
                raise DimensionMismatchError(dimension, doc.dimension)
            stored[doc.id] = doc

        self._documents = stored
        self._dimension = dimension
        logger.info(
            "Indexed %d vectors (dimension %s)", len(stored), dimension if dimension else "-",
        )

    @property
    def is_empty(self) -> bool:
        return not self._documents

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def has_document(self, document_id: str) -> bool:
        return document_id in self._documents

    def get_document(self, document_id: str) -> Optional[EmbeddedDocument]:
        return self._documents.get(document_id)

    def documents(self) -> List[EmbeddedDocument]:
        """Stored documents in insertion order."""
        return list(self._documents.values())

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query_vector: Sequence[float], top_k: int = DEFAULT_TOP_K) -> List[VectorResult]:
        """Documents with similarity at or above the relevance floor, best first."""
        if not self._documents:
            logger.warning("Vector search called before any vectors were indexed")
            return []
        if not query_vector:
            logger.warning("Vector search called with an empty query vector")
            return []
        if top_k <= 0:
            top_k = DEFAULT_TOP_K

        results: List[VectorResult] = []
        for doc in self._documents.values():
            score = cosine_similarity(query_vector, doc.vector)
            if score >= self.relevance_floor:
                results.append(VectorResult(doc.id, score, doc.metadata))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:top_k]

    def score_for(self, document_id: str, query_vector: Sequence[float]) -> float:
        """Cosine similarity of one stored document, ``0.0`` if it has no vector."""
        doc = self._documents.get(document_id)
        if doc is None or not query_vector:
            return 0.0
        return cosine_similarity(query_vector, doc.vector)

    def find_similar(self, document_id: str, top_k: int = 5) -> List[VectorResult]:
        """Nearest stored neighbours of *document_id*, excluding itself."""
        doc = self._documents.get(document_id)
        if doc is None:
            logger.warning("Document %s has no stored vector", document_id)
            return []
        neighbours = self.search(doc.vector, top_k + 1)
        return [r for r in neighbours if r.document_id != document_id][:top_k]

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_documents": len(self._documents),
            "dimension": self._dimension or 0,
        }
