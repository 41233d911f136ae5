"""BM25 lexical retrieval over extracted symbols.

Each symbol becomes one document whose text is its name, containing file path
and kind.  The index keeps:

- an **inverted index** ``token -> {doc positions}`` so a query only scores
  documents sharing at least one token with it;
- an **IDF table** ``idf(t) = ln((N - df + 0.5) / (df + 0.5) + 1)``;
- per-document token counts and lengths for the BM25 length normalisation.

``index()`` always rebuilds everything from scratch.  There is no incremental
IDF maintenance.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from .models import SymbolRecord
from .tokenizer import tokenize, tokenize_fields

logger = logging.getLogger(__name__)

# Term frequency saturation and length normalisation, tuned for code search.
K1 = 1.5
B = 0.75

DEFAULT_TOP_K = 10


@dataclass
class LexicalDocument:
    id: str
    tokens: List[str]
    symbol: SymbolRecord
    term_freqs: Counter = field(default_factory=Counter)

    def __post_init__(self) -> None:
        if not self.term_freqs:
            self.term_freqs = Counter(self.tokens)

    @property
    def length(self) -> int:
        return len(self.tokens)


@dataclass
class LexicalResult:
    document_id: str
    score: float
    symbol: Optional[str] = None
    file: Optional[str] = None
    type: Optional[str] = None
    line: Optional[int] = None


def bm25_term_score(tf: int, idf: float, doc_length: int, avg_doc_length: float,
                    k1: float = K1, b: float = B) -> float:
    """Contribution of one query term to a document's BM25 score."""
    if tf <= 0 or avg_doc_length <= 0:
        return 0.0
    numerator = tf * (k1 + 1)
    denominator = tf + k1 * (1 - b + b * (doc_length / avg_doc_length))
    return idf * (numerator / denominator)


class LexicalIndex:
    """Inverted index + BM25 scorer."""

    def __init__(self, k1: float = K1, b: float = B) -> None:
        self.k1 = k1
        self.b = b
        self._documents: List[LexicalDocument] = []
        self._positions: Dict[str, int] = {}
        self._inverted: Dict[str, Set[int]] = {}
        self._idf: Dict[str, float] = {}
        self._avg_doc_length = 0.0

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def index(self, symbols: Sequence[SymbolRecord]) -> None:
        """Rebuild documents, inverted index and IDF table from *symbols*."""
        documents: List[LexicalDocument] = []
        positions: Dict[str, int] = {}
        for symbol in symbols:
            if symbol.id in positions:
                continue
            tokens = tokenize_fields([symbol.name, symbol.file_path, symbol.kind.value])
            positions[symbol.id] = len(documents)
            documents.append(LexicalDocument(id=symbol.id, tokens=tokens, symbol=symbol))

        inverted: Dict[str, Set[int]] = {}
        for idx, doc in enumerate(documents):
            for token in doc.term_freqs:
                inverted.setdefault(token, set()).add(idx)

        total = len(documents)
        idf = {
            term: math.log((total - len(postings) + 0.5) / (len(postings) + 0.5) + 1)
            for term, postings in inverted.items()
        }
        avg = sum(d.length for d in documents) / total if total else 0.0

        self._documents = documents
        self._positions = positions
        self._inverted = inverted
        self._idf = idf
        self._avg_doc_length = avg

        logger.info(
            "Indexed %d lexical documents (avg length %.2f, %d unique terms)",
            total, avg, len(idf),
        )

    @property
    def document_count(self) -> int:
        return len(self._documents)

    def idf(self, term: str) -> float:
        return self._idf.get(term, 0.0)

    def get_document(self, document_id: str) -> Optional[LexicalDocument]:
        pos = self._positions.get(document_id)
        return self._documents[pos] if pos is not None else None

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str, top_k: int = DEFAULT_TOP_K) -> List[LexicalResult]:
        """Return the *top_k* highest scoring documents for *query*."""
        if not query or not isinstance(query, str) or not query.strip():
            logger.warning("Lexical search called with an empty query")
            return []
        if not self._documents:
            logger.warning("Lexical search called before any documents were indexed")
            return []
        if top_k <= 0:
            top_k = DEFAULT_TOP_K

        query_tokens = tokenize(query)
        if not query_tokens:
            return []

        candidates = self._candidates(query_tokens)
        logger.debug(
            "Query %r -> tokens %s, %d candidates", query, query_tokens, len(candidates),
        )

        scored = []
        for pos in sorted(candidates):
            score = self._score(self._documents[pos], query_tokens)
            if score > 0:
                scored.append((pos, score))
        scored.sort(key=lambda item: item[1], reverse=True)

        results: List[LexicalResult] = []
        for pos, score in scored[:top_k]:
            sym = self._documents[pos].symbol
            results.append(LexicalResult(
                document_id=sym.id,
                score=score,
                symbol=sym.name,
                file=sym.file_path,
                type=sym.kind.value,
                line=sym.line,
            ))
        return results

    def _candidates(self, query_tokens: Sequence[str]) -> Set[int]:
        candidates: Set[int] = set()
        for token in query_tokens:
            candidates.update(self._inverted.get(token, ()))
        return candidates

    def _score(self, doc: LexicalDocument, query_tokens: Sequence[str]) -> float:
        score = 0.0
        for term in query_tokens:
            score += bm25_term_score(
                doc.term_freqs.get(term, 0),
                self._idf.get(term, 0.0),
                doc.length,
                self._avg_doc_length,
                self.k1,
                self.b,
            )
        return score

    # ------------------------------------------------------------------
    # Point scores (used for on-demand reranking)
    # ------------------------------------------------------------------

    def score_document(self, document_id: str, query: str) -> float:
        doc = self.get_document(document_id)
        if doc is None or not query:
            return 0.0
        return self._score(doc, tokenize(query))

    def symbol_score(self, query: str, symbol_name: str) -> float:
        """Best raw BM25 score among documents for *symbol_name*."""
        if not query or not symbol_name:
            return 0.0
        tokens = tokenize(query)
        return max(
            (self._score(d, tokens) for d in self._documents if d.symbol.name == symbol_name),
            default=0.0,
        )

    def file_score(self, query: str, file_path: str) -> float:
        """Best raw BM25 score among the symbols of *file_path*."""
        if not query or not file_path:
            return 0.0
        tokens = tokenize(query)
        return max(
            (self._score(d, tokens) for d in self._documents if d.symbol.file_path == file_path),
            default=0.0,
        )

    def get_max_score(self) -> float:
        """Approximate corpus-level upper bound used to normalise raw scores.

        Uses the largest IDF with the longest document length standing in for
        the term frequency, against the shortest document.  Real scores can
        exceed it, so normalised values must be capped at 1.0 by the caller.
        """
        if not self._documents or not self._idf:
            return 0.0
        max_idf = max(self._idf.values())
        lengths = [d.length for d in self._documents]
        max_tf = max(lengths)
        min_len = min(lengths)
        return bm25_term_score(max_tf, max_idf, min_len, self._avg_doc_length, self.k1, self.b)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def explain_score(self, document_id: str, query: str) -> str:
        doc = self.get_document(document_id)
        if doc is None:
            return f"Document {document_id} not found"

        lines = [
            f'BM25 Score Breakdown for "{document_id}":',
            f"Document length: {doc.length} (avg: {self._avg_doc_length:.2f})",
            "",
        ]
        total = 0.0
        for term in tokenize(query):
            tf = doc.term_freqs.get(term, 0)
            idf = self._idf.get(term, 0.0)
            if tf > 0:
                term_score = bm25_term_score(
                    tf, idf, doc.length, self._avg_doc_length, self.k1, self.b,
                )
                total += term_score
                lines.append(f'  "{term}": tf={tf}, idf={idf:.3f}, score={term_score:.3f}')
            else:
                lines.append(f'  "{term}": NOT FOUND')
        lines.append("")
        lines.append(f"Total Score: {total:.3f}")
        return "\n".join(lines)

    def get_stats(self) -> Dict[str, float]:
        return {
            "total_docs": len(self._documents),
            "avg_doc_length": self._avg_doc_length,
            "unique_terms": len(self._idf),
        }
