"""Hybrid retrieval: BM25 and semantic candidates fused into one ranking.

For every document returned by either retriever:

- the lexical score is normalised against the corpus BM25 bound
  (``min(1, raw / max)``, or ``raw / (raw + 10)`` when the bound is 0);
- the semantic cosine is mapped from ``[-1, 1]`` to ``[0, 1]``;
- the weighted sum of both is the ``hybrid`` score the results are sorted by;
- a Reciprocal Rank Fusion score is computed alongside for diagnostics.

A score a retriever did not return is computed on demand rather than assumed
zero.  Without an embedder, or with nothing in the vector index, the semantic
leg is skipped and ranking is lexical only.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, List, Optional, Sequence

from .embeddings import Embedder
from .lexical import LexicalIndex
from .models import FILE_DOC_PREFIX, HybridResult, ScoreBreakdown, is_file_document
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)

# Soft normalisation constant used when the corpus BM25 bound is unavailable.
_SOFT_NORM = 10.0


@dataclass
class RerankerConfig:
    lexical_weight: float = 0.4
    semantic_weight: float = 0.6
    rrf_k: int = 60
    retrieval_top_k: int = 50
    final_top_k: int = 20

    def normalized(self) -> "RerankerConfig":
        total = self.lexical_weight + self.semantic_weight
        if total <= 0:
            raise ValueError("Reranker weights must sum to a positive value")
        return replace(
            self,
            lexical_weight=self.lexical_weight / total,
            semantic_weight=self.semantic_weight / total,
        )


def reciprocal_rank_fusion(rank_a: int, rank_b: int, k: int = 60) -> float:
    return 1.0 / (k + rank_a) + 1.0 / (k + rank_b)


class HybridReranker:
    """Fuses a :class:`LexicalIndex` and a :class:`VectorIndex`."""

    def __init__(
        self,
        lexical: LexicalIndex,
        vectors: VectorIndex,
        embedder: Optional[Embedder] = None,
        config: Optional[RerankerConfig] = None,
    ) -> None:
        self.lexical = lexical
        self.vectors = vectors
        self.embedder = embedder
        base = config or RerankerConfig()
        if abs(base.lexical_weight + base.semantic_weight - 1.0) > 0.01:
            logger.warning(
                "Reranker weights sum to %.3f, normalizing",
                base.lexical_weight + base.semantic_weight,
            )
        self._config = base.normalized()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self) -> RerankerConfig:
        return replace(self._config)

    def update_config(self, **changes: Any) -> RerankerConfig:
        """Apply *changes*; weights are renormalised whenever either is touched."""
        unknown = set(changes) - set(asdict(self._config))
        if unknown:
            raise ValueError(f"Unknown reranker settings: {', '.join(sorted(unknown))}")
        updated = replace(self._config, **changes)
        if "lexical_weight" in changes or "semantic_weight" in changes:
            updated = updated.normalized()
        self._config = updated
        logger.info("Updated reranker configuration: %s", asdict(updated))
        return replace(updated)

    @property
    def semantic_enabled(self) -> bool:
        return self.embedder is not None and not self.vectors.is_empty

    # ------------------------------------------------------------------
    # Score helpers
    # ------------------------------------------------------------------

    def normalize_lexical(self, raw: float) -> float:
        if raw <= 0:
            return 0.0
        max_score = self.lexical.get_max_score()
        if max_score > 0:
            return min(1.0, raw / max_score)
        return raw / (raw + _SOFT_NORM)

    @staticmethod
    def normalize_semantic(cosine: float) -> float:
        return max(0.0, min(1.0, (cosine + 1.0) / 2.0))

    def _raw_lexical(self, query: str, document_id: str) -> float:
        if is_file_document(document_id):
            return self.lexical.file_score(query, document_id[len(FILE_DOC_PREFIX):])
        return self.lexical.score_document(document_id, query)

    def _semantic(self, query_vector: Optional[List[float]], document_id: str) -> float:
        if query_vector is None or not self.vectors.has_document(document_id):
            return 0.0
        return self.normalize_semantic(self.vectors.score_for(document_id, query_vector))

    def _query_vector(self, query: str) -> Optional[List[float]]:
        if not self.semantic_enabled:
            return None
        return self.embedder.embed_text(query)

    def _metadata(self, document_id: str) -> Dict[str, Any]:
        doc = self.lexical.get_document(document_id)
        if doc is not None:
            sym = doc.symbol
            return {"symbol": sym.name, "file": sym.file_path, "type": sym.kind.value, "line": sym.line}
        embedded = self.vectors.get_document(document_id)
        if embedded is not None:
            meta = embedded.metadata
            return {
                "symbol": meta.get("symbol"),
                "file": meta.get("file"),
                "type": meta.get("kind", meta.get("type")),
                "line": meta.get("line"),
            }
        if is_file_document(document_id):
            return {"file": document_id[len(FILE_DOC_PREFIX):], "type": "file"}
        return {}

    def _hybrid(self, lexical: float, semantic: float) -> float:
        return self._config.lexical_weight * lexical + self._config.semantic_weight * semantic

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str, top_k: Optional[int] = None) -> List[HybridResult]:
        """Retrieve from both legs, fuse, and return at most *top_k* results."""
        if not query or not isinstance(query, str) or not query.strip():
            logger.warning("Hybrid search called with an empty query")
            return []

        cfg = self._config
        final_top_k = top_k if top_k and top_k > 0 else cfg.final_top_k

        lexical_hits = self.lexical.search(query, cfg.retrieval_top_k)
        query_vector = self._query_vector(query)
        if query_vector is None:
            logger.warning("No embeddings available, ranking on lexical scores only")
            semantic_hits = []
        else:
            semantic_hits = self.vectors.search(query_vector, cfg.retrieval_top_k)

        logger.debug(
            "Hybrid search %r: %d lexical, %d semantic candidates",
            query, len(lexical_hits), len(semantic_hits),
        )
        if not lexical_hits and not semantic_hits:
            return []

        lexical_raw = {hit.document_id: hit.score for hit in lexical_hits}
        lexical_rank = {hit.document_id: i + 1 for i, hit in enumerate(lexical_hits)}
        semantic_rank = {hit.document_id: i + 1 for i, hit in enumerate(semantic_hits)}

        ordered_ids: List[str] = []
        seen = set()
        for doc_id in [h.document_id for h in lexical_hits] + [h.document_id for h in semantic_hits]:
            if doc_id not in seen:
                seen.add(doc_id)
                ordered_ids.append(doc_id)

        absent_rank = cfg.retrieval_top_k + 1
        on_demand = 0
        results: List[HybridResult] = []
        for doc_id in ordered_ids:
            raw = lexical_raw.get(doc_id)
            if raw is None:
                on_demand += 1
                raw = self._raw_lexical(query, doc_id)
            lexical = self.normalize_lexical(raw)
            semantic = self._semantic(query_vector, doc_id)
            rrf = reciprocal_rank_fusion(
                lexical_rank.get(doc_id, absent_rank),
                semantic_rank.get(doc_id, absent_rank),
                cfg.rrf_k,
            )
            results.append(HybridResult(
                document_id=doc_id,
                scores=ScoreBreakdown(
                    lexical=lexical,
                    semantic=semantic,
                    hybrid=self._hybrid(lexical, semantic),
                    rrf=rrf,
                ),
                **self._metadata(doc_id),
            ))

        # list.sort is stable, so ties keep candidate order
        results.sort(key=lambda r: r.scores.hybrid, reverse=True)
        results = results[:final_top_k]
        for i, result in enumerate(results, start=1):
            result.rank = i

        logger.debug(
            "Returning %d hybrid results (%d lexical scores computed on demand)",
            len(results), on_demand,
        )
        return results

    def rerank(self, query: str, candidate_ids: Sequence[str], top_k: Optional[int] = None) -> List[HybridResult]:
        """Score an externally supplied candidate set without retrieving."""
        if not query or not query.strip():
            logger.warning("Rerank called with an empty query")
            return []
        final_top_k = top_k if top_k and top_k > 0 else len(candidate_ids)
        query_vector = self._query_vector(query)

        results: List[HybridResult] = []
        for doc_id in candidate_ids:
            lexical = self.normalize_lexical(self._raw_lexical(query, doc_id))
            semantic = self._semantic(query_vector, doc_id)
            results.append(HybridResult(
                document_id=doc_id,
                scores=ScoreBreakdown(
                    lexical=lexical,
                    semantic=semantic,
                    hybrid=self._hybrid(lexical, semantic),
                    rrf=0.0,
                ),
                **self._metadata(doc_id),
            ))

        results.sort(key=lambda r: r.scores.hybrid, reverse=True)
        results = results[:final_top_k]
        for i, result in enumerate(results, start=1):
            result.rank = i
        return results

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def explain_score(self, result: HybridResult) -> str:
        cfg = self._config
        return "\n".join([
            f"Hybrid Score: {result.scores.hybrid:.3f}",
            f"  - Lexical ({cfg.lexical_weight * 100:.0f}%): {result.scores.lexical:.3f}",
            f"  - Semantic ({cfg.semantic_weight * 100:.0f}%): {result.scores.semantic:.3f}",
            f"  - RRF: {result.scores.rrf:.4f}",
            f"Rank: #{result.rank}",
        ])

    def get_stats(self) -> Dict[str, Any]:
        return {
            "lexical": self.lexical.get_stats(),
            "semantic": self.vectors.get_stats(),
            "semantic_enabled": self.semantic_enabled,
            "config": asdict(self._config),
        }
