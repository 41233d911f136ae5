"""Query-time and index-time coordination of the retrieval components.

A query runs one pipeline::

    project query -> hybrid candidates -> graph scores -> combine -> explain

Index structures for one corpus are built together and published as a single
immutable :class:`IndexState`.  Writers build a new state off to the side and
swap the reference under a lock, so a query always sees one complete
generation of indices even while a re-index is running.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .config_manager import Settings
from .embeddings import Embedder, build_embeddings
from .errors import HybridGraphError, IndexNotReadyError
from .fallback import FuzzySearcher, QueryAnalyzer
from .graph_scorer import GraphAwareScorer
from .hashing import ContentHasher
from .incremental import CallGraphBuilder, ChangeDebouncer, Extractor, IncrementalUpdater
from .indexer import CorpusIndexer, Progress
from .lexical import LexicalIndex
from .models import (
    ChangeSet,
    CorpusSnapshot,
    EmbeddedDocument,
    EnhancedQueryResult,
    IndexingReport,
    ResultExplanation,
    file_document_id,
    is_file_document,
)
from .query_intent import QueryIntent, QueryIntentGraph, QueryIntentProjector, make_tagger
from .reranker import HybridReranker
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexState:
    """One generation of indices built from one corpus snapshot."""

    corpus: CorpusSnapshot
    lexical: LexicalIndex
    vectors: VectorIndex
    reranker: HybridReranker
    graph: GraphAwareScorer


@dataclass
class ContextAssembly:
    """Ranked, explained answer to one query."""

    query: str
    intent: QueryIntent
    results: List[EnhancedQueryResult] = field(default_factory=list)
    query_graph: Optional[QueryIntentGraph] = None
    processing_time: float = 0.0
    fallback: bool = False

    @property
    def total_results(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "intent": {
                "primaryAction": self.intent.primary_action,
                "entities": list(self.intent.entities),
                "relationship": self.intent.relationship,
                "modifiers": list(self.intent.modifiers),
                "scope": self.intent.scope,
            },
            "results": [r.to_dict() for r in self.results],
            "totalResults": self.total_results,
            "processingTime": self.processing_time,
            "fallback": self.fallback,
        }


class Orchestrator:
    """Owns the current corpus, its indices, and the incremental updater."""

    def __init__(self, embedder: Optional[Embedder] = None, settings: Optional[Settings] = None) -> None:
        self.embedder = embedder
        self.settings = settings or Settings()
        self.projector = QueryIntentProjector(make_tagger(self.settings.query.pos_tagger))
        self.fuzzy = FuzzySearcher(QueryAnalyzer(), threshold=self.settings.query.fuzzy_threshold)
        self.updater: Optional[IncrementalUpdater] = None
        self._state: Optional[IndexState] = None
        self._swap_lock = threading.Lock()
        self._write_lock = threading.RLock()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def is_ready(self) -> bool:
        return self._state is not None

    @property
    def corpus(self) -> Optional[CorpusSnapshot]:
        state = self._state
        return state.corpus if state is not None else None

    def embeddings(self) -> List[EmbeddedDocument]:
        state = self._state
        return state.vectors.documents() if state is not None else []

    def get_file_hashes(self) -> Dict[str, str]:
        return self.updater.get_file_hashes() if self.updater is not None else {}

    def _require_state(self) -> IndexState:
        state = self._state
        if state is None:
            raise IndexNotReadyError("No corpus indexed yet; call index() first")
        return state

    def _publish(self, state: IndexState) -> None:
        with self._swap_lock:
            self._state = state

    def _build_state(self, corpus: CorpusSnapshot, embeddings: Sequence[EmbeddedDocument]) -> IndexState:
        lexical = LexicalIndex()
        lexical.index(corpus.symbols)
        vectors = VectorIndex(relevance_floor=self.settings.relevance_floor)
        vectors.index(embeddings)
        graph = GraphAwareScorer(self.settings.graph)
        graph.load(corpus)
        reranker = HybridReranker(lexical, vectors, self.embedder, self.settings.reranker)
        return IndexState(corpus=corpus, lexical=lexical, vectors=vectors, reranker=reranker, graph=graph)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def index(self, corpus: CorpusSnapshot, embeddings: Optional[Sequence[EmbeddedDocument]] = None) -> None:
        """Build fresh indices for *corpus* and swap them in.

        Without explicit *embeddings*, documents are embedded with the
        injected embedder when there is one; otherwise the semantic leg
        stays empty and ranking is lexical plus graph.
        """
        with self._write_lock:
            corpus = corpus.deduplicated()
            if embeddings is None:
                embeddings = build_embeddings(corpus, self.embedder) if self.embedder is not None else []
            if corpus.is_empty:
                logger.warning("Indexing an empty corpus")
            state = self._build_state(corpus, embeddings)
            self._publish(state)
            logger.info(
                "Indexed corpus: %d symbols, %d files, %d imports, %d calls, %d embeddings",
                len(corpus.symbols), len(corpus.files), len(corpus.imports),
                len(corpus.calls), len(embeddings),
            )

    def index_embeddings(self, documents: Sequence[EmbeddedDocument]) -> None:
        """Replace the vector index of the current generation."""
        with self._write_lock:
            state = self._require_state()
            vectors = VectorIndex(relevance_floor=self.settings.relevance_floor)
            vectors.index(documents)
            reranker = HybridReranker(state.lexical, vectors, self.embedder, self.settings.reranker)
            self._publish(IndexState(
                corpus=state.corpus,
                lexical=state.lexical,
                vectors=vectors,
                reranker=reranker,
                graph=state.graph,
            ))

    def attach_updater(
        self,
        extractor: Extractor,
        hashes: Optional[Dict[str, str]] = None,
        hasher: Optional[ContentHasher] = None,
        call_graph_builder: Optional[CallGraphBuilder] = None,
    ) -> IncrementalUpdater:
        """Start tracking file hashes so :meth:`apply_changes` can run."""
        self.updater = IncrementalUpdater(
            extractor,
            hasher=hasher,
            initial_hashes=hashes,
            call_graph_builder=call_graph_builder,
            max_file_size=self.settings.indexing.max_file_size,
        )
        return self.updater

    def index_files(
        self,
        paths: Iterable[str],
        extractor: Extractor,
        cancel: Optional[threading.Event] = None,
        progress: Optional[Progress] = None,
        hasher: Optional[ContentHasher] = None,
    ) -> IndexingReport:
        """Extract *paths* in batches, index the result, and track its hashes.

        Raises :class:`~hybridgraph.errors.IndexingCancelledError` when
        cancelled; the previously published indices stay in place.
        """
        with self._write_lock:
            indexer = CorpusIndexer(
                extractor,
                hasher=hasher,
                batch_size=self.settings.indexing.batch_size,
                max_file_size=self.settings.indexing.max_file_size,
            )
            run = indexer.build(paths, cancel=cancel, progress=progress)
            self.index(run.corpus)
            self.attach_updater(extractor, hashes=run.hashes, hasher=indexer.hasher)
            return run.report

    def apply_changes(self, paths: Iterable[str], cancel: Optional[threading.Event] = None) -> ChangeSet:
        """Detect changes among *paths*, patch the corpus, and re-index.

        Per-file errors from detection and re-extraction are merged into the
        returned change set.
        """
        with self._write_lock:
            state = self._require_state()
            if self.updater is None:
                raise IndexNotReadyError("No updater attached; index files or call attach_updater() first")

            changes = self.updater.detect_changes(paths, cancel=cancel)
            if changes.is_empty:
                return changes

            result = self.updater.apply_update(state.corpus, changes, cancel=cancel)
            changes.errors.extend(result.errors)
            self.index(result.corpus, self._carry_embeddings(state, result.corpus))
            return changes

    def _carry_embeddings(self, state: IndexState, corpus: CorpusSnapshot) -> Optional[List[EmbeddedDocument]]:
        """Stored vectors still valid for *corpus*, or ``None`` to re-embed."""
        if self.embedder is not None:
            return None
        live = {s.id for s in corpus.symbols} | {file_document_id(p) for p in corpus.file_paths()}
        return [doc for doc in state.vectors.documents() if doc.id in live]

    def watch(self, window: Optional[float] = None) -> ChangeDebouncer:
        """Debouncer that feeds coalesced change notifications to :meth:`apply_changes`."""
        return ChangeDebouncer(
            self.apply_changes,
            window=window if window is not None else self.settings.indexing.debounce_window,
        )

    # ------------------------------------------------------------------
    # Querying
    # ------------------------------------------------------------------

    def query(self, text: str, top_k: Optional[int] = None) -> ContextAssembly:
        """Rank corpus documents for *text* by hybrid and graph relevance."""
        state = self._require_state()
        top_k = top_k if top_k and top_k > 0 else self.settings.query.top_k
        start = time.monotonic()

        if not text or not text.strip():
            logger.warning("Query called with empty text")
            return ContextAssembly(query=text or "", intent=QueryIntent(primary_action="find"))

        query_graph = self.projector.project(text)
        entities = query_graph.entities
        hybrid_weight, graph_weight = self.settings.combine_weights()

        candidates = state.reranker.search(text, top_k * 2)
        scored = []
        for hit in candidates:
            if hit.symbol and hit.file and not is_file_document(hit.document_id):
                graph_score = state.graph.score_symbol(hit.symbol, hit.file, entities, query_graph).overall
            else:
                graph_score = 0.0
            final = hybrid_weight * hit.scores.hybrid + graph_weight * graph_score
            scored.append((final, graph_score, hit))

        # stable: equal scores keep hybrid order
        scored.sort(key=lambda item: item[0], reverse=True)

        results: List[EnhancedQueryResult] = []
        for final, graph_score, hit in scored[:top_k]:
            symbol = hit.symbol or ""
            results.append(EnhancedQueryResult(
                document_id=hit.document_id,
                symbol=symbol,
                file=hit.file or "",
                line=hit.line or 0,
                type=hit.type or "unknown",
                relevance_score=final,
                explanation=ResultExplanation(
                    lexical_score=hit.scores.lexical,
                    semantic_score=hit.scores.semantic,
                    graph_score=graph_score,
                    matched_terms=[e for e in entities if symbol and e.lower() in symbol.lower()],
                    graph_relationships=(
                        state.graph.relationships(symbol, limit=self.settings.query.max_relationships)
                        if symbol else []
                    ),
                ),
            ))

        elapsed = time.monotonic() - start
        logger.debug("Query %r: %d results in %.3fs", text, len(results), elapsed)
        return ContextAssembly(
            query=text,
            intent=query_graph.intent,
            results=results,
            query_graph=query_graph,
            processing_time=elapsed,
        )

    def query_with_fallback(self, text: str, top_k: Optional[int] = None) -> ContextAssembly:
        """:meth:`query`, degrading to fuzzy symbol search when it cannot run."""
        try:
            return self.query(text, top_k)
        except HybridGraphError as exc:
            logger.warning("Hybrid query failed, using fuzzy search: %s", exc)

        top_k = top_k if top_k and top_k > 0 else self.settings.query.top_k
        start = time.monotonic()
        if not text or not text.strip():
            return ContextAssembly(query=text or "", intent=QueryIntent(primary_action="find"), fallback=True)

        context = self.fuzzy.analyzer.analyze(text)
        corpus = self.corpus
        symbols = corpus.symbols if corpus is not None else []
        matches = self.fuzzy.search(text, symbols, limit=top_k)

        results = [
            EnhancedQueryResult(
                document_id=symbol.id,
                symbol=symbol.name,
                file=symbol.file_path,
                line=symbol.line,
                type=symbol.kind.value,
                relevance_score=1.0 - i / len(matches),
                explanation=ResultExplanation(
                    lexical_score=0.0,
                    semantic_score=0.0,
                    graph_score=0.0,
                    matched_terms=[e for e in context.entities if e.lower() in symbol.name.lower()],
                ),
            )
            for i, symbol in enumerate(matches)
        ]
        return ContextAssembly(
            query=text,
            intent=QueryIntent(primary_action=context.intent, entities=list(context.entities)),
            results=results,
            processing_time=time.monotonic() - start,
            fallback=True,
        )

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def explain(self, document_id: str, query: str) -> str:
        """Human-readable breakdown of every signal behind one document's score."""
        state = self._require_state()
        sections = [state.lexical.explain_score(document_id, query)]

        reranked = state.reranker.rerank(query, [document_id])
        if reranked:
            sections.append(state.reranker.explain_score(reranked[0]))

        doc = state.lexical.get_document(document_id)
        if doc is not None:
            entities = self.projector.analyze(query).entities
            score = state.graph.score_symbol(doc.symbol.name, doc.symbol.file_path, entities)
            sections.append("Graph " + state.graph.explain_score(doc.symbol.name, score))
        return "\n\n".join(sections)

    def get_stats(self) -> Dict[str, Any]:
        state = self._state
        if state is None:
            return {"ready": False, "tracked_files": len(self.get_file_hashes())}
        corpus = state.corpus
        return {
            "ready": True,
            "corpus": {
                "symbols": len(corpus.symbols),
                "files": len(corpus.files),
                "imports": len(corpus.imports),
                "calls": len(corpus.calls),
            },
            "retrieval": state.reranker.get_stats(),
            "graph": state.graph.get_stats(),
            "tracked_files": len(self.get_file_hashes()),
        }
