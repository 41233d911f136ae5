"""Graph-structural relevance of corpus symbols to a projected query.

Five signals per symbol, each in ``[0, 1]``:

- **symbol affinity**: how closely the name matches a query entity;
- **import proximity**: ``exp(-d)`` for the BFS distance in the import graph
  to the nearest file defining a query entity;
- **call-graph match**: query entities among the symbol's callers and
  callees, plus doubly weighted query edge patterns among its outgoing calls;
- **reference density**: ``log10`` of the symbol's call degree;
- **centrality**: PageRank-style mass over the call graph.

Call edges are keyed by symbol *name*, so every symbol sharing a name shares
the same call-graph signals.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .models import CallEdge, CorpusSnapshot, dedupe_calls
from .query_intent import QueryIntentGraph

logger = logging.getLogger(__name__)

DAMPING = 0.85
ITERATIONS = 20
MAX_IMPORT_DISTANCE = 10
NEUTRAL_PROXIMITY = 0.5


@dataclass
class GraphWeights:
    symbol_affinity: float = 0.30
    import_proximity: float = 0.15
    call_graph_match: float = 0.25
    reference_density: float = 0.15
    centrality: float = 0.15

    def normalized(self) -> "GraphWeights":
        values = asdict(self)
        total = sum(values.values())
        if total <= 0:
            raise ValueError("Graph weights must sum to a positive value")
        return GraphWeights(**{k: v / total for k, v in values.items()})


@dataclass
class GraphRelevanceScore:
    symbol_affinity: float = 0.0
    import_proximity: float = 0.0
    call_graph_match: float = 0.0
    reference_density: float = 0.0
    centrality: float = 0.0
    overall: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "symbolAffinity": self.symbol_affinity,
            "importProximity": self.import_proximity,
            "callGraphMatch": self.call_graph_match,
            "referenceDensity": self.reference_density,
            "centrality": self.centrality,
            "overall": self.overall,
        }


@dataclass
class ScoredSymbol:
    symbol: str
    file: str
    line: int
    type: str
    score: GraphRelevanceScore
    explanation: str


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit insert, delete and substitute costs."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


# ===================================================================
# GraphStore
# ===================================================================

class GraphStore:
    """Adjacency views over one corpus snapshot."""

    def __init__(self, corpus: CorpusSnapshot) -> None:
        self.calls: List[CallEdge] = dedupe_calls(corpus.calls)
        self.callees: Dict[str, Set[str]] = {}
        self.callers: Dict[str, Set[str]] = {}
        for edge in self.calls:
            self.callees.setdefault(edge.caller, set()).add(edge.callee)
            self.callers.setdefault(edge.callee, set()).add(edge.caller)

        self.imports: Dict[str, Set[str]] = {}
        for imp in corpus.imports:
            if imp.resolved:
                self.imports.setdefault(imp.from_file, set()).add(imp.to_file)

        # symbol names in first-seen order; a name may be defined in several files
        self.symbol_names: List[str] = []
        self.files_by_name: Dict[str, Set[str]] = {}
        seen: Set[str] = set()
        for symbol in corpus.symbols:
            if symbol.name not in seen:
                seen.add(symbol.name)
                self.symbol_names.append(symbol.name)
            self.files_by_name.setdefault(symbol.name.lower(), set()).add(symbol.file_path)

    def callees_of(self, name: str) -> Set[str]:
        return self.callees.get(name, set())

    def callers_of(self, name: str) -> Set[str]:
        return self.callers.get(name, set())

    def in_degree(self, name: str) -> int:
        return len(self.callers_of(name))

    def out_degree(self, name: str) -> int:
        return len(self.callees_of(name))

    def files_defining(self, names: Iterable[str]) -> Set[str]:
        files: Set[str] = set()
        for name in names:
            files |= self.files_by_name.get(name.lower(), set())
        return files

    def import_distance(self, start: str, targets: Set[str], max_distance: int = MAX_IMPORT_DISTANCE) -> int:
        """Shortest import-hop distance from *start* to any of *targets*."""
        if start in targets:
            return 0
        seen = {start}
        queue = deque([(start, 0)])
        while queue:
            current, depth = queue.popleft()
            if depth >= max_distance:
                continue
            for nxt in self.imports.get(current, ()):
                if nxt in targets:
                    return min(depth + 1, max_distance)
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append((nxt, depth + 1))
        return max_distance

    def edges_touching(self, name: str) -> List[CallEdge]:
        return [e for e in self.calls if e.caller == name or e.callee == name]


# ===================================================================
# GraphAwareScorer
# ===================================================================

class GraphAwareScorer:
    """Scores corpus symbols against query entities and a query graph."""

    def __init__(self, weights: Optional[GraphWeights] = None) -> None:
        self._weights = (weights or GraphWeights()).normalized()
        self._corpus: Optional[CorpusSnapshot] = None
        self._graph: Optional[GraphStore] = None
        self._centrality: Dict[str, float] = {}

    @property
    def is_loaded(self) -> bool:
        return self._graph is not None

    @property
    def weights(self) -> GraphWeights:
        return GraphWeights(**asdict(self._weights))

    def load(self, corpus: CorpusSnapshot) -> None:
        """Build adjacency views for *corpus* and precompute centrality."""
        self._corpus = corpus
        self._graph = GraphStore(corpus)
        self.compute_centrality()
        logger.info(
            "Loaded graph: %d symbols, %d call edges, %d import sources",
            len(self._graph.symbol_names), len(self._graph.calls), len(self._graph.imports),
        )

    def compute_centrality(self) -> Dict[str, float]:
        """PageRank-style power iteration over all corpus symbol names.

        Fixed iteration count, no convergence test.  Callers outside the
        symbol set contribute no mass.  Results are divided by the maximum.
        """
        if self._graph is None:
            logger.warning("compute_centrality called before a graph was loaded")
            return {}
        graph = self._graph
        nodes = graph.symbol_names
        if not nodes:
            self._centrality = {}
            return {}

        n = len(nodes)
        scores = {name: 1.0 / n for name in nodes}
        for _ in range(ITERATIONS):
            updated: Dict[str, float] = {}
            for name in nodes:
                mass = (1 - DAMPING) / n
                for caller in graph.callers_of(name):
                    out = graph.out_degree(caller)
                    if out > 0:
                        mass += DAMPING * scores.get(caller, 0.0) / out
                updated[name] = mass
            scores = updated

        peak = max(scores.values())
        self._centrality = {k: (v / peak if peak > 0 else 0.0) for k, v in scores.items()}
        return dict(self._centrality)

    def centrality(self, name: str) -> float:
        return self._centrality.get(name, 0.0)

    def update_weights(self, **changes: float) -> GraphWeights:
        values = asdict(self._weights)
        unknown = set(changes) - set(values)
        if unknown:
            raise ValueError(f"Unknown graph weights: {', '.join(sorted(unknown))}")
        values.update(changes)
        self._weights = GraphWeights(**values).normalized()
        logger.info("Updated graph weights: %s", asdict(self._weights))
        return self.weights

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    @staticmethod
    def symbol_affinity(name: str, entities: Sequence[str]) -> float:
        if not entities or not name:
            return 0.0
        lower = name.lower()
        best = 0.0
        for entity in entities:
            other = entity.lower()
            if not other:
                continue
            if lower == other:
                return 1.0
            if other in lower or lower in other:
                best = max(best, 0.8)
                continue
            similarity = 1 - levenshtein(lower, other) / max(len(lower), len(other))
            best = max(best, 0.6 * similarity)
        return best

    def import_proximity(self, file_path: str, entities: Sequence[str]) -> float:
        targets = self._graph.files_defining(entities)
        if not targets:
            return NEUTRAL_PROXIMITY
        return math.exp(-self._graph.import_distance(file_path, targets))

    def call_graph_match(self, name: str, entities: Sequence[str],
                         query_graph: Optional[QueryIntentGraph] = None) -> float:
        if not entities:
            return 0.0
        callees = self._graph.callees_of(name)
        neighbourhood = {n.lower() for n in callees | self._graph.callers_of(name)}
        matches = sum(1 for entity in entities if entity.lower() in neighbourhood)

        if query_graph is not None:
            query_patterns = {p.lower() for p in query_graph.edge_patterns()}
            code_patterns = {f"{name}->{callee}".lower() for callee in callees}
            matches += 2 * len(query_patterns & code_patterns)

        return min(1.0, matches / max(len(entities), 1))

    def reference_density(self, name: str) -> float:
        degree = self._graph.in_degree(name) + self._graph.out_degree(name)
        return min(1.0, math.log10(degree + 1))

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score_symbol(self, name: str, file_path: str, query_entities: Sequence[str],
                     query_graph: Optional[QueryIntentGraph] = None) -> GraphRelevanceScore:
        if self._graph is None:
            logger.warning("Graph scoring requested before a graph was loaded")
            return GraphRelevanceScore()

        w = self._weights
        score = GraphRelevanceScore(
            symbol_affinity=self.symbol_affinity(name, query_entities),
            import_proximity=self.import_proximity(file_path, query_entities),
            call_graph_match=self.call_graph_match(name, query_entities, query_graph),
            reference_density=self.reference_density(name),
            centrality=self.centrality(name),
        )
        score.overall = (
            w.symbol_affinity * score.symbol_affinity
            + w.import_proximity * score.import_proximity
            + w.call_graph_match * score.call_graph_match
            + w.reference_density * score.reference_density
            + w.centrality * score.centrality
        )
        return score

    def score_symbols(self, query_graph: QueryIntentGraph) -> List[ScoredSymbol]:
        """Score every corpus symbol against *query_graph*, best first."""
        if self._graph is None or self._corpus is None:
            logger.warning("Graph scoring requested before a graph was loaded")
            return []
        entities = query_graph.entities
        scored: List[ScoredSymbol] = []
        for symbol in self._corpus.symbols:
            score = self.score_symbol(symbol.name, symbol.file_path, entities, query_graph)
            scored.append(ScoredSymbol(
                symbol=symbol.name,
                file=symbol.file_path,
                line=symbol.line,
                type=symbol.kind.value,
                score=score,
                explanation=self.explain_score(symbol.name, score),
            ))
        scored.sort(key=lambda s: s.score.overall, reverse=True)
        return scored

    def relationships(self, name: str, limit: Optional[int] = None) -> List[str]:
        """Call edges touching *name*, rendered as ``caller -> callee``."""
        if self._graph is None:
            return []
        rendered = [f"{e.caller} -> {e.callee}" for e in self._graph.edges_touching(name)]
        return rendered[:limit] if limit is not None else rendered

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    @staticmethod
    def explain_score(name: str, score: GraphRelevanceScore) -> str:
        return "\n  ".join([
            f"{name} overall: {score.overall:.3f}",
            f"- Symbol Affinity: {score.symbol_affinity:.3f}",
            f"- Import Proximity: {score.import_proximity:.3f}",
            f"- Call Graph Match: {score.call_graph_match:.3f}",
            f"- Reference Density: {score.reference_density:.3f}",
            f"- Centrality: {score.centrality:.3f}",
        ])

    def get_stats(self) -> Dict[str, Any]:
        if self._graph is None:
            return {
                "total_symbols": 0,
                "total_call_edges": 0,
                "avg_in_degree": 0.0,
                "avg_out_degree": 0.0,
                "top_central_symbols": [],
            }
        graph = self._graph
        names = graph.symbol_names
        total = len(names)
        total_in = sum(graph.in_degree(n) for n in names)
        total_out = sum(graph.out_degree(n) for n in names)
        top = sorted(self._centrality.items(), key=lambda kv: kv[1], reverse=True)[:10]
        return {
            "total_symbols": total,
            "total_call_edges": len(graph.calls),
            "avg_in_degree": round(total_in / total, 2) if total else 0.0,
            "avg_out_degree": round(total_out / total, 2) if total else 0.0,
            "top_central_symbols": [{"symbol": s, "centrality": c} for s, c in top],
        }
