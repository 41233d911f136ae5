"""Projects natural-language queries into the corpus graph schema.

A query such as ``"how does parseConfig call loadFile"`` becomes a tiny
virtual graph: one node per action and entity, call edges from the action to
each entity, and a chain of entity edges under the relationship word.  Every
node's file path is ``[VIRTUAL:<type>:<value>]`` so it can never collide with
a real corpus path.  The graph is rebuilt for every query and never stored.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

import nltk

from .models import (
    VIRTUAL_PREFIX,
    CallEdge,
    CorpusSnapshot,
    FileRecord,
    ImportEdge,
    SymbolKind,
    SymbolRecord,
)

logger = logging.getLogger(__name__)

CODE_ACTIONS = ("find", "show", "explain", "get", "list", "describe", "how", "where", "what", "why")
CODE_RELATIONS = ("calls", "uses", "implements", "extends", "imports", "depends", "references")
CODE_ENTITIES = ("function", "class", "method", "variable", "type", "interface", "component", "module")

DEFAULT_ACTION = "find"

STOP_WORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "if", "then", "else", "of", "in", "on",
    "at", "to", "for", "with", "by", "from", "up", "about", "into", "through",
    "this", "that", "these", "those", "it", "its", "i", "me", "my", "we", "our",
    "you", "your", "they", "them", "their", "is", "are", "was", "were", "be",
    "been", "being", "am", "do", "does", "did", "have", "has", "had", "will",
    "would", "should", "could", "can", "may", "might", "must", "which", "who",
    "whom", "whose", "when", "all", "any", "some", "there", "here", "not", "no",
})

_WORD_RE = re.compile(r"[A-Za-z0-9_]+")
_SCOPE_RE = re.compile(r"\.(tsx|ts|jsx|js|py|java|go|rs|cpp)\b")

_CAMEL_RE = re.compile(r"^[a-z][a-z0-9]*[A-Z][A-Za-z0-9]*$")
_PASCAL_RE = re.compile(r"^[A-Z][a-z0-9]+[A-Za-z0-9]*$")
_SNAKE_RE = re.compile(r"^_*[A-Za-z][A-Za-z0-9]*(_[A-Za-z0-9]+)+_*$")


def is_identifier(token: str) -> bool:
    """camelCase, PascalCase and snake_case names look like code identifiers."""
    return bool(_CAMEL_RE.match(token) or _PASCAL_RE.match(token) or _SNAKE_RE.match(token))


def virtual_path(node_type: str, value: str) -> str:
    return f"{VIRTUAL_PREFIX}{node_type}:{value}]"


# ===================================================================
# Part-of-speech tagging
# ===================================================================

class PosTagger(Protocol):
    def tag(self, tokens: Sequence[str]) -> List[str]: ...


_VERBS = frozenset({
    "is", "are", "was", "were", "be", "do", "does", "did", "has", "have",
    "call", "use", "work", "works", "handle", "handles", "implement", "return",
    "returns", "create", "creates", "build", "builds", "compute", "computes",
    "make", "makes", "run", "runs", "happen", "happens", "search", "locate",
})
_ADJECTIVES = frozenset({
    "async", "static", "public", "private", "protected", "abstract", "recursive",
    "deprecated", "new", "old", "main", "global", "local", "unused", "slow",
    "fast", "large", "small", "internal", "external", "generic", "default",
})
_ADJECTIVE_SUFFIXES = ("able", "ible", "ous", "ive", "ful", "less", "ical")


class HeuristicTagger:
    """Deterministic Penn-style tags from small word lists and suffix rules."""

    def tag(self, tokens: Sequence[str]) -> List[str]:
        return [self._tag(token) for token in tokens]

    @staticmethod
    def _tag(token: str) -> str:
        lower = token.lower()
        if token.isdigit():
            return "CD"
        if is_identifier(token):
            return "NNP"
        if lower in ("how", "where", "why", "when"):
            return "WRB"
        if lower in ("what", "which", "who"):
            return "WP"
        if lower in STOP_WORDS and lower not in _VERBS:
            return "IN"
        if lower in CODE_ACTIONS:
            return "VB"
        if lower in CODE_RELATIONS:
            return "VBZ"
        if lower in _VERBS:
            return "VB"
        if lower in _ADJECTIVES or (len(lower) > 5 and lower.endswith(_ADJECTIVE_SUFFIXES)):
            return "JJ"
        if lower.endswith("ly") and len(lower) > 4:
            return "RB"
        return "NN"


class NltkTagger:
    """``nltk.pos_tag``; falls back to :class:`HeuristicTagger` without the model."""

    def __init__(self) -> None:
        self._fallback = HeuristicTagger()
        self._available: Optional[bool] = None

    def tag(self, tokens: Sequence[str]) -> List[str]:
        if not tokens:
            return []
        if self._available is False:
            return self._fallback.tag(tokens)
        try:
            tagged = nltk.pos_tag(list(tokens))
        except LookupError as exc:
            logger.warning("nltk tagger model not installed, using heuristic tags: %s", exc)
            self._available = False
            return self._fallback.tag(tokens)
        self._available = True
        return [tag for _, tag in tagged]


def make_tagger(name: str = "heuristic") -> PosTagger:
    if name == "nltk":
        return NltkTagger()
    if name != "heuristic":
        logger.warning("Unknown POS tagger '%s', using heuristic", name)
    return HeuristicTagger()


# ===================================================================
# Query intent graph
# ===================================================================

@dataclass
class QueryIntent:
    primary_action: str
    entities: List[str] = field(default_factory=list)
    relationship: Optional[str] = None
    modifiers: List[str] = field(default_factory=list)
    scope: Optional[str] = None


@dataclass
class QueryIntentGraph:
    """Virtual graph with the same node and edge shape as a corpus snapshot."""

    source_query: str
    intent: QueryIntent
    symbols: List[SymbolRecord] = field(default_factory=list)
    files: List[FileRecord] = field(default_factory=list)
    imports: List[ImportEdge] = field(default_factory=list)
    calls: List[CallEdge] = field(default_factory=list)

    @property
    def primary_intent(self) -> str:
        return self.intent.primary_action

    @property
    def entities(self) -> List[str]:
        return list(self.intent.entities)

    def symbol_names(self) -> List[str]:
        return [s.name for s in self.symbols]

    def edge_patterns(self) -> Set[str]:
        return {edge.pattern for edge in self.calls}

    def to_snapshot(self) -> CorpusSnapshot:
        return CorpusSnapshot(
            symbols=list(self.symbols),
            files=list(self.files),
            imports=list(self.imports),
            calls=list(self.calls),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = self.to_snapshot().to_dict()
        payload.update({
            "virtual": True,
            "sourceQuery": self.source_query,
            "primaryIntent": self.primary_intent,
            "entities": self.entities,
            "relationship": self.intent.relationship,
            "modifiers": list(self.intent.modifiers),
            "scope": self.intent.scope,
        })
        return payload


def jaccard(a: Set[str], b: Set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


class QueryIntentProjector:
    """Builds :class:`QueryIntentGraph` objects from query text."""

    def __init__(self, tagger: Optional[PosTagger] = None) -> None:
        self.tagger = tagger or HeuristicTagger()

    # ------------------------------------------------------------------
    # Intent analysis
    # ------------------------------------------------------------------

    def analyze(self, query: str) -> QueryIntent:
        tokens = _WORD_RE.findall(query or "")
        tags = self.tagger.tag(tokens)

        action = DEFAULT_ACTION
        action_index = -1
        for i, (token, tag) in enumerate(zip(tokens, tags)):
            lower = token.lower()
            if lower in CODE_ACTIONS:
                action, action_index = lower, i
                break
            if lower in CODE_RELATIONS or lower in STOP_WORDS or is_identifier(token):
                continue
            if tag.startswith("VB"):
                action, action_index = lower, i
                break

        relationship = next((t.lower() for t in tokens if t.lower() in CODE_RELATIONS), None)
        match = _SCOPE_RE.search(query or "")
        scope = match.group(1) if match else None

        entities: List[str] = []
        seen: Set[str] = set()
        modifiers: List[str] = []
        for i, (token, tag) in enumerate(zip(tokens, tags)):
            lower = token.lower()
            if i == action_index or lower in (relationship, scope) or lower in STOP_WORDS:
                continue
            if is_identifier(token):
                value = token
            elif tag.startswith("NN") or lower in CODE_ENTITIES:
                value = lower
            else:
                if tag.startswith("JJ") and lower not in modifiers:
                    modifiers.append(lower)
                continue
            if lower in CODE_ACTIONS or lower in seen:
                continue
            seen.add(lower)
            entities.append(value)

        return QueryIntent(
            primary_action=action,
            entities=entities,
            relationship=relationship,
            modifiers=modifiers,
            scope=scope,
        )

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def project(self, query: str) -> QueryIntentGraph:
        intent = self.analyze(query)
        graph = QueryIntentGraph(source_query=query, intent=intent)

        nodes = [("action", intent.primary_action, SymbolKind.FUNCTION, list(intent.entities))]
        for entity in intent.entities:
            connections = [intent.relationship] if intent.relationship else []
            nodes.append(("entity", entity, SymbolKind.CLASS, connections))

        for node_type, value, kind, connections in nodes:
            path = virtual_path(node_type, value)
            graph.symbols.append(SymbolRecord(
                name=value,
                kind=kind,
                file_path=path,
                line=0,
                signature=f"[Intent: {node_type}] {value}",
            ))
            graph.files.append(FileRecord(path=path, language="query-intent", size=0, symbol_count=1))
            for conn in connections:
                graph.imports.append(ImportEdge(
                    from_file=path,
                    to_file=f"{VIRTUAL_PREFIX}{conn}]",
                    symbol_names=(conn,),
                ))

        for entity in intent.entities:
            graph.calls.append(CallEdge(intent.primary_action, entity, entity))
        if intent.relationship:
            for a, b in zip(intent.entities, intent.entities[1:]):
                graph.calls.append(CallEdge(a, b, intent.relationship))

        logger.debug(
            "Projected %r: action=%s entities=%s relationship=%s",
            query, intent.primary_action, intent.entities, intent.relationship,
        )
        return graph

    @staticmethod
    def similarity(query_graph: QueryIntentGraph, corpus: CorpusSnapshot) -> float:
        """``0.7 * jaccard(names) + 0.3 * jaccard(edge patterns)``."""
        query_names = {n.lower() for n in query_graph.symbol_names()}
        corpus_names = {s.name.lower() for s in corpus.symbols}
        query_edges = {p.lower() for p in query_graph.edge_patterns()}
        corpus_edges = {edge.pattern.lower() for edge in corpus.calls}
        return 0.7 * jaccard(query_names, corpus_names) + 0.3 * jaccard(query_edges, corpus_edges)
