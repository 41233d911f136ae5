"""Simple query analysis and fuzzy symbol search.

Used when the hybrid pipeline cannot answer (nothing indexed, or a fatal
error along the way).  Matching is ``difflib.SequenceMatcher`` similarity over
a symbol's name, kind, signature and file, plus substring hits, followed by
an entity bonus that favours name matches over signature and kind matches.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple

from .models import SymbolRecord
from .query_intent import STOP_WORDS
from .tokenizer import stem

logger = logging.getLogger(__name__)

FUZZY_THRESHOLD = 0.4
DEFAULT_LIMIT = 20

_ENTITY_RE = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")
_TERM_SPLIT_RE = re.compile(r"\W+")

# language -> extensions
FILE_TYPES: Dict[str, Tuple[str, ...]] = {
    "typescript": (".ts", ".tsx"),
    "python": (".py",),
    "java": (".java",),
    "go": (".go",),
}

_SEARCH_TERM_STOP_WORDS = STOP_WORDS | {"how", "what", "where", "why", "find", "show", "get"}


@dataclass
class QueryContext:
    query: str
    intent: str = "search"
    entities: List[str] = field(default_factory=list)
    file_types: List[str] = field(default_factory=list)


class QueryAnalyzer:
    """Keyword-level intent and entity detection."""

    def analyze(self, query: str) -> QueryContext:
        if not query or not isinstance(query, str) or not query.strip():
            raise ValueError("Query must be a non-empty string")
        lower = query.strip().lower()

        if any(word in lower for word in ("find", "where", "show")):
            intent = "search"
        elif any(word in lower for word in ("definition", "declare")):
            intent = "definition"
        elif any(word in lower for word in ("call", "reference", "use")):
            intent = "references"
        elif any(word in lower for word in ("flow", "graph")):
            intent = "callGraph"
        else:
            intent = "search"

        return QueryContext(
            query=query,
            intent=intent,
            entities=self.extract_entities(query),
            file_types=self.detect_file_types(lower),
        )

    @staticmethod
    def extract_entities(query: str) -> List[str]:
        return [
            word for word in query.split()
            if word.lower() not in _SEARCH_TERM_STOP_WORDS and _ENTITY_RE.match(word)
        ]

    @staticmethod
    def detect_file_types(lower_query: str) -> List[str]:
        found: List[str] = []
        if "typescript" in lower_query or ".ts" in lower_query:
            found.append("typescript")
        if "python" in lower_query or ".py" in lower_query:
            found.append("python")
        if re.search(r"\bjava\b|\.java\b", lower_query):
            found.append("java")
        if re.search(r"\bgo(lang)?\b|\.go\b", lower_query):
            found.append("go")
        return found

    @staticmethod
    def extract_search_terms(query: str) -> List[str]:
        """Stemmed content words of *query*: stop words and short words dropped."""
        if not query or not isinstance(query, str):
            return []
        words = _TERM_SPLIT_RE.split(query.strip().lower())
        return [stem(w) for w in words if len(w) > 2 and w not in _SEARCH_TERM_STOP_WORDS]


def _similarity(needle: str, haystack: str) -> float:
    if not needle or not haystack:
        return 0.0
    if needle in haystack:
        return 1.0
    return SequenceMatcher(None, needle, haystack).ratio()


class FuzzySearcher:
    """Approximate symbol lookup over a flat list of :class:`SymbolRecord`."""

    def __init__(self, analyzer: Optional[QueryAnalyzer] = None, threshold: float = FUZZY_THRESHOLD) -> None:
        self.analyzer = analyzer or QueryAnalyzer()
        self.threshold = threshold

    def search(self, query: str, symbols: Sequence[SymbolRecord], limit: int = DEFAULT_LIMIT) -> List[SymbolRecord]:
        if not query or not isinstance(query, str) or not query.strip():
            logger.warning("Fuzzy search called with an empty query")
            return []
        if not symbols:
            return []

        context = self.analyzer.analyze(query)
        needles = [e.lower() for e in context.entities] or [query.strip().lower()]

        matched = [s for s in symbols if self._matches(s, needles)]
        matched = self._filter_file_types(matched, context.file_types)

        scored = [(self._entity_bonus(s, context.entities), s) for s in matched]
        # stable: equal bonuses keep corpus order
        scored.sort(key=lambda item: item[0], reverse=True)
        return [s for _, s in scored[:limit]]

    def _matches(self, symbol: SymbolRecord, needles: Sequence[str]) -> bool:
        fields = (
            symbol.name.lower(),
            symbol.kind.value.lower(),
            (symbol.signature or "").lower(),
            symbol.file_path.lower(),
        )
        return any(
            _similarity(needle, value) >= self.threshold
            for needle in needles
            for value in fields
        )

    @staticmethod
    def _filter_file_types(symbols: List[SymbolRecord], file_types: Sequence[str]) -> List[SymbolRecord]:
        if not file_types:
            return symbols
        allowed = {ext for ft in file_types for ext in FILE_TYPES.get(ft, ())}
        return [s for s in symbols if PurePosixPath(s.file_path).suffix in allowed]

    @staticmethod
    def _entity_bonus(symbol: SymbolRecord, entities: Sequence[str]) -> int:
        if not entities:
            return 1
        name = symbol.name.lower()
        signature = (symbol.signature or "").lower()
        kind = symbol.kind.value.lower()
        score = 0
        for entity in entities:
            needle = entity.lower()
            if needle in name:
                score += 10
            if needle in signature:
                score += 5
            if needle in kind:
                score += 3
        return score
