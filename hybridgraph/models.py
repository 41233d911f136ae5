"""Core data models shared by indexing, retrieval, and orchestration layers.

Wire format: every record serializes to a plain dict with camelCase keys, the
shape produced by the external symbol extractor, and reads back losslessly
through :meth:`from_dict`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

VIRTUAL_PREFIX = "[VIRTUAL:"
FILE_DOC_PREFIX = "file:"

INDEXING_PHASES = ("scanning", "parsing", "symbolExtraction", "importResolution")


class SymbolKind(str, Enum):
    """Closed set of symbol kinds understood by the engine.

    Mirrors the kind names language servers report for document symbols;
    anything else parses to ``UNKNOWN``.
    """

    FILE = "File"
    MODULE = "Module"
    NAMESPACE = "Namespace"
    PACKAGE = "Package"
    CLASS = "Class"
    METHOD = "Method"
    PROPERTY = "Property"
    FIELD = "Field"
    CONSTRUCTOR = "Constructor"
    ENUM = "Enum"
    INTERFACE = "Interface"
    FUNCTION = "Function"
    VARIABLE = "Variable"
    CONSTANT = "Constant"
    STRING = "String"
    NUMBER = "Number"
    BOOLEAN = "Boolean"
    ARRAY = "Array"
    OBJECT = "Object"
    KEY = "Key"
    NULL = "Null"
    ENUM_MEMBER = "EnumMember"
    STRUCT = "Struct"
    EVENT = "Event"
    OPERATOR = "Operator"
    TYPE_PARAMETER = "TypeParameter"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "SymbolKind":
        if isinstance(value, SymbolKind):
            return value
        text = str(value or "").strip().lower()
        for kind in cls:
            if kind.value.lower() == text:
                return kind
        return cls.UNKNOWN


def make_symbol_id(file_path: str, line: int, name: str) -> str:
    return f"{file_path}:{line}:{name}"


def file_document_id(path: str) -> str:
    return f"{FILE_DOC_PREFIX}{path}"


def is_file_document(document_id: str) -> bool:
    return document_id.startswith(FILE_DOC_PREFIX)


def _now() -> str:
    return datetime.now().isoformat()


# ===================================================================
# Corpus records
# ===================================================================

@dataclass(frozen=True)
class SymbolRecord:
    """One extracted symbol occurrence.  ``id`` is derived, never supplied."""

    name: str
    kind: SymbolKind
    file_path: str
    line: int
    signature: str = ""
    doc_comment: Optional[str] = None

    @property
    def id(self) -> str:
        return make_symbol_id(self.file_path, self.line, self.name)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "filePath": self.file_path,
            "line": self.line,
            "signature": self.signature,
        }
        if self.doc_comment is not None:
            payload["docComment"] = self.doc_comment
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SymbolRecord":
        return cls(
            name=data["name"],
            kind=SymbolKind.parse(data.get("kind")),
            file_path=data["filePath"],
            line=int(data.get("line", 0)),
            signature=data.get("signature", "") or "",
            doc_comment=data.get("docComment"),
        )


@dataclass(frozen=True)
class FileRecord:
    path: str
    language: str
    size: int = 0
    symbol_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "language": self.language,
            "size": self.size,
            "symbolCount": self.symbol_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileRecord":
        return cls(
            path=data["path"],
            language=data.get("language", ""),
            size=int(data.get("size", 0)),
            symbol_count=int(data.get("symbolCount", 0)),
        )


@dataclass(frozen=True)
class ImportEdge:
    """File-to-file import.  ``to_file`` is ``None`` when unresolved."""

    from_file: str
    to_file: Optional[str]
    symbol_names: Tuple[str, ...] = ()

    @property
    def resolved(self) -> bool:
        return bool(self.to_file)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fromFile": self.from_file,
            "toFile": self.to_file,
            "symbolNames": list(self.symbol_names),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportEdge":
        return cls(
            from_file=data["fromFile"],
            to_file=data.get("toFile"),
            symbol_names=tuple(data.get("symbolNames", [])),
        )


@dataclass(frozen=True)
class CallEdge:
    """Symbol-name level call: ``caller`` calls ``callee``."""

    caller: str
    callee: str
    symbol_name: str = ""

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.caller, self.callee, self.symbol_name)

    @property
    def pattern(self) -> str:
        return f"{self.caller}->{self.callee}"

    def to_dict(self) -> Dict[str, Any]:
        return {"from": self.caller, "to": self.callee, "symbolName": self.symbol_name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallEdge":
        return cls(
            caller=data["from"],
            callee=data["to"],
            symbol_name=data.get("symbolName", data.get("symbol", "")) or "",
        )


def dedupe_calls(calls: List[CallEdge]) -> List[CallEdge]:
    """Drop repeated ``(from, to, symbol_name)`` edges, keeping first-seen order."""
    seen = set()
    unique: List[CallEdge] = []
    for edge in calls:
        if edge.key in seen:
            continue
        seen.add(edge.key)
        unique.append(edge)
    return unique


@dataclass
class CorpusSnapshot:
    """The unit the engine indexes.

    Treated as a value: updates go through :meth:`without_files` and
    :meth:`with_extraction`, which return new snapshots.

    ``call_sources`` remembers the call edges each extracted file
    contributed, so a file's edges can be withdrawn even when its caller
    names are also defined elsewhere.  Edges supplied without a source file
    are not listed there.
    """

    symbols: List[SymbolRecord] = field(default_factory=list)
    files: List[FileRecord] = field(default_factory=list)
    imports: List[ImportEdge] = field(default_factory=list)
    calls: List[CallEdge] = field(default_factory=list)
    call_sources: Dict[str, List[CallEdge]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.symbols and not self.files

    def file_paths(self) -> List[str]:
        return [f.path for f in self.files]

    def attributed_call_keys(self) -> set:
        return {edge.key for edges in self.call_sources.values() for edge in edges}

    def without_files(self, paths: List[str]) -> "CorpusSnapshot":
        drop = set(paths)
        sources = {p: list(edges) for p, edges in self.call_sources.items() if p not in drop}
        withdrawn = {edge.key for p in drop for edge in self.call_sources.get(p, [])}
        still_made = {edge.key for edges in sources.values() for edge in edges}
        gone = withdrawn - still_made
        return CorpusSnapshot(
            symbols=[s for s in self.symbols if s.file_path not in drop],
            files=[f for f in self.files if f.path not in drop],
            imports=[i for i in self.imports if i.from_file not in drop],
            calls=[c for c in self.calls if c.key not in gone],
            call_sources=sources,
        )

    def with_extraction(self, extraction: "FileExtraction") -> "CorpusSnapshot":
        sources = {p: list(edges) for p, edges in self.call_sources.items()}
        sources.pop(extraction.file.path, None)
        if extraction.calls:
            sources[extraction.file.path] = list(extraction.calls)
        return CorpusSnapshot(
            symbols=self.symbols + list(extraction.symbols),
            files=self.files + [extraction.file],
            imports=self.imports + list(extraction.imports),
            calls=self.calls + list(extraction.calls),
            call_sources=sources,
        )

    def deduplicated(self) -> "CorpusSnapshot":
        return replace(self, calls=dedupe_calls(self.calls))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "symbols": [s.to_dict() for s in self.symbols],
            "files": [f.to_dict() for f in self.files],
            "imports": [i.to_dict() for i in self.imports],
            "calls": [c.to_dict() for c in self.calls],
        }
        if self.call_sources:
            payload["callSources"] = {
                path: [c.to_dict() for c in edges] for path, edges in self.call_sources.items()
            }
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CorpusSnapshot":
        return cls(
            symbols=[SymbolRecord.from_dict(s) for s in data.get("symbols", [])],
            files=[FileRecord.from_dict(f) for f in data.get("files", [])],
            imports=[ImportEdge.from_dict(i) for i in data.get("imports", [])],
            calls=[CallEdge.from_dict(c) for c in data.get("calls", [])],
            call_sources={
                path: [CallEdge.from_dict(c) for c in edges]
                for path, edges in (data.get("callSources") or {}).items()
            },
        )


@dataclass
class FileExtraction:
    """What the external extractor returns for a single file."""

    file: FileRecord
    symbols: List[SymbolRecord] = field(default_factory=list)
    imports: List[ImportEdge] = field(default_factory=list)
    calls: List[CallEdge] = field(default_factory=list)


@dataclass(frozen=True)
class FileHashRecord:
    path: str
    hash: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "hash": self.hash}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileHashRecord":
        return cls(path=data["path"], hash=data["hash"])


@dataclass
class EmbeddedDocument:
    id: str
    vector: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def dimension(self) -> int:
        return len(self.vector)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "vector": list(self.vector), "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmbeddedDocument":
        return cls(
            id=data["id"],
            vector=[float(v) for v in data.get("vector", [])],
            metadata=dict(data.get("metadata", {})),
        )


# ===================================================================
# Indexing reports
# ===================================================================

@dataclass
class IndexingError:
    """A per-file failure collected during indexing or updating."""

    file: str
    error: str
    phase: str = "parsing"
    timestamp: str = field(default_factory=_now)

    def __post_init__(self) -> None:
        if self.phase not in INDEXING_PHASES:
            raise ValueError(f"Unknown indexing phase: {self.phase}")

    def to_dict(self) -> Dict[str, str]:
        return {
            "file": self.file,
            "error": self.error,
            "phase": self.phase,
            "timestamp": self.timestamp,
        }


@dataclass
class IndexingReport:
    total_files: int
    successful_files: int
    skipped_files: int
    errors: List[IndexingError]
    duration: float
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFiles": self.total_files,
            "successfulFiles": self.successful_files,
            "skippedFiles": self.skipped_files,
            "errors": [e.to_dict() for e in self.errors],
            "duration": self.duration,
            "timestamp": self.timestamp,
        }


@dataclass
class ChangeSet:
    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    errors: List[IndexingError] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": list(self.added),
            "modified": list(self.modified),
            "deleted": list(self.deleted),
            "errors": [e.to_dict() for e in self.errors],
        }


# ===================================================================
# Query-time results
# ===================================================================

@dataclass
class ScoreBreakdown:
    lexical: float = 0.0
    semantic: float = 0.0
    hybrid: float = 0.0
    rrf: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "lexical": self.lexical,
            "semantic": self.semantic,
            "hybrid": self.hybrid,
            "rrf": self.rrf,
        }


@dataclass
class HybridResult:
    document_id: str
    scores: ScoreBreakdown
    rank: int = 0
    symbol: Optional[str] = None
    file: Optional[str] = None
    type: Optional[str] = None
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "symbol": self.symbol,
            "file": self.file,
            "type": self.type,
            "line": self.line,
            "scores": self.scores.to_dict(),
            "rank": self.rank,
        }


@dataclass
class ResultExplanation:
    lexical_score: float
    semantic_score: float
    graph_score: float
    matched_terms: List[str] = field(default_factory=list)
    graph_relationships: List[str] = field(default_factory=list)


@dataclass
class EnhancedQueryResult:
    document_id: str
    symbol: str
    file: str
    line: int
    type: str
    relevance_score: float
    explanation: ResultExplanation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "symbol": self.symbol,
            "file": self.file,
            "line": self.line,
            "type": self.type,
            "relevanceScore": self.relevance_score,
            "explanation": {
                "lexicalScore": self.explanation.lexical_score,
                "semanticScore": self.explanation.semantic_score,
                "graphScore": self.explanation.graph_score,
                "matchedTerms": list(self.explanation.matched_terms),
                "graphRelationships": list(self.explanation.graph_relationships),
            },
        }
