"""Embedding capability consumed by the semantic leg of retrieval.

The engine never runs a neural model itself.  Whatever produces vectors is
injected as an :class:`Embedder`; the only one shipped here is
:class:`HashEmbeddingModel`, a deterministic token-hashing embedder with
keyword-level similarity and no ML dependencies.  Externally generated
vectors can be loaded directly as :class:`~hybridgraph.models.EmbeddedDocument`
payloads keyed by the same document ids.
"""

from __future__ import annotations

import logging
import math
from hashlib import blake2b
from typing import Dict, List, Protocol

from .models import CorpusSnapshot, EmbeddedDocument, SymbolRecord, file_document_id
from .tokenizer import tokenize

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_DIM = 256


class Embedder(Protocol):
    """Anything that turns text into a fixed-dimension vector."""

    def embed_text(self, text: str) -> List[float]: ...


# ===================================================================
# HashEmbeddingModel
# ===================================================================

class HashEmbeddingModel:
    """Deterministic token-hashing embedder.

    Tokens go through the same identifier-aware tokenizer as the lexical
    index, so ``fetchUser`` and ``user`` share a bucket.
    """

    def __init__(self, dim: int = DEFAULT_EMBEDDING_DIM) -> None:
        if dim <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dim}")
        self.dim = dim

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        tokens = tokenize(text)
        if not tokens:
            return vec
        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "big") % self.dim
            sign = 1.0 if (digest[4] & 1) == 0 else -1.0
            vec[idx] += sign
        return _l2_normalize(vec)


# ===================================================================
# Document construction
# ===================================================================

def symbol_text(symbol: SymbolRecord) -> str:
    """Text an embedder sees for a symbol document."""
    parts = [symbol.name, symbol.kind.value, symbol.signature or ""]
    if symbol.doc_comment:
        parts.append(symbol.doc_comment)
    return " ".join(p for p in parts if p)


def file_text(path: str, symbols: List[SymbolRecord]) -> str:
    return " ".join([path] + [s.name for s in symbols])


def build_embeddings(corpus: CorpusSnapshot, embedder: Embedder) -> List[EmbeddedDocument]:
    """Embed every symbol and file of *corpus* with *embedder*.

    Symbol documents are keyed by ``SymbolRecord.id``; file documents by
    ``file:<path>``.
    """
    documents: List[EmbeddedDocument] = []
    seen = set()
    for symbol in corpus.symbols:
        if symbol.id in seen:
            continue
        seen.add(symbol.id)
        documents.append(EmbeddedDocument(
            id=symbol.id,
            vector=embedder.embed_text(symbol_text(symbol)),
            metadata={
                "type": "symbol",
                "symbol": symbol.name,
                "file": symbol.file_path,
                "line": symbol.line,
                "kind": symbol.kind.value,
            },
        ))

    by_file: Dict[str, List[SymbolRecord]] = {}
    for symbol in corpus.symbols:
        by_file.setdefault(symbol.file_path, []).append(symbol)
    for record in corpus.files:
        documents.append(EmbeddedDocument(
            id=file_document_id(record.path),
            vector=embedder.embed_text(file_text(record.path, by_file.get(record.path, []))),
            metadata={"type": "file", "file": record.path, "language": record.language},
        ))

    logger.info("Embedded %d documents", len(documents))
    return documents


# ===================================================================
# Utility
# ===================================================================

def _l2_normalize(vec: List[float]) -> List[float]:
    """Return *vec* scaled to unit length.  Zero vectors come back unchanged."""
    norm = math.sqrt(sum(v * v for v in vec))
    if norm < 1e-12:
        return vec
    return [v / norm for v in vec]
