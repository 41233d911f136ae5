"""Exception hierarchy for the retrieval engine.

Input problems (empty query, empty corpus) are not exceptions: components log
a warning and return empty results.  Per-file failures are collected as
:class:`~hybridgraph.models.IndexingError` records.  The classes below are the
conditions that must reach the caller.
"""

from __future__ import annotations


class HybridGraphError(Exception):
    """Base class for all engine errors."""


class IndexNotReadyError(HybridGraphError):
    """A required index or collaborator was never loaded."""


class DimensionMismatchError(HybridGraphError, ValueError):
    """Two vectors that must share a dimension do not."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Vector dimensions must match: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class IndexingCancelledError(HybridGraphError):
    """Indexing was cancelled at a batch boundary."""
