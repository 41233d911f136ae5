"""Content-hash driven incremental maintenance of a corpus snapshot.

:class:`IncrementalUpdater` owns the ``{path: hash}`` map.  ``detect_changes``
classifies files against it without touching it; ``apply_update`` produces a
new snapshot (the input snapshot is never mutated), re-extracts what changed,
and commits hashes for every file that was processed successfully.

After every update the call graph is rebuilt over the whole snapshot from the
edges each surviving file contributed.  Edges that arrived without a source
file fall back to name-based invalidation: they go once no remaining file
defines their caller.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from .errors import IndexNotReadyError
from .hashing import ContentHasher, FileHasher
from .models import (
    CallEdge,
    ChangeSet,
    CorpusSnapshot,
    FileExtraction,
    FileHashRecord,
    IndexingError,
    dedupe_calls,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 1024 * 1024
CALL_GRAPH_PSEUDO_FILE = "[call-graph]"

Extractor = Callable[[str], FileExtraction]
CallGraphBuilder = Callable[[CorpusSnapshot], List[CallEdge]]


def rebuild_call_graph(corpus: CorpusSnapshot) -> List[CallEdge]:
    """Default rebuild: unattributed edges plus every file's own edges, deduplicated."""
    attributed = corpus.attributed_call_keys()
    unattributed = [c for c in corpus.calls if c.key not in attributed]
    per_file = [c for edges in corpus.call_sources.values() for c in edges]
    return dedupe_calls(unattributed + per_file)


@dataclass
class UpdateResult:
    corpus: CorpusSnapshot
    errors: List[IndexingError] = field(default_factory=list)
    processed: List[str] = field(default_factory=list)


class IncrementalUpdater:
    """Decides what to re-extract and patches the snapshot accordingly.

    Without an *extractor* the updater can only detect changes.
    """

    def __init__(
        self,
        extractor: Optional[Extractor],
        hasher: Optional[ContentHasher] = None,
        initial_hashes: Optional[Dict[str, str]] = None,
        call_graph_builder: Optional[CallGraphBuilder] = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    ) -> None:
        self.extractor = extractor
        self.hasher = hasher or FileHasher()
        self.call_graph_builder = call_graph_builder or rebuild_call_graph
        self.max_file_size = max_file_size
        self._hashes: Dict[str, str] = dict(initial_hashes or {})

    # ------------------------------------------------------------------
    # Change detection
    # ------------------------------------------------------------------

    def detect_changes(self, paths: Iterable[str], cancel: Optional[threading.Event] = None) -> ChangeSet:
        """Classify *paths* against the stored hashes.

        Listed files that exist are added (unknown) or modified (digest
        differs).  Known files that are missing, whether listed or not, are
        deleted.  Each path is reported at most once.
        """
        changes = ChangeSet()
        checked: Set[str] = set()

        for path in paths:
            if cancel is not None and cancel.is_set():
                logger.info("Change detection cancelled after %d files", len(checked))
                break
            if path in checked:
                continue
            checked.add(path)

            try:
                if not self.hasher.exists(path):
                    if path in self._hashes:
                        changes.deleted.append(path)
                    continue
                digest = self.hasher.digest(path)
            except OSError as exc:
                logger.error("Error checking file %s: %s", path, exc)
                changes.errors.append(IndexingError(file=path, error=str(exc), phase="scanning"))
                continue

            previous = self._hashes.get(path)
            if previous is None:
                changes.added.append(path)
            elif previous != digest:
                changes.modified.append(path)

        for path in self._hashes:
            if path not in checked and not self.hasher.exists(path):
                changes.deleted.append(path)

        logger.info(
            "Detected %d added, %d modified, %d deleted",
            len(changes.added), len(changes.modified), len(changes.deleted),
        )
        return changes

    # ------------------------------------------------------------------
    # Applying updates
    # ------------------------------------------------------------------

    def apply_update(
        self,
        corpus: CorpusSnapshot,
        changes: ChangeSet,
        cancel: Optional[threading.Event] = None,
    ) -> UpdateResult:
        """Return a new snapshot with *changes* applied.

        Per-file failures are collected in the result and never abort the
        update.  Files still pending when *cancel* is set are left untouched
        and keep their old hashes, so the next detection reports them again.
        """
        errors: List[IndexingError] = []
        processed: List[str] = []

        pending = list(dict.fromkeys(changes.modified + changes.added))
        if pending and self.extractor is None:
            raise IndexNotReadyError("No extractor configured; changes can be detected but not applied")

        updated = _without_files(corpus, list(dict.fromkeys(changes.deleted)))

        for path in changes.deleted:
            self._hashes.pop(path, None)

        for path in pending:
            if cancel is not None and cancel.is_set():
                logger.info("Update cancelled; %d files processed", len(processed))
                break
            # replaces any earlier records of the file
            updated = _without_files(updated, [path])
            try:
                size = self.hasher.size(path)
                if size > self.max_file_size:
                    errors.append(IndexingError(
                        file=path,
                        error=f"File too large: {size / 1024:.1f}KB",
                        phase="scanning",
                    ))
                    continue
                extraction = self.extractor(path)
                digest = self.hasher.digest(path)
            except Exception as exc:
                logger.warning("Re-extraction failed for %s: %s", path, exc)
                errors.append(IndexingError(file=path, error=str(exc), phase="parsing"))
                continue

            updated = updated.with_extraction(extraction)
            self._hashes[path] = digest
            processed.append(path)

        try:
            updated.calls = self.call_graph_builder(updated)
        except Exception as exc:
            logger.error("Call graph rebuild failed: %s", exc)
            errors.append(IndexingError(
                file=CALL_GRAPH_PSEUDO_FILE,
                error=f"Call graph rebuild failed: {exc}",
                phase="importResolution",
            ))

        logger.info("Applied update: %d files processed, %d errors", len(processed), len(errors))
        return UpdateResult(corpus=updated, errors=errors, processed=processed)

    # ------------------------------------------------------------------
    # Hash map access
    # ------------------------------------------------------------------

    def update_hash(self, path: str, digest: str) -> None:
        if not path or not isinstance(path, str):
            raise ValueError("Invalid file path provided")
        if not digest or not isinstance(digest, str):
            raise ValueError("Invalid hash provided")
        self._hashes[path] = digest

    def remove_file(self, path: str) -> None:
        if not path:
            logger.warning("remove_file called without a path")
            return
        self._hashes.pop(path, None)

    def get_file_hashes(self) -> Dict[str, str]:
        return dict(self._hashes)

    def hash_records(self) -> List[FileHashRecord]:
        return [FileHashRecord(path=p, hash=h) for p, h in sorted(self._hashes.items())]


def _without_files(corpus: CorpusSnapshot, paths: List[str]) -> CorpusSnapshot:
    """Drop *paths* with the edges they contributed.

    Unattributed edges are dropped when their caller was defined only in
    *paths*.
    """
    if not paths:
        return corpus.without_files([])
    drop = set(paths)
    attributed = corpus.attributed_call_keys()
    survivors = {s.name for s in corpus.symbols if s.file_path not in drop}
    stale = {s.name for s in corpus.symbols if s.file_path in drop} - survivors
    trimmed = corpus.without_files(paths)
    trimmed.calls = [c for c in trimmed.calls if c.key in attributed or c.caller not in stale]
    return trimmed


# ===================================================================
# Change debouncing
# ===================================================================

class ChangeDebouncer:
    """Coalesces rapid change notifications into one callback.

    Every :meth:`notify` restarts the quiescence window; when it elapses the
    callback receives the union of all paths seen since the last flush.
    """

    def __init__(self, callback: Callable[[List[str]], None], window: float = 2.0) -> None:
        self.callback = callback
        self.window = window
        self._pending: Dict[str, None] = {}
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def notify(self, paths: Iterable[str]) -> None:
        with self._lock:
            for path in paths:
                self._pending[path] = None
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.window, self.flush)
            self._timer.daemon = True
            self._timer.start()

    @property
    def pending(self) -> List[str]:
        with self._lock:
            return list(self._pending)

    def flush(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            paths = list(self._pending)
            self._pending.clear()
        if paths:
            self.callback(paths)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()
