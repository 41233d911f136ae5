"""Batched full-corpus indexing through an external extractor."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from .errors import IndexingCancelledError
from .hashing import ContentHasher, FileHasher
from .incremental import DEFAULT_MAX_FILE_SIZE, Extractor
from .models import CorpusSnapshot, IndexingError, IndexingReport

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

CODE_EXTENSIONS: Set[str] = {
    ".ts", ".tsx", ".js", ".jsx", ".py", ".java", ".c", ".cpp", ".h", ".hpp",
    ".go", ".rs", ".cs", ".php", ".rb", ".swift", ".kt", ".scala", ".vue", ".svelte",
}

SKIP_DIRS: Set[str] = {
    ".venv", "venv", "__pycache__", "node_modules", ".git", "site-packages",
    ".tox", ".pytest_cache", "build", "dist", "out", ".mypy_cache", ".eggs",
    ".hybridgraph",
}

Progress = Callable[[str], None]


def find_code_files(root: Path, extensions: Optional[Iterable[str]] = None) -> List[str]:
    """All source files under *root*, sorted, skipping tool and vendor dirs."""
    wanted = set(extensions) if extensions is not None else CODE_EXTENSIONS
    files: List[str] = []
    for file_path in sorted(root.rglob("*")):
        if file_path.suffix not in wanted or not file_path.is_file():
            continue
        if any(part in SKIP_DIRS for part in file_path.relative_to(root).parts):
            continue
        files.append(str(file_path))
    return files


@dataclass
class IndexRun:
    corpus: CorpusSnapshot
    report: IndexingReport
    hashes: Dict[str, str] = field(default_factory=dict)


class CorpusIndexer:
    """Extracts a list of files into a :class:`CorpusSnapshot` in batches.

    Cancellation is only observed between batches, so a cancel request takes
    effect after at most one batch of work.
    """

    def __init__(
        self,
        extractor: Extractor,
        hasher: Optional[ContentHasher] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.extractor = extractor
        self.hasher = hasher or FileHasher()
        self.batch_size = batch_size
        self.max_file_size = max_file_size

    def build(
        self,
        paths: Iterable[str],
        cancel: Optional[threading.Event] = None,
        progress: Optional[Progress] = None,
    ) -> IndexRun:
        start = time.monotonic()
        files = list(dict.fromkeys(paths))
        errors: List[IndexingError] = []
        hashes: Dict[str, str] = {}
        corpus = CorpusSnapshot()
        successful = 0
        skipped = 0

        _report(progress, f"Found {len(files)} files to index")

        for offset in range(0, len(files), self.batch_size):
            if cancel is not None and cancel.is_set():
                raise IndexingCancelledError(
                    f"Indexing cancelled after {offset} of {len(files)} files"
                )
            for path in files[offset:offset + self.batch_size]:
                try:
                    size = self.hasher.size(path)
                except OSError as exc:
                    errors.append(IndexingError(file=path, error=str(exc), phase="scanning"))
                    continue
                if size > self.max_file_size:
                    skipped += 1
                    errors.append(IndexingError(
                        file=path,
                        error=f"File too large: {size / 1024:.1f}KB",
                        phase="scanning",
                    ))
                    continue
                try:
                    digest = self.hasher.digest(path)
                    extraction = self.extractor(path)
                except Exception as exc:
                    logger.warning("Failed to extract %s: %s", path, exc)
                    errors.append(IndexingError(file=path, error=str(exc), phase="parsing"))
                    continue
                corpus.symbols.extend(extraction.symbols)
                corpus.files.append(extraction.file)
                corpus.imports.extend(extraction.imports)
                corpus.calls.extend(extraction.calls)
                if extraction.calls:
                    corpus.call_sources[extraction.file.path] = list(extraction.calls)
                hashes[path] = digest
                successful += 1

            done = min(offset + self.batch_size, len(files))
            _report(progress, f"Indexed {done}/{len(files)} files...")

        if cancel is not None and cancel.is_set():
            raise IndexingCancelledError("Indexing cancelled before the call graph was built")

        _report(progress, "Building call graph...")
        corpus = corpus.deduplicated()

        report = IndexingReport(
            total_files=len(files),
            successful_files=successful,
            skipped_files=skipped,
            errors=errors,
            duration=time.monotonic() - start,
        )
        logger.info(
            "Indexed %d/%d files (%d skipped, %d errors) in %.2fs",
            successful, len(files), skipped, len(errors), report.duration,
        )
        return IndexRun(corpus=corpus, report=report, hashes=hashes)


def _report(progress: Optional[Progress], message: str) -> None:
    logger.debug(message)
    if progress is not None:
        progress(message)
