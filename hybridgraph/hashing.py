"""Content hashing used to decide which files need re-extraction."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Dict, Iterable, Protocol

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class ContentHasher(Protocol):
    """File-system capability the incremental updater depends on."""

    def exists(self, path: str) -> bool: ...

    def digest(self, path: str) -> str: ...

    def size(self, path: str) -> int: ...


class FileHasher:
    """SHA-256 digests of file bytes read from the local disk."""

    def exists(self, path: str) -> bool:
        return Path(path).is_file()

    def size(self, path: str) -> int:
        return Path(path).stat().st_size

    def digest(self, path: str) -> str:
        h = hashlib.sha256()
        with open(path, "rb") as fh:
            for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
                h.update(chunk)
        return h.hexdigest()

    def digest_many(self, paths: Iterable[str]) -> Dict[str, str]:
        """Hash every readable path; unreadable files are logged and skipped."""
        hashes: Dict[str, str] = {}
        for path in paths:
            try:
                hashes[path] = self.digest(path)
            except OSError as exc:
                logger.error("Failed to hash %s: %s", path, exc)
        return hashes


def digest_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
